"""
Workflow Module

End-to-end run: split, tune each configured model family under a shared
resampling policy, evaluate on the held-out test set, compare the models'
resample distributions and write tables, plots and a JSON summary.
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import matplotlib.pyplot as plt
import pandas as pd

from .config import WorkflowConfig
from .data_processing import DataProcessor, DataSplit
from .evaluation import ModelComparison, PerformanceAnalyzer
from .model import FittedModel, ModelTrainer, get_model_family
from .resampling import ControlPolicy
from .visualization import (
    plot_confusion_matrix,
    plot_differences,
    plot_resamples,
    plot_roc_curve,
    plot_tuning_results,
    save_figure,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Everything produced by one workflow run."""

    config: WorkflowConfig
    split: DataSplit
    models: Dict[str, FittedModel]
    evaluations: Dict[str, Dict[str, Any]]
    comparisons: Dict[str, ModelComparison] = field(default_factory=dict)
    resample_summary: Optional[pd.DataFrame] = None
    output_files: List[Path] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """JSON-ready digest of the run."""
        models = {}
        for name, model in self.models.items():
            cm = self.evaluations[name]['confusion_matrix']
            roc = self.evaluations[name]['roc']
            models[name] = {
                'config': dict(model.config),
                'metric': model.metric,
                'best_score': model.best_score,
                'n_resamples': len(model.resamples),
                'test': {
                    **cm.statistics,
                    'confusion_matrix': cm.table.values.tolist(),
                    'auc': roc.auc,
                    'auc_ci': [roc.ci_lower, roc.ci_upper],
                    'auc_ci_method': roc.ci_method,
                },
            }
        return {
            'config': self.config.to_dict(),
            'split': {
                'n_train': len(self.split.train),
                'n_test': len(self.split.test),
                'positive_class': self.split.train.positive_class,
            },
            'models': models,
            'comparisons': {
                key: comparison.summary.to_dict(orient='index')
                for key, comparison in self.comparisons.items()
            },
        }


def _json_default(obj: Any) -> Any:
    if hasattr(obj, 'item'):
        return obj.item()
    return str(obj)


def build_control(config: WorkflowConfig) -> ControlPolicy:
    return ControlPolicy(
        method=config.resampling_method,
        number=config.folds,
        repeats=config.repeats,
        seed=config.seed,
        metric=config.metric,
        n_jobs=config.n_jobs,
    )


def run_workflow(data: pd.DataFrame, config: Optional[WorkflowConfig] = None,
                 write_outputs: bool = True) -> WorkflowResult:
    """
    Run the complete split / tune / evaluate / compare sequence.

    Args:
        data: Records including the label column
        config: Workflow settings (defaults to WorkflowConfig())
        write_outputs: Write tables, plots and summary.json to config.output_dir

    Returns:
        WorkflowResult
    """
    config = config or WorkflowConfig()
    logger.info("=" * 50)
    logger.info(f"Starting workflow with models {config.models}")
    logger.info("=" * 50)

    processor = DataProcessor()
    dataset = processor.prepare_dataset(data, config.target_column, config.positive_class)
    split = processor.split_data(dataset, config.train_fraction, config.seed)

    # Shared policy and seed so resample distributions pair up across models
    control = build_control(config)
    trainer = ModelTrainer(random_state=config.seed)
    analyzer = PerformanceAnalyzer(ci_method=config.roc_ci_method, seed=config.seed)

    models: Dict[str, FittedModel] = {}
    evaluations: Dict[str, Dict[str, Any]] = {}
    for name in config.models:
        family = get_model_family(name)
        grid = config.grids.get(name) or family.default_grid() or None
        if control.method == 'none':
            grid = None
        models[name] = trainer.train(split.train, family, control=control, grid=grid)
        evaluations[name] = analyzer.evaluate(models[name], split.test, name)

    comparisons: Dict[str, ModelComparison] = {}
    resample_summary = None
    if control.method != 'none':
        distributions = {name: m.resamples for name, m in models.items()}
        resample_summary = analyzer.summarize_resamples(distributions)
        for a, b in itertools.combinations(config.models, 2):
            comparison = analyzer.compare_models(distributions[a], distributions[b])
            comparisons[f"{a}_vs_{b}"] = comparison
            logger.info(f"{a} vs {b}:\n{comparison.summary}")

    result = WorkflowResult(
        config=config,
        split=split,
        models=models,
        evaluations=evaluations,
        comparisons=comparisons,
        resample_summary=resample_summary,
    )
    if write_outputs:
        result.output_files = write_workflow_outputs(result)
    return result


def write_workflow_outputs(result: WorkflowResult) -> List[Path]:
    """Write tables, figures and summary.json; returns the written paths."""
    config = result.config
    out_dir = Path(config.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    for name, model in result.models.items():
        path = out_dir / f"{name}_tuning.csv"
        model.tuning_results.to_csv(path, index=False)
        written.append(path)

        prediction = result.evaluations[name]['prediction']
        frame = prediction.to_frame()
        frame.insert(0, 'observed', result.split.test.labels)
        path = out_dir / f"{name}_test_predictions.csv"
        frame.to_csv(path, index=False)
        written.append(path)

        path = out_dir / f"{name}_roc.csv"
        result.evaluations[name]['roc'].to_frame().to_csv(path, index=False)
        written.append(path)

    if result.resample_summary is not None:
        path = out_dir / "resample_summary.csv"
        result.resample_summary.to_csv(path)
        written.append(path)

    path = out_dir / "summary.json"
    with open(path, 'w') as f:
        json.dump(result.summary(), f, indent=2, default=_json_default)
    written.append(path)

    if config.save_plots:
        written.extend(_write_figures(result, out_dir))

    logger.info(f"Wrote {len(written)} files to {out_dir}")
    return written


def _write_figures(result: WorkflowResult, out_dir: Path) -> List[Path]:
    plot_config = result.config.plot
    written = []

    rocs = {name: ev['roc'] for name, ev in result.evaluations.items()}
    written.append(save_figure(plot_roc_curve(rocs, title='ROC Curve - Test Set'),
                               out_dir / "roc_curves.png", plot_config))

    for name, ev in result.evaluations.items():
        fig = plot_confusion_matrix(ev['confusion_matrix'], model_name=name)
        written.append(save_figure(fig, out_dir / f"{name}_confusion_matrix.png", plot_config))

        model = result.models[name]
        if len(model.tuning_results) > 1:
            fig = plot_tuning_results(model)
            written.append(save_figure(fig, out_dir / f"{name}_tuning.png", plot_config))

    if result.resample_summary is not None:
        distributions = {name: m.resamples for name, m in result.models.items()}
        written.append(save_figure(plot_resamples(distributions),
                                   out_dir / "resamples.png", plot_config))

    for key, comparison in result.comparisons.items():
        written.append(save_figure(plot_differences(comparison),
                                   out_dir / f"{key}_differences.png", plot_config))

    plt.close('all')
    return written
