"""
Visualization Module

Figures for ROC curves, confusion matrices, tuning profiles and resample
distributions, plus saving with explicit image geometry.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import PlotConfig
from .evaluation import ConfusionMatrixResult, ModelComparison, ROCCurve
from .model import FittedModel
from .resampling import ResampleDistribution

logger = logging.getLogger(__name__)


def plot_roc_curve(curves: Union[ROCCurve, Mapping[str, ROCCurve]],
                   title: str = 'ROC Curve') -> plt.Figure:
    """
    Plot one or several ROC curves on shared axes.

    Args:
        curves: A single ROCCurve or a mapping of model name to ROCCurve
        title: Axes title

    Returns:
        Matplotlib figure
    """
    if isinstance(curves, ROCCurve):
        curves = {'Model': curves}

    fig, ax = plt.subplots(figsize=(8, 6))
    for name, roc in curves.items():
        ax.plot(roc.fpr, roc.tpr, lw=2,
                label=f'{name} (AUC = {roc.auc:.3f}, {roc.ci_lower:.3f}-{roc.ci_upper:.3f})')
    ax.plot([0, 1], [0, 1], color='navy', lw=2, linestyle='--', label='Random Classifier')
    ax.set_xlim([0.0, 1.0])
    ax.set_ylim([0.0, 1.05])
    ax.set_xlabel('False Positive Rate (1 - Specificity)')
    ax.set_ylabel('True Positive Rate (Sensitivity)')
    ax.set_title(title)
    ax.legend(loc="lower right")
    ax.grid(alpha=0.3)

    fig.tight_layout()
    return fig


def plot_confusion_matrix(cm: ConfusionMatrixResult, model_name: str = "Model",
                          normalize: bool = False) -> plt.Figure:
    """
    Heatmap of a confusion matrix, predictions on rows.

    Args:
        cm: Confusion matrix result
        model_name: Name of the model for display
        normalize: Show each reference column as proportions

    Returns:
        Matplotlib figure
    """
    table = cm.table.astype(float)
    if normalize:
        table = table / table.sum(axis=0).replace(0, np.nan)
        fmt, title_suffix = '.2f', " (Normalized)"
    else:
        fmt, title_suffix = '.0f', ""

    fig, ax = plt.subplots(figsize=(6, 5))
    sns.heatmap(table, annot=True, fmt=fmt, cmap='Blues', cbar=False, ax=ax)
    ax.set_title(f'Confusion Matrix - {model_name}{title_suffix}')
    ax.set_ylabel('Prediction')
    ax.set_xlabel('Reference')

    fig.tight_layout()
    return fig


def plot_tuning_results(model: FittedModel, metric: Optional[str] = None) -> plt.Figure:
    """
    Mean resampled metric of every candidate configuration.

    With a single varying hyperparameter it becomes the x axis; with two,
    the second one is drawn as separate lines. Otherwise candidates are
    shown in grid order.
    """
    metric = metric or model.metric
    results = model.tuning_results
    params = [k for k in model.config if k in results.columns]
    varying = [k for k in params if results[k].astype(str).nunique() > 1]

    fig, ax = plt.subplots(figsize=(8, 6))
    if len(varying) in (1, 2):
        hue = varying[1] if len(varying) == 2 else None
        sns.pointplot(data=results, x=varying[0], y=metric, hue=hue, ax=ax)
        ax.set_xlabel(varying[0])
    else:
        ax.plot(np.arange(len(results)), results[metric], marker='o')
        ax.set_xlabel('Candidate')

    selected = results.index[results['selected']]
    if len(selected):
        ax.axhline(results.loc[selected[0], metric], color='grey', linestyle=':', lw=1)
    ax.set_ylabel(f'{metric} (resampled)')
    ax.set_title(f'Tuning Profile - {model.family}')
    ax.grid(alpha=0.3)

    fig.tight_layout()
    return fig


def plot_resamples(distributions: Mapping[str, ResampleDistribution],
                   metric: Optional[str] = None) -> plt.Figure:
    """Box plots of per-resample metric values, one box per model and metric."""
    frames = []
    for name, dist in distributions.items():
        long = dist.values.reset_index(drop=True).melt(var_name='metric', value_name='value')
        long['model'] = name
        frames.append(long)
    data = pd.concat(frames, ignore_index=True)
    if metric is not None:
        data = data[data['metric'] == metric]

    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(data=data, x='metric', y='value', hue='model', ax=ax)
    ax.set_xlabel('')
    ax.set_ylabel('Resampled value')
    ax.set_title('Resampled Performance')
    ax.grid(alpha=0.3, axis='y')

    fig.tight_layout()
    return fig


def plot_differences(comparison: ModelComparison) -> plt.Figure:
    """Mean paired difference per metric with its confidence interval."""
    summary = comparison.summary
    y_pos = np.arange(len(summary))
    lower = (summary['mean_difference'] - summary['ci_lower']).to_numpy()
    upper = (summary['ci_upper'] - summary['mean_difference']).to_numpy()

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.errorbar(summary['mean_difference'], y_pos, xerr=[lower, upper],
                fmt='o', capsize=4, color='darkorange')
    ax.axvline(0.0, color='navy', linestyle='--', lw=1)
    ax.set_yticks(y_pos)
    ax.set_yticklabels(summary.index)
    ax.invert_yaxis()
    ax.set_xlabel(f'{comparison.name_a} - {comparison.name_b}')
    ax.set_title('Paired Resample Differences')
    ax.grid(alpha=0.3, axis='x')

    fig.tight_layout()
    return fig


def plot_variable_importance(importance: pd.Series, model_name: str = "Model",
                             top_n: int = 20) -> plt.Figure:
    top = importance.sort_values(ascending=False).head(top_n)

    fig, ax = plt.subplots(figsize=(10, 8))
    y_pos = np.arange(len(top))
    ax.barh(y_pos, top.to_numpy())
    ax.set_yticks(y_pos)
    ax.set_yticklabels(top.index)
    ax.invert_yaxis()
    ax.set_xlabel('Importance')
    ax.set_title(f'Top {len(top)} Feature Importance - {model_name}')
    ax.grid(alpha=0.3, axis='x')

    fig.tight_layout()
    return fig


def save_figure(fig: plt.Figure, file_path: Union[str, Path],
                plot_config: Optional[PlotConfig] = None, close: bool = True) -> Path:
    """
    Write a figure to disk at the configured size and resolution.

    The image format follows the file extension.

    Args:
        fig: Figure to save
        file_path: Destination path
        plot_config: Width, height, units and dpi (defaults to PlotConfig())
        close: Close the figure after saving

    Returns:
        Path of the written file
    """
    plot_config = plot_config or PlotConfig()
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fig.set_size_inches(*plot_config.figsize_inches())
    fig.savefig(file_path, dpi=plot_config.dpi)
    logger.info(f"Saved figure to {file_path}")
    if close:
        plt.close(fig)
    return file_path
