#!/usr/bin/env python3
"""
Run the split / tune / evaluate / compare workflow.
Usage:
  python scripts/run_workflow.py --data data/records.csv --target outcome --output-dir results
  python scripts/run_workflow.py --sample --folds 5 --repeats 2 --no-plots
"""
import argparse
import logging
import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')

from binclass.config import WorkflowConfig
from binclass.data_processing import DataProcessor, create_sample_data
from binclass.exceptions import WorkflowError
from binclass.resampling import METRICS
from binclass.workflow import run_workflow


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument('--data', help='Input CSV with features and the label column')
    src.add_argument('--sample', action='store_true', help='Use generated sample data')
    ap.add_argument('--config', help='JSON file with WorkflowConfig fields')
    ap.add_argument('--target', help='Label column name')
    ap.add_argument('--positive-class', help='Label value treated as the event')
    ap.add_argument('--train-fraction', type=float)
    ap.add_argument('--folds', type=int)
    ap.add_argument('--repeats', type=int)
    ap.add_argument('--metric', choices=METRICS)
    ap.add_argument('--seed', type=int)
    ap.add_argument('--n-jobs', type=int)
    ap.add_argument('--output-dir')
    ap.add_argument('--no-plots', action='store_true', help='Skip writing figures')
    ap.add_argument('--log-level', default='INFO',
                    choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return ap


def config_from_args(args: argparse.Namespace) -> WorkflowConfig:
    config = WorkflowConfig.from_json(args.config) if args.config else WorkflowConfig()
    overrides = {
        'target_column': args.target,
        'positive_class': args.positive_class,
        'train_fraction': args.train_fraction,
        'folds': args.folds,
        'repeats': args.repeats,
        'metric': args.metric,
        'seed': args.seed,
        'n_jobs': args.n_jobs,
        'output_dir': Path(args.output_dir) if args.output_dir else None,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    if args.no_plots:
        config.save_plots = False
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    config = config_from_args(args)

    if args.sample:
        df = create_sample_data(seed=config.seed)
    else:
        df = DataProcessor().load_data(args.data)

    # Labels may be numeric; match the flag's string to the column's type
    if config.positive_class is not None and config.target_column in df.columns:
        values = {str(v): v for v in df[config.target_column].dropna().unique()}
        config.positive_class = values.get(str(config.positive_class), config.positive_class)

    try:
        result = run_workflow(df, config)
    except WorkflowError as e:
        logging.getLogger(__name__).error(str(e))
        return 1

    for name, ev in result.evaluations.items():
        print(f"{name}: accuracy={ev['confusion_matrix'].accuracy:.4f} AUC={ev['roc'].auc:.4f}")
    print(f"Saved outputs to {config.output_dir}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
