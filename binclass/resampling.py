"""
Resampling Module

Resampling control policies, the cross-validation evaluator used during
tuning, and the per-resample metric distributions it produces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import accuracy_score, cohen_kappa_score, recall_score, roc_auc_score
from sklearn.model_selection import RepeatedStratifiedKFold, StratifiedShuffleSplit

from .data_processing import Dataset
from .exceptions import FoldFitError, IncompatibleResamplesError, InsufficientDataError

if TYPE_CHECKING:
    from .model import ModelFamily

logger = logging.getLogger(__name__)

METRICS = ('roc_auc', 'accuracy', 'kappa', 'sensitivity', 'specificity')
RESAMPLING_METHODS = ('cv', 'repeatedcv', 'boot', 'lgocv', 'none')


def compute_metrics(y_true: np.ndarray, y_proba: np.ndarray,
                    threshold: float = 0.5) -> Dict[str, float]:
    """
    Held-out metrics for one resample.

    Args:
        y_true: 0/1 labels, 1 marking the positive class
        y_proba: Predicted probability of the positive class
        threshold: Probability at or above which the positive class is predicted

    Returns:
        Dictionary with roc_auc, accuracy, kappa, sensitivity and specificity
    """
    y_true = np.asarray(y_true).astype(int)
    y_pred = (np.asarray(y_proba) >= threshold).astype(int)

    metrics = {}
    if len(np.unique(y_true)) == 2:
        metrics['roc_auc'] = float(roc_auc_score(y_true, y_proba))
    else:
        metrics['roc_auc'] = np.nan
    metrics['accuracy'] = float(accuracy_score(y_true, y_pred))
    with np.errstate(divide='ignore', invalid='ignore'):
        metrics['kappa'] = float(cohen_kappa_score(y_true, y_pred))
    metrics['sensitivity'] = float(recall_score(y_true, y_pred, pos_label=1, zero_division=0))
    metrics['specificity'] = float(recall_score(y_true, y_pred, pos_label=0, zero_division=0))
    return metrics


def validate_metric(metric: str) -> str:
    if metric not in METRICS:
        raise ValueError(f"Unknown metric: {metric}. Choose from {list(METRICS)}")
    return metric


@dataclass(frozen=True, eq=False)
class Resample:
    """Row positions of one fit/evaluate cycle."""

    resample_id: str
    train_index: np.ndarray
    holdout_index: np.ndarray
    repeat: Optional[int] = None
    fold: Optional[int] = None


@dataclass(frozen=True)
class ControlPolicy:
    """
    How candidate configurations are resampled and selected.

    Args:
        method: 'repeatedcv', 'cv', 'boot', 'lgocv' or 'none'
        number: Folds for cv/repeatedcv, resamples for boot/lgocv
        repeats: Repeats for repeatedcv (cv always uses one)
        p: Training fraction for lgocv
        seed: Seed for fold assignment
        metric: Summary metric used to select a configuration
        n_jobs: Parallel workers for the resamples of one configuration
    """

    method: str = 'repeatedcv'
    number: int = 10
    repeats: int = 5
    p: float = 0.75
    seed: int = 42
    metric: str = 'roc_auc'
    n_jobs: int = 1

    def __post_init__(self):
        if self.method not in RESAMPLING_METHODS:
            raise ValueError(
                f"Unknown resampling method: {self.method}. Choose from {list(RESAMPLING_METHODS)}"
            )
        validate_metric(self.metric)
        if self.method in ('cv', 'repeatedcv') and self.number < 2:
            raise ValueError(f"Cross-validation needs at least 2 folds, got {self.number}")
        if self.method in ('boot', 'lgocv') and self.number < 1:
            raise ValueError(f"Need at least one resample, got {self.number}")
        if self.repeats < 1:
            raise ValueError(f"repeats must be at least 1, got {self.repeats}")
        if self.method == 'lgocv' and not 0.0 < self.p < 1.0:
            raise ValueError(f"lgocv training fraction must lie in (0, 1), got {self.p}")

    @property
    def n_repeats(self) -> int:
        return self.repeats if self.method == 'repeatedcv' else 1

    @property
    def n_resamples(self) -> int:
        """Number of fit/evaluate cycles per configuration."""
        if self.method == 'none':
            return 0
        if self.method in ('cv', 'repeatedcv'):
            return self.number * self.n_repeats
        return self.number

    def split_indices(self, dataset: Dataset) -> List[Resample]:
        """
        Row positions of every resample, in deterministic order.

        For cross-validation each repeat re-randomises the fold assignment
        from the seed, and the folds of one repeat partition the dataset.
        """
        if self.method == 'none':
            return []

        y = dataset.encoded_labels()
        positions = np.arange(len(y))
        min_class = int(np.bincount(y, minlength=2).min())

        if self.method in ('cv', 'repeatedcv'):
            if min_class < self.number:
                raise InsufficientDataError(
                    f"Smallest class has {min_class} records; cannot build {self.number} stratified folds"
                )
            splitter = RepeatedStratifiedKFold(
                n_splits=self.number, n_repeats=self.n_repeats, random_state=self.seed
            )
            resamples = []
            for i, (train_idx, test_idx) in enumerate(splitter.split(positions, y)):
                repeat, fold = divmod(i, self.number)
                resamples.append(Resample(
                    resample_id=f"Fold{fold + 1:02d}.Rep{repeat + 1:02d}",
                    train_index=train_idx,
                    holdout_index=test_idx,
                    repeat=repeat + 1,
                    fold=fold + 1,
                ))
            return resamples

        if min_class < 2:
            raise InsufficientDataError(
                f"Smallest class has {min_class} records; cannot resample"
            )

        if self.method == 'lgocv':
            splitter = StratifiedShuffleSplit(
                n_splits=self.number, train_size=self.p, random_state=self.seed
            )
            return [
                Resample(f"Resample{i + 1:02d}", train_idx, test_idx)
                for i, (train_idx, test_idx) in enumerate(splitter.split(positions, y))
            ]

        # boot: stratified bootstrap, held-out rows are the out-of-bag rows
        rng = np.random.default_rng(self.seed)
        class_positions = [positions[y == c] for c in (0, 1)]
        resamples = []
        for i in range(self.number):
            drawn = np.concatenate([
                rng.choice(members, size=len(members), replace=True)
                for members in class_positions
            ])
            in_bag = np.sort(drawn)
            out_of_bag = np.setdiff1d(positions, in_bag)
            resamples.append(Resample(f"Resample{i + 1:02d}", in_bag, out_of_bag))
        return resamples


@dataclass(frozen=True, eq=False)
class ResampleDistribution:
    """Metric values per resample for one configuration of one model."""

    values: pd.DataFrame
    name: str = ''

    @property
    def metrics(self) -> List[str]:
        return list(self.values.columns)

    @property
    def resample_ids(self) -> List[str]:
        return list(self.values.index)

    def __len__(self) -> int:
        return len(self.values)

    def mean(self) -> pd.Series:
        return self.values.mean()

    def std(self) -> pd.Series:
        return self.values.std(ddof=1)

    def summary(self) -> pd.DataFrame:
        """Min, quartiles, mean, max and missing count for each metric."""
        v = self.values
        return pd.DataFrame({
            'min': v.min(),
            'q1': v.quantile(0.25),
            'median': v.median(),
            'mean': v.mean(),
            'q3': v.quantile(0.75),
            'max': v.max(),
            'n_missing': v.isnull().sum(),
        })

    def difference(self, other: "ResampleDistribution") -> pd.DataFrame:
        """
        Paired differences (self - other) by resample id on shared metrics.

        Raises:
            IncompatibleResamplesError: if the resample ids differ or no metric is shared
        """
        if set(self.resample_ids) != set(other.resample_ids) or len(self) != len(other):
            raise IncompatibleResamplesError(
                f"Resamples of '{self.name}' and '{other.name}' do not match; "
                "train both models with the same control policy"
            )
        shared = [m for m in self.metrics if m in other.metrics]
        if not shared:
            raise IncompatibleResamplesError(
                f"'{self.name}' and '{other.name}' share no metrics"
            )
        return self.values[shared] - other.values.loc[self.values.index, shared]


def _fit_and_score(family: "ModelFamily", dataset: Dataset, config: Mapping[str, Any],
                   resample: Resample, random_state: int) -> Dict[str, float]:
    try:
        train = dataset.subset(resample.train_index)
        estimator = family.fit(train, config, random_state)
        holdout = dataset.frame.iloc[resample.holdout_index]
        proba = family.predict_proba(estimator, holdout[dataset.feature_columns])[:, 1]
        y_true = (holdout[dataset.target] == dataset.positive_class).to_numpy().astype(int)
        return compute_metrics(y_true, proba)
    except Exception as e:
        raise FoldFitError(config, resample.resample_id, e,
                           repeat=resample.repeat, fold=resample.fold) from e


class ResamplingEvaluator:
    """Estimates held-out performance of one configuration by resampling."""

    def __init__(self, control: ControlPolicy):
        self.control = control

    def evaluate(self, dataset: Dataset, family: "ModelFamily",
                 config: Mapping[str, Any], random_state: int = 42) -> ResampleDistribution:
        """
        Fit on the training rows and score the held-out rows of every resample.

        Args:
            dataset: Training data
            family: Model family to fit
            config: Hyperparameter configuration
            random_state: Seed passed to the estimator

        Returns:
            ResampleDistribution with one row per resample

        Raises:
            FoldFitError: if any resample fails to fit or score
        """
        resamples = self.control.split_indices(dataset)
        if not resamples:
            return ResampleDistribution(pd.DataFrame(columns=list(METRICS), dtype=float),
                                        name=family.name)

        logger.debug(f"Evaluating {family.name} {dict(config)} on {len(resamples)} resamples")

        rows = Parallel(n_jobs=self.control.n_jobs)(
            delayed(_fit_and_score)(family, dataset, config, r, random_state)
            for r in resamples
        )
        values = pd.DataFrame(rows, index=[r.resample_id for r in resamples],
                              columns=list(METRICS))
        values.index.name = 'resample'
        return ResampleDistribution(values, name=family.name)
