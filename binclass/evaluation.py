"""
Evaluation Module

Confusion matrices, ROC analysis with AUC confidence intervals, paired
comparison of resampled model performance, and variable importance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.metrics import auc as sk_auc
from sklearn.metrics import roc_auc_score
from sklearn.metrics import roc_curve as sk_roc_curve

from .data_processing import Dataset
from .exceptions import DegenerateLabelsError, InvalidLabelError
from .model import FittedModel
from .predictor import PredictionResult, Predictor
from .resampling import ResampleDistribution

logger = logging.getLogger(__name__)

CI_METHODS = ('delong', 'bootstrap')


def _safe_ratio(num: float, den: float) -> float:
    return float(num / den) if den > 0 else float('nan')


def _resolve_classes(values: Sequence[Any], positive_class: Optional[Any],
                     classes: Optional[Sequence[Any]] = None) -> List[Any]:
    """Return [negative, positive] for a binary problem."""
    if classes is not None:
        found = list(classes)
    else:
        found = sorted(pd.unique(pd.Series(list(values))).tolist())
    if positive_class is not None and positive_class not in found:
        found.append(positive_class)
        found = sorted(found)
    if len(found) != 2:
        raise InvalidLabelError(
            f"Expected exactly two classes, found {found}; pass classes= explicitly"
        )
    if positive_class is None:
        positive_class = found[1]
    negative_class = found[0] if found[1] == positive_class else found[1]
    return [negative_class, positive_class]


@dataclass(frozen=True, eq=False)
class ConfusionMatrixResult:
    """2x2 counts (rows prediction, columns reference) and derived statistics."""

    table: pd.DataFrame
    positive_class: Any
    statistics: Dict[str, float]

    def __getitem__(self, key: str) -> float:
        return self.statistics[key]

    @property
    def accuracy(self) -> float:
        return self.statistics['accuracy']

    @property
    def kappa(self) -> float:
        return self.statistics['kappa']

    @property
    def sensitivity(self) -> float:
        return self.statistics['sensitivity']

    @property
    def specificity(self) -> float:
        return self.statistics['specificity']


@dataclass(frozen=True, eq=False)
class ROCCurve:
    """
    ROC points from sweeping every distinct probability as a threshold.

    Points run from threshold +inf (0, 0) down to the lowest score (1, 1).
    """

    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float
    ci_lower: float
    ci_upper: float
    ci_method: str
    confidence_level: float
    positive_class: Any
    n_positive: int
    n_negative: int

    @property
    def ci(self) -> Tuple[float, float]:
        return self.ci_lower, self.ci_upper

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'threshold': self.thresholds,
            'fpr': self.fpr,
            'tpr': self.tpr,
            'specificity': 1.0 - self.fpr,
            'sensitivity': self.tpr,
        })

    def best_threshold(self, method: str = 'youden') -> Dict[str, float]:
        """
        Threshold maximising Youden's J, or closest to the top-left corner.

        Ties keep the highest threshold.
        """
        finite = np.isfinite(self.thresholds)
        fpr, tpr, thr = self.fpr[finite], self.tpr[finite], self.thresholds[finite]
        if method == 'youden':
            idx = int(np.argmax(tpr - fpr))
        elif method == 'closest_topleft':
            idx = int(np.argmin(fpr ** 2 + (1.0 - tpr) ** 2))
        else:
            raise ValueError(f"Unknown threshold method: {method}")
        return {
            'threshold': float(thr[idx]),
            'specificity': float(1.0 - fpr[idx]),
            'sensitivity': float(tpr[idx]),
        }


@dataclass(frozen=True, eq=False)
class ModelComparison:
    """Paired differences (a - b) of two resample distributions."""

    name_a: str
    name_b: str
    differences: pd.DataFrame
    summary: pd.DataFrame
    alpha: float
    adjustment: str

    def is_significant(self, metric: str) -> bool:
        return bool(self.summary.loc[metric, 'significant'])


def _midrank_auc(pos: np.ndarray, neg: np.ndarray) -> float:
    ranks = stats.rankdata(np.concatenate([pos, neg]))
    m, n = len(pos), len(neg)
    return float((ranks[:m].sum() - m * (m + 1) / 2.0) / (m * n))


def delong_auc_variance(pos: np.ndarray, neg: np.ndarray) -> Tuple[float, float]:
    """
    AUC and its DeLong variance from positive and negative scores.

    Structural components come from midranks, which handles tied scores.
    """
    m, n = len(pos), len(neg)
    all_ranks = stats.rankdata(np.concatenate([pos, neg]))
    pos_ranks = stats.rankdata(pos)
    neg_ranks = stats.rankdata(neg)

    v10 = (all_ranks[:m] - pos_ranks) / n
    v01 = 1.0 - (all_ranks[m:] - neg_ranks) / m
    auc = float(v10.mean())

    s10 = float(np.var(v10, ddof=1)) if m > 1 else 0.0
    s01 = float(np.var(v01, ddof=1)) if n > 1 else 0.0
    return auc, s10 / m + s01 / n


class PerformanceAnalyzer:
    """Main class for model evaluation."""

    def __init__(self, confidence_level: float = 0.95, ci_method: str = 'delong',
                 n_bootstrap: int = 2000, seed: int = 42):
        """
        Initialize PerformanceAnalyzer.

        Args:
            confidence_level: Coverage of AUC and accuracy intervals
            ci_method: 'delong' (analytic) or 'bootstrap' (stratified percentile)
            n_bootstrap: Bootstrap replicates for the bootstrap AUC interval
            seed: Seed for bootstrap replicates
        """
        if ci_method not in CI_METHODS:
            raise ValueError(f"Unknown CI method: {ci_method}. Choose from {list(CI_METHODS)}")
        if not 0.0 < confidence_level < 1.0:
            raise ValueError(f"confidence_level must lie in (0, 1), got {confidence_level}")
        self.confidence_level = confidence_level
        self.ci_method = ci_method
        self.n_bootstrap = n_bootstrap
        self.seed = seed
        self.evaluation_results: Dict[str, Dict[str, Any]] = {}

    def confusion_matrix(self, predicted: Sequence[Any], observed: Sequence[Any],
                         positive_class: Optional[Any] = None,
                         classes: Optional[Sequence[Any]] = None) -> ConfusionMatrixResult:
        """
        Cross-tabulate predictions against observed labels.

        Args:
            predicted: Predicted labels
            observed: True labels
            positive_class: Event class; defaults to the second class in sorted order
            classes: Both label values, needed when the inputs show only one

        Returns:
            ConfusionMatrixResult
        """
        predicted = pd.Series(list(predicted))
        observed = pd.Series(list(observed))
        if len(predicted) != len(observed):
            raise ValueError(
                f"predicted and observed differ in length ({len(predicted)} vs {len(observed)})"
            )
        if len(observed) == 0:
            raise ValueError("Cannot build a confusion matrix from zero records")

        negative, positive = _resolve_classes(
            pd.concat([predicted, observed]).tolist(), positive_class, classes
        )
        unknown = set(pd.concat([predicted, observed]).unique()) - {negative, positive}
        if unknown:
            raise InvalidLabelError(f"Labels {sorted(map(str, unknown))} are not in {[negative, positive]}")

        tp = int(((predicted == positive) & (observed == positive)).sum())
        tn = int(((predicted == negative) & (observed == negative)).sum())
        fp = int(((predicted == positive) & (observed == negative)).sum())
        fn = int(((predicted == negative) & (observed == positive)).sum())
        n = tp + tn + fp + fn

        table = pd.DataFrame(
            [[tn, fn], [fp, tp]],
            index=pd.Index([negative, positive], name='Prediction'),
            columns=pd.Index([negative, positive], name='Reference'),
        )

        correct = tp + tn
        accuracy = correct / n
        alpha = 1.0 - self.confidence_level
        acc_lower = float(stats.beta.ppf(alpha / 2, correct, n - correct + 1)) if correct > 0 else 0.0
        acc_upper = float(stats.beta.ppf(1 - alpha / 2, correct + 1, n - correct)) if correct < n else 1.0

        expected = ((tp + fp) * (tp + fn) + (fn + tn) * (fp + tn)) / (n * n)
        kappa = (accuracy - expected) / (1.0 - expected) if expected < 1.0 else float('nan')

        sensitivity = _safe_ratio(tp, tp + fn)
        specificity = _safe_ratio(tn, tn + fp)
        nir = max(tp + fn, tn + fp) / n
        nir_p = float(stats.binomtest(correct, n, nir, alternative='greater').pvalue)

        discordant = fp + fn
        if discordant > 0:
            mcnemar_stat = (abs(fp - fn) - 1.0) ** 2 / discordant
            mcnemar_p = float(stats.chi2.sf(mcnemar_stat, df=1))
        else:
            mcnemar_p = float('nan')

        statistics = {
            'accuracy': float(accuracy),
            'accuracy_lower': acc_lower,
            'accuracy_upper': acc_upper,
            'no_information_rate': float(nir),
            'accuracy_p_value': nir_p,
            'kappa': float(kappa),
            'mcnemar_p_value': mcnemar_p,
            'sensitivity': sensitivity,
            'specificity': specificity,
            'positive_predictive_value': _safe_ratio(tp, tp + fp),
            'negative_predictive_value': _safe_ratio(tn, tn + fn),
            'prevalence': (tp + fn) / n,
            'detection_rate': tp / n,
            'detection_prevalence': (tp + fp) / n,
            'balanced_accuracy': (sensitivity + specificity) / 2.0,
        }
        return ConfusionMatrixResult(table, positive, statistics)

    def roc_curve(self, observed: Sequence[Any], probabilities: Sequence[float],
                  positive_class: Optional[Any] = None,
                  ci_method: Optional[str] = None) -> ROCCurve:
        """
        ROC curve, AUC and AUC confidence interval.

        Args:
            observed: True labels
            probabilities: Predicted probability of the positive class
            positive_class: Event class; defaults to the second class in sorted order
            ci_method: Overrides the analyzer's CI method

        Returns:
            ROCCurve

        Raises:
            DegenerateLabelsError: if observed labels contain only one class
        """
        ci_method = ci_method or self.ci_method
        if ci_method not in CI_METHODS:
            raise ValueError(f"Unknown CI method: {ci_method}. Choose from {list(CI_METHODS)}")

        observed = np.asarray(list(observed), dtype=object)
        scores = np.asarray(probabilities, dtype=float)
        if len(observed) != len(scores):
            raise ValueError(
                f"observed and probabilities differ in length ({len(observed)} vs {len(scores)})"
            )
        if np.isnan(scores).any():
            raise ValueError("probabilities contain NaN")

        distinct = pd.unique(pd.Series(observed)).tolist()
        if len(distinct) < 2:
            raise DegenerateLabelsError(
                f"ROC analysis needs both classes in the observed labels, found {distinct}"
            )
        negative, positive = _resolve_classes(distinct, positive_class)
        if len(distinct) > 2:
            raise InvalidLabelError(f"Expected two classes, found {distinct}")

        y = (observed == positive).astype(int)
        pos, neg = scores[y == 1], scores[y == 0]

        fpr, tpr, thresholds = sk_roc_curve(y, scores, drop_intermediate=False)
        area = float(np.clip(sk_auc(fpr, tpr), 0.0, 1.0))

        z = stats.norm.ppf(1 - (1 - self.confidence_level) / 2)
        if ci_method == 'delong':
            _, variance = delong_auc_variance(pos, neg)
            half = z * np.sqrt(variance)
            lower, upper = max(0.0, area - half), min(1.0, area + half)
        else:
            rng = np.random.default_rng(self.seed)
            replicates = np.empty(self.n_bootstrap)
            for b in range(self.n_bootstrap):
                replicates[b] = _midrank_auc(
                    rng.choice(pos, size=len(pos), replace=True),
                    rng.choice(neg, size=len(neg), replace=True),
                )
            tail = (1 - self.confidence_level) / 2
            lower, upper = (float(q) for q in np.quantile(replicates, [tail, 1 - tail]))

        logger.info(
            f"AUC = {area:.4f} ({self.confidence_level:.0%} CI {lower:.4f}-{upper:.4f}, {ci_method})"
        )
        return ROCCurve(
            fpr=fpr, tpr=tpr, thresholds=thresholds, auc=area,
            ci_lower=float(lower), ci_upper=float(upper), ci_method=ci_method,
            confidence_level=self.confidence_level, positive_class=positive,
            n_positive=int(len(pos)), n_negative=int(len(neg)),
        )

    def compare_models(self, a: ResampleDistribution, b: ResampleDistribution,
                       alpha: float = 0.05, adjustment: str = 'bonferroni') -> ModelComparison:
        """
        Paired comparison of two models' resampled metrics.

        Differences are taken resample by resample (a - b) and tested with a
        paired t-test per metric. P-values are Bonferroni-adjusted across
        metrics unless adjustment='none'.

        Args:
            a: Resample distribution of the first model
            b: Resample distribution of the second model, same resamples
            alpha: Significance level
            adjustment: 'bonferroni' or 'none'

        Returns:
            ModelComparison
        """
        if adjustment not in ('bonferroni', 'none'):
            raise ValueError(f"Unknown p-value adjustment: {adjustment}")

        differences = a.difference(b)
        metrics = list(differences.columns)
        rows = {}
        for metric in metrics:
            paired = pd.concat([a.values[metric], b.values.loc[a.values.index, metric]],
                               axis=1, keys=['a', 'b']).dropna()
            d = paired['a'] - paired['b']
            n = len(d)
            mean = float(d.mean()) if n else float('nan')
            sd = float(d.std(ddof=1)) if n > 1 else float('nan')

            if n < 2:
                statistic, p_value = float('nan'), float('nan')
                lower = upper = float('nan')
            elif sd == 0.0:
                # Constant differences: the t statistic degenerates
                statistic = 0.0 if mean == 0.0 else float(np.sign(mean) * np.inf)
                p_value = 1.0 if mean == 0.0 else 0.0
                lower = upper = mean
            else:
                result = stats.ttest_rel(paired['a'], paired['b'])
                statistic, p_value = float(result.statistic), float(result.pvalue)
                half = stats.t.ppf(1 - alpha / 2, n - 1) * sd / np.sqrt(n)
                lower, upper = mean - half, mean + half

            rows[metric] = {
                'mean_difference': mean,
                'std': sd,
                'n': n,
                'statistic': statistic,
                'p_value': p_value,
                'ci_lower': lower,
                'ci_upper': upper,
            }

        summary = pd.DataFrame.from_dict(rows, orient='index')
        summary.index.name = 'metric'
        if adjustment == 'bonferroni':
            summary['p_adjusted'] = np.minimum(1.0, summary['p_value'] * len(metrics))
        else:
            summary['p_adjusted'] = summary['p_value']
        summary['significant'] = summary['p_adjusted'] < alpha

        logger.info(f"Compared {a.name or 'a'} vs {b.name or 'b'} on {len(differences)} resamples")
        return ModelComparison(
            name_a=a.name, name_b=b.name, differences=differences,
            summary=summary, alpha=alpha, adjustment=adjustment,
        )

    def summarize_resamples(self, distributions: Mapping[str, ResampleDistribution]) -> pd.DataFrame:
        """Side-by-side summary statistics of several models' resamples."""
        if not distributions:
            raise ValueError("No resample distributions given")
        return pd.concat({name: d.summary() for name, d in distributions.items()},
                         names=['model', 'metric'])

    def variable_importance(self, model: FittedModel, dataset: Optional[Dataset] = None,
                            scale: bool = True) -> pd.Series:
        """
        Importance of each feature, scaled to 0-100 by default.

        Tree ensembles report their own importances over encoded features;
        other families fall back to the univariate ROC AUC of each raw
        feature, which requires the training dataset.
        """
        estimator = model.estimator.named_steps['model']
        if hasattr(estimator, 'feature_importances_'):
            names = model.estimator.named_steps['preprocess'].get_feature_names_out()
            importance = pd.Series(np.asarray(estimator.feature_importances_, dtype=float),
                                   index=list(names))
        else:
            if dataset is None:
                raise ValueError(
                    f"{model.family} has no built-in importances; pass the training dataset"
                )
            y = dataset.encoded_labels()
            scores = {}
            for column in model.feature_columns:
                values = dataset.frame[column]
                mask = values.notnull().to_numpy()
                if mask.sum() == 0 or len(np.unique(y[mask])) < 2:
                    scores[column] = 0.5
                    continue
                x = values[mask]
                if not pd.api.types.is_numeric_dtype(x) or pd.api.types.is_bool_dtype(x):
                    # Order levels by their positive rate
                    rates = pd.Series(y[mask], index=x.index).groupby(x).mean()
                    x = x.map(rates)
                auc = roc_auc_score(y[mask], x.astype(float))
                scores[column] = max(auc, 1.0 - auc)
            importance = pd.Series(scores, dtype=float)

        if scale:
            low, high = importance.min(), importance.max()
            importance = (importance - low) / (high - low) * 100.0 if high > low else importance * 0.0
        importance.name = 'importance'
        return importance.sort_values(ascending=False)

    def evaluate(self, model: FittedModel, dataset: Dataset,
                 name: Optional[str] = None) -> Dict[str, Any]:
        """
        Predict a labelled dataset and analyse the predictions.

        Returns:
            Dictionary with 'prediction', 'confusion_matrix' and 'roc'
        """
        name = name or model.family
        prediction: PredictionResult = Predictor(model).predict(dataset)
        cm = self.confusion_matrix(prediction.labels, dataset.labels,
                                   positive_class=model.positive_class, classes=model.classes)
        roc = self.roc_curve(dataset.labels, prediction.positive_probabilities,
                             positive_class=model.positive_class)
        result = {'prediction': prediction, 'confusion_matrix': cm, 'roc': roc}
        self.evaluation_results[name] = result
        self.log_report(name)
        return result

    def log_report(self, name: str):
        """Log the key statistics of a stored evaluation."""
        result = self.evaluation_results[name]
        cm: ConfusionMatrixResult = result['confusion_matrix']
        roc: ROCCurve = result['roc']

        logger.info("=" * 50)
        logger.info(f"Evaluation Report for {name}")
        logger.info("=" * 50)
        logger.info(f"Confusion Matrix:\n{cm.table}")
        logger.info(
            f"Accuracy:            {cm.accuracy:.4f} "
            f"({cm['accuracy_lower']:.4f}, {cm['accuracy_upper']:.4f})"
        )
        logger.info(f"Cohen's Kappa:       {cm.kappa:.4f}")
        logger.info(f"Sensitivity:         {cm.sensitivity:.4f}")
        logger.info(f"Specificity:         {cm.specificity:.4f}")
        logger.info(f"AUC-ROC:             {roc.auc:.4f} ({roc.ci_lower:.4f}, {roc.ci_upper:.4f})")
