"""Tests for PerformanceAnalyzer."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from sklearn.metrics import roc_auc_score

from binclass.data_processing import Dataset, create_sample_data, split_dataset
from binclass.evaluation import PerformanceAnalyzer, delong_auc_variance
from binclass.exceptions import DegenerateLabelsError, IncompatibleResamplesError, InvalidLabelError
from binclass.model import ModelTrainer, get_model_family
from binclass.resampling import ControlPolicy, ResampleDistribution

from families import LogisticFamily


def make_scores(n: int = 200, seed: int = 0):
    rng = np.random.default_rng(seed)
    y = np.array(["neg"] * (n // 2) + ["pos"] * (n // 2))
    scores = np.clip(rng.normal(0.4, 0.2, size=n) + 0.2 * (y == "pos"), 0.0, 1.0)
    return y, scores


def make_distribution(values, name: str = "") -> ResampleDistribution:
    ids = [f"Fold{i + 1:02d}.Rep01" for i in range(len(values))]
    return ResampleDistribution(
        pd.DataFrame({"roc_auc": values, "accuracy": np.asarray(values) - 0.1}, index=ids), name
    )


def test_confusion_matrix_counts_and_statistics() -> None:
    observed = ["y", "y", "y", "y", "n", "n", "n", "n", "n", "n"]
    predicted = ["y", "y", "y", "n", "n", "n", "n", "n", "y", "y"]

    cm = PerformanceAnalyzer().confusion_matrix(predicted, observed)

    assert cm.positive_class == "y"
    assert cm.table.loc["y", "y"] == 3
    assert cm.table.loc["n", "y"] == 1
    assert cm.table.loc["y", "n"] == 2
    assert cm.table.loc["n", "n"] == 4
    assert cm.table.index.name == "Prediction"
    assert cm.accuracy == pytest.approx(0.7)
    assert cm.sensitivity == pytest.approx(0.75)
    assert cm.specificity == pytest.approx(4 / 6)
    assert cm["positive_predictive_value"] == pytest.approx(0.6)
    assert cm["negative_predictive_value"] == pytest.approx(0.8)
    assert cm["prevalence"] == pytest.approx(0.4)
    assert cm["no_information_rate"] == pytest.approx(0.6)
    # pe = (5*4 + 5*6) / 100 = 0.5
    assert cm.kappa == pytest.approx(0.4)
    assert cm["accuracy_lower"] < 0.7 < cm["accuracy_upper"]


def test_confusion_matrix_explicit_positive_class() -> None:
    cm = PerformanceAnalyzer().confusion_matrix([0, 1, 1, 0], [0, 1, 0, 0], positive_class=0)
    assert cm.positive_class == 0
    assert cm.sensitivity == pytest.approx(2 / 3)
    assert cm.specificity == pytest.approx(1.0)


def test_confusion_matrix_single_observed_class_needs_classes() -> None:
    analyzer = PerformanceAnalyzer()
    with pytest.raises(InvalidLabelError):
        analyzer.confusion_matrix([1, 1], [1, 1])
    cm = analyzer.confusion_matrix([1, 1], [1, 1], classes=[0, 1])
    assert cm.accuracy == 1.0
    assert np.isnan(cm.specificity)


def test_confusion_matrix_length_mismatch() -> None:
    with pytest.raises(ValueError):
        PerformanceAnalyzer().confusion_matrix([0, 1], [0, 1, 1])


def test_roc_curve_is_monotone_and_matches_sklearn_auc() -> None:
    y, scores = make_scores()
    roc = PerformanceAnalyzer().roc_curve(y, scores)

    assert roc.positive_class == "pos"
    assert np.all(np.diff(roc.fpr) >= 0)
    assert np.all(np.diff(roc.tpr) >= 0)
    assert (roc.fpr[0], roc.tpr[0]) == (0.0, 0.0)
    assert (roc.fpr[-1], roc.tpr[-1]) == (1.0, 1.0)
    assert 0.0 <= roc.auc <= 1.0
    assert roc.auc == pytest.approx(roc_auc_score(y == "pos", scores))
    assert roc.ci_lower <= roc.auc <= roc.ci_upper


def test_roc_every_distinct_score_is_a_threshold() -> None:
    y = np.array([0, 0, 1, 1, 0, 1])
    scores = np.array([0.1, 0.4, 0.35, 0.8, 0.4, 0.9])
    roc = PerformanceAnalyzer().roc_curve(y, scores)
    assert set(np.round(roc.thresholds[1:], 6)) == {0.1, 0.35, 0.4, 0.8, 0.9}


def test_delong_variance_matches_hand_computation() -> None:
    pos = np.array([0.9, 0.8, 0.4])
    neg = np.array([0.5, 0.3, 0.2, 0.1])
    auc, var = delong_auc_variance(pos, neg)
    # v10 = [1, 1, 0.75], v01 = [2/3, 1, 1, 1]
    assert auc == pytest.approx(11 / 12)
    expected = np.var([1, 1, 0.75], ddof=1) / 3 + np.var([2 / 3, 1, 1, 1], ddof=1) / 4
    assert var == pytest.approx(expected)


def test_bootstrap_interval_is_seeded() -> None:
    y, scores = make_scores(n=80, seed=3)
    a = PerformanceAnalyzer(ci_method="bootstrap", n_bootstrap=300, seed=4).roc_curve(y, scores)
    b = PerformanceAnalyzer(ci_method="bootstrap", n_bootstrap=300, seed=4).roc_curve(y, scores)
    assert a.ci == b.ci
    assert a.ci_method == "bootstrap"
    assert a.ci_lower < a.auc < a.ci_upper


def test_roc_requires_two_observed_classes() -> None:
    with pytest.raises(DegenerateLabelsError):
        PerformanceAnalyzer().roc_curve([1, 1, 1], [0.2, 0.5, 0.9])


def test_best_threshold_youden() -> None:
    y = np.array([0, 0, 0, 1, 1, 1])
    scores = np.array([0.1, 0.2, 0.3, 0.7, 0.8, 0.9])
    best = PerformanceAnalyzer().roc_curve(y, scores).best_threshold()
    assert best["threshold"] == pytest.approx(0.7)
    assert best["sensitivity"] == 1.0
    assert best["specificity"] == 1.0


def test_identical_distributions_are_not_significant() -> None:
    a = make_distribution([0.8, 0.82, 0.79, 0.85, 0.81], "a")
    b = make_distribution([0.8, 0.82, 0.79, 0.85, 0.81], "b")

    comparison = PerformanceAnalyzer().compare_models(a, b)

    assert (comparison.summary["mean_difference"] == 0.0).all()
    assert (comparison.summary["p_value"] == 1.0).all()
    assert not comparison.summary["significant"].any()


def test_consistent_difference_is_significant_after_bonferroni() -> None:
    rng = np.random.default_rng(1)
    base = rng.uniform(0.7, 0.8, size=25)
    a = make_distribution(base + 0.05 + rng.normal(0, 0.005, size=25), "a")
    b = make_distribution(base, "b")

    summary = PerformanceAnalyzer().compare_models(a, b).summary

    assert summary.loc["roc_auc", "mean_difference"] == pytest.approx(0.05, abs=0.01)
    assert summary.loc["roc_auc", "p_adjusted"] == pytest.approx(
        min(1.0, 2 * summary.loc["roc_auc", "p_value"])
    )
    assert summary.loc["roc_auc", "ci_lower"] > 0.0
    assert summary.loc["roc_auc", "significant"]


def test_compare_rejects_unpaired_distributions() -> None:
    a = make_distribution([0.8, 0.7, 0.9])
    b = make_distribution([0.8, 0.7])
    with pytest.raises(IncompatibleResamplesError):
        PerformanceAnalyzer().compare_models(a, b)


def test_summarize_resamples_stacks_models() -> None:
    summary = PerformanceAnalyzer().summarize_resamples({
        "a": make_distribution([0.8, 0.9]),
        "b": make_distribution([0.6, 0.7]),
    })
    assert summary.loc[("a", "roc_auc"), "mean"] == pytest.approx(0.85)
    assert summary.loc[("b", "roc_auc"), "max"] == pytest.approx(0.7)


def test_variable_importance_ranks_signal_features() -> None:
    df = create_sample_data(n_samples=150, n_features=4, seed=9)
    ds = Dataset(df, "target")
    control = ControlPolicy(method="cv", number=3)
    analyzer = PerformanceAnalyzer()

    filtered = analyzer.variable_importance(
        ModelTrainer().train(ds, LogisticFamily(), control=control), ds
    )
    assert filtered.index[0] == "feature_0"
    assert filtered.max() == pytest.approx(100.0)
    assert filtered.min() == pytest.approx(0.0)

    gbm = ModelTrainer().train(ds, get_model_family("gbm"), control=control)
    builtin = analyzer.variable_importance(gbm)
    assert "feature_0" in builtin.index
    assert builtin.index[0] in ("feature_0", "feature_1")


def test_evaluate_stores_results() -> None:
    df = create_sample_data(n_samples=100, n_features=3, seed=6)
    split = split_dataset(Dataset(df, "target"), 0.75, seed=1)
    model = ModelTrainer().train(split.train, LogisticFamily(), control=ControlPolicy(method="cv", number=3))

    analyzer = PerformanceAnalyzer()
    result = analyzer.evaluate(model, split.test, "logistic")

    assert set(result) == {"prediction", "confusion_matrix", "roc"}
    assert int(result["confusion_matrix"].table.values.sum()) == 25
    assert "logistic" in analyzer.evaluation_results
