"""Tests for control policies, the resampling evaluator and distributions."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from binclass.data_processing import Dataset, create_sample_data
from binclass.exceptions import FoldFitError, IncompatibleResamplesError, InsufficientDataError
from binclass.resampling import (
    METRICS,
    ControlPolicy,
    ResampleDistribution,
    ResamplingEvaluator,
    compute_metrics,
)

from families import CountingFamily, FlakyFamily, LogisticFamily


def make_dataset(n: int = 75) -> Dataset:
    return Dataset(create_sample_data(n_samples=n, n_features=3, n_categorical=0, seed=1), "target")


def test_repeated_cv_produces_every_fold_of_every_repeat() -> None:
    ds = make_dataset(75)
    resamples = ControlPolicy(method="repeatedcv", number=5, repeats=5, seed=3).split_indices(ds)

    assert len(resamples) == 25
    assert resamples[0].resample_id == "Fold01.Rep01"
    assert resamples[-1].resample_id == "Fold05.Rep05"
    for r in resamples:
        assert len(r.holdout_index) in (14, 15)
        assert np.intersect1d(r.train_index, r.holdout_index).size == 0
        assert len(r.train_index) + len(r.holdout_index) == 75

    for repeat in range(1, 6):
        held = np.concatenate([r.holdout_index for r in resamples if r.repeat == repeat])
        assert sorted(held.tolist()) == list(range(75))


def test_cv_ignores_repeats() -> None:
    policy = ControlPolicy(method="cv", number=4, repeats=5)
    assert policy.n_resamples == 4
    assert len(policy.split_indices(make_dataset(40))) == 4


def test_fold_assignment_is_reproducible() -> None:
    ds = make_dataset()
    a = ControlPolicy(number=5, repeats=2, seed=8).split_indices(ds)
    b = ControlPolicy(number=5, repeats=2, seed=8).split_indices(ds)
    for ra, rb in zip(a, b):
        np.testing.assert_array_equal(ra.holdout_index, rb.holdout_index)


def test_too_many_folds_for_smallest_class() -> None:
    df = pd.DataFrame({"x": np.arange(20.0), "y": [0] * 17 + [1] * 3})
    with pytest.raises(InsufficientDataError):
        ControlPolicy(method="cv", number=5).split_indices(Dataset(df, "y"))


def test_bootstrap_holds_out_out_of_bag_rows() -> None:
    ds = make_dataset(60)
    resamples = ControlPolicy(method="boot", number=6, seed=2).split_indices(ds)
    assert [r.resample_id for r in resamples][:2] == ["Resample01", "Resample02"]
    for r in resamples:
        assert len(r.train_index) == 60
        assert np.intersect1d(r.train_index, r.holdout_index).size == 0


def test_lgocv_uses_training_fraction() -> None:
    resamples = ControlPolicy(method="lgocv", number=3, p=0.8).split_indices(make_dataset(50))
    assert len(resamples) == 3
    assert all(len(r.train_index) == 40 for r in resamples)


@pytest.mark.parametrize("kwargs", [
    {"method": "loocv"},
    {"metric": "f1"},
    {"method": "cv", "number": 1},
    {"repeats": 0},
])
def test_invalid_policies_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        ControlPolicy(**kwargs)


def test_evaluator_returns_one_row_per_resample() -> None:
    ds = make_dataset(75)
    control = ControlPolicy(method="repeatedcv", number=5, repeats=2, seed=4)
    dist = ResamplingEvaluator(control).evaluate(ds, LogisticFamily(), {"C": 1.0})

    assert len(dist) == 10
    assert dist.metrics == list(METRICS)
    assert dist.values["roc_auc"].between(0.0, 1.0).all()
    assert dist.mean()["roc_auc"] > 0.6


def test_evaluator_fits_once_per_fold_of_every_repeat() -> None:
    CountingFamily.fit_calls = 0
    control = ControlPolicy(method="repeatedcv", number=5, repeats=5, seed=6)
    dist = ResamplingEvaluator(control).evaluate(make_dataset(75), CountingFamily(), {"C": 1.0})

    assert CountingFamily.fit_calls == 25
    assert len(dist) == 25
    assert dist.resample_ids[-1] == "Fold05.Rep05"


def test_evaluator_wraps_fit_failures() -> None:
    control = ControlPolicy(method="cv", number=3)
    with pytest.raises(FoldFitError) as excinfo:
        ResamplingEvaluator(control).evaluate(make_dataset(), FlakyFamily(), {"fail": True})
    assert excinfo.value.resample == "Fold01.Rep01"
    assert isinstance(excinfo.value.cause, ArithmeticError)


def test_none_method_skips_resampling() -> None:
    dist = ResamplingEvaluator(ControlPolicy(method="none")).evaluate(
        make_dataset(), LogisticFamily(), {"C": 1.0}
    )
    assert len(dist) == 0


def test_compute_metrics_perfect_separation() -> None:
    metrics = compute_metrics(np.array([0, 0, 1, 1]), np.array([0.1, 0.2, 0.8, 0.9]))
    assert metrics["roc_auc"] == 1.0
    assert metrics["accuracy"] == 1.0
    assert metrics["sensitivity"] == 1.0
    assert metrics["specificity"] == 1.0


def test_compute_metrics_single_class_fold_has_undefined_auc() -> None:
    metrics = compute_metrics(np.array([1, 1, 1]), np.array([0.6, 0.7, 0.4]))
    assert np.isnan(metrics["roc_auc"])
    assert metrics["sensitivity"] == pytest.approx(2 / 3)


def test_difference_pairs_by_resample_id() -> None:
    ids = ["Fold01.Rep01", "Fold02.Rep01", "Fold03.Rep01"]
    a = ResampleDistribution(pd.DataFrame({"roc_auc": [0.9, 0.8, 0.7]}, index=ids), "a")
    b = ResampleDistribution(pd.DataFrame({"roc_auc": [0.6, 0.5, 0.4]}, index=ids[::-1]), "b")

    diff = a.difference(b)

    assert diff.loc["Fold01.Rep01", "roc_auc"] == pytest.approx(0.9 - 0.4)
    assert diff.loc["Fold03.Rep01", "roc_auc"] == pytest.approx(0.7 - 0.6)


def test_difference_rejects_mismatched_resamples() -> None:
    a = ResampleDistribution(pd.DataFrame({"roc_auc": [0.9, 0.8]}, index=["r1", "r2"]))
    b = ResampleDistribution(pd.DataFrame({"roc_auc": [0.9, 0.8]}, index=["r1", "r3"]))
    with pytest.raises(IncompatibleResamplesError):
        a.difference(b)


def test_summary_reports_quartiles() -> None:
    dist = ResampleDistribution(pd.DataFrame({"accuracy": [0.5, 0.6, 0.7, 0.8, np.nan]}))
    summary = dist.summary()
    assert summary.loc["accuracy", "median"] == pytest.approx(0.65)
    assert summary.loc["accuracy", "n_missing"] == 1
