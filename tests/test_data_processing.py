"""Tests for Dataset validation and stratified splitting."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from binclass.data_processing import DataProcessor, Dataset, create_sample_data, split_dataset
from binclass.exceptions import InsufficientDataError, InvalidFractionError, InvalidLabelError


def make_sixty_forty(n: int = 100) -> Dataset:
    rng = np.random.default_rng(3)
    labels = ["No"] * int(n * 0.6) + ["Yes"] * int(n * 0.4)
    df = pd.DataFrame({
        "x1": rng.normal(size=n),
        "x2": rng.normal(size=n),
        "outcome": labels,
    })
    return Dataset(df, "outcome")


def test_positive_class_defaults_to_second_sorted_label() -> None:
    ds = make_sixty_forty()
    assert ds.positive_class == "Yes"
    assert ds.classes == ["No", "Yes"]
    assert ds.encoded_labels().sum() == 40


def test_positive_class_override_reorders_classes() -> None:
    df = make_sixty_forty().frame
    ds = Dataset(df, "outcome", positive_class="No")
    assert ds.classes == ["Yes", "No"]
    assert ds.negative_class == "Yes"


def test_dataset_rejects_non_binary_labels() -> None:
    df = pd.DataFrame({"x": [1.0, 2.0, 3.0], "y": ["a", "b", "c"]})
    with pytest.raises(InvalidLabelError):
        Dataset(df, "y")
    with pytest.raises(ValueError):
        Dataset(df.assign(y=["a", "a", "a"]), "y")


def test_dataset_rejects_unknown_positive_class() -> None:
    with pytest.raises(InvalidLabelError):
        Dataset(make_sixty_forty().frame, "outcome", positive_class="Maybe")


def test_split_sixty_forty_scenario() -> None:
    ds = make_sixty_forty()
    split = split_dataset(ds, 0.75, seed=1)

    assert len(split.train) == 75
    assert len(split.test) == 25
    train_share = (split.train.labels == "Yes").mean()
    assert abs(train_share - 0.4) <= 0.02
    test_share = (split.test.labels == "Yes").mean()
    assert abs(test_share - 0.4) <= 0.02


def test_split_partitions_records_without_overlap() -> None:
    df = create_sample_data(n_samples=97, seed=5).reset_index(drop=True)
    df["row_id"] = np.arange(len(df))
    ds = Dataset(df, "target")
    split = split_dataset(ds, 0.7, seed=11)

    train_ids = set(split.train.frame["row_id"])
    test_ids = set(split.test.frame["row_id"])
    assert train_ids.isdisjoint(test_ids)
    assert train_ids | test_ids == set(range(97))
    assert abs(len(split.train) - round(0.7 * 97)) <= 1


def test_split_is_reproducible_for_a_seed() -> None:
    ds = make_sixty_forty()
    a = split_dataset(ds, 0.75, seed=9)
    b = split_dataset(ds, 0.75, seed=9)
    pd.testing.assert_frame_equal(a.train.frame, b.train.frame)
    pd.testing.assert_frame_equal(a.test.frame, b.test.frame)


@pytest.mark.parametrize("fraction", [0.0, 1.0, -0.2, 1.5])
def test_split_rejects_fraction_outside_unit_interval(fraction: float) -> None:
    with pytest.raises(InvalidFractionError):
        split_dataset(make_sixty_forty(), fraction, seed=1)


def test_split_rejects_singleton_class() -> None:
    df = pd.DataFrame({"x": np.arange(10.0), "y": [0] * 9 + [1]})
    with pytest.raises(InsufficientDataError):
        split_dataset(Dataset(df, "y"), 0.5, seed=1)


def test_prepare_dataset_drops_missing_labels() -> None:
    df = create_sample_data(n_samples=50, seed=2)
    df.loc[[0, 1], "target"] = np.nan
    ds = DataProcessor().prepare_dataset(df, "target")
    assert len(ds) == 48


def test_preprocessor_one_hot_encodes_categoricals() -> None:
    df = create_sample_data(n_samples=60, n_features=3, n_categorical=1, seed=4)
    X = df.drop(columns="target")
    pre = DataProcessor().build_preprocessor(X)
    out = pre.fit_transform(X)
    names = list(pre.get_feature_names_out())
    assert out.shape == (60, 3 + 3)
    assert "group_0_a" in names


def test_sample_data_has_exact_class_balance() -> None:
    df = create_sample_data(n_samples=200, class_balance=0.3, labels=("neg", "pos"))
    assert (df["target"] == "pos").sum() == 60
