"""Shared fixtures for binclass tests."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from binclass.data_processing import Dataset, create_sample_data


@pytest.fixture
def sample_df() -> pd.DataFrame:
    return create_sample_data(n_samples=120, n_features=4, class_balance=0.4, seed=7)


@pytest.fixture
def sample_dataset(sample_df: pd.DataFrame) -> Dataset:
    return Dataset(sample_df, "target")
