"""
Data Processing Module

Handles data loading, label validation, stratified train/test splitting and
the per-fit feature preprocessing used by every model family.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder, RobustScaler, StandardScaler

from .exceptions import InsufficientDataError, InvalidFractionError, InvalidLabelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Dataset:
    """
    A labelled table: feature columns plus one binary label column.

    Args:
        frame: The records
        target: Name of the label column
        positive_class: Label value treated as the event; defaults to the
            second class in sorted order
    """

    frame: pd.DataFrame
    target: str
    positive_class: Optional[Any] = None

    def __post_init__(self):
        if self.target not in self.frame.columns:
            raise ValueError(f"Target column '{self.target}' not found in data")
        labels = self.frame[self.target]
        if labels.isnull().any():
            raise InvalidLabelError(
                f"Target column '{self.target}' has {int(labels.isnull().sum())} missing labels"
            )
        classes = sorted(labels.unique().tolist())
        if len(classes) != 2:
            raise InvalidLabelError(
                f"Target column '{self.target}' must hold exactly two classes, found {classes}"
            )
        if self.positive_class is None:
            object.__setattr__(self, "positive_class", classes[1])
        elif self.positive_class not in classes:
            raise InvalidLabelError(
                f"Positive class {self.positive_class!r} is not one of {classes}"
            )

    @property
    def classes(self) -> List[Any]:
        """Both label values, negative class first."""
        values = sorted(self.frame[self.target].unique().tolist())
        if values[1] != self.positive_class:
            values.reverse()
        return values

    @property
    def negative_class(self) -> Any:
        return self.classes[0]

    @property
    def feature_columns(self) -> List[str]:
        return [c for c in self.frame.columns if c != self.target]

    @property
    def features(self) -> pd.DataFrame:
        return self.frame[self.feature_columns]

    @property
    def labels(self) -> pd.Series:
        return self.frame[self.target]

    def encoded_labels(self) -> np.ndarray:
        """Labels as 0/1 with 1 marking the positive class."""
        return (self.labels == self.positive_class).to_numpy().astype(int)

    def class_counts(self) -> pd.Series:
        return self.labels.value_counts().reindex(self.classes, fill_value=0)

    def subset(self, positions: np.ndarray) -> "Dataset":
        """Rows at the given integer positions, keeping the class roles."""
        return Dataset(self.frame.iloc[positions], self.target, self.positive_class)

    def __len__(self) -> int:
        return len(self.frame)


@dataclass(frozen=True, eq=False)
class DataSplit:
    """Disjoint training and test partitions of one Dataset."""

    train: Dataset
    test: Dataset
    seed: int
    train_fraction: float


def split_dataset(dataset: Dataset, train_fraction: float, seed: int) -> DataSplit:
    """
    Stratified partition of a Dataset into training and test sets.

    The training set holds floor(train_fraction * n) records and label
    proportions follow the original dataset on both sides.

    Args:
        dataset: Records to split
        train_fraction: Share of records used for training, in (0, 1)
        seed: Random seed; identical seeds give identical splits

    Returns:
        DataSplit with training and test Datasets
    """
    if not 0.0 < train_fraction < 1.0:
        raise InvalidFractionError(f"train_fraction must lie in (0, 1), got {train_fraction}")

    counts = dataset.class_counts()
    if counts.min() < 2:
        raise InsufficientDataError(
            f"Every class needs at least 2 records to stratify, got {counts.to_dict()}"
        )

    n = len(dataset)
    n_train = int(np.floor(train_fraction * n + 1e-9))
    n_test = n - n_train
    n_classes = len(counts)
    if n_train < n_classes or n_test < n_classes:
        raise InsufficientDataError(
            f"train_fraction={train_fraction} leaves {n_train} training and {n_test} test "
            f"records; each side needs at least {n_classes}"
        )

    positions = np.arange(n)
    train_pos, test_pos = train_test_split(
        positions,
        train_size=n_train,
        test_size=n_test,
        random_state=seed,
        stratify=dataset.labels.to_numpy(),
    )
    train_pos = np.sort(train_pos)
    test_pos = np.sort(test_pos)

    logger.info(f"Training set: {len(train_pos)} samples")
    logger.info(f"Testing set: {len(test_pos)} samples")

    return DataSplit(
        train=dataset.subset(train_pos),
        test=dataset.subset(test_pos),
        seed=seed,
        train_fraction=train_fraction,
    )


class DataProcessor:
    """Main class for data processing operations."""

    def __init__(self, scaler_type: Optional[str] = 'standard',
                 imputer_strategy: str = 'median',
                 max_onehot_categories: int = 50):
        """
        Initialize DataProcessor.

        Args:
            scaler_type: Type of scaler ('standard', 'minmax', 'robust') or None
            imputer_strategy: Strategy for numeric imputation ('mean', 'median', 'most_frequent')
            max_onehot_categories: Upper bound on distinct values per categorical column
        """
        self.scaler_type = scaler_type
        self.imputer_strategy = imputer_strategy
        self.max_onehot_categories = max_onehot_categories

    def load_data(self, file_path: Union[str, Path]) -> pd.DataFrame:
        """
        Load data from CSV file.

        Args:
            file_path: Path to the data file

        Returns:
            Loaded DataFrame
        """
        logger.info(f"Loading data from {file_path}")

        try:
            df = pd.read_csv(file_path)
            logger.info(f"Data loaded successfully: {df.shape[0]} rows, {df.shape[1]} columns")
            return df
        except Exception as e:
            logger.error(f"Error loading data: {e}")
            raise

    def prepare_dataset(self, df: pd.DataFrame, target_column: str,
                        positive_class: Optional[Any] = None) -> Dataset:
        """
        Wrap a DataFrame as a Dataset, dropping rows with a missing label.

        Args:
            df: Input DataFrame
            target_column: Name of the target column
            positive_class: Label value treated as the event

        Returns:
            Validated Dataset
        """
        if target_column not in df.columns:
            raise ValueError(f"Target column '{target_column}' not found in data")

        missing = df[target_column].isnull()
        if missing.any():
            logger.warning(f"Dropping {int(missing.sum())} rows with missing '{target_column}'")
            df = df.loc[~missing]

        dataset = Dataset(df.reset_index(drop=True), target_column, positive_class)
        logger.info(
            f"Dataset: {len(dataset)} records, {len(dataset.feature_columns)} features, "
            f"classes {dataset.class_counts().to_dict()} (positive={dataset.positive_class!r})"
        )
        return dataset

    def split_data(self, dataset: Dataset, train_fraction: float, seed: int) -> DataSplit:
        """
        Split data into training and testing sets.

        Args:
            dataset: Records to split
            train_fraction: Share of records used for training
            seed: Random seed

        Returns:
            DataSplit
        """
        logger.info(f"Splitting data with train_fraction={train_fraction}, seed={seed}")
        return split_dataset(dataset, train_fraction, seed)

    def identify_feature_types(self, X: pd.DataFrame) -> Tuple[List[str], List[str]]:
        """
        Identify numeric and categorical columns.
        """
        numeric_cols = X.select_dtypes(include=[np.number, np.bool_]).columns.tolist()
        categorical_cols = [c for c in X.columns if c not in numeric_cols]
        for c in categorical_cols:
            nunique = X[c].nunique(dropna=True)
            if nunique > self.max_onehot_categories:
                logger.warning(
                    f"Categorical column '{c}' has {nunique} levels; one-hot encoding all of them"
                )
        return numeric_cols, categorical_cols

    def _make_scaler(self):
        if self.scaler_type is None:
            return None
        if self.scaler_type == 'standard':
            return StandardScaler()
        elif self.scaler_type == 'minmax':
            return MinMaxScaler()
        elif self.scaler_type == 'robust':
            return RobustScaler()
        raise ValueError(f"Unknown scaler type: {self.scaler_type}")

    def build_preprocessor(self, X: pd.DataFrame) -> ColumnTransformer:
        """
        Build an unfitted transformer for the columns of X.

        Numeric columns are imputed (and scaled when a scaler is configured);
        categorical columns are imputed with the most frequent value and
        one-hot encoded, ignoring levels unseen at fit time.

        Args:
            X: Features whose columns define the transformer

        Returns:
            Unfitted ColumnTransformer
        """
        numeric_cols, categorical_cols = self.identify_feature_types(X)

        numeric_steps = [('impute', SimpleImputer(strategy=self.imputer_strategy))]
        scaler = self._make_scaler()
        if scaler is not None:
            numeric_steps.append(('scale', scaler))

        transformers = []
        if numeric_cols:
            transformers.append(('num', Pipeline(numeric_steps), numeric_cols))
        if categorical_cols:
            transformers.append((
                'cat',
                Pipeline([
                    ('impute', SimpleImputer(strategy='most_frequent')),
                    ('onehot', OneHotEncoder(handle_unknown='ignore', sparse_output=False)),
                ]),
                categorical_cols,
            ))
        if not transformers:
            raise ValueError("Dataset has no feature columns")

        return ColumnTransformer(transformers, remainder='drop', verbose_feature_names_out=False)


def create_sample_data(n_samples: int = 200, n_features: int = 6,
                       class_balance: float = 0.4,
                       labels: Tuple[Any, Any] = (0, 1),
                       n_categorical: int = 1,
                       seed: int = 42) -> pd.DataFrame:
    """
    Create sample binary classification data for testing.

    The positive share is exact (round(class_balance * n_samples)) and the
    first two numeric features carry signal.

    Args:
        n_samples: Number of samples
        n_features: Number of numeric features
        class_balance: Proportion of positive class
        labels: (negative, positive) label values
        n_categorical: Number of categorical features
        seed: Random seed

    Returns:
        Sample DataFrame with a 'target' column
    """
    rng = np.random.default_rng(seed)

    n_pos = int(round(class_balance * n_samples))
    y = np.zeros(n_samples, dtype=int)
    y[:n_pos] = 1
    rng.shuffle(y)

    X = rng.normal(size=(n_samples, n_features))
    if n_features >= 1:
        X[:, 0] += 1.5 * y
    if n_features >= 2:
        X[:, 1] -= 1.0 * y

    feature_names = [f'feature_{i}' for i in range(n_features)]
    df = pd.DataFrame(X, columns=feature_names)

    levels = np.array(['a', 'b', 'c'])
    for j in range(n_categorical):
        # Level 'a' is more frequent among positives
        p_pos = np.where(y == 1, 0.6, 0.2)
        draw = rng.random(n_samples)
        col = np.where(draw < p_pos, 'a', rng.choice(levels[1:], size=n_samples))
        df[f'group_{j}'] = col

    df['target'] = np.where(y == 1, labels[1], labels[0])
    return df
