"""Prediction of class labels and class probabilities from a fitted model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

import numpy as np
import pandas as pd

from .data_processing import Dataset
from .model import FittedModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PredictionResult:
    """Predicted label and per-class probabilities for each record."""

    labels: pd.Series
    probabilities: pd.DataFrame
    positive_class: Any
    threshold: float = 0.5

    @property
    def positive_probabilities(self) -> pd.Series:
        return self.probabilities[self.positive_class]

    def to_frame(self) -> pd.DataFrame:
        out = self.probabilities.add_prefix('prob_')
        out['pred_label'] = self.labels
        return out

    def __len__(self) -> int:
        return len(self.labels)


class Predictor:
    """Applies a FittedModel to new records."""

    def __init__(self, model: FittedModel, threshold: float = 0.5):
        if not 0.0 < threshold < 1.0:
            raise ValueError(f"threshold must lie in (0, 1), got {threshold}")
        self.model = model
        self.threshold = threshold

    def predict(self, data: Union[Dataset, pd.DataFrame]) -> PredictionResult:
        """
        Predict labels and class probabilities.

        The label column is ignored when present. Labels are derived from the
        positive-class probability, so the two outputs always agree.

        Args:
            data: Dataset or DataFrame holding the model's feature columns

        Returns:
            PredictionResult indexed like the input rows
        """
        frame = data.frame if isinstance(data, Dataset) else data
        columns = list(self.model.feature_columns)
        missing = [c for c in columns if c not in frame.columns]
        if missing:
            raise ValueError(f"Missing feature columns: {missing}")

        X = frame[columns]
        proba = self.model.model_family.predict_proba(self.model.estimator, X)
        negative, positive = self.model.classes

        probabilities = pd.DataFrame(proba, columns=[negative, positive], index=frame.index)
        labels = pd.Series(
            np.where(proba[:, 1] >= self.threshold, positive, negative),
            index=frame.index,
            name='pred_label',
        )

        logger.debug(f"Predicted {len(labels)} records with {self.model.family}")
        return PredictionResult(labels, probabilities, positive, self.threshold)
