"""
Binary Classification Workflow Package

This package contains modules for stratified data splitting, resampled
model tuning, prediction, and evaluation and comparison of binary
classification models.
"""

from .config import PlotConfig, WorkflowConfig
from .data_processing import DataProcessor, DataSplit, Dataset, create_sample_data, split_dataset
from .evaluation import ConfusionMatrixResult, ModelComparison, PerformanceAnalyzer, ROCCurve
from .exceptions import (
    DegenerateLabelsError,
    FoldFitError,
    IncompatibleResamplesError,
    InsufficientDataError,
    InvalidFractionError,
    InvalidLabelError,
    NoFeasibleConfigurationError,
    WorkflowError,
)
from .model import FittedModel, HyperparameterGrid, ModelFamily, ModelTrainer, get_model_family
from .predictor import PredictionResult, Predictor
from .resampling import ControlPolicy, ResampleDistribution, ResamplingEvaluator
from .workflow import WorkflowResult, run_workflow

__version__ = "0.1.0"
__all__ = [
    "PlotConfig",
    "WorkflowConfig",
    "DataProcessor",
    "DataSplit",
    "Dataset",
    "create_sample_data",
    "split_dataset",
    "ConfusionMatrixResult",
    "ModelComparison",
    "PerformanceAnalyzer",
    "ROCCurve",
    "DegenerateLabelsError",
    "FoldFitError",
    "IncompatibleResamplesError",
    "InsufficientDataError",
    "InvalidFractionError",
    "InvalidLabelError",
    "NoFeasibleConfigurationError",
    "WorkflowError",
    "FittedModel",
    "HyperparameterGrid",
    "ModelFamily",
    "ModelTrainer",
    "get_model_family",
    "PredictionResult",
    "Predictor",
    "ControlPolicy",
    "ResampleDistribution",
    "ResamplingEvaluator",
    "WorkflowResult",
    "run_workflow",
]
