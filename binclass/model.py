"""
Model Training Module

Model families behind a uniform fit/predict interface, hyperparameter grids,
and the trainer that tunes a family by resampling and refits the winner.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type, Union

import joblib
import lightgbm as lgb
import numpy as np
import pandas as pd
import xgboost as xgb
from sklearn.ensemble import GradientBoostingClassifier
from sklearn.pipeline import Pipeline
from sklearn.svm import SVC

from .data_processing import DataProcessor, Dataset
from .exceptions import FoldFitError, NoFeasibleConfigurationError
from .resampling import METRICS, ControlPolicy, ResampleDistribution, ResamplingEvaluator, validate_metric

logger = logging.getLogger(__name__)


class ModelFamily(ABC):
    """
    A kind of classifier that can be fitted to a Dataset under a configuration.

    Subclasses only describe how to build the estimator; preprocessing, label
    encoding and probability output are shared.
    """

    name: str = ''
    scaler_type: Optional[str] = None

    def default_config(self) -> Dict[str, Any]:
        return {}

    def default_grid(self) -> Dict[str, List[Any]]:
        return {}

    @abstractmethod
    def build_estimator(self, config: Mapping[str, Any], random_state: int) -> Any:
        """Unfitted sklearn-compatible classifier for one configuration."""

    def fit(self, dataset: Dataset, config: Mapping[str, Any], random_state: int = 42) -> Pipeline:
        """
        Fit preprocessing and estimator on a Dataset.

        The estimator sees 0/1 labels, 1 marking the dataset's positive class.
        """
        X = dataset.features
        y = dataset.encoded_labels()
        pipeline = Pipeline([
            ('preprocess', DataProcessor(scaler_type=self.scaler_type).build_preprocessor(X)),
            ('model', self.build_estimator({**self.default_config(), **config}, random_state)),
        ])
        pipeline.fit(X, y)
        return pipeline

    def predict_proba(self, estimator: Pipeline, X: pd.DataFrame) -> np.ndarray:
        """
        Class probabilities as an (n, 2) array: negative class, positive class.
        """
        proba = np.asarray(estimator.predict_proba(X), dtype=float)
        classes = list(estimator.classes_)
        out = np.zeros((len(X), 2))
        for j, c in enumerate(classes):
            out[:, int(c)] = proba[:, j]
        out = np.clip(out, 0.0, 1.0)
        totals = out.sum(axis=1, keepdims=True)
        totals[totals == 0] = 1.0
        return out / totals

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class GradientBoostingFamily(ModelFamily):
    """Stochastic gradient boosted trees."""

    name = 'gbm'

    def default_config(self) -> Dict[str, Any]:
        return {
            'n_estimators': 100,
            'max_depth': 3,
            'learning_rate': 0.1,
            'min_samples_leaf': 10,
            'subsample': 1.0,
        }

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'max_depth': [1, 2, 3],
            'n_estimators': [50, 100, 150],
            'learning_rate': [0.1],
            'min_samples_leaf': [10],
        }

    def build_estimator(self, config, random_state):
        return GradientBoostingClassifier(
            n_estimators=int(config['n_estimators']),
            max_depth=int(config['max_depth']),
            learning_rate=float(config['learning_rate']),
            min_samples_leaf=int(config['min_samples_leaf']),
            subsample=float(config['subsample']),
            random_state=random_state,
        )


class SVMFamily(ModelFamily):
    """Support vector machine with Platt-scaled probabilities on standardized features."""

    name = 'svm'
    scaler_type = 'standard'

    def default_config(self) -> Dict[str, Any]:
        return {'C': 1.0, 'kernel': 'rbf', 'gamma': 'scale'}

    def default_grid(self) -> Dict[str, List[Any]]:
        return {'C': [0.25, 0.5, 1.0], 'gamma': ['scale']}

    def build_estimator(self, config, random_state):
        return SVC(
            C=float(config['C']),
            kernel=config['kernel'],
            gamma=config['gamma'],
            probability=True,
            random_state=random_state,
        )


class XGBoostFamily(ModelFamily):
    """Extreme gradient boosting."""

    name = 'xgboost'

    def default_config(self) -> Dict[str, Any]:
        return {
            'n_estimators': 100,
            'max_depth': 3,
            'learning_rate': 0.1,
            'subsample': 1.0,
            'colsample_bytree': 1.0,
        }

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'max_depth': [2, 3],
            'n_estimators': [50, 100],
            'learning_rate': [0.1, 0.3],
        }

    def build_estimator(self, config, random_state):
        return xgb.XGBClassifier(
            n_estimators=int(config['n_estimators']),
            max_depth=int(config['max_depth']),
            learning_rate=float(config['learning_rate']),
            subsample=float(config['subsample']),
            colsample_bytree=float(config['colsample_bytree']),
            eval_metric='logloss',
            random_state=random_state,
            n_jobs=1,
            verbosity=0,
        )


class LightGBMFamily(ModelFamily):
    """LightGBM gradient boosting."""

    name = 'lightgbm'

    def default_config(self) -> Dict[str, Any]:
        return {
            'n_estimators': 100,
            'learning_rate': 0.1,
            'num_leaves': 15,
            'min_child_samples': 10,
        }

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'n_estimators': [50, 100],
            'num_leaves': [7, 15],
            'learning_rate': [0.05, 0.1],
        }

    def build_estimator(self, config, random_state):
        return lgb.LGBMClassifier(
            n_estimators=int(config['n_estimators']),
            learning_rate=float(config['learning_rate']),
            num_leaves=int(config['num_leaves']),
            min_child_samples=int(config['min_child_samples']),
            random_state=random_state,
            n_jobs=1,
            verbose=-1,
        )


_MODEL_FAMILIES: Dict[str, Type[ModelFamily]] = {}


def register_model_family(family_cls: Type[ModelFamily]) -> Type[ModelFamily]:
    """Make a ModelFamily subclass available by name. Usable as a decorator."""
    if not family_cls.name:
        raise ValueError(f"{family_cls.__name__} must define a name")
    _MODEL_FAMILIES[family_cls.name] = family_cls
    return family_cls


for _cls in (GradientBoostingFamily, SVMFamily, XGBoostFamily, LightGBMFamily):
    register_model_family(_cls)


def available_model_families() -> List[str]:
    return sorted(_MODEL_FAMILIES)


def get_model_family(family: Union[str, ModelFamily]) -> ModelFamily:
    """Resolve a family name (or pass through an instance)."""
    if isinstance(family, ModelFamily):
        return family
    try:
        return _MODEL_FAMILIES[family]()
    except KeyError:
        raise ValueError(
            f"Unknown model family: {family}. Choose from {available_model_families()}"
        ) from None


class HyperparameterGrid:
    """
    Cartesian product of named parameter axes.

    Points are enumerated in axis insertion order with the last axis varying
    fastest, so the enumeration order is fully determined by how the grid is
    written.
    """

    def __init__(self, axes: Mapping[str, Sequence[Any]]):
        if not axes:
            raise ValueError("A grid needs at least one axis")
        self.axes: Dict[str, List[Any]] = {}
        for name, values in axes.items():
            if not pd.api.types.is_list_like(values):
                values = [values]
            values = list(values)
            if not values:
                raise ValueError(f"Grid axis '{name}' has no candidate values")
            self.axes[name] = values

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        names = list(self.axes)
        for combo in itertools.product(*self.axes.values()):
            yield dict(zip(names, combo))

    def __len__(self) -> int:
        return int(np.prod([len(v) for v in self.axes.values()]))

    def __repr__(self) -> str:
        return f"HyperparameterGrid({self.axes!r})"


@dataclass(frozen=True, eq=False)
class FittedModel:
    """A model family fitted on the full training set with its selected configuration."""

    model_family: ModelFamily
    config: Mapping[str, Any]
    estimator: Pipeline
    classes: Tuple[Any, Any]
    positive_class: Any
    feature_columns: Tuple[str, ...]
    target: str
    metric: str
    resamples: ResampleDistribution
    tuning_results: pd.DataFrame = field(repr=False)

    def __post_init__(self):
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    def __reduce__(self):
        state = {f.name: getattr(self, f.name) for f in fields(self)}
        state["config"] = dict(self.config)
        return (_restore_fitted_model, (state,))

    @property
    def family(self) -> str:
        return self.model_family.name

    @property
    def best_score(self) -> float:
        """Mean resampled selection metric of the chosen configuration."""
        if len(self.resamples) == 0:
            return float('nan')
        return float(self.resamples.mean()[self.metric])


def _restore_fitted_model(state: Dict[str, Any]) -> "FittedModel":
    return FittedModel(**state)


class ModelTrainer:
    """Main class for model training and selection."""

    def __init__(self, random_state: int = 42):
        """
        Initialize ModelTrainer.

        Args:
            random_state: Random seed passed to every estimator
        """
        self.random_state = random_state

    def get_param_grids(self) -> Dict[str, Dict[str, List]]:
        """
        Default parameter grids of every registered family.

        Returns:
            Dictionary of family names and their parameter grids
        """
        return {name: get_model_family(name).default_grid() for name in available_model_families()}

    def _candidates(self, family: ModelFamily,
                    grid: Optional[Union[HyperparameterGrid, Mapping[str, Sequence[Any]]]]
                    ) -> List[Dict[str, Any]]:
        base = family.default_config()
        if grid is None:
            return [base]
        if not isinstance(grid, HyperparameterGrid):
            grid = HyperparameterGrid(grid)
        return [{**base, **point} for point in grid]

    def train(self, dataset: Dataset, family: Union[str, ModelFamily],
              control: Optional[ControlPolicy] = None,
              grid: Optional[Union[HyperparameterGrid, Mapping[str, Sequence[Any]]]] = None,
              metric: Optional[str] = None) -> FittedModel:
        """
        Tune a model family by resampling and refit the best configuration.

        Every candidate is resampled under the control policy. The candidate
        with the highest mean selection metric wins; on equal means the one
        listed first in grid enumeration order is kept. Candidates that fail
        on any resample are recorded and skipped.

        Args:
            dataset: Training data
            family: Registered family name or ModelFamily instance
            control: Resampling policy (defaults to ControlPolicy())
            grid: Hyperparameter grid; None fits the family's default configuration
            metric: Selection metric, overriding the control policy's

        Returns:
            FittedModel with the selected configuration and the tuning summary

        Raises:
            NoFeasibleConfigurationError: if every candidate fails
        """
        family = get_model_family(family)
        control = control or ControlPolicy()
        metric = validate_metric(metric or control.metric)
        candidates = self._candidates(family, grid)

        logger.info(
            f"Training {family.name}: {len(candidates)} candidate(s), "
            f"{control.method} with {control.n_resamples} resamples, metric={metric}"
        )

        if control.method == 'none' and len(candidates) != 1:
            raise ValueError(
                f"Resampling method 'none' needs exactly one configuration, got {len(candidates)}"
            )

        evaluator = ResamplingEvaluator(control)
        distributions: List[Optional[ResampleDistribution]] = []
        failures: List[Dict[str, Any]] = []
        rows = []

        for config in candidates:
            row: Dict[str, Any] = dict(config)
            try:
                dist = evaluator.evaluate(dataset, family, config, self.random_state)
            except FoldFitError as e:
                logger.warning(
                    f"{family.name} {config} failed on {e.resample}: "
                    f"{type(e.cause).__name__}: {e.cause}"
                )
                failures.append({'config': config, 'resample': e.resample, 'error': str(e.cause)})
                distributions.append(None)
                row.update({m: np.nan for m in METRICS})
                row.update({f"{m}_sd": np.nan for m in METRICS})
                row['failed'] = f"{e.resample}: {type(e.cause).__name__}: {e.cause}"
                rows.append(row)
                continue

            distributions.append(dist)
            means = dist.mean()
            sds = dist.std()
            row.update({m: float(means.get(m, np.nan)) for m in METRICS})
            row.update({f"{m}_sd": float(sds.get(m, np.nan)) for m in METRICS})
            row['failed'] = None
            rows.append(row)
            if len(dist):
                logger.info(f"{family.name} {config} - mean {metric}: {means[metric]:.4f}")

        if len(failures) == len(candidates):
            raise NoFeasibleConfigurationError(family.name, failures)

        best_idx = None
        best_score = -np.inf
        for i, dist in enumerate(distributions):
            if dist is None:
                continue
            if len(dist) == 0:
                best_idx = i
                break
            score = rows[i][metric]
            if np.isnan(score):
                continue
            if best_idx is None or score > best_score:
                best_idx, best_score = i, score

        if best_idx is None:
            raise NoFeasibleConfigurationError(
                family.name,
                failures + [{'config': c, 'error': f"mean {metric} is undefined"}
                            for c, d in zip(candidates, distributions) if d is not None],
            )

        for i, row in enumerate(rows):
            row['selected'] = i == best_idx
        tuning_results = pd.DataFrame(rows)

        best_config = candidates[best_idx]
        logger.info(f"{family.name} - Best params: {best_config}")
        if np.isfinite(best_score):
            logger.info(f"{family.name} - Best CV {metric}: {best_score:.4f}")

        try:
            estimator = family.fit(dataset, best_config, self.random_state)
        except Exception as e:
            logger.error(f"Refitting {family.name} {best_config} on the full training set failed: {e}")
            raise FoldFitError(best_config, 'full training set', e) from e

        return FittedModel(
            model_family=family,
            config=MappingProxyType(dict(best_config)),
            estimator=estimator,
            classes=tuple(dataset.classes),
            positive_class=dataset.positive_class,
            feature_columns=tuple(dataset.feature_columns),
            target=dataset.target,
            metric=metric,
            resamples=distributions[best_idx],
            tuning_results=tuning_results,
        )

    def save_model(self, model: FittedModel, file_path: Union[str, Path]):
        """
        Save a fitted model to disk.

        Args:
            model: Fitted model
            file_path: Path to save the model
        """
        logger.info(f"Saving model to {file_path}")
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(model, file_path)

    def load_model(self, file_path: Union[str, Path]) -> FittedModel:
        """
        Load a fitted model from disk.

        Args:
            file_path: Path to the saved model

        Returns:
            Loaded model
        """
        logger.info(f"Loading model from {file_path}")
        model = joblib.load(file_path)
        if not isinstance(model, FittedModel):
            raise TypeError(f"{file_path} does not hold a FittedModel (got {type(model).__name__})")
        return model
