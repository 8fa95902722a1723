"""Error types raised by the classification workflow."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""


class InvalidFractionError(WorkflowError, ValueError):
    """Raised when a split fraction lies outside the open interval (0, 1)."""


class InsufficientDataError(WorkflowError, ValueError):
    """Raised when a label class is too small to stratify."""


class InvalidLabelError(WorkflowError, ValueError):
    """Raised when a label column does not hold exactly two classes."""


class DegenerateLabelsError(WorkflowError, ValueError):
    """Raised when observed labels contain a single class."""


class IncompatibleResamplesError(WorkflowError, ValueError):
    """Raised when two resample distributions cannot be paired."""


class FoldFitError(WorkflowError, RuntimeError):
    """A configuration failed to fit or score on one resample."""

    def __init__(self, config: Mapping[str, Any], resample: str,
                 cause: BaseException, repeat: Optional[int] = None,
                 fold: Optional[int] = None):
        self.config = dict(config)
        self.resample = resample
        self.repeat = repeat
        self.fold = fold
        self.cause = cause
        super().__init__(
            f"Configuration {self.config} failed on {resample}: "
            f"{type(cause).__name__}: {cause}"
        )

    def __reduce__(self):
        return (type(self), (self.config, self.resample, self.cause, self.repeat, self.fold))


class NoFeasibleConfigurationError(WorkflowError, RuntimeError):
    """Every candidate configuration failed to fit."""

    def __init__(self, family: str, failures: List[Dict[str, Any]]):
        self.family = family
        self.failures = failures
        details = "; ".join(f"{f['config']}: {f['error']}" for f in failures)
        super().__init__(
            f"No configuration of '{family}' could be fitted ({len(failures)} failed): {details}"
        )

    def __reduce__(self):
        return (type(self), (self.family, self.failures))
