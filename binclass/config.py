"""
Workflow Configuration

Settings for the split / tune / evaluate / compare workflow and for image
output. Defaults can be overridden through environment variables or a JSON file.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


def _resolve_output_dir() -> Path:
    """Resolve the output directory. Priority: $BINCLASS_OUTPUT_DIR -> ./results."""
    return Path(os.getenv("BINCLASS_OUTPUT_DIR", "results")).expanduser()


def _resolve_seed() -> int:
    return int(os.getenv("BINCLASS_SEED", "42"))


def _resolve_n_jobs() -> int:
    return int(os.getenv("BINCLASS_N_JOBS", "1"))


UNITS_PER_INCH = {"in": 1.0, "cm": 2.54, "mm": 25.4}


@dataclass
class PlotConfig:
    """Image geometry used when figures are written to disk."""

    width: float = 7.0
    height: float = 5.0
    units: str = "in"  # 'in', 'cm', 'mm' or 'px'
    dpi: int = 150

    def __post_init__(self):
        if self.units not in UNITS_PER_INCH and self.units != "px":
            raise ValueError(f"Unknown plot units: {self.units}")
        if self.width <= 0 or self.height <= 0 or self.dpi <= 0:
            raise ValueError("Plot width, height and dpi must be positive")

    def figsize_inches(self) -> tuple[float, float]:
        """Width and height converted to inches for matplotlib."""
        if self.units == "px":
            return self.width / self.dpi, self.height / self.dpi
        factor = UNITS_PER_INCH[self.units]
        return self.width / factor, self.height / factor


@dataclass
class WorkflowConfig:
    """Configuration for an end-to-end workflow run"""

    target_column: str = "target"
    positive_class: Optional[Any] = None

    # Splitting
    train_fraction: float = 0.75
    seed: int = field(default_factory=_resolve_seed)

    # Resampling and tuning
    resampling_method: str = "repeatedcv"
    folds: int = 10
    repeats: int = 5
    metric: str = "roc_auc"
    n_jobs: int = field(default_factory=_resolve_n_jobs)

    # Model families to train, with optional grids (None -> family default grid)
    models: List[str] = field(default_factory=lambda: ["gbm", "svm"])
    grids: Dict[str, Optional[Dict[str, List[Any]]]] = field(default_factory=dict)

    # ROC confidence interval
    roc_ci_method: str = "delong"

    # Output
    output_dir: Path = field(default_factory=_resolve_output_dir)
    save_plots: bool = True
    plot: PlotConfig = field(default_factory=PlotConfig)

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)
        if isinstance(self.plot, dict):
            self.plot = PlotConfig(**self.plot)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "WorkflowConfig":
        """Load a configuration from a JSON file; unknown keys are rejected."""
        with open(path, "r") as f:
            payload = json.load(f)
        known = {f.name for f in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**payload)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["output_dir"] = str(self.output_dir)
        return payload
