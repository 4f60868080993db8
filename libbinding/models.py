from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Dict, Literal, Optional, Tuple
import numpy as np
import pandas as pd

from .equations import PARAMETER_NAMES, evaluate
from .errors import ConfigurationError

ModelName = Literal["Hill", "Hyperbolic", "Quadratic"]
ConcentrationUnit = Literal["M", "mM", "μM", "nM", "pM"]

class AggregatedPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    concentration: float
    mean: float
    std: Optional[float] = None

    @field_validator('concentration')
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("Concentration must be strictly positive.")
        return v

    @field_validator('std')
    @classmethod
    def must_be_non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("Standard deviation must be non-negative.")
        return v

class AggregatedDataset(BaseModel):
    """Replicate means and standard deviations, one point per concentration."""
    model_config = ConfigDict(frozen=True)

    points: Tuple[AggregatedPoint, ...]
    n_replicates: int = Field(ge=1)
    concentration_label: str = "concentration"

    @property
    def weighted(self) -> bool:
        return self.n_replicates >= 2

    def __len__(self):
        return len(self.points)

    # Helper to export as numpy arrays for the solver
    def to_arrays(self):
        c = np.array([p.concentration for p in self.points], dtype=float)
        mean = np.array([p.mean for p in self.points], dtype=float)
        std = np.array([np.nan if p.std is None else p.std for p in self.points], dtype=float)
        return c, mean, std

    def to_frame(self) -> pd.DataFrame:
        c, mean, std = self.to_arrays()
        return pd.DataFrame({"concentration": c, "mean": mean, "std": std})

class ModelParameters(BaseModel):
    """Ordered parameter vector: (Smin, Smax, Kd[, h])."""
    model_config = ConfigDict(frozen=True)

    model: ModelName
    values: Tuple[float, ...]

    @model_validator(mode='after')
    def check_length(self):
        expected = PARAMETER_NAMES[self.model]
        if len(self.values) != len(expected):
            raise ValueError(f"{self.model} takes {len(expected)} parameters {expected}, got {len(self.values)}.")
        return self

    @property
    def names(self):
        return PARAMETER_NAMES[self.model]

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(self.names, self.values))

    def __getitem__(self, name):
        return self.as_dict()[name]

class FitConfig(BaseModel):
    """Everything a fit needs besides the data. Passed explicitly to every call."""
    model_config = ConfigDict(frozen=True)

    model: ModelName = "Hill"
    r0: Optional[float] = None
    trim_trailing_rows: int = Field(2, ge=0)
    concentration_unit: ConcentrationUnit = "μM"
    weighted: Optional[bool] = None
    max_nfev: int = Field(2000, gt=0)
    tolerance: float = Field(1.5e-8, gt=0)

    @model_validator(mode='after')
    def check_receptor_concentration(self):
        if self.r0 is not None and not self.r0 > 0:
            raise ConfigurationError(f"Receptor concentration R0 must be > 0 (got {self.r0}).")
        if self.model == "Quadratic" and self.r0 is None:
            raise ConfigurationError("The Quadratic model requires the receptor concentration R0.")
        return self

class FitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: ModelName
    parameters: ModelParameters
    initial: ModelParameters
    stderr: Tuple[float, ...]
    residuals: Tuple[float, ...]  # predicted - observed
    dof: int
    ssr: float
    chi_square: float
    weighted: bool
    r0: Optional[float] = None
    nfev: int = 0
    aic: float = float("nan")
    r_squared: float = float("nan")

    @property
    def n_points(self) -> int:
        return len(self.residuals)

    def errors(self) -> Dict[str, float]:
        return dict(zip(self.parameters.names, self.stderr))

    def predict(self, c):
        return evaluate(self.model, c, self.parameters.values, r0=self.r0)
