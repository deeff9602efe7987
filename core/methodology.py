"""
methodology.py
---------------
Threshold methodology definitions.

Every supported methodology is one parametric rule:

    threshold = baseline_fn(trailing window of quantities) * multiplier
    flag      = quantity > threshold

They differ only in window length, baseline function and multiplier, so
they are configuration rather than code. A fixed ceiling such as "8,000
dosage units a month" is a window-less methodology whose baseline is a
constant.

Methodology objects validate themselves on construction. A broken rule
raises ConfigurationError before any series is touched.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from core.exceptions import ConfigurationError
from config.config_loader import get_methodology_configs, get_methodology_config


class BaselineFunction(str, Enum):
    MAX = "max"
    MEAN = "mean"
    CONSTANT = "constant"


class WindowMode(str, Enum):
    TRAILING = "trailing"                       # Strictly prior periods.
    TRAILING_INCLUSIVE = "trailing_inclusive"   # Window ends with the current period.


GRANULARITIES = ("month", "day")


@dataclass(frozen=True)
class Methodology:
    """
    A named, stateless threshold rule.

    Build from config with Methodology.from_config(name) or construct
    directly. Parameters are checked in __post_init__.
    """

    name: str
    window_length: int
    baseline_fn: BaselineFunction
    multiplier: float = 1.0
    requires_full_window: bool = False
    constant_value: float | None = None
    window_mode: WindowMode = WindowMode.TRAILING
    granularity: str = "month"
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "baseline_fn", _coerce(BaselineFunction, self.baseline_fn, "baseline_fn", self.name))
        object.__setattr__(self, "window_mode", _coerce(WindowMode, self.window_mode, "window_mode", self.name))
        self._validate()

    # -------------------------------------------------------------------------
    # CONSTRUCTION
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, name: str, params: Dict[str, Any]) -> "Methodology":
        """Builds a methodology from a config-style parameter block."""
        known = {
            "window_length", "baseline_fn", "multiplier", "requires_full_window",
            "constant_value", "window_mode", "granularity", "description",
        }
        unknown = set(params) - known
        if unknown:
            raise ConfigurationError(f"Methodology '{name}': unrecognized parameters {sorted(unknown)}")
        if "window_length" not in params or "baseline_fn" not in params:
            raise ConfigurationError(f"Methodology '{name}': window_length and baseline_fn are required")

        return cls(
            name=name,
            window_length=params["window_length"],
            baseline_fn=params["baseline_fn"],
            multiplier=params.get("multiplier", 1.0),
            requires_full_window=params.get("requires_full_window", False),
            constant_value=params.get("constant_value"),
            window_mode=params.get("window_mode", WindowMode.TRAILING.value),
            granularity=params.get("granularity", "month"),
            description=params.get("description", ""),
        )

    @classmethod
    def from_config(cls, name: str) -> "Methodology":
        """Builds a named methodology from config.yaml. KeyError if unknown."""
        return cls.from_dict(name, get_methodology_config(name))

    # -------------------------------------------------------------------------
    # PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def is_windowed(self) -> bool:
        return self.baseline_fn is not BaselineFunction.CONSTANT

    # -------------------------------------------------------------------------
    # INTERNAL: VALIDATION
    # -------------------------------------------------------------------------

    def _validate(self) -> None:
        if not self.name:
            raise ConfigurationError("Methodology name must be non-empty")

        if isinstance(self.window_length, bool) or not isinstance(self.window_length, int):
            raise ConfigurationError(f"Methodology '{self.name}': window_length must be an integer")
        if self.window_length < 0:
            raise ConfigurationError(f"Methodology '{self.name}': window_length must be >= 0")

        if isinstance(self.multiplier, bool) or not isinstance(self.multiplier, (int, float)):
            raise ConfigurationError(f"Methodology '{self.name}': multiplier must be a number")
        if self.multiplier <= 0:
            raise ConfigurationError(f"Methodology '{self.name}': multiplier must be > 0")

        if self.granularity not in GRANULARITIES:
            raise ConfigurationError(
                f"Methodology '{self.name}': granularity must be one of {GRANULARITIES}, got '{self.granularity}'"
            )

        if self.is_windowed:
            if self.window_length == 0:
                raise ConfigurationError(
                    f"Methodology '{self.name}': baseline_fn '{self.baseline_fn.value}' needs a window_length > 0"
                )
            if self.constant_value is not None:
                raise ConfigurationError(
                    f"Methodology '{self.name}': constant_value only applies to baseline_fn 'constant'"
                )
        else:
            if self.window_length != 0:
                raise ConfigurationError(
                    f"Methodology '{self.name}': constant baselines take no window, got window_length={self.window_length}"
                )
            if self.constant_value is None:
                raise ConfigurationError(f"Methodology '{self.name}': baseline_fn 'constant' requires constant_value")
            if isinstance(self.constant_value, bool) or not isinstance(self.constant_value, (int, float)):
                raise ConfigurationError(f"Methodology '{self.name}': constant_value must be a number")
            if self.constant_value < 0:
                raise ConfigurationError(f"Methodology '{self.name}': constant_value must be >= 0")


def _coerce(enum_cls, value, field_name: str, methodology_name: str):
    """Maps a config string onto its enum member."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise ConfigurationError(
            f"Methodology '{methodology_name}': unrecognized {field_name} '{value}'. Allowed: {allowed}"
        ) from None


def load_methodologies(names: list[str] | None = None) -> list[Methodology]:
    """
    Builds methodologies from config.

    Args:
        names: Subset to load, in the given order. None loads all of them
            in config order.

    Raises:
        KeyError: If a requested name is not configured.
        ConfigurationError: If any loaded definition is inconsistent.
    """
    if names is None:
        return [Methodology.from_dict(name, params) for name, params in get_methodology_configs().items()]
    return [Methodology.from_config(name) for name in names]
