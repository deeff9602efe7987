"""
exceptions.py
--------------
Error taxonomy for the threshold engine.

Insufficient history is deliberately absent here: it is a normal data state,
carried as a ThresholdResult with baseline=None.
"""


class ThresholdEngineError(Exception):
    """Base class for all engine errors."""


class EmptyInputError(ThresholdEngineError):
    """No transactions survived filtering, so no series can be built."""


class ConfigurationError(ThresholdEngineError):
    """A methodology definition is internally inconsistent."""
