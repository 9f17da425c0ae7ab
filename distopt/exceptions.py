"""
Exceptions raised by distopt.
"""


class InvalidConfigurationError(ValueError):
    """Raised when a component is constructed with invalid arguments."""


class OptimizationError(ValueError):
    """Raised when an objective evaluates to NaN or Inf during optimization."""
