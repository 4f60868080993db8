"""Exceptions raised by the binding analysis pipeline.

All of them are recoverable: the caller reports the message and lets the user
change the inputs (model, R0, data file) before trying again.
"""


class BindingError(Exception):
    """Base exception for all libbinding errors."""

    pass


class DataShapeError(BindingError):
    """Raised when an input table cannot be used (too few columns, zero concentration...)."""

    def __init__(self, message: str, source: str = None):
        self.source = source
        if source:
            message = f"[{source}] {message}"
        super().__init__(message)


class FitConvergenceError(BindingError):
    """Raised when the optimiser stops without converging."""

    def __init__(self, message: str, nfev: int = None):
        self.nfev = nfev
        if nfev is not None:
            message = f"{message} (after {nfev} function evaluations)"
        super().__init__(message)


class InsufficientDataError(BindingError):
    """Raised when there are no degrees of freedom left to estimate errors."""

    pass


class ConfigurationError(BindingError):
    """Raised for a missing or invalid R0, or a model/R0 combination that cannot be evaluated."""

    pass
