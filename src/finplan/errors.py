"""
Error taxonomy for the planning engine.

Every error raised by an engine operation derives from FinPlanError and can
describe itself as a plain dict so callers can show the specific failure
(which constraint, which asset, which matrix) instead of a generic message.
"""

from typing import Any, Dict, Optional


class FinPlanError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(FinPlanError, ValueError):
    """Input failed validation (NaN, negative volatility, bad probability...).

    Attributes:
        field: Name of the offending field, asset symbol or matrix
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class InsufficientDataError(ValidationError):
    """Sample set is empty or too small for the requested statistic."""


class NonPositiveDefiniteError(FinPlanError):
    """Matrix could not be Cholesky-factorized even after nearest-PSD repair."""

    def __init__(self, matrix_name: str, min_eigenvalue: Optional[float] = None):
        message = f"{matrix_name} is not positive definite"
        if min_eigenvalue is not None:
            message += f" (min eigenvalue: {min_eigenvalue:.3e})"
        super().__init__(message)
        self.matrix_name = matrix_name
        self.min_eigenvalue = min_eigenvalue

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["matrix"] = self.matrix_name
        payload["min_eigenvalue"] = self.min_eigenvalue
        return payload


class InfeasibleConstraintError(FinPlanError):
    """A named constraint cannot be satisfied. Never silently relaxed.

    Attributes:
        constraint: Constraint identifier, e.g. "max_weights" or "sector_cap[Tech]"
        detail: Human readable explanation with the offending numbers
    """

    def __init__(self, constraint: str, detail: str = ""):
        message = f"Infeasible constraint '{constraint}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.constraint = constraint
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["constraint"] = self.constraint
        payload["detail"] = self.detail
        return payload


class SolverConvergenceError(FinPlanError):
    """All optimisation attempts failed on a constraint set that passed pre-checks."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["attempts"] = self.attempts
        return payload


class Cancelled(FinPlanError):
    """The caller requested cancellation of a long-running computation."""

    def __init__(self, message: str = "Computation cancelled by caller"):
        super().__init__(message)
