"""
Errors & Results
================
Error taxonomy for the decision engine and the structured result type
returned by every mutating operation.

Components never let these exceptions escape while ticking. They are
caught at the component seam and folded into an ``OperationResult`` so a
failure on one instrument never halts evaluation of the others. Callers
that prefer exceptions can call ``result.raise_for_error()``.
"""

from dataclasses import dataclass
from typing import Optional


class TradingError(Exception):
    """Base engine error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(TradingError):
    """Malformed numeric or configuration input (400)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class LimitExceededError(TradingError):
    """Exposure or drawdown limit would be breached (409)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class NotFoundError(TradingError):
    """Unknown position, strategy or instrument (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class InsufficientDataError(TradingError):
    """Too few samples for an indicator (422).

    Indicators return ``None`` instead of raising; this exists for callers
    that want to turn a missing reading into an error.
    """

    def __init__(self, message: str = "Insufficient data"):
        super().__init__(message, status_code=422)


ERROR_TYPES = {
    cls.__name__: cls
    for cls in (TradingError, ValidationError, LimitExceededError,
                NotFoundError, InsufficientDataError)
}


@dataclass
class OperationResult:
    """Outcome of an engine operation.

    ``error`` holds the name of the ``TradingError`` subclass describing a
    failure so the result stays serializable.
    """
    success: bool
    reason: str = ""
    error: Optional[str] = None

    def raise_for_error(self):
        """Raise the matching ``TradingError`` if the operation failed."""
        if self.success:
            return
        error_cls = ERROR_TYPES.get(self.error or "", TradingError)
        if error_cls is TradingError:
            raise TradingError(self.reason)
        raise error_cls(self.reason)

    @classmethod
    def failure_from(cls, exc: TradingError, **kwargs) -> "OperationResult":
        """Build a failed result from a caught engine error."""
        return cls(success=False, reason=exc.message, error=type(exc).__name__, **kwargs)

    def to_dict(self) -> dict:
        data = {'success': self.success}
        if not self.success:
            data['reason'] = self.reason
            data['error'] = self.error
        return data
