"""
Forecast engine error classification.

Every error in this hierarchy is local and recoverable. Callers in the
service layer catch them and degrade to defaults or zeroed results; the
``signal`` attribute names the degradation a caller may want to surface.
"""

from typing import Optional, Dict, Any


class ForecastEngineError(Exception):
    """
    Base exception for all forecast engine errors.

    Attributes:
        message: Human-readable error description
        org_id: Organization the failing computation was scoped to
        details: Structured context for debugging
        signal: Short tag attached to degraded results
    """

    signal: str = "error"

    def __init__(
        self,
        message: str,
        org_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.org_id = org_id
        self.details = details or {}

    def __str__(self) -> str:
        if self.org_id is not None:
            return f"[org {self.org_id}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "org_id": self.org_id,
            "signal": self.signal,
            "details": self.details,
        }


class ConfigMissingError(ForecastEngineError):
    """
    An org has no forecast configuration stored.

    Resolved to documented defaults by the service layer.
    """

    signal = "config_missing"

    def __init__(
        self,
        message: str = "No forecast stage probabilities configured",
        org_id: Optional[int] = None,
        config_name: Optional[str] = None,
    ):
        super().__init__(
            message=message, org_id=org_id, details={"config_name": config_name}
        )
        self.config_name = config_name


class PeriodNotFoundError(ForecastEngineError):
    """
    A quota period id does not resolve for the org.

    The service returns a zeroed result instead of raising.
    """

    signal = "period_not_found"

    def __init__(
        self,
        message: str = "Quota period not found",
        org_id: Optional[int] = None,
        period_id: Optional[Any] = None,
    ):
        if period_id is not None:
            message = f"{message}: {period_id}"
        super().__init__(
            message=message, org_id=org_id, details={"period_id": period_id}
        )
        self.period_id = period_id


class ScopeEmptyError(ForecastEngineError):
    """
    A restricted caller resolved to no visible owners.

    The engine fails closed: zeroed aggregates, never company-wide totals.
    """

    signal = "scope_empty"

    def __init__(
        self,
        message: str = "Restricted scope resolved to no visible owners",
        org_id: Optional[int] = None,
        role: Optional[str] = None,
    ):
        super().__init__(message=message, org_id=org_id, details={"role": role})
        self.role = role


class MalformedFieldError(ForecastEngineError):
    """A single deal field could not be parsed."""

    signal = "malformed_field"

    def __init__(self, message: str, raw_value: Any = None, field: Optional[str] = None):
        super().__init__(
            message=message, details={"raw_value": repr(raw_value), "field": field}
        )
        self.raw_value = raw_value
        self.field = field


class MalformedAmountError(MalformedFieldError):
    """Amount is unparsable, non-finite or negative."""

    def __init__(self, raw_value: Any, field: str = "amount"):
        super().__init__(
            message=f"Malformed amount: {raw_value!r}", raw_value=raw_value, field=field
        )


class MalformedDateError(MalformedFieldError):
    """Date/timestamp text matches none of the accepted formats."""

    def __init__(self, raw_value: Any, field: str = "date"):
        super().__init__(
            message=f"Malformed date: {raw_value!r}", raw_value=raw_value, field=field
        )
