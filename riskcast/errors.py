"""
Exception hierarchy for the riskcast core.

Every error carries a machine-readable ``code`` so job rows, batch summaries
and HTTP responses can branch on it without parsing English messages.
"""

from typing import Any, Optional


class RiskcastError(Exception):
    """Base class for all application-level errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class StorageError(RiskcastError):
    """A store read or write failed. Transient: the unit is retried on a later tick."""

    code = "STORAGE_ERROR"


class InvalidMetricReference(RiskcastError):
    """A metric reference names a table or column that is not a safe identifier."""

    code = "INVALID_METRIC_REFERENCE"

    def __init__(self, table: str, column: str):
        super().__init__(
            message=f"Invalid metric reference {table!r}.{column!r}",
            details={"table": table, "column": column},
        )


class ValueConversionError(RiskcastError):
    """A raw metric value could not be normalized for its value kind."""

    code = "VALUE_CONVERSION_ERROR"

    def __init__(self, value_kind: str, raw: Any):
        super().__init__(
            message=f"Cannot convert {raw!r} as {value_kind}",
            details={"value_kind": value_kind, "raw": repr(raw)},
        )


class ConfigurationError(RiskcastError):
    """
    Required per-user configuration is absent or inconsistent.

    Benign: a job hitting this is completed as ``done`` with ``status`` as its
    descriptive result, never retried.
    """

    code = "CONFIGURATION_MISSING"

    def __init__(self, status: str, message: str, details: Optional[dict[str, Any]] = None):
        self.status = status
        super().__init__(message=message, details=details)
