"""
Error taxonomy for GhostRegime.

Every error the read boundary can surface is a ``GhostRegimeError`` with a
stable ``code`` and an HTTP-equivalent status. Provider failures never
appear here; they are absorbed into diagnostics by the gateway.
"""

from typing import Any, Dict, List, Optional


class GhostRegimeError(Exception):
    """Base class for all GhostRegime errors.

    Attributes:
        code: Stable machine-readable error code
        message: Human-readable message
        http_status: HTTP-equivalent status code
        details: Extra JSON-serializable payload merged into responses
    """

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class NotSeededError(GhostRegimeError):
    """No history exists at all. Fatal until an operator seeds it."""

    code = "GHOSTREGIME_NOT_SEEDED"
    http_status = 503

    def __init__(self, seed_path: str):
        super().__init__(
            "Seed history has not been loaded",
            details={"missing_files": [seed_path]},
        )


class NotReadyError(GhostRegimeError):
    """Seeded, but today's snapshot could not be computed."""

    code = "GHOSTREGIME_NOT_READY"
    http_status = 503

    def __init__(
        self,
        message: str = "Insufficient market data to compute regime",
        diagnostics: Optional[Dict[str, Any]] = None,
    ):
        details = {"diagnostics": diagnostics} if diagnostics else {}
        super().__init__(message, details=details)
        self.diagnostics = diagnostics or {}


class InvalidInputError(GhostRegimeError):
    """Caller supplied a missing or malformed parameter."""

    code = "INVALID_DATE_FORMAT"
    http_status = 400


class DateNotFoundError(GhostRegimeError):
    """A valid date was requested but no row exists for it."""

    code = "DATE_NOT_FOUND"
    http_status = 404

    def __init__(self, date_str: str, available_dates: List[str]):
        super().__init__(
            f"No data found for date {date_str}",
            details={"available_dates": available_dates[:10]},
        )
