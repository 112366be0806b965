"""
Error taxonomy shared by services and routes.

Every error carries the HTTP status it maps to at the handler boundary,
plus optional extra fields merged into the JSON error body.
"""
from typing import Any, Dict, Optional


class KonverError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code: int = 500

    def __init__(self, error: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(error)
        self.error = error
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error}
        body.update(self.extra)
        return body


class ValidationError(KonverError):
    """Bad or missing input (client fault)"""
    status_code = 400


class NotFoundError(KonverError):
    """Referenced record absent or outside the caller's bot scope"""
    status_code = 404


class ConfigurationError(KonverError):
    """Required configuration missing (operator fault)"""
    status_code = 500


class UpstreamError(KonverError):
    """Downstream service answered with a failure"""
    status_code = 502


class UpstreamTimeoutError(KonverError):
    """Downstream call exceeded its deadline"""
    status_code = 408


class StorageError(KonverError):
    """Datastore call failed"""
    status_code = 500
