# qrsec/errors.py

from __future__ import annotations

from typing import Any, Dict, Optional


class LinkCheckError(Exception):
    """Error that crosses the service boundary. ``kind`` is the stable tag."""

    kind = "link-check-error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(LinkCheckError):
    kind = "invalid-input"
    status_code = 400


class ServiceUnavailableError(LinkCheckError):
    kind = "service-unavailable"
    status_code = 503
