"""Delivery result type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class DeliveryError(Exception):
    """Raised when a failed delivery is converted to an exception."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """
    Outcome of one POST to the webhook.

    Either ``ok`` with the response body, or a failure with a reason.
    ``status_code`` is None when the request never got a response.
    """
    ok: bool
    status_code: int | None = None
    body: str = ""
    error: str | None = None
    latency_ms: float = 0.0

    @classmethod
    def success(cls, status_code: int, body: str, latency_ms: float = 0.0) -> DeliveryResult:
        return cls(ok=True, status_code=status_code, body=body, latency_ms=latency_ms)

    @classmethod
    def failure(
        cls,
        error: str,
        status_code: int | None = None,
        body: str = "",
        latency_ms: float = 0.0,
    ) -> DeliveryResult:
        return cls(ok=False, status_code=status_code, body=body, error=error, latency_ms=latency_ms)

    def raise_for_failure(self) -> DeliveryResult:
        """Return self if ok, else raise DeliveryError."""
        if not self.ok:
            raise DeliveryError(self.error or "delivery failed", self.status_code, self.body)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "status_code": self.status_code,
            "body": self.body,
            "error": self.error,
            "latency_ms": self.latency_ms,
        }
