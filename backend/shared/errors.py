"""
Error kinds shared across the fixture pipeline.

SourceUnavailable and PersistenceError are raised; ReconciliationWarning is a
record collected alongside results and logged, never raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class SourceUnavailable(Exception):
    """Every configured source failed for a resource."""

    def __init__(self, resource: str, errors: dict[str, str] | None = None) -> None:
        self.resource = resource
        self.errors = dict(errors or {})
        detail = ", ".join(f"{name}: {err}" for name, err in self.errors.items()) or "no sources configured"
        super().__init__(f"No source could provide '{resource}' ({detail})")


class PersistenceError(Exception):
    """A storage write or read failed; the refresh cycle's result is discarded."""

    def __init__(self, operation: str, table: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.table = table
        self.cause = cause
        super().__init__(f"{operation} on '{table}' failed: {cause}")


class RateLimited(Exception):
    """Client exceeded its force-refresh allowance."""

    def __init__(self, identity: str, retry_after_s: float) -> None:
        self.identity = identity
        self.retry_after_s = retry_after_s
        super().__init__(f"Rate limit exceeded for {identity}; retry after {retry_after_s:.0f}s")


@dataclass(frozen=True)
class ReconciliationWarning:
    """Non-fatal finding from reconciliation or round assignment."""

    kind: str
    message: str
    fixture_key: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.fixture_key:
            payload["fixture_key"] = self.fixture_key
        if self.details:
            payload["details"] = self.details
        return payload
