from __future__ import annotations

from typing import Any, Optional


class AdminError(Exception):
    """
    Base class for every failure surfaced by the admin layer.

    ``operation`` is filled in by the facade when the error passes through it,
    so a log line always says which admin call failed and against what.
    """

    def __init__(
        self,
        detail: str,
        *,
        entity: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.entity = entity
        self.operation = operation

    def __str__(self) -> str:
        parts = [self.detail]
        if self.entity:
            parts.append(f"entity={self.entity}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        return " | ".join(parts)


class RepositoryError(AdminError):
    """The backend was unreachable or rejected the query."""


class NotFound(AdminError):
    def __init__(self, entity: str, record_id: Any, *, operation: Optional[str] = None) -> None:
        super().__init__(f"{entity} {record_id!r} not found", entity=entity, operation=operation)
        self.record_id = record_id


class ValidationError(AdminError, ValueError):
    """A caller supplied parameter violates an enum or range constraint."""

    def __init__(
        self,
        detail: str,
        *,
        field: Optional[str] = None,
        entity: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(detail, entity=entity, operation=operation)
        self.field = field
