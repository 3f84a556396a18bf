"""Storage collaborator contracts consumed by the directive lifecycle."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from directive_intake.domain.models import DecisionEntry, DirectiveRecord, DirectiveStatus, Task

UnitOfWork = Callable[[], AbstractContextManager[object]]


class DirectiveStore(Protocol):
    """Directive persistence with compare-and-set status updates."""

    def insert(self, record: DirectiveRecord) -> DirectiveRecord: ...

    def get(self, directive_id: str) -> DirectiveRecord | None: ...

    def update_status(
        self,
        directive_id: str,
        status: DirectiveStatus,
        *,
        expected_status: DirectiveStatus,
        decided_at: datetime | None = None,
        rejection_reason: str | None = None,
        applied_at: datetime | None = None,
        applied_by: str | None = None,
    ) -> bool:
        """Move ``directive_id`` to ``status`` only if it is still ``expected_status``."""
        ...

    def find_by_payload_hash(self, payload_hash: str) -> list[DirectiveRecord]: ...


class TaskStore(Protocol):
    """Backlog persistence; ``insert`` raises ``DuplicateTaskError`` on a content-hash clash."""

    def find_by_content_hash(self, scope: str, content_hash: str) -> Task | None: ...

    def insert(self, task: Task) -> Task: ...


class RequiredDataLookup(Protocol):
    def is_satisfied(self, request_id: str) -> bool: ...


class DecisionLog(Protocol):
    def append(self, entry: DecisionEntry) -> DecisionEntry: ...


__all__ = [
    "DecisionLog",
    "DirectiveStore",
    "RequiredDataLookup",
    "TaskStore",
    "UnitOfWork",
]
