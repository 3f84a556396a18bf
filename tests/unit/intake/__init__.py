"""Shared deterministic payload builders and in-memory stores for intake tests."""

from __future__ import annotations

import copy
import itertools
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any, Final

from directive_intake.domain.models import (
    DecisionEntry,
    DirectiveRecord,
    DirectiveStatus,
    Task,
)
from directive_intake.intake.errors import DuplicateTaskError

OBJECTIVE: Final[str] = "Implement feature X for the orchestrator"
_BASE_TS: Final[datetime] = datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)


def valid_payload(**overrides: object) -> dict[str, Any]:
    """Minimal valid ``directive_v1`` payload in planner (camelCase) shape."""

    payload: dict[str, Any] = {
        "version": "directive_v1",
        "objective": OBJECTIVE,
        "contextSummary": "Backlog is empty; feature X is the next milestone.",
        "risks": [{"id": "R1", "text": "Scope creep", "severity": "med"}],
        "tasksToCreate": [{"title": "Do thing A", "steps": ["step1", "step2"]}],
        "successCriteria": ["Feature X ships behind a flag"],
        "estimatedImpact": "Unblocks the Q4 roadmap",
    }
    payload.update(copy.deepcopy(overrides))
    return payload


def task_payload(title: str, **fields: object) -> dict[str, Any]:
    return {"title": title, **fields}


class FixedClock:
    """Clock that advances one second per call."""

    def __init__(self, start: datetime = _BASE_TS) -> None:
        self._ticks = itertools.count()
        self._start = start

    def __call__(self) -> datetime:
        return self._start + timedelta(seconds=next(self._ticks))


def counting_task_ids(prefix: str = "T-GPT-1700000000000-") -> Any:
    counter = itertools.count()

    def factory() -> str:
        return f"{prefix}{next(counter):04d}"

    return factory


class InMemoryDirectiveStore:
    """Directive store with the same compare-and-set contract as ``DirectiveRepo``."""

    def __init__(self) -> None:
        self.records: dict[str, DirectiveRecord] = {}
        self.update_calls = 0

    def insert(self, record: DirectiveRecord) -> DirectiveRecord:
        if record.id in self.records:
            raise KeyError(record.id)
        self.records[record.id] = record
        return record

    def get(self, directive_id: str) -> DirectiveRecord | None:
        return self.records.get(directive_id)

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
        self.update_calls += 1
        current = self.records.get(directive_id)
        if current is None or current.status is not expected_status:
            return False
        self.records[directive_id] = replace(
            current,
            status=status,
            decided_at=decided_at or current.decided_at,
            rejection_reason=rejection_reason or current.rejection_reason,
            applied_at=applied_at or current.applied_at,
            applied_by=applied_by or current.applied_by,
        )
        return True

    def find_by_payload_hash(self, payload_hash: str) -> list[DirectiveRecord]:
        return [item for item in self.records.values() if item.payload_hash == payload_hash]


class InMemoryTaskStore:
    """Task store enforcing ``(scope, content_hash)`` uniqueness."""

    def __init__(self, *, fail_on_insert: int | None = None) -> None:
        self.tasks: dict[tuple[str, str], Task] = {}
        self.insert_calls = 0
        self._fail_on_insert = fail_on_insert

    def find_by_content_hash(self, scope: str, content_hash: str) -> Task | None:
        return self.tasks.get((scope, content_hash))

    def insert(self, task: Task) -> Task:
        self.insert_calls += 1
        if self._fail_on_insert is not None and self.insert_calls == self._fail_on_insert:
            raise OSError("injected storage failure")
        key = (task.scope, task.content_hash)
        if key in self.tasks:
            raise DuplicateTaskError(task.scope, task.content_hash)
        self.tasks[key] = task
        return task

    def for_directive(self, directive_id: str) -> list[Task]:
        return [task for task in self.tasks.values() if task.directive_id == directive_id]


class StaticRequiredData:
    def __init__(self, satisfied: set[str] | None = None) -> None:
        self.satisfied = set(satisfied or ())
        self.lookups: list[str] = []

    def is_satisfied(self, request_id: str) -> bool:
        self.lookups.append(request_id)
        return request_id in self.satisfied


class ListDecisionLog:
    def __init__(self) -> None:
        self.entries: list[DecisionEntry] = []

    def append(self, entry: DecisionEntry) -> DecisionEntry:
        self.entries.append(entry)
        return entry

    def keys(self) -> list[str]:
        return [entry.decision_key for entry in self.entries]
