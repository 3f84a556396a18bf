"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Final

from directive_intake.domain import ids
from directive_intake.domain.models import (
    DecisionEntry,
    DirectiveRecord,
    DirectiveStatus,
    Task,
)
from directive_intake.intake.fingerprint import payload_hash
from directive_intake.intake.schema import assert_valid_directive
from directive_intake.persistence.state_db import StateDB

if TYPE_CHECKING:
    from pathlib import Path

_BASE_TS: Final[datetime] = datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)


def fixed_now(seed: int) -> datetime:
    return _BASE_TS + timedelta(seconds=seed)


def _randbytes(seed: int):
    byte_value = (seed % 251) + 1

    def _provider(size: int) -> bytes:
        return bytes([byte_value]) * size

    return _provider


def sha256(seed: str) -> str:
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def make_db(tmp_path: Path) -> StateDB:
    db = StateDB(tmp_path / "state" / "directives.sqlite")
    db.migrate()
    return db


def make_directive_record(
    seed: int,
    *,
    status: DirectiveStatus = DirectiveStatus.PENDING_REVIEW,
    scope: str = "default",
    objective: str | None = None,
) -> DirectiveRecord:
    raw: dict[str, Any] = {
        "version": "directive_v1",
        "objective": objective or f"Ship persistence feature number {seed}",
        "risks": [{"id": "R1", "text": "Migration drift", "severity": "low"}],
        "tasksToCreate": [
            {"taskId": f"T-{seed}-a", "title": f"First task {seed}", "steps": ["plan"]},
            {"taskId": f"T-{seed}-b", "title": f"Second task {seed}", "priority": 1},
        ],
        "successCriteria": ["rows survive a reopen"],
        "estimatedImpact": "Durable directive storage",
    }
    directive = assert_valid_directive(raw)
    return DirectiveRecord(
        id=ids.generate_directive_id(
            timestamp_ms=1_790_000_000_000 + seed, randbytes=_randbytes(seed)
        ),
        directive=directive,
        payload_hash=payload_hash(directive),
        status=status,
        scope=scope,
        created_at=fixed_now(seed),
        updated_at=fixed_now(seed),
    )


def make_task(
    seed: int,
    directive_id: str,
    *,
    scope: str = "default",
    content_hash: str | None = None,
    phase: int = 0,
    priority: int = 3,
) -> Task:
    return Task(
        id=ids.generate_task_id(
            timestamp_ms=1_790_000_000_000 + seed, randbytes=_randbytes(seed)
        ),
        scope=scope,
        content_hash=content_hash or sha256(f"task-{seed}"),
        directive_id=directive_id,
        title=f"Backlog task {seed}",
        phase=phase,
        priority=priority,
        depends_on=("T-0",),
        proposal_task_id=f"T-{seed}",
        task_type="build",
        steps=("compile", "test"),
        params={"target": f"pkg-{seed}", "retries": 2},
        created_at=fixed_now(seed),
    )


def make_decision(seed: int, directive_id: str, key: str = "directive_approve") -> DecisionEntry:
    return DecisionEntry(
        id=ids.generate_decision_id(
            timestamp_ms=1_790_000_000_000 + seed, randbytes=_randbytes(seed)
        ),
        decision_key=key,
        value={"status": "APPROVED"},
        directive_id=directive_id,
        source="directive_lifecycle",
        context={"payload_hash": sha256(str(seed))},
        created_at=fixed_now(seed),
    )


__all__ = [
    "fixed_now",
    "make_db",
    "make_decision",
    "make_directive_record",
    "make_task",
    "sha256",
]
