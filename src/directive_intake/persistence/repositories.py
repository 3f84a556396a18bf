"""
nexus-directive-intake — repositories

File: src/directive_intake/persistence/repositories.py
Last updated: 2026-10-18

Purpose
- Repository/DAO classes for reading/writing intake entities to the state DB.

What should be included in this file
- Repositories: DirectiveRepo, TaskRepo, RequiredDataRepo, DecisionLogRepo.
- Query patterns needed by the lifecycle and the CLI (status listing, hash lookups).

Functional requirements
- Directive status changes are compare-and-set: a single conditional UPDATE.
- Task inserts never overwrite; a ``(scope, content_hash)`` clash surfaces as
  ``DuplicateTaskError``.
- Decision log writes are append-only.

Non-functional requirements
- Must be efficient; avoid loading the whole backlog into memory.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final, cast

from directive_intake.domain import ids
from directive_intake.domain.models import (
    DecisionEntry,
    DirectiveRecord,
    DirectiveStatus,
    JSONValue,
    RequestStatus,
    Task,
    TaskStatus,
    as_utc_datetime,
    iso8601z,
    parse_directive_status,
)
from directive_intake.intake.errors import DuplicateTaskError
from directive_intake.intake.schema import assert_valid_directive
from directive_intake.persistence.state_db import RowValue, SQLParams, StateDB, canonical_json
from directive_intake.utils.hashing import is_sha256_hex

_MAX_PAGE_SIZE: Final[int] = 1_000

_DIRECTIVE_COLUMNS: Final[str] = """
    id, scope, status, payload_hash, source, payload_json, rejection_reason,
    decided_at, applied_at, applied_by, created_at, updated_at
"""


@dataclass(frozen=True, slots=True)
class RequiredDataRecord:
    """Satisfaction state of one external required-data item."""

    id: str
    status: RequestStatus
    reason: str
    updated_at: datetime
    provided_at: datetime | None = None

    @property
    def is_satisfied(self) -> bool:
        return self.status is RequestStatus.PROVIDED

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "status": self.status.value,
            "reason": self.reason,
            "provided_at": None if self.provided_at is None else iso8601z(self.provided_at),
            "updated_at": iso8601z(self.updated_at),
        }


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class DirectiveRepo(_BaseRepo):
    """Repository for directive records and their lifecycle status."""

    def insert(self, record: DirectiveRecord) -> DirectiveRecord:
        ids.validate_directive_id(record.id)
        if not is_sha256_hex(record.payload_hash):
            raise ValueError("DirectiveRecord.payload_hash must be a 64-character hex digest")
        created_at = iso8601z(record.created_at)
        updated_at = created_at if record.updated_at is None else iso8601z(record.updated_at)
        self._db.execute(
            """
            INSERT INTO directives (
                id,
                scope,
                status,
                payload_hash,
                title,
                source,
                payload_json,
                rejection_reason,
                decided_at,
                applied_at,
                applied_by,
                created_at,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.scope,
                record.status.value,
                record.payload_hash,
                record.title,
                record.source,
                record.directive.to_json(),
                record.rejection_reason,
                _optional_iso(record.decided_at),
                _optional_iso(record.applied_at),
                record.applied_by,
                created_at,
                updated_at,
            ),
        )
        return record

    def get(self, directive_id: str) -> DirectiveRecord | None:
        row = self._db.query_one(
            f"SELECT {_DIRECTIVE_COLUMNS} FROM directives WHERE id = ?", (directive_id,)
        )
        if row is None:
            return None
        return _directive_from_row(row)

    def list(
        self,
        *,
        status: DirectiveStatus | str | None = None,
        scope: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DirectiveRecord]:
        self._validate_page(limit, offset)
        sql = f"SELECT {_DIRECTIVE_COLUMNS} FROM directives"
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(parse_directive_status(status).value)
        if scope is not None:
            clauses.append("scope = ?")
            params.append(scope)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_directive_from_row(row) for row in rows]

    def find_by_payload_hash(self, payload_hash: str) -> list[DirectiveRecord]:
        rows = self._db.query_all(
            f"""
            SELECT {_DIRECTIVE_COLUMNS}
            FROM directives
            WHERE payload_hash = ?
            ORDER BY created_at ASC, id ASC
            """,
            (payload_hash,),
        )
        return [_directive_from_row(row) for row in rows]

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
        rowcount = self._db.execute(
            """
            UPDATE directives
            SET status = ?,
                updated_at = ?,
                decided_at = COALESCE(?, decided_at),
                rejection_reason = COALESCE(?, rejection_reason),
                applied_at = COALESCE(?, applied_at),
                applied_by = COALESCE(?, applied_by)
            WHERE id = ? AND status = ?
            """,
            (
                parse_directive_status(status).value,
                iso8601z(_utc_now()),
                _optional_iso(decided_at),
                rejection_reason,
                _optional_iso(applied_at),
                applied_by,
                directive_id,
                parse_directive_status(expected_status, "expected_status").value,
            ),
        )
        return rowcount == 1


class TaskRepo(_BaseRepo):
    """Backlog repository keyed by ``(scope, content_hash)``."""

    def insert(self, task: Task) -> Task:
        ids.validate_task_id(task.id)
        rowcount = self._db.execute(
            """
            INSERT INTO tasks (
                id,
                scope,
                content_hash,
                directive_id,
                proposal_task_id,
                status,
                phase,
                priority,
                title,
                payload_json,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(scope, content_hash) DO NOTHING
            """,
            (
                task.id,
                task.scope,
                task.content_hash,
                task.directive_id,
                task.proposal_task_id,
                task.status.value,
                task.phase,
                task.priority,
                task.title,
                task.to_json(),
                iso8601z(task.created_at),
            ),
        )
        if rowcount == 0:
            raise DuplicateTaskError(task.scope, task.content_hash)
        return task

    def get(self, task_id: str) -> Task | None:
        row = self._db.query_one("SELECT payload_json FROM tasks WHERE id = ?", (task_id,))
        if row is None:
            return None
        return _task_from_row(row)

    def find_by_content_hash(self, scope: str, content_hash: str) -> Task | None:
        row = self._db.query_one(
            "SELECT payload_json FROM tasks WHERE scope = ? AND content_hash = ?",
            (scope, content_hash),
        )
        if row is None:
            return None
        return _task_from_row(row)

    def list_for_directive(self, directive_id: str) -> list[Task]:
        rows = self._db.query_all(
            """
            SELECT payload_json
            FROM tasks
            WHERE directive_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (directive_id,),
        )
        return [_task_from_row(row) for row in rows]

    def list(
        self,
        *,
        scope: str | None = None,
        status: TaskStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Task]:
        self._validate_page(limit, offset)
        sql = "SELECT payload_json FROM tasks"
        clauses: list[str] = []
        params: list[object] = []
        if scope is not None:
            clauses.append("scope = ?")
            params.append(scope)
        if status is not None:
            clauses.append("status = ?")
            params.append(TaskStatus(status).value)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY phase ASC, priority ASC, created_at ASC, id ASC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_task_from_row(row) for row in rows]

    def count(self, *, scope: str | None = None) -> int:
        if scope is None:
            row = self._db.query_one("SELECT COUNT(*) AS n FROM tasks")
        else:
            row = self._db.query_one("SELECT COUNT(*) AS n FROM tasks WHERE scope = ?", (scope,))
        value = None if row is None else row.get("n")
        return value if isinstance(value, int) else 0


class RequiredDataRepo(_BaseRepo):
    """Tracks which external required-data items have been provided."""

    def get(self, request_id: str) -> RequiredDataRecord | None:
        row = self._db.query_one(
            """
            SELECT id, status, reason, provided_at, updated_at
            FROM required_requests
            WHERE id = ?
            """,
            (request_id,),
        )
        if row is None:
            return None
        return _required_data_from_row(row)

    def list(self, *, status: RequestStatus | str | None = None) -> list[RequiredDataRecord]:
        sql = "SELECT id, status, reason, provided_at, updated_at FROM required_requests"
        params: tuple[str, ...] = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (RequestStatus(status).value,)
        sql += " ORDER BY id ASC"
        return [_required_data_from_row(row) for row in self._db.query_all(sql, params)]

    def is_satisfied(self, request_id: str) -> bool:
        row = self._db.query_one(
            "SELECT status FROM required_requests WHERE id = ?", (request_id,)
        )
        return row is not None and row.get("status") == RequestStatus.PROVIDED.value

    def upsert(
        self,
        request_id: str,
        *,
        reason: str = "",
        status: RequestStatus = RequestStatus.WAITING,
    ) -> RequiredDataRecord:
        """Register ``request_id`` or update its reason/status in place."""

        if not request_id.strip():
            raise ValueError("request_id must not be empty")
        now = iso8601z(_utc_now())
        provided_at = now if status is RequestStatus.PROVIDED else None
        self._db.execute(
            """
            INSERT INTO required_requests (id, status, reason, provided_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                reason = CASE WHEN excluded.reason = '' THEN reason ELSE excluded.reason END,
                provided_at = COALESCE(excluded.provided_at, provided_at),
                updated_at = excluded.updated_at
            """,
            (request_id, status.value, reason, provided_at, now),
        )
        record = self.get(request_id)
        if record is None:
            raise LookupError(f"required request vanished after upsert: {request_id}")
        return record

    def mark_provided(self, request_id: str) -> RequiredDataRecord:
        return self.upsert(request_id, status=RequestStatus.PROVIDED)

    def mark_rejected(self, request_id: str) -> RequiredDataRecord:
        return self.upsert(request_id, status=RequestStatus.REJECTED)


class DecisionLogRepo(_BaseRepo):
    """Append-only repository for lifecycle decisions."""

    def append(self, entry: DecisionEntry) -> DecisionEntry:
        ids.validate_prefixed_id(entry.id, ids.DECISION_ID_PREFIX)
        self._db.execute(
            """
            INSERT INTO decisions_log (
                id,
                source,
                decision_key,
                decision_value_json,
                context_json,
                directive_id,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.source,
                entry.decision_key,
                canonical_json(entry.value),
                canonical_json(entry.context),
                entry.directive_id,
                iso8601z(entry.created_at),
            ),
        )
        return entry

    def list_for_directive(self, directive_id: str) -> list[DecisionEntry]:
        rows = self._db.query_all(
            """
            SELECT id, source, decision_key, decision_value_json, context_json,
                   directive_id, created_at
            FROM decisions_log
            WHERE directive_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (directive_id,),
        )
        return [_decision_from_row(row) for row in rows]


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------


def _directive_from_row(row: Mapping[str, RowValue]) -> DirectiveRecord:
    payload = _load_json_object(
        _row_text(row, "payload_json", "directives.payload_json"), "directives.payload_json"
    )
    return DirectiveRecord(
        id=_row_text(row, "id", "directives.id"),
        directive=assert_valid_directive(payload),
        payload_hash=_row_text(row, "payload_hash", "directives.payload_hash"),
        status=parse_directive_status(_row_text(row, "status", "directives.status")),
        scope=_row_text(row, "scope", "directives.scope"),
        source=_row_text(row, "source", "directives.source"),
        created_at=as_utc_datetime(row.get("created_at"), "directives.created_at"),
        updated_at=_optional_datetime(row, "updated_at", "directives.updated_at"),
        decided_at=_optional_datetime(row, "decided_at", "directives.decided_at"),
        rejection_reason=_optional_text(row, "rejection_reason", "directives.rejection_reason"),
        applied_at=_optional_datetime(row, "applied_at", "directives.applied_at"),
        applied_by=_optional_text(row, "applied_by", "directives.applied_by"),
    )


def _required_data_from_row(row: Mapping[str, RowValue]) -> RequiredDataRecord:
    return RequiredDataRecord(
        id=_row_text(row, "id", "required_requests.id"),
        status=RequestStatus(_row_text(row, "status", "required_requests.status")),
        reason=_row_text(row, "reason", "required_requests.reason"),
        provided_at=_optional_datetime(row, "provided_at", "required_requests.provided_at"),
        updated_at=as_utc_datetime(row.get("updated_at"), "required_requests.updated_at"),
    )


def _task_from_row(row: Mapping[str, RowValue]) -> Task:
    return Task.from_json(_row_text(row, "payload_json", "tasks.payload_json"))


def _decision_from_row(row: Mapping[str, RowValue]) -> DecisionEntry:
    return DecisionEntry(
        id=_row_text(row, "id", "decisions_log.id"),
        source=_row_text(row, "source", "decisions_log.source"),
        decision_key=_row_text(row, "decision_key", "decisions_log.decision_key"),
        value=cast(
            "dict[str, JSONValue]",
            _load_json_object(
                _row_text(row, "decision_value_json", "decisions_log.decision_value_json"),
                "decisions_log.decision_value_json",
            ),
        ),
        context=cast(
            "dict[str, JSONValue]",
            _load_json_object(
                _row_text(row, "context_json", "decisions_log.context_json"),
                "decisions_log.context_json",
            ),
        ),
        directive_id=_optional_text(row, "directive_id", "decisions_log.directive_id"),
        created_at=as_utc_datetime(row.get("created_at"), "decisions_log.created_at"),
    )


def _row_text(row: Mapping[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _optional_text(row: Mapping[str, RowValue], key: str, path: str) -> str | None:
    if row.get(key) is None:
        return None
    return _row_text(row, key, path)


def _optional_datetime(row: Mapping[str, RowValue], key: str, path: str) -> datetime | None:
    value = row.get(key)
    if value is None:
        return None
    return as_utc_datetime(value, path)


def _load_json_object(payload: str, path: str) -> dict[str, object]:
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: JSON root must be object")
    return loaded


def _optional_iso(value: datetime | None) -> str | None:
    return None if value is None else iso8601z(value)


def _utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "DecisionLogRepo",
    "DirectiveRepo",
    "RequiredDataRecord",
    "RequiredDataRepo",
    "TaskRepo",
]
