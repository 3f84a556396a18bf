"""Dataclass domain models for directives, backlog tasks, and apply outcomes."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final, NoReturn

from directive_intake.constants import (
    DEFAULT_DIRECTIVE_SCHEMA_VERSION,
    DEFAULT_DIRECTIVE_SOURCE,
    DEFAULT_SCOPE,
    DEFAULT_TASK_PHASE,
    DEFAULT_TASK_PRIORITY,
    DEFAULT_TASK_TYPE,
    DIRECTIVE_TITLE_MAX_LEN,
    DIRECTIVE_VERSION,
    ESTIMATED_IMPACT_MAX_LEN,
    OBJECTIVE_MAX_LEN,
    OBJECTIVE_MIN_LEN,
    RISK_ID_MAX_LEN,
    RISK_TEXT_MAX_LEN,
    TASK_ID_MAX_LEN,
    TASK_MAX_STEPS,
    TASK_PHASE_RANGE,
    TASK_PRIORITY_RANGE,
    TASK_TITLE_MAX_LEN,
)
from directive_intake.utils.hashing import is_sha256_hex

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class DirectiveStatus(StrEnum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


class Decision(StrEnum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"

    @property
    def target_status(self) -> DirectiveStatus:
        if self is Decision.APPROVE:
            return DirectiveStatus.APPROVED
        return DirectiveStatus.REJECTED


class RiskSeverity(StrEnum):
    LOW = "low"
    MED = "med"
    HIGH = "high"


class TaskStatus(StrEnum):
    READY = "ready"
    BLOCKED = "blocked"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class RequestStatus(StrEnum):
    WAITING = "WAITING"
    PROVIDED = "PROVIDED"
    REJECTED = "REJECTED"


_TERMINAL_STATUSES: Final[frozenset[DirectiveStatus]] = frozenset(
    {DirectiveStatus.REJECTED, DirectiveStatus.APPLIED}
)

_ALLOWED_TRANSITIONS: Final[dict[DirectiveStatus, frozenset[DirectiveStatus]]] = {
    DirectiveStatus.PENDING_REVIEW: frozenset({DirectiveStatus.APPROVED, DirectiveStatus.REJECTED}),
    DirectiveStatus.APPROVED: frozenset({DirectiveStatus.APPLIED}),
    DirectiveStatus.REJECTED: frozenset(),
    DirectiveStatus.APPLIED: frozenset(),
}


def can_transition(current: DirectiveStatus, target: DirectiveStatus) -> bool:
    """Return whether ``current -> target`` is a forward lifecycle move."""

    return target in _ALLOWED_TRANSITIONS[current]


def parse_decision(value: Decision | str) -> Decision:
    """Parse ``approve``/``APPROVE``/``approved`` style inputs into a ``Decision``."""

    if isinstance(value, Decision):
        return value
    if not isinstance(value, str):
        _fail("decision", f"expected string, got {type(value).__name__}")
    normalized = value.strip().upper()
    aliases = {"APPROVED": "APPROVE", "REJECTED": "REJECT"}
    normalized = aliases.get(normalized, normalized)
    try:
        return Decision(normalized)
    except ValueError:
        allowed = ", ".join(item.value for item in Decision)
        _fail("decision", f"invalid value {value!r}; expected one of: {allowed}")


def parse_directive_status(value: DirectiveStatus | str, path: str = "status") -> DirectiveStatus:
    if isinstance(value, DirectiveStatus):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected status string, got {type(value).__name__}")
    try:
        return DirectiveStatus(value.strip().upper())
    except ValueError:
        allowed = ", ".join(item.value for item in DirectiveStatus)
        _fail(path, f"invalid directive status {value!r}; allowed: {allowed}")


@dataclass(frozen=True, slots=True)
class Risk:
    id: str
    text: str
    severity: RiskSeverity

    def __post_init__(self) -> None:
        _check_text(self.id, "Risk.id", max_len=RISK_ID_MAX_LEN)
        _check_text(self.text, "Risk.text", max_len=RISK_TEXT_MAX_LEN)
        if not isinstance(self.severity, RiskSeverity):
            _fail("Risk.severity", f"expected RiskSeverity, got {type(self.severity).__name__}")

    def to_dict(self) -> dict[str, JSONValue]:
        return {"id": self.id, "text": self.text, "severity": self.severity.value}


@dataclass(frozen=True, slots=True)
class TaskProposal:
    """Normalized task proposal; ``task_id`` is always populated after validation."""

    task_id: str
    title: str
    task_type: str = DEFAULT_TASK_TYPE
    steps: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    priority: int = DEFAULT_TASK_PRIORITY
    phase: int | None = None
    params: dict[str, JSONValue] = field(default_factory=dict)
    acceptance_criteria: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        _check_text(self.task_id, "TaskProposal.task_id", max_len=TASK_ID_MAX_LEN)
        _check_text(self.title, "TaskProposal.title", max_len=TASK_TITLE_MAX_LEN)
        if len(self.steps) > TASK_MAX_STEPS:
            _fail("TaskProposal.steps", f"must contain at most {TASK_MAX_STEPS} item(s)")
        _check_int(self.priority, "TaskProposal.priority", TASK_PRIORITY_RANGE)
        if self.phase is not None:
            _check_int(self.phase, "TaskProposal.phase", TASK_PHASE_RANGE)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "title": self.title,
            "steps": list(self.steps),
            "depends_on": list(self.depends_on),
            "priority": self.priority,
            "params": dict(self.params),
            "acceptance_criteria": list(self.acceptance_criteria),
            "description": self.description,
        }
        if self.phase is not None:
            payload["phase"] = self.phase
        return payload


@dataclass(frozen=True, slots=True)
class RequiredRequest:
    request_id: str
    reason: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"request_id": self.request_id, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class Directive:
    """Validated, default-filled ``directive_v1`` payload."""

    objective: str
    risks: tuple[Risk, ...]
    tasks_to_create: tuple[TaskProposal, ...]
    success_criteria: tuple[str, ...]
    estimated_impact: str
    version: str = DIRECTIVE_VERSION
    schema_version: str = DEFAULT_DIRECTIVE_SCHEMA_VERSION
    context_summary: str = ""
    required_requests: tuple[RequiredRequest, ...] = ()
    apply_notes: str = ""

    def __post_init__(self) -> None:
        if self.version != DIRECTIVE_VERSION:
            _fail("Directive.version", f"expected literal {DIRECTIVE_VERSION!r}")
        _check_text(
            self.objective,
            "Directive.objective",
            min_len=OBJECTIVE_MIN_LEN,
            max_len=OBJECTIVE_MAX_LEN,
        )
        _check_text(
            self.estimated_impact, "Directive.estimated_impact", max_len=ESTIMATED_IMPACT_MAX_LEN
        )
        _check_non_empty(self.risks, "Directive.risks")
        _check_non_empty(self.tasks_to_create, "Directive.tasks_to_create")
        _check_non_empty(self.success_criteria, "Directive.success_criteria")

    @property
    def title(self) -> str:
        return self.objective[:DIRECTIVE_TITLE_MAX_LEN]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "schema_version": self.schema_version,
            "objective": self.objective,
            "context_summary": self.context_summary,
            "risks": [risk.to_dict() for risk in self.risks],
            "tasks_to_create": [task.to_dict() for task in self.tasks_to_create],
            "required_requests": [request.to_dict() for request in self.required_requests],
            "success_criteria": list(self.success_criteria),
            "estimated_impact": self.estimated_impact,
            "apply_notes": self.apply_notes,
        }

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())


@dataclass(frozen=True, slots=True)
class DirectiveRecord:
    """A persisted directive: validated payload plus storage-only metadata."""

    id: str
    directive: Directive
    payload_hash: str
    status: DirectiveStatus = DirectiveStatus.PENDING_REVIEW
    scope: str = DEFAULT_SCOPE
    source: str = DEFAULT_DIRECTIVE_SOURCE
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None
    applied_at: datetime | None = None
    applied_by: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.directive, Directive):
            _fail("DirectiveRecord.directive", "expected Directive")
        if not is_sha256_hex(self.payload_hash):
            _fail("DirectiveRecord.payload_hash", "must be a 64-character hex digest")
        _check_text(self.scope, "DirectiveRecord.scope")

    @property
    def title(self) -> str:
        return self.directive.title

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "scope": self.scope,
            "status": self.status.value,
            "title": self.title,
            "source": self.source,
            "payload_hash": self.payload_hash,
            "created_at": iso8601z(self.created_at),
            "updated_at": _optional_iso8601z(self.updated_at),
            "decided_at": _optional_iso8601z(self.decided_at),
            "rejection_reason": self.rejection_reason,
            "applied_at": _optional_iso8601z(self.applied_at),
            "applied_by": self.applied_by,
            "directive": self.directive.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class Task:
    """Backlog entry materialized from a ``TaskProposal`` by apply."""

    id: str
    scope: str
    content_hash: str
    directive_id: str
    title: str
    status: TaskStatus = TaskStatus.READY
    phase: int = DEFAULT_TASK_PHASE
    priority: int = DEFAULT_TASK_PRIORITY
    depends_on: tuple[str, ...] = ()
    proposal_task_id: str | None = None
    task_type: str = DEFAULT_TASK_TYPE
    steps: tuple[str, ...] = ()
    params: dict[str, JSONValue] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not is_sha256_hex(self.content_hash):
            _fail("Task.content_hash", "must be a 64-character hex digest")
        _check_text(self.scope, "Task.scope")
        _check_text(self.title, "Task.title", max_len=TASK_TITLE_MAX_LEN)
        _check_int(self.priority, "Task.priority", TASK_PRIORITY_RANGE)
        _check_int(self.phase, "Task.phase", TASK_PHASE_RANGE)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "scope": self.scope,
            "content_hash": self.content_hash,
            "directive_id": self.directive_id,
            "title": self.title,
            "status": self.status.value,
            "phase": self.phase,
            "priority": self.priority,
            "depends_on": list(self.depends_on),
            "proposal_task_id": self.proposal_task_id,
            "task_type": self.task_type,
            "steps": list(self.steps),
            "params": dict(self.params),
            "created_at": iso8601z(self.created_at),
        }

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Task:
        phase = data.get("phase", DEFAULT_TASK_PHASE)
        priority = data.get("priority", DEFAULT_TASK_PRIORITY)
        params = data.get("params", {})
        proposal_task_id = data.get("proposal_task_id")
        if not isinstance(phase, int) or not isinstance(priority, int):
            _fail("Task", "phase and priority must be integers")
        if not isinstance(params, Mapping):
            _fail("Task.params", "expected object")
        return cls(
            id=_as_text(data.get("id"), "Task.id"),
            scope=_as_text(data.get("scope"), "Task.scope"),
            content_hash=_as_text(data.get("content_hash"), "Task.content_hash"),
            directive_id=_as_text(data.get("directive_id"), "Task.directive_id"),
            title=_as_text(data.get("title"), "Task.title"),
            status=TaskStatus(_as_text(data.get("status", TaskStatus.READY.value), "Task.status")),
            phase=phase,
            priority=priority,
            depends_on=_as_text_tuple(data.get("depends_on", ()), "Task.depends_on"),
            proposal_task_id=(
                None
                if proposal_task_id is None
                else _as_text(proposal_task_id, "Task.proposal_task_id")
            ),
            task_type=_as_text(data.get("task_type", DEFAULT_TASK_TYPE), "Task.task_type"),
            steps=_as_text_tuple(data.get("steps", ()), "Task.steps"),
            params=dict(params),
            created_at=as_utc_datetime(data.get("created_at"), "Task.created_at"),
        )

    @classmethod
    def from_json(cls, raw: str) -> Task:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail("Task", f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail("Task", "JSON root must be an object")
        return cls.from_dict(parsed)


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Outcome of one ``apply`` call.

    ``blocked_by_requests`` results are retryable: the directive stays APPROVED and
    ``missing_requests`` lists the unmet required-data ids.
    """

    directive_id: str
    tasks_created: int
    tasks_skipped: int
    idempotent: bool
    blocked_by_requests: bool = False
    missing_requests: tuple[str, ...] = ()
    created_task_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "directive_id": self.directive_id,
            "tasks_created": self.tasks_created,
            "tasks_skipped": self.tasks_skipped,
            "idempotent": self.idempotent,
            "blocked_by_requests": self.blocked_by_requests,
            "missing_requests": list(self.missing_requests),
            "created_task_ids": list(self.created_task_ids),
        }


@dataclass(frozen=True, slots=True)
class DecisionEntry:
    """Append-only audit record of one lifecycle decision."""

    id: str
    decision_key: str
    value: dict[str, JSONValue]
    directive_id: str | None = None
    source: str = "directive_lifecycle"
    context: dict[str, JSONValue] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "decision_key": self.decision_key,
            "value": dict(self.value),
            "directive_id": self.directive_id,
            "source": self.source,
            "context": dict(self.context),
            "created_at": iso8601z(self.created_at),
        }


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        _fail(path, "expected non-empty string")
    return value


def _check_text(
    value: object, path: str, *, min_len: int = 1, max_len: int | None = None
) -> None:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    length = len(value.strip())
    if length < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if max_len is not None and length > max_len:
        _fail(path, f"must be <= {max_len} characters")


def _check_int(value: object, path: str, bounds: tuple[int, int]) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    low, high = bounds
    if not low <= value <= high:
        _fail(path, f"must be in [{low}, {high}]")


def _check_non_empty(items: tuple[object, ...], path: str) -> None:
    if not items:
        _fail(path, "must contain at least 1 item(s)")


def _as_text_tuple(value: object, path: str) -> tuple[str, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        _fail(path, "expected list of strings")
    out: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{path}[{index}]", "expected string")
        out.append(item)
    return tuple(out)


def as_utc_datetime(value: object, path: str) -> datetime:
    """Parse a timezone-aware datetime or ISO-8601 string into UTC."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime ({exc})")
    else:
        _fail(path, "expected datetime or ISO-8601 string")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _optional_iso8601z(value: datetime | None) -> str | None:
    return None if value is None else iso8601z(value)


def iso8601z(value: datetime) -> str:
    """Render ``value`` as a UTC ISO-8601 string with a ``Z`` suffix."""

    return as_utc_datetime(value, "datetime").isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


__all__ = [
    "ApplyResult",
    "Decision",
    "DecisionEntry",
    "Directive",
    "DirectiveRecord",
    "DirectiveStatus",
    "JSONScalar",
    "JSONValue",
    "RequestStatus",
    "RequiredRequest",
    "Risk",
    "RiskSeverity",
    "Task",
    "TaskProposal",
    "TaskStatus",
    "as_utc_datetime",
    "can_transition",
    "iso8601z",
    "parse_decision",
    "parse_directive_status",
]
