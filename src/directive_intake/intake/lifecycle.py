"""
nexus-directive-intake — directive lifecycle

File: src/directive_intake/intake/lifecycle.py
Last updated: 2026-10-18

Purpose
- Govern a directive from creation through human review to application, and
  materialize its task proposals into the backlog exactly once.

What should be included in this file
- ``create``: validate, fingerprint, persist as PENDING_REVIEW.
- ``decide``: APPROVE/REJECT from PENDING_REVIEW only.
- ``apply``: idempotent, dedup-aware task materialization.

Functional requirements
- Status only moves forward: PENDING_REVIEW -> APPROVED|REJECTED, APPROVED -> APPLIED.
- Applying an APPLIED directive is a no-op that reports ``idempotent=True``.
- Unmet required requests block apply without failing it; the directive stays
  APPROVED so apply can be retried.
- Task content already in the backlog is skipped, never duplicated.

Non-functional requirements
- Status transitions are compare-and-set so concurrent callers cannot both win.
- Task inserts and the APPLIED transition run inside one unit of work.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from directive_intake.constants import (
    DEFAULT_APPLIED_BY,
    DEFAULT_DIRECTIVE_SOURCE,
    DEFAULT_SCOPE,
    DEFAULT_TASK_PHASE,
)
from directive_intake.domain import ids
from directive_intake.domain.models import (
    ApplyResult,
    Decision,
    DecisionEntry,
    Directive,
    DirectiveRecord,
    DirectiveStatus,
    JSONValue,
    Task,
    TaskStatus,
    parse_decision,
)
from directive_intake.intake.errors import (
    DirectiveNotFoundError,
    DuplicateTaskError,
    InvalidTransitionError,
)
from directive_intake.intake.fingerprint import payload_hash, task_hash
from directive_intake.intake.schema import TaskIdFactory, assert_valid_directive
from directive_intake.persistence.protocols import (
    DecisionLog,
    DirectiveStore,
    RequiredDataLookup,
    TaskStore,
    UnitOfWork,
)

Clock = Callable[[], datetime]

_DECISION_SOURCE = "directive_lifecycle"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DirectiveLifecycle:
    """State machine over a directive store, a task store, and a required-data lookup."""

    def __init__(
        self,
        directives: DirectiveStore,
        tasks: TaskStore,
        required_data: RequiredDataLookup,
        *,
        decision_log: DecisionLog | None = None,
        unit_of_work: UnitOfWork | None = None,
        default_scope: str = DEFAULT_SCOPE,
        applied_by: str = DEFAULT_APPLIED_BY,
        task_id_factory: TaskIdFactory | None = None,
        logger: Any | None = None,
        clock: Clock | None = None,
    ) -> None:
        if not default_scope.strip():
            raise ValueError("default_scope must not be empty")
        self._directives = directives
        self._tasks = tasks
        self._required_data = required_data
        self._decision_log = decision_log
        self._unit_of_work: UnitOfWork = (
            contextlib.nullcontext if unit_of_work is None else unit_of_work
        )
        self._default_scope = default_scope
        self._applied_by = applied_by
        self._task_id_factory = task_id_factory
        self._log = structlog.get_logger(__name__) if logger is None else logger
        self._clock: Clock = _utc_now if clock is None else clock

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        raw: Mapping[str, object] | object,
        *,
        scope: str | None = None,
        source: str = DEFAULT_DIRECTIVE_SOURCE,
    ) -> DirectiveRecord:
        """Validate ``raw`` and persist it as a PENDING_REVIEW directive.

        Raises ``DirectiveValidationError`` without touching storage when the
        payload is invalid.
        """

        directive = assert_valid_directive(raw, task_id_factory=self._task_id_factory)
        return self._store(directive, scope=scope, source=source)

    def create_from_directive(
        self,
        directive: Directive,
        *,
        scope: str | None = None,
        source: str = DEFAULT_DIRECTIVE_SOURCE,
    ) -> DirectiveRecord:
        """Persist an already-built ``Directive`` after re-checking it against the schema.

        Stored payloads are re-validated on every read, so anything that would
        fail there is rejected here with ``DirectiveValidationError``.
        """

        checked = assert_valid_directive(
            directive.to_dict(), task_id_factory=self._task_id_factory
        )
        return self._store(checked, scope=scope, source=source)

    def _store(
        self,
        directive: Directive,
        *,
        scope: str | None,
        source: str,
    ) -> DirectiveRecord:
        digest = payload_hash(directive)
        now = self._clock()
        record = DirectiveRecord(
            id=ids.generate_directive_id(),
            directive=directive,
            payload_hash=digest,
            status=DirectiveStatus.PENDING_REVIEW,
            scope=self._default_scope if scope is None else scope,
            source=source,
            created_at=now,
            updated_at=now,
        )

        duplicates = [item.id for item in self._directives.find_by_payload_hash(digest)]
        if duplicates:
            self._log.warning(
                "directive_duplicate_payload",
                payload_hash=digest,
                existing_directive_ids=duplicates,
            )

        stored = self._directives.insert(record)
        self._log.info(
            "directive_created",
            directive_id=stored.id,
            payload_hash=digest,
            scope=stored.scope,
            source=stored.source,
            task_count=len(directive.tasks_to_create),
        )
        return stored

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    def decide(
        self,
        directive_id: str,
        decision: Decision | str,
        reason: str | None = None,
    ) -> DirectiveRecord:
        """Approve or reject a PENDING_REVIEW directive and return the updated record."""

        parsed = parse_decision(decision)
        target = parsed.target_status
        rejection_reason = None
        if parsed is Decision.REJECT and reason is not None and reason.strip():
            rejection_reason = reason.strip()

        record = self._require(directive_id)
        if record.status is not DirectiveStatus.PENDING_REVIEW:
            raise InvalidTransitionError(directive_id, record.status.value, target.value)

        decided_at = self._clock()
        updated = self._directives.update_status(
            directive_id,
            target,
            expected_status=DirectiveStatus.PENDING_REVIEW,
            decided_at=decided_at,
            rejection_reason=rejection_reason,
        )
        if not updated:
            current = self._require(directive_id)
            raise InvalidTransitionError(directive_id, current.status.value, target.value)

        value: dict[str, JSONValue] = {"status": target.value}
        if rejection_reason is not None:
            value["reason"] = rejection_reason
        self._record_decision(
            f"directive_{parsed.value.lower()}",
            directive_id,
            value,
            {"payload_hash": record.payload_hash},
        )
        self._log.info(
            "directive_decided",
            directive_id=directive_id,
            decision=parsed.value,
            status=target.value,
            reason=rejection_reason,
        )
        return self._require(directive_id)

    def approve(self, directive_id: str) -> DirectiveRecord:
        return self.decide(directive_id, Decision.APPROVE)

    def reject(self, directive_id: str, reason: str | None = None) -> DirectiveRecord:
        return self.decide(directive_id, Decision.REJECT, reason)

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    def apply(self, directive_id: str) -> ApplyResult:
        """Materialize an APPROVED directive's task proposals into the backlog."""

        record = self._require(directive_id)
        proposals = record.directive.tasks_to_create

        if record.status is DirectiveStatus.APPLIED:
            self._log.info("directive_apply_idempotent", directive_id=directive_id)
            return self._idempotent(directive_id, len(proposals))

        if record.status is not DirectiveStatus.APPROVED:
            raise InvalidTransitionError(
                directive_id, record.status.value, DirectiveStatus.APPLIED.value
            )

        missing = self._missing_requests(record.directive)
        if missing:
            self._log.info(
                "directive_apply_blocked",
                directive_id=directive_id,
                missing_requests=list(missing),
            )
            return ApplyResult(
                directive_id=directive_id,
                tasks_created=0,
                tasks_skipped=0,
                idempotent=False,
                blocked_by_requests=True,
                missing_requests=missing,
            )

        with self._unit_of_work():
            current = self._require(directive_id)
            if current.status is DirectiveStatus.APPLIED:
                self._log.info("directive_apply_lost_race", directive_id=directive_id)
                return self._idempotent(directive_id, len(proposals))
            if current.status is not DirectiveStatus.APPROVED:
                raise InvalidTransitionError(
                    directive_id, current.status.value, DirectiveStatus.APPLIED.value
                )

            created_ids: list[str] = []
            skipped = 0
            for proposal in proposals:
                content_hash = task_hash(proposal, record.directive.objective)
                existing = self._tasks.find_by_content_hash(record.scope, content_hash)
                if existing is not None:
                    skipped += 1
                    self._log.info(
                        "directive_task_skipped",
                        directive_id=directive_id,
                        content_hash=content_hash,
                        existing_task_id=existing.id,
                    )
                    continue

                task = Task(
                    id=ids.generate_task_id(),
                    scope=record.scope,
                    content_hash=content_hash,
                    directive_id=directive_id,
                    title=proposal.title,
                    status=TaskStatus.READY,
                    phase=DEFAULT_TASK_PHASE if proposal.phase is None else proposal.phase,
                    priority=proposal.priority,
                    depends_on=proposal.depends_on,
                    proposal_task_id=proposal.task_id,
                    task_type=proposal.task_type,
                    steps=proposal.steps,
                    params=dict(proposal.params),
                    created_at=self._clock(),
                )
                try:
                    self._tasks.insert(task)
                except DuplicateTaskError:
                    skipped += 1
                    self._log.info(
                        "directive_task_skipped",
                        directive_id=directive_id,
                        content_hash=content_hash,
                        existing_task_id=None,
                    )
                    continue
                created_ids.append(task.id)

            applied_at = self._clock()
            moved = self._directives.update_status(
                directive_id,
                DirectiveStatus.APPLIED,
                expected_status=DirectiveStatus.APPROVED,
                applied_at=applied_at,
                applied_by=self._applied_by,
            )
            if not moved:
                latest = self._require(directive_id)
                if latest.status is DirectiveStatus.APPLIED:
                    self._log.info("directive_apply_lost_race", directive_id=directive_id)
                    return self._idempotent(directive_id, len(proposals))
                raise InvalidTransitionError(
                    directive_id, latest.status.value, DirectiveStatus.APPLIED.value
                )

            self._record_decision(
                "directive_apply",
                directive_id,
                {
                    "status": DirectiveStatus.APPLIED.value,
                    "tasks_created": len(created_ids),
                    "tasks_skipped": skipped,
                    "created_task_ids": list(created_ids),
                },
                {"payload_hash": record.payload_hash, "applied_by": self._applied_by},
            )

        self._log.info(
            "directive_applied",
            directive_id=directive_id,
            tasks_created=len(created_ids),
            tasks_skipped=skipped,
            applied_by=self._applied_by,
        )
        return ApplyResult(
            directive_id=directive_id,
            tasks_created=len(created_ids),
            tasks_skipped=skipped,
            idempotent=False,
            created_task_ids=tuple(created_ids),
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def get(self, directive_id: str) -> DirectiveRecord:
        return self._require(directive_id)

    def _require(self, directive_id: str) -> DirectiveRecord:
        record = self._directives.get(directive_id)
        if record is None:
            raise DirectiveNotFoundError(directive_id)
        return record

    def _missing_requests(self, directive: Directive) -> tuple[str, ...]:
        missing: list[str] = []
        for request in directive.required_requests:
            if request.request_id in missing:
                continue
            if not self._required_data.is_satisfied(request.request_id):
                missing.append(request.request_id)
        return tuple(missing)

    def _record_decision(
        self,
        key: str,
        directive_id: str,
        value: dict[str, JSONValue],
        context: dict[str, JSONValue],
    ) -> None:
        if self._decision_log is None:
            return
        self._decision_log.append(
            DecisionEntry(
                id=ids.generate_decision_id(),
                decision_key=key,
                value=value,
                directive_id=directive_id,
                source=_DECISION_SOURCE,
                context=context,
                created_at=self._clock(),
            )
        )

    @staticmethod
    def _idempotent(directive_id: str, task_count: int) -> ApplyResult:
        return ApplyResult(
            directive_id=directive_id,
            tasks_created=0,
            tasks_skipped=task_count,
            idempotent=True,
        )


__all__ = ["Clock", "DirectiveLifecycle"]
