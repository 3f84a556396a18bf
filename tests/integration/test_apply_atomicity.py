"""Apply atomicity and exactly-once materialization over a real SQLite state DB."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from directive_intake.domain.models import (
    ApplyResult,
    Directive,
    DirectiveStatus,
    Risk,
    RiskSeverity,
    Task,
    TaskProposal,
)
from directive_intake.intake.lifecycle import DirectiveLifecycle
from directive_intake.persistence.repositories import (
    DecisionLogRepo,
    DirectiveRepo,
    RequiredDataRepo,
    TaskRepo,
)
from directive_intake.persistence.state_db import StateDB

_PAYLOAD: dict[str, Any] = {
    "version": "directive_v1",
    "objective": "Split the monolith billing module into services",
    "risks": [{"id": "R1", "text": "Double charging during cutover", "severity": "high"}],
    "tasksToCreate": [
        {"title": f"Extract billing component {index}", "steps": ["carve", "test"]}
        for index in range(5)
    ],
    "successCriteria": ["no invoice regressions"],
    "estimatedImpact": "Independent billing deploys",
}


class _FailingTaskRepo:
    """Task store that fails the Nth insert after delegating earlier ones."""

    def __init__(self, inner: TaskRepo, *, fail_on_insert: int) -> None:
        self._inner = inner
        self._fail_on_insert = fail_on_insert
        self.insert_calls = 0

    def find_by_content_hash(self, scope: str, content_hash: str) -> Task | None:
        return self._inner.find_by_content_hash(scope, content_hash)

    def insert(self, task: Task) -> Task:
        self.insert_calls += 1
        if self.insert_calls == self._fail_on_insert:
            raise OSError("disk full while writing task")
        return self._inner.insert(task)


class _BlindTaskRepo:
    """Task store whose lookups always miss, forcing the unique index to decide."""

    def __init__(self, inner: TaskRepo) -> None:
        self._inner = inner

    def find_by_content_hash(self, scope: str, content_hash: str) -> Task | None:
        del scope, content_hash
        return None

    def insert(self, task: Task) -> Task:
        return self._inner.insert(task)


def _lifecycle(db: StateDB, tasks: Any | None = None) -> DirectiveLifecycle:
    return DirectiveLifecycle(
        DirectiveRepo(db),
        TaskRepo(db) if tasks is None else tasks,
        RequiredDataRepo(db),
        decision_log=DecisionLogRepo(db),
        unit_of_work=db.transaction,
    )


def _approved_directive(db: StateDB, payload: dict[str, Any] | None = None) -> str:
    lifecycle = _lifecycle(db)
    record = lifecycle.create(_PAYLOAD if payload is None else payload)
    lifecycle.approve(record.id)
    return record.id


def _status(db: StateDB, directive_id: str) -> DirectiveStatus:
    record = DirectiveRepo(db).get(directive_id)
    assert record is not None
    return record.status


def _decision_keys(db: StateDB, directive_id: str) -> list[str]:
    return [entry.decision_key for entry in DecisionLogRepo(db).list_for_directive(directive_id)]


@pytest.fixture
def db(tmp_path: Path) -> StateDB:
    state_db = StateDB(tmp_path / "state" / "directives.sqlite")
    state_db.migrate()
    return state_db


def test_partial_failure_rolls_back_every_task_and_keeps_directive_approved(
    db: StateDB,
) -> None:
    directive_id = _approved_directive(db)
    failing = _FailingTaskRepo(TaskRepo(db), fail_on_insert=3)

    with pytest.raises(OSError, match="disk full"):
        _lifecycle(db, failing).apply(directive_id)

    assert TaskRepo(db).count() == 0
    assert _status(db, directive_id) is DirectiveStatus.APPROVED
    assert _decision_keys(db, directive_id) == ["directive_approve"]

    retry = _lifecycle(db).apply(directive_id)

    assert (retry.tasks_created, retry.tasks_skipped, retry.idempotent) == (5, 0, False)
    assert TaskRepo(db).count() == 5
    assert _status(db, directive_id) is DirectiveStatus.APPLIED


def test_unique_index_turns_missed_duplicates_into_skips(db: StateDB) -> None:
    first_id = _approved_directive(db)
    second_id = _approved_directive(db, {**_PAYLOAD, "estimatedImpact": "Same tasks again"})
    _lifecycle(db).apply(first_id)

    result = _lifecycle(db, _BlindTaskRepo(TaskRepo(db))).apply(second_id)

    assert (result.tasks_created, result.tasks_skipped) == (0, 5)
    assert TaskRepo(db).count() == 5
    assert _status(db, second_id) is DirectiveStatus.APPLIED


def test_concurrent_apply_materializes_tasks_exactly_once(db: StateDB) -> None:
    directive_id = _approved_directive(db)
    barrier = threading.Barrier(2)
    results: list[ApplyResult] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def worker() -> None:
        # Separate StateDB handles model two independent processes.
        lifecycle = _lifecycle(StateDB(db.path))
        barrier.wait()
        try:
            outcome = lifecycle.apply(directive_id)
        except BaseException as exc:  # noqa: BLE001
            with lock:
                errors.append(exc)
            return
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(result.idempotent for result in results) == [False, True]
    winner = next(result for result in results if not result.idempotent)
    assert winner.tasks_created == 5
    assert TaskRepo(db).count() == 5
    assert _decision_keys(db, directive_id).count("directive_apply") == 1


def test_directive_built_in_code_reads_back_and_applies(db: StateDB) -> None:
    directive = Directive(
        objective="Move nightly reports onto the queue",
        risks=(Risk(id="R1", text="Report gaps during cutover", severity=RiskSeverity.LOW),),
        tasks_to_create=(
            TaskProposal(task_id="T-1", title="Enqueue report jobs", params={"ratio": 1.0}),
        ),
        success_criteria=("reports arrive by 06:00",),
        estimated_impact="Frees the cron host",
    )
    lifecycle = _lifecycle(db)

    record = lifecycle.create_from_directive(directive)

    stored = DirectiveRepo(db).get(record.id)
    assert stored is not None
    assert stored.directive == directive
    assert stored.payload_hash == record.payload_hash
    assert [item.id for item in DirectiveRepo(db).list()] == [record.id]
    lifecycle.approve(record.id)
    assert lifecycle.apply(record.id).tasks_created == 1
