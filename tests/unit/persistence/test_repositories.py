"""Repository round-trip, compare-and-set, and uniqueness tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from directive_intake.domain.models import DirectiveStatus, RequestStatus, TaskStatus
from directive_intake.intake.errors import DuplicateTaskError
from directive_intake.persistence.repositories import (
    DecisionLogRepo,
    DirectiveRepo,
    RequiredDataRepo,
    TaskRepo,
)
from directive_intake.persistence.state_db import StateDBIntegrityError

from . import fixed_now, make_db, make_decision, make_directive_record, make_task, sha256

if TYPE_CHECKING:
    from pathlib import Path


def test_directive_round_trip_preserves_payload_and_metadata(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    record = make_directive_record(10, scope="alpha")

    repo.insert(record)
    loaded = repo.get(record.id)

    assert loaded == record
    assert loaded is not None
    assert loaded.title == record.directive.objective
    assert loaded.directive.tasks_to_create[1].priority == 1


def test_directive_get_unknown_returns_none(tmp_path: Path) -> None:
    assert DirectiveRepo(make_db(tmp_path)).get("dir-01ARZ3NDEKTSV4RRFFQ69G5FAV") is None


def test_directive_insert_rejects_bad_identifiers(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    record = make_directive_record(11)

    with pytest.raises(ValueError, match="prefix"):
        repo.insert(replace(record, id="task-01ARZ3NDEKTSV4RRFFQ69G5FAV"))
    with pytest.raises(ValueError, match="payload_hash"):
        repo.insert(replace(record, payload_hash="not-a-hash"))


def test_update_status_is_compare_and_set(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    record = repo.insert(make_directive_record(12))
    decided_at = datetime(2026, 10, 2, 9, 30, tzinfo=UTC)

    first = repo.update_status(
        record.id,
        DirectiveStatus.APPROVED,
        expected_status=DirectiveStatus.PENDING_REVIEW,
        decided_at=decided_at,
    )
    second = repo.update_status(
        record.id,
        DirectiveStatus.REJECTED,
        expected_status=DirectiveStatus.PENDING_REVIEW,
        rejection_reason="too late",
    )

    assert (first, second) == (True, False)
    loaded = repo.get(record.id)
    assert loaded is not None
    assert loaded.status is DirectiveStatus.APPROVED
    assert loaded.decided_at == decided_at
    assert loaded.rejection_reason is None


def test_update_status_keeps_earlier_timestamps(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    record = repo.insert(make_directive_record(13))
    decided_at = datetime(2026, 10, 2, 9, 30, tzinfo=UTC)
    applied_at = datetime(2026, 10, 3, 9, 30, tzinfo=UTC)
    repo.update_status(
        record.id,
        DirectiveStatus.APPROVED,
        expected_status=DirectiveStatus.PENDING_REVIEW,
        decided_at=decided_at,
    )

    repo.update_status(
        record.id,
        DirectiveStatus.APPLIED,
        expected_status=DirectiveStatus.APPROVED,
        applied_at=applied_at,
        applied_by="reviewer",
    )

    loaded = repo.get(record.id)
    assert loaded is not None
    assert (loaded.status, loaded.decided_at, loaded.applied_at, loaded.applied_by) == (
        DirectiveStatus.APPLIED,
        decided_at,
        applied_at,
        "reviewer",
    )


def test_update_status_on_unknown_id_returns_false(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))

    assert not repo.update_status(
        "dir-01ARZ3NDEKTSV4RRFFQ69G5FAV",
        DirectiveStatus.APPROVED,
        expected_status=DirectiveStatus.PENDING_REVIEW,
    )


def test_list_filters_by_status_and_scope_newest_first(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    older = repo.insert(make_directive_record(20, scope="alpha"))
    newer = repo.insert(make_directive_record(21, scope="alpha"))
    approved = repo.insert(
        make_directive_record(22, scope="beta", status=DirectiveStatus.APPROVED)
    )

    assert [item.id for item in repo.list()] == [approved.id, newer.id, older.id]
    assert [item.id for item in repo.list(scope="alpha")] == [newer.id, older.id]
    assert [item.id for item in repo.list(status="approved")] == [approved.id]
    assert [item.id for item in repo.list(limit=1, offset=1)] == [newer.id]


@pytest.mark.parametrize(("limit", "offset"), [(0, 0), (1_001, 0), (10, -1)])
def test_list_rejects_bad_paging(tmp_path: Path, limit: int, offset: int) -> None:
    repo = DirectiveRepo(make_db(tmp_path))

    with pytest.raises(ValueError):
        repo.list(limit=limit, offset=offset)


def test_find_by_payload_hash_returns_all_matches_oldest_first(tmp_path: Path) -> None:
    repo = DirectiveRepo(make_db(tmp_path))
    first = make_directive_record(30)
    copy = replace(first, id=make_directive_record(31).id, created_at=fixed_now(31))
    other = make_directive_record(32)
    for record in (copy, other, first):
        repo.insert(record)

    matches = repo.find_by_payload_hash(first.payload_hash)

    assert [item.id for item in matches] == [first.id, copy.id]
    assert repo.find_by_payload_hash(sha256("absent")) == []


def test_task_round_trip_and_duplicate_content_hash(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    directive = DirectiveRepo(db).insert(make_directive_record(40))
    repo = TaskRepo(db)
    task = make_task(40, directive.id)

    repo.insert(task)

    assert repo.get(task.id) == task
    assert repo.find_by_content_hash("default", task.content_hash) == task
    assert repo.find_by_content_hash("other", task.content_hash) is None

    clash = make_task(41, directive.id, content_hash=task.content_hash)
    with pytest.raises(DuplicateTaskError) as exc_info:
        repo.insert(clash)
    assert exc_info.value.content_hash == task.content_hash
    assert repo.get(clash.id) is None
    assert repo.count() == 1


def test_same_content_hash_allowed_in_different_scopes(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    directive = DirectiveRepo(db).insert(make_directive_record(42))
    repo = TaskRepo(db)
    content_hash = sha256("shared")

    repo.insert(make_task(42, directive.id, scope="alpha", content_hash=content_hash))
    repo.insert(make_task(43, directive.id, scope="beta", content_hash=content_hash))

    assert repo.count() == 2
    assert repo.count(scope="alpha") == 1


def test_task_requires_existing_directive(tmp_path: Path) -> None:
    repo = TaskRepo(make_db(tmp_path))

    with pytest.raises(StateDBIntegrityError, match="FOREIGN KEY"):
        repo.insert(make_task(44, "dir-01ARZ3NDEKTSV4RRFFQ69G5FAV"))


def test_task_listing_orders_by_phase_then_priority(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    directive = DirectiveRepo(db).insert(make_directive_record(50))
    repo = TaskRepo(db)
    late = repo.insert(make_task(50, directive.id, phase=2, priority=1))
    urgent = repo.insert(make_task(51, directive.id, phase=0, priority=1))
    normal = repo.insert(make_task(52, directive.id, phase=0, priority=4))

    assert [task.id for task in repo.list()] == [urgent.id, normal.id, late.id]
    assert [task.id for task in repo.list_for_directive(directive.id)] == [
        late.id,
        urgent.id,
        normal.id,
    ]
    assert [task.id for task in repo.list(status=TaskStatus.READY, limit=2)] == [
        urgent.id,
        normal.id,
    ]


def test_required_data_lifecycle(tmp_path: Path) -> None:
    repo = RequiredDataRepo(make_db(tmp_path))

    assert not repo.is_satisfied("REQ-1")

    waiting = repo.upsert("REQ-1", reason="api credentials")
    assert waiting.status is RequestStatus.WAITING
    assert waiting.provided_at is None
    assert not repo.is_satisfied("REQ-1")

    provided = repo.mark_provided("REQ-1")
    assert provided.is_satisfied
    assert provided.reason == "api credentials"
    assert provided.provided_at is not None
    assert repo.is_satisfied("REQ-1")


def test_required_data_reason_update_and_status_listing(tmp_path: Path) -> None:
    repo = RequiredDataRepo(make_db(tmp_path))
    repo.upsert("REQ-2", reason="first reason")
    repo.upsert("REQ-2", reason="second reason")
    repo.upsert("REQ-3", reason="budget")
    repo.mark_rejected("REQ-3")

    assert repo.get("REQ-2") is not None
    assert repo.get("REQ-2").reason == "second reason"  # type: ignore[union-attr]
    assert [item.id for item in repo.list()] == ["REQ-2", "REQ-3"]
    assert [item.id for item in repo.list(status=RequestStatus.REJECTED)] == ["REQ-3"]
    assert not repo.is_satisfied("REQ-3")


def test_required_data_rejects_blank_id(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="request_id"):
        RequiredDataRepo(make_db(tmp_path)).upsert("   ")


def test_decision_log_append_and_list(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    directive = DirectiveRepo(db).insert(make_directive_record(60))
    repo = DecisionLogRepo(db)
    approve = repo.append(make_decision(60, directive.id))
    apply = repo.append(make_decision(61, directive.id, key="directive_apply"))

    entries = repo.list_for_directive(directive.id)

    assert entries == [approve, apply]
    assert repo.list_for_directive("dir-01ARZ3NDEKTSV4RRFFQ69G5FAV") == []
