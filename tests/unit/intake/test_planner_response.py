from __future__ import annotations

import json

import pytest
import yaml
from structlog.testing import capture_logs

from directive_intake.domain.models import DirectiveStatus
from directive_intake.intake.errors import PlannerResponseError
from directive_intake.intake.lifecycle import DirectiveLifecycle
from directive_intake.intake.planner_response import (
    extract_directive_payloads,
    ingest_planner_response,
)

from . import (
    FixedClock,
    InMemoryDirectiveStore,
    InMemoryTaskStore,
    StaticRequiredData,
    valid_payload,
)


def _lifecycle() -> tuple[DirectiveLifecycle, InMemoryDirectiveStore]:
    store = InMemoryDirectiveStore()
    lifecycle = DirectiveLifecycle(
        store, InMemoryTaskStore(), StaticRequiredData(), clock=FixedClock()
    )
    return lifecycle, store


def test_fenced_json_block_is_extracted_from_prose() -> None:
    text = (
        "Here is the plan for next week.\n\n"
        f"```json\n{json.dumps([valid_payload()], indent=2)}\n```\n\n"
        "Let me know if anything is unclear."
    )

    payloads = extract_directive_payloads(text)

    assert payloads == [valid_payload()]


def test_unlabeled_fence_is_treated_as_json() -> None:
    text = f"```\n{json.dumps(valid_payload())}\n```"

    assert extract_directive_payloads(text) == [valid_payload()]


def test_fenced_yaml_block_is_extracted() -> None:
    text = f"Plan:\n```yaml\n{yaml.safe_dump([valid_payload()], sort_keys=False)}```\n"

    assert extract_directive_payloads(text) == [valid_payload()]


def test_first_recognised_fence_wins() -> None:
    first = valid_payload(objective="Implement feature one for the app")
    second = valid_payload(objective="Implement feature two for the app")
    text = (
        "```python\nprint('not a directive')\n```\n"
        f"```json\n{json.dumps(first)}\n```\n"
        f"```json\n{json.dumps(second)}\n```\n"
    )

    assert extract_directive_payloads(text) == [first]


def test_bare_object_document_becomes_single_item_list() -> None:
    assert extract_directive_payloads(json.dumps(valid_payload())) == [valid_payload()]


def test_bare_yaml_document_is_accepted() -> None:
    text = yaml.safe_dump(valid_payload(), sort_keys=False)

    assert extract_directive_payloads(text) == [valid_payload()]


@pytest.mark.parametrize("text", ["", "   \n\t "])
def test_empty_response_is_rejected(text: str) -> None:
    with pytest.raises(PlannerResponseError, match="empty"):
        extract_directive_payloads(text)


def test_invalid_json_fence_raises_planner_error() -> None:
    with pytest.raises(PlannerResponseError, match="invalid JSON fenced block"):
        extract_directive_payloads("```json\n{not json\n```")


def test_scalar_document_is_rejected() -> None:
    with pytest.raises(PlannerResponseError, match="got int"):
        extract_directive_payloads("42")


def test_ingest_creates_valid_items_and_reports_invalid_ones() -> None:
    lifecycle, store = _lifecycle()
    bad = valid_payload(objective="tiny", risks=[])
    text = json.dumps([valid_payload(), bad])

    result = ingest_planner_response(lifecycle, text, source="planner-run-7")

    assert len(result.created) == 1
    assert result.created[0].status is DirectiveStatus.PENDING_REVIEW
    assert result.created[0].source == "planner-run-7"
    assert result.errors == (
        "directive[1]: objective: must be at least 10 character(s)",
        "directive[1]: risks: must contain at least 1 item(s)",
    )
    assert list(store.records) == [result.created[0].id]


def test_ingest_non_object_item_is_reported_not_raised() -> None:
    lifecycle, _ = _lifecycle()

    result = ingest_planner_response(lifecycle, json.dumps(["nope", valid_payload()]))

    assert len(result.created) == 1
    assert result.errors == ("directive[0]: <root>: expected object, got str",)


def test_ingest_truncates_to_max_directives_and_warns() -> None:
    lifecycle, store = _lifecycle()
    payloads = [
        valid_payload(objective=f"Implement feature number {index} now") for index in range(5)
    ]

    with capture_logs() as logs:
        result = ingest_planner_response(lifecycle, json.dumps(payloads), max_directives=3)

    assert len(result.created) == 3
    assert result.dropped == 2
    assert len(store.records) == 3
    assert [record.directive.objective for record in result.created] == [
        payload["objective"] for payload in payloads[:3]
    ]
    truncated = next(item for item in logs if item["event"] == "planner_response_truncated")
    assert truncated["log_level"] == "warning"
    assert (truncated["received"], truncated["dropped"]) == (5, 2)
    ingested = next(item for item in logs if item["event"] == "planner_response_ingested")
    assert ingested["created_count"] == 3


def test_ingest_result_to_dict_lists_ids() -> None:
    lifecycle, _ = _lifecycle()

    result = ingest_planner_response(lifecycle, json.dumps(valid_payload()))

    assert result.to_dict() == {
        "created": [result.created[0].id],
        "errors": [],
        "dropped": 0,
    }


def test_ingest_rejects_non_positive_limit() -> None:
    lifecycle, _ = _lifecycle()

    with pytest.raises(ValueError, match="max_directives"):
        ingest_planner_response(lifecycle, json.dumps(valid_payload()), max_directives=0)


def test_ingest_passes_scope_through() -> None:
    lifecycle, _ = _lifecycle()

    result = ingest_planner_response(lifecycle, json.dumps(valid_payload()), scope="team-b")

    assert result.created[0].scope == "team-b"
