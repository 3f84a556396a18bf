"""directive_v1 validation: aggregated issues, aliases, defaults, and task id generation."""

from __future__ import annotations

import json
from typing import Any

import pytest

from directive_intake.domain import ids
from directive_intake.domain.models import RiskSeverity
from directive_intake.intake.errors import DirectiveValidationError, ValidationError
from directive_intake.intake.schema import assert_valid_directive, validate_directive

from . import counting_task_ids, valid_payload


def _issue_map(raw: object) -> dict[str, str]:
    result = validate_directive(raw)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def test_valid_payload_normalizes_and_fills_defaults() -> None:
    directive = assert_valid_directive(valid_payload())

    assert directive.version == "directive_v1"
    assert directive.schema_version == "v1"
    assert directive.apply_notes == ""
    assert directive.required_requests == ()
    task = directive.tasks_to_create[0]
    assert task.title == "Do thing A"
    assert task.steps == ("step1", "step2")
    assert task.task_type == "generic"
    assert task.priority == 3
    assert task.phase is None
    assert task.params == {}
    assert task.depends_on == ()
    assert directive.risks[0].severity is RiskSeverity.MED


def test_missing_task_id_is_generated_with_planner_shape() -> None:
    directive = assert_valid_directive(valid_payload())

    generated = directive.tasks_to_create[0].task_id
    assert generated.startswith("T-GPT-")
    assert ids.is_planner_task_id(generated)


def test_supplied_task_id_is_kept() -> None:
    directive = assert_valid_directive(
        valid_payload(tasksToCreate=[{"taskId": "T-42", "title": "Keep my id"}])
    )

    assert directive.tasks_to_create[0].task_id == "T-42"


def test_task_id_factory_is_only_called_for_missing_ids() -> None:
    calls: list[str] = []

    def factory() -> str:
        calls.append("x")
        return f"T-GPT-1-{len(calls):04d}"

    directive = assert_valid_directive(
        valid_payload(
            tasksToCreate=[
                {"title": "first"},
                {"taskId": "T-given", "title": "second"},
                {"title": "third"},
            ]
        ),
        task_id_factory=factory,
    )

    assert [task.task_id for task in directive.tasks_to_create] == [
        "T-GPT-1-0001",
        "T-given",
        "T-GPT-1-0002",
    ]
    assert len(calls) == 2


def test_task_id_factory_not_called_when_validation_fails() -> None:
    def factory() -> str:
        raise AssertionError("ids must only be generated for valid payloads")

    result = validate_directive(valid_payload(objective="short"), task_id_factory=factory)

    assert not result.is_valid


def test_regenerated_ids_differ_across_validations() -> None:
    first = assert_valid_directive(valid_payload(), task_id_factory=counting_task_ids("T-GPT-1-"))
    second = assert_valid_directive(valid_payload(), task_id_factory=counting_task_ids("T-GPT-2-"))

    assert first.tasks_to_create[0].task_id != second.tasks_to_create[0].task_id


def test_snake_case_and_camel_case_inputs_normalize_identically() -> None:
    snake: dict[str, Any] = {
        "version": "directive_v1",
        "schema_version": "v1",
        "objective": "Implement feature X for the orchestrator",
        "context_summary": "Backlog is empty; feature X is the next milestone.",
        "risks": [{"id": "R1", "text": "Scope creep", "severity": "med"}],
        "tasks_to_create": [{"task_id": "T-1", "task_type": "generic", "title": "Do thing A"}],
        "success_criteria": ["Feature X ships behind a flag"],
        "estimated_impact": "Unblocks the Q4 roadmap",
    }
    camel = valid_payload(tasksToCreate=[{"taskId": "T-1", "taskType": "generic", "title": "Do thing A"}])
    camel["schemaVersion"] = "v1"

    assert assert_valid_directive(snake) == assert_valid_directive(camel)


def test_directive_schema_version_alias_is_accepted() -> None:
    directive = assert_valid_directive(valid_payload(directive_schema_version="v2"))

    assert directive.schema_version == "v2"


def test_alias_collision_is_reported() -> None:
    issues = _issue_map(valid_payload(schemaVersion="v1", schema_version="v1"))

    assert issues["schema_version"] == "duplicate field after alias normalization"


def test_unknown_keys_are_dropped() -> None:
    directive = assert_valid_directive(
        valid_payload(extra="ignored", tasksToCreate=[{"title": "T", "colour": "blue"}])
    )

    assert "extra" not in directive.to_dict()
    assert "colour" not in directive.tasks_to_create[0].to_dict()


def test_strings_are_stripped() -> None:
    directive = assert_valid_directive(
        valid_payload(objective="   Implement feature X for the orchestrator   ")
    )

    assert directive.objective == "Implement feature X for the orchestrator"


@pytest.mark.parametrize(
    ("overrides", "path", "message"),
    [
        ({"objective": None}, "objective", "missing required field"),
        ({"risks": []}, "risks", "must contain at least 1 item(s)"),
        ({"tasksToCreate": []}, "tasks_to_create", "must contain at least 1 item(s)"),
        ({"successCriteria": []}, "success_criteria", "must contain at least 1 item(s)"),
        ({"objective": "too short"}, "objective", "must be at least 10 character(s)"),
        ({"version": "directive_v2"}, "version", "expected literal 'directive_v1', got 'directive_v2'"),
        ({"version": None}, "version", "missing required field"),
        ({"estimatedImpact": ""}, "estimated_impact", "must be at least 1 character(s)"),
        ({"objective": "x" * 501}, "objective", "must be <= 500 characters"),
        ({"contextSummary": "x" * 2001}, "context_summary", "must be <= 2000 characters"),
        ({"applyNotes": "x" * 1001}, "apply_notes", "must be <= 1000 characters"),
        ({"risks": "none"}, "risks", "expected array, got str"),
    ],
)
def test_each_constraint_independently_rejects(
    overrides: dict[str, object], path: str, message: str
) -> None:
    issues = _issue_map(valid_payload(**overrides))

    assert issues == {path: message}


def test_missing_objective_key_entirely() -> None:
    payload = valid_payload()
    del payload["objective"]

    assert _issue_map(payload) == {"objective": "missing required field"}


@pytest.mark.parametrize(
    ("task", "path", "message"),
    [
        ({"steps": ["a"]}, "tasks_to_create[0].title", "missing required field"),
        ({"title": "T", "priority": 0}, "tasks_to_create[0].priority", "must be between 1 and 5"),
        ({"title": "T", "priority": "high"}, "tasks_to_create[0].priority", "expected integer, got str"),
        ({"title": "T", "priority": True}, "tasks_to_create[0].priority", "expected integer, got bool"),
        ({"title": "T", "phase": 100}, "tasks_to_create[0].phase", "must be between 0 and 99"),
        ({"title": "T", "taskType": "x" * 51}, "tasks_to_create[0].task_type", "must be <= 50 characters"),
        ({"title": "x" * 201}, "tasks_to_create[0].title", "must be <= 200 characters"),
        ({"title": "T", "steps": ["s"] * 21}, "tasks_to_create[0].steps", "must contain at most 20 item(s)"),
        ({"title": "T", "steps": ["x" * 501]}, "tasks_to_create[0].steps[0]", "must be <= 500 characters"),
        ({"title": "T", "params": [1, 2]}, "tasks_to_create[0].params", "expected object, got list"),
        ({"title": "T", "params": {"n": float("nan")}}, "tasks_to_create[0].params.n", "number must be finite"),
        ({"title": "T", "dependsOn": [""]}, "tasks_to_create[0].depends_on[0]", "must be at least 1 character(s)"),
    ],
)
def test_task_proposal_constraints(task: dict[str, object], path: str, message: str) -> None:
    issues = _issue_map(valid_payload(tasksToCreate=[task]))

    assert issues == {path: message}


def test_risk_and_request_constraints_use_indexed_paths() -> None:
    issues = _issue_map(
        valid_payload(
            risks=[
                {"id": "R1", "text": "ok", "severity": "low"},
                {"id": "", "text": "bad", "severity": "critical"},
            ],
            requiredRequests=[{"requestId": "REQ-1"}],
        )
    )

    assert issues == {
        "risks[1].id": "must be at least 1 character(s)",
        "risks[1].severity": "invalid value 'critical'; expected one of: low, med, high",
        "required_requests[0].reason": "missing required field",
    }


def test_every_issue_is_reported_in_one_pass() -> None:
    payload = valid_payload(
        version="directive_v0",
        objective="tiny",
        risks=[],
        tasksToCreate=[{"title": ""}, "not an object"],
        successCriteria=[],
    )
    del payload["estimatedImpact"]

    result = validate_directive(payload)

    assert [issue.path for issue in result.issues] == [
        "version",
        "objective",
        "success_criteria",
        "estimated_impact",
        "risks",
        "tasks_to_create[0].title",
        "tasks_to_create[1]",
    ]


def test_non_object_root_is_rejected() -> None:
    result = validate_directive(["not", "a", "directive"])

    assert [(issue.path, issue.message) for issue in result.issues] == [
        ("<root>", "expected object, got list")
    ]


def test_assert_valid_raises_aggregated_error_message() -> None:
    with pytest.raises(DirectiveValidationError) as exc_info:
        assert_valid_directive(valid_payload(objective="short", risks=[]))

    error = exc_info.value
    assert isinstance(error, ValidationError)
    assert isinstance(error, ValueError)
    assert str(error) == (
        "directive_v1 validation failed:\n"
        "- objective: must be at least 10 character(s)\n"
        "- risks: must contain at least 1 item(s)"
    )
    assert error.to_dict()["issues"] == [
        {"path": "objective", "message": "must be at least 10 character(s)"},
        {"path": "risks", "message": "must contain at least 1 item(s)"},
    ]


def test_params_keep_nested_json_values() -> None:
    params = {"retries": 2, "targets": ["a", "b"], "opts": {"dry_run": True, "ratio": 0.5}}

    directive = assert_valid_directive(valid_payload(tasksToCreate=[{"title": "T", "params": params}]))

    assert directive.tasks_to_create[0].params == params


# json.loads accepts escaped lone surrogates that UTF-8 cannot encode.
_LONE_SURROGATE = json.loads('"\\ud800"')


def test_lone_surrogate_in_title_is_rejected() -> None:
    title = f"Do {_LONE_SURROGATE} thing"

    issues = _issue_map(valid_payload(tasksToCreate=[{"title": title}]))

    assert issues == {"tasks_to_create[0].title": "must be valid UTF-8 text"}


def test_lone_surrogate_in_params_value_and_key_is_rejected() -> None:
    params = {"note": _LONE_SURROGATE, f"k{_LONE_SURROGATE}": 1, "ok": "fine"}

    issues = _issue_map(valid_payload(tasksToCreate=[{"title": "T", "params": params}]))

    assert issues == {
        "tasks_to_create[0].params.note": "must be valid UTF-8 text",
        "tasks_to_create[0].params": "object key must be valid UTF-8 text",
    }


def test_lone_surrogate_in_nested_params_is_rejected() -> None:
    params = {"opts": {"labels": ["a", _LONE_SURROGATE]}}

    issues = _issue_map(valid_payload(tasksToCreate=[{"title": "T", "params": params}]))

    assert issues == {"tasks_to_create[0].params.opts.labels[1]": "must be valid UTF-8 text"}


def test_lone_surrogate_in_objective_raises_validation_error() -> None:
    with pytest.raises(DirectiveValidationError, match="objective: must be valid UTF-8 text"):
        assert_valid_directive(valid_payload(objective=f"Refactor {_LONE_SURROGATE} the scheduler"))
