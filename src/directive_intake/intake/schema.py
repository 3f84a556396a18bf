"""
nexus-directive-intake — directive_v1 schema validation and normalization.

File: src/directive_intake/intake/schema.py
Last updated: 2026-10-18

Purpose
- Turn an untrusted, loosely typed planner payload into a canonical ``Directive``.

What should be included in this file
- Field rules for Directive, Risk, TaskProposal, and RequiredRequest.
- camelCase and legacy key aliases mapped onto canonical snake_case names.
- Default filling and generation of missing planner task ids.

Functional requirements
- Validate the whole payload in one pass and report every violated field path
  with its constraint, not only the first.
- Reject any ``version`` other than ``directive_v1``.
- Generate missing task ids only after the payload has passed validation.

Non-functional requirements
- Deterministic issue ordering so operators can diff two failed attempts.
- Unknown keys are dropped, never copied into the normalized directive.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from directive_intake.constants import (
    APPLY_NOTES_MAX_LEN,
    CONTEXT_SUMMARY_MAX_LEN,
    DEFAULT_DIRECTIVE_SCHEMA_VERSION,
    DEFAULT_TASK_PRIORITY,
    DEFAULT_TASK_TYPE,
    DIRECTIVE_VERSION,
    ESTIMATED_IMPACT_MAX_LEN,
    OBJECTIVE_MAX_LEN,
    OBJECTIVE_MIN_LEN,
    REQUEST_ID_MAX_LEN,
    REQUEST_REASON_MAX_LEN,
    RISK_ID_MAX_LEN,
    RISK_TEXT_MAX_LEN,
    SCHEMA_VERSION_MAX_LEN,
    SUCCESS_CRITERION_MAX_LEN,
    TASK_DESCRIPTION_MAX_LEN,
    TASK_ID_MAX_LEN,
    TASK_MAX_STEPS,
    TASK_PHASE_RANGE,
    TASK_PRIORITY_RANGE,
    TASK_STEP_MAX_LEN,
    TASK_TITLE_MAX_LEN,
    TASK_TYPE_MAX_LEN,
)
from directive_intake.domain import ids
from directive_intake.domain.models import (
    Directive,
    JSONValue,
    RequiredRequest,
    Risk,
    RiskSeverity,
    TaskProposal,
)
from directive_intake.intake.errors import DirectiveValidationError, DirectiveValidationIssue

TaskIdFactory = Callable[[], str]

_MAX_PARAMS_DEPTH: Final[int] = 16
_NOT_UTF8: Final[str] = "must be valid UTF-8 text"

_DIRECTIVE_ALIASES: Final[dict[str, str]] = {
    "schemaVersion": "schema_version",
    "directive_schema_version": "schema_version",
    "contextSummary": "context_summary",
    "tasksToCreate": "tasks_to_create",
    "requiredRequests": "required_requests",
    "successCriteria": "success_criteria",
    "estimatedImpact": "estimated_impact",
    "applyNotes": "apply_notes",
}
_TASK_ALIASES: Final[dict[str, str]] = {
    "taskId": "task_id",
    "taskType": "task_type",
    "dependsOn": "depends_on",
    "acceptanceCriteria": "acceptance_criteria",
}
_REQUEST_ALIASES: Final[dict[str, str]] = {
    "requestId": "request_id",
}


@dataclass(frozen=True, slots=True)
class DirectiveValidationResult:
    """Validation result with the normalized directive when no issues were found."""

    directive: Directive | None
    issues: tuple[DirectiveValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.directive is not None and not self.issues

    def unwrap(self) -> Directive:
        if self.directive is None:
            raise DirectiveValidationError(self.issues)
        return self.directive


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[DirectiveValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(DirectiveValidationIssue(path=path, message=message))

    def items(self) -> tuple[DirectiveValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def validate_directive(
    raw: Mapping[str, object] | object,
    *,
    task_id_factory: TaskIdFactory | None = None,
) -> DirectiveValidationResult:
    """Validate ``raw`` and return every issue found, or the normalized directive."""

    issues = _IssueCollector()
    root = _as_object(raw, "<root>", issues)
    if root is None:
        return DirectiveValidationResult(directive=None, issues=issues.items())

    payload = _apply_aliases(root, _DIRECTIVE_ALIASES, "", issues)
    draft = _validate_root(payload, issues)
    if draft is None or issues.has_issues:
        return DirectiveValidationResult(directive=None, issues=issues.items())

    factory = ids.generate_planner_task_id if task_id_factory is None else task_id_factory
    directive = _materialize(draft, factory)
    return DirectiveValidationResult(directive=directive, issues=())


def assert_valid_directive(
    raw: Mapping[str, object] | object,
    *,
    task_id_factory: TaskIdFactory | None = None,
) -> Directive:
    """Validate ``raw`` and raise ``DirectiveValidationError`` on failure."""

    return validate_directive(raw, task_id_factory=task_id_factory).unwrap()


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any] | None:
    version = payload.get("version")
    if version is None:
        issues.add("version", "missing required field")
    elif version != DIRECTIVE_VERSION:
        issues.add("version", f"expected literal {DIRECTIVE_VERSION!r}, got {version!r}")

    draft: dict[str, Any] = {
        "schema_version": _text_field(
            payload,
            "schema_version",
            "",
            issues,
            default=DEFAULT_DIRECTIVE_SCHEMA_VERSION,
            min_len=1,
            max_len=SCHEMA_VERSION_MAX_LEN,
        ),
        "objective": _text_field(
            payload,
            "objective",
            "",
            issues,
            required=True,
            min_len=OBJECTIVE_MIN_LEN,
            max_len=OBJECTIVE_MAX_LEN,
        ),
        "context_summary": _text_field(
            payload, "context_summary", "", issues, max_len=CONTEXT_SUMMARY_MAX_LEN
        ),
        "success_criteria": _text_list_field(
            payload,
            "success_criteria",
            "",
            issues,
            required=True,
            min_items=1,
            max_len=SUCCESS_CRITERION_MAX_LEN,
        ),
        "estimated_impact": _text_field(
            payload,
            "estimated_impact",
            "",
            issues,
            required=True,
            min_len=1,
            max_len=ESTIMATED_IMPACT_MAX_LEN,
        ),
        "apply_notes": _text_field(payload, "apply_notes", "", issues, max_len=APPLY_NOTES_MAX_LEN),
    }

    risks = _list_field(payload, "risks", "", issues, required=True, min_items=1)
    draft["risks"] = [
        _validate_risk(item, f"risks[{index}]", issues) for index, item in enumerate(risks or ())
    ]

    tasks = _list_field(payload, "tasks_to_create", "", issues, required=True, min_items=1)
    draft["tasks_to_create"] = [
        _validate_task(item, f"tasks_to_create[{index}]", issues)
        for index, item in enumerate(tasks or ())
    ]

    requests = _list_field(payload, "required_requests", "", issues)
    draft["required_requests"] = [
        _validate_required_request(item, f"required_requests[{index}]", issues)
        for index, item in enumerate(requests or ())
    ]

    if issues.has_issues:
        return None
    return draft


def _validate_risk(value: object, path: str, issues: _IssueCollector) -> Risk | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None

    risk_id = _text_field(
        payload, "id", path, issues, required=True, min_len=1, max_len=RISK_ID_MAX_LEN
    )
    text = _text_field(
        payload, "text", path, issues, required=True, min_len=1, max_len=RISK_TEXT_MAX_LEN
    )
    severity = _enum_field(payload, "severity", path, issues, enum_type=RiskSeverity)
    if risk_id is None or text is None or severity is None:
        return None
    return Risk(id=risk_id, text=text, severity=severity)


def _validate_task(value: object, path: str, issues: _IssueCollector) -> dict[str, Any] | None:
    raw = _as_object(value, path, issues)
    if raw is None:
        return None
    payload = _apply_aliases(raw, _TASK_ALIASES, path, issues)

    task_id: str | None = None
    if payload.get("task_id") is not None:
        task_id = _as_text(
            payload["task_id"], _join(path, "task_id"), issues, min_len=1, max_len=TASK_ID_MAX_LEN
        )

    return {
        "task_id": task_id,
        "task_type": _text_field(
            payload,
            "task_type",
            path,
            issues,
            default=DEFAULT_TASK_TYPE,
            min_len=1,
            max_len=TASK_TYPE_MAX_LEN,
        ),
        "title": _text_field(
            payload, "title", path, issues, required=True, min_len=1, max_len=TASK_TITLE_MAX_LEN
        ),
        "steps": _text_list_field(
            payload,
            "steps",
            path,
            issues,
            max_items=TASK_MAX_STEPS,
            max_len=TASK_STEP_MAX_LEN,
        ),
        "depends_on": _text_list_field(
            payload, "depends_on", path, issues, min_len=1, max_len=TASK_ID_MAX_LEN
        ),
        "priority": _int_field(
            payload,
            "priority",
            path,
            issues,
            default=DEFAULT_TASK_PRIORITY,
            bounds=TASK_PRIORITY_RANGE,
        ),
        "phase": _int_field(payload, "phase", path, issues, default=None, bounds=TASK_PHASE_RANGE),
        "params": _params_field(payload, "params", path, issues),
        "acceptance_criteria": _text_list_field(
            payload, "acceptance_criteria", path, issues, max_len=SUCCESS_CRITERION_MAX_LEN
        ),
        "description": _text_field(
            payload, "description", path, issues, max_len=TASK_DESCRIPTION_MAX_LEN
        ),
    }


def _validate_required_request(
    value: object, path: str, issues: _IssueCollector
) -> RequiredRequest | None:
    raw = _as_object(value, path, issues)
    if raw is None:
        return None
    payload = _apply_aliases(raw, _REQUEST_ALIASES, path, issues)

    request_id = _text_field(
        payload, "request_id", path, issues, required=True, min_len=1, max_len=REQUEST_ID_MAX_LEN
    )
    reason = _text_field(
        payload, "reason", path, issues, required=True, min_len=1, max_len=REQUEST_REASON_MAX_LEN
    )
    if request_id is None or reason is None:
        return None
    return RequiredRequest(request_id=request_id, reason=reason)


def _materialize(draft: Mapping[str, Any], task_id_factory: TaskIdFactory) -> Directive:
    proposals: list[TaskProposal] = []
    for task in draft["tasks_to_create"]:
        task_id = task["task_id"] if task["task_id"] is not None else task_id_factory()
        proposals.append(
            TaskProposal(
                task_id=task_id,
                title=task["title"],
                task_type=task["task_type"],
                steps=task["steps"],
                depends_on=task["depends_on"],
                priority=task["priority"],
                phase=task["phase"],
                params=task["params"],
                acceptance_criteria=task["acceptance_criteria"],
                description=task["description"],
            )
        )

    return Directive(
        version=DIRECTIVE_VERSION,
        schema_version=draft["schema_version"],
        objective=draft["objective"],
        context_summary=draft["context_summary"],
        risks=tuple(draft["risks"]),
        tasks_to_create=tuple(proposals),
        required_requests=tuple(draft["required_requests"]),
        success_criteria=draft["success_criteria"],
        estimated_impact=draft["estimated_impact"],
        apply_notes=draft["apply_notes"],
    )


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _text_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    required: bool = False,
    default: str = "",
    min_len: int = 0,
    max_len: int,
) -> str | None:
    field_path = _join(path, key)
    value = payload.get(key)
    if value is None:
        if required:
            issues.add(field_path, "missing required field")
            return None
        return default
    return _as_text(value, field_path, issues, min_len=min_len, max_len=max_len)


def _text_list_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    required: bool = False,
    min_items: int = 0,
    max_items: int | None = None,
    min_len: int = 0,
    max_len: int,
) -> tuple[str, ...]:
    field_path = _join(path, key)
    items = _list_field(
        payload, key, path, issues, required=required, min_items=min_items, max_items=max_items
    )
    out: list[str] = []
    for index, item in enumerate(items or ()):
        parsed = _as_text(item, f"{field_path}[{index}]", issues, min_len=min_len, max_len=max_len)
        if parsed is not None:
            out.append(parsed)
    return tuple(out)


def _list_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    required: bool = False,
    min_items: int = 0,
    max_items: int | None = None,
) -> list[object] | None:
    field_path = _join(path, key)
    value = payload.get(key)
    if value is None:
        if required:
            issues.add(field_path, "missing required field")
            return None
        return []
    if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Sequence):
        issues.add(field_path, f"expected array, got {_type_name(value)}")
        return None

    items = list(value)
    if len(items) < min_items:
        issues.add(field_path, f"must contain at least {min_items} item(s)")
    if max_items is not None and len(items) > max_items:
        issues.add(field_path, f"must contain at most {max_items} item(s)")
    return items


def _int_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    default: int | None,
    bounds: tuple[int, int],
) -> int | None:
    field_path = _join(path, key)
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(field_path, f"expected integer, got {_type_name(value)}")
        return None
    minimum, maximum = bounds
    if not minimum <= value <= maximum:
        issues.add(field_path, f"must be between {minimum} and {maximum}")
        return None
    return value


def _enum_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    enum_type: type[RiskSeverity],
) -> RiskSeverity | None:
    field_path = _join(path, key)
    value = payload.get(key)
    if value is None:
        issues.add(field_path, "missing required field")
        return None
    allowed = tuple(item.value for item in enum_type)
    if not isinstance(value, str) or value.strip() not in allowed:
        issues.add(field_path, f"invalid value {value!r}; expected one of: {', '.join(allowed)}")
        return None
    return enum_type(value.strip())


def _params_field(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
) -> dict[str, JSONValue]:
    field_path = _join(path, key)
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        issues.add(field_path, f"expected object, got {_type_name(value)}")
        return {}
    out: dict[str, JSONValue] = {}
    for item_key, item in value.items():
        if not isinstance(item_key, str):
            issues.add(field_path, f"object key must be string, got {_type_name(item_key)}")
            continue
        if not _is_utf8_text(item_key):
            issues.add(field_path, f"object key {_NOT_UTF8}")
            continue
        parsed = _as_json_value(item, _join(field_path, item_key), issues, depth=1)
        out[item_key] = parsed
    return out


def _as_json_value(value: object, path: str, issues: _IssueCollector, *, depth: int) -> JSONValue:
    if depth > _MAX_PARAMS_DEPTH:
        issues.add(path, f"nesting exceeds {_MAX_PARAMS_DEPTH} levels")
        return None
    if isinstance(value, str):
        if not _is_utf8_text(value):
            issues.add(path, _NOT_UTF8)
            return None
        return value
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            issues.add(path, "number must be finite")
            return None
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{index}]", issues, depth=depth + 1)
            for index, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                issues.add(path, f"object key must be string, got {_type_name(key)}")
                continue
            if not _is_utf8_text(key):
                issues.add(path, f"object key {_NOT_UTF8}")
                continue
            out[key] = _as_json_value(item, _join(path, key), issues, depth=depth + 1)
        return out
    issues.add(path, f"value of type {_type_name(value)} is not JSON-compatible")
    return None


def _as_text(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    min_len: int,
    max_len: int,
) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {_type_name(value)}")
        return None
    if not _is_utf8_text(value):
        issues.add(path, _NOT_UTF8)
        return None
    normalized = value.strip()
    if len(normalized) < min_len:
        issues.add(path, f"must be at least {min_len} character(s)")
        return None
    if len(normalized) > max_len:
        issues.add(path, f"must be <= {max_len} characters")
        return None
    return normalized


def _is_utf8_text(value: str) -> bool:
    # Lone surrogates survive JSON decoding but cannot be encoded for hashing.
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {_type_name(value)}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {_type_name(key)}")
            continue
        out[key] = item
    return out


def _apply_aliases(
    payload: Mapping[str, object],
    aliases: Mapping[str, str],
    path: str,
    issues: _IssueCollector,
) -> dict[str, object]:
    normalized: dict[str, object] = {}
    for key in sorted(payload):
        canonical = aliases.get(key, key)
        if canonical in normalized:
            issues.add(_join(path, canonical), "duplicate field after alias normalization")
            continue
        normalized[canonical] = payload[key]
    return normalized


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _type_name(value: object) -> str:
    return "null" if value is None else type(value).__name__


__all__ = [
    "DirectiveValidationResult",
    "OBJECTIVE_MAX_LEN",
    "OBJECTIVE_MIN_LEN",
    "TaskIdFactory",
    "assert_valid_directive",
    "validate_directive",
]
