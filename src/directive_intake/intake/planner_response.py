"""Decode raw planner output into directive payloads and create the valid ones."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

import structlog
import yaml

from directive_intake.constants import (
    DEFAULT_DIRECTIVE_SOURCE,
    DEFAULT_MAX_DIRECTIVES_PER_RESPONSE,
)
from directive_intake.domain.models import DirectiveRecord, JSONValue
from directive_intake.intake.errors import DirectiveValidationError, PlannerResponseError
from directive_intake.intake.lifecycle import DirectiveLifecycle

_FENCED_BLOCK_RE: Final[re.Pattern[str]] = re.compile(
    r"(?P<fence>`{3,})(?P<lang>[^\n`]*)\n(?P<body>.*?)(?:\n(?P=fence))",
    flags=re.DOTALL,
)
_JSON_LANGS: Final[frozenset[str]] = frozenset({"", "json"})
_YAML_LANGS: Final[frozenset[str]] = frozenset({"yaml", "yml"})


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Directives created from one planner response plus per-item errors."""

    created: tuple[DirectiveRecord, ...]
    errors: tuple[str, ...]
    dropped: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "created": [record.id for record in self.created],
            "errors": list(self.errors),
            "dropped": self.dropped,
        }


def extract_directive_payloads(raw_text: str) -> list[object]:
    """Return the candidate directive payloads contained in ``raw_text``.

    The first fenced ``json`` (or unlabeled) or ``yaml`` block wins; otherwise
    the whole text is decoded as JSON, then as YAML. A single object is treated
    as a one-item list.
    """

    text = raw_text.strip()
    if not text:
        raise PlannerResponseError("planner response is empty")

    parsed = _decode_fenced(text)
    if parsed is None:
        parsed = _decode_document(text)

    if isinstance(parsed, Mapping):
        return [parsed]
    if isinstance(parsed, list):
        return parsed
    raise PlannerResponseError(
        "planner response must decode to an array of directive objects, "
        f"got {type(parsed).__name__}"
    )


def ingest_planner_response(
    lifecycle: DirectiveLifecycle,
    raw_text: str,
    *,
    max_directives: int = DEFAULT_MAX_DIRECTIVES_PER_RESPONSE,
    scope: str | None = None,
    source: str = DEFAULT_DIRECTIVE_SOURCE,
    logger: Any | None = None,
) -> IngestResult:
    """Create every valid directive in a planner response.

    Invalid items never block valid ones; each of their issues is reported as
    ``directive[i]: <path>: <message>``.
    """

    if max_directives < 1:
        raise ValueError("max_directives must be >= 1")
    log = structlog.get_logger(__name__) if logger is None else logger

    payloads = extract_directive_payloads(raw_text)
    dropped = max(0, len(payloads) - max_directives)
    if dropped:
        log.warning(
            "planner_response_truncated",
            received=len(payloads),
            max_directives=max_directives,
            dropped=dropped,
        )

    created: list[DirectiveRecord] = []
    errors: list[str] = []
    for index, payload in enumerate(payloads[:max_directives]):
        try:
            record = lifecycle.create(payload, scope=scope, source=source)
        except DirectiveValidationError as exc:
            errors.extend(f"directive[{index}]: {issue.render()}" for issue in exc.issues)
            continue
        created.append(record)

    log.info(
        "planner_response_ingested",
        received=len(payloads),
        created_count=len(created),
        directive_ids=[record.id for record in created],
        error_count=len(errors),
    )
    return IngestResult(created=tuple(created), errors=tuple(errors), dropped=dropped)


def _decode_fenced(text: str) -> object | None:
    for match in _FENCED_BLOCK_RE.finditer(text):
        language = match.group("lang").strip().lower()
        body = match.group("body").strip()
        if language in _JSON_LANGS:
            try:
                return json.loads(body)
            except json.JSONDecodeError as exc:
                raise PlannerResponseError(f"invalid JSON fenced block: {exc.msg}") from exc
        if language in _YAML_LANGS:
            try:
                return yaml.safe_load(body)
            except yaml.YAMLError as exc:
                raise PlannerResponseError(f"invalid YAML fenced block: {exc}") from exc
    return None


def _decode_document(text: str) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError as json_exc:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise PlannerResponseError(
                f"planner response is neither JSON ({json_exc.msg}) nor YAML ({exc})"
            ) from exc


__all__ = ["IngestResult", "extract_directive_payloads", "ingest_planner_response"]
