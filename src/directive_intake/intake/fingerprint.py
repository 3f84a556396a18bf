"""Content fingerprints for directives and task proposals."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

from directive_intake.constants import DEFAULT_TASK_TYPE
from directive_intake.domain.models import Directive, DirectiveRecord, TaskProposal
from directive_intake.intake.canonical import encode
from directive_intake.utils.hashing import sha256_text

# Storage metadata never contributes to a directive fingerprint.
STORAGE_ONLY_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "status",
        "scope",
        "source",
        "title",
        "payload_hash",
        "payloadHash",
        "created_at",
        "createdAt",
        "updated_at",
        "updatedAt",
        "decided_at",
        "applied_at",
        "appliedAt",
        "applied_by",
        "rejection_reason",
    }
)

_TASK_TYPE_KEYS: Final[tuple[str, ...]] = ("task_type", "taskType")


def payload_hash(directive: Directive | DirectiveRecord | Mapping[str, object]) -> str:
    """SHA-256 hex over the canonical encoding of a directive's content.

    Accepts a normalized ``Directive``, a stored record, or a directive-shaped
    mapping. Top-level storage fields are dropped before hashing.
    """

    if isinstance(directive, DirectiveRecord):
        content: Mapping[str, object] = directive.directive.to_dict()
    elif isinstance(directive, Directive):
        content = directive.to_dict()
    else:
        content = {
            key: value for key, value in directive.items() if key not in STORAGE_ONLY_FIELDS
        }
    return sha256_text(encode(content))


def task_hash(
    task: TaskProposal | Mapping[str, object],
    directive_objective: str | None,
) -> str:
    """SHA-256 hex identifying a task by content within its directive's objective.

    Only ``task_type``, ``title``, ``steps`` and ``params`` participate; ids,
    priority, dependencies, phase and legacy fields do not.
    """

    if isinstance(task, TaskProposal):
        task_type: object = task.task_type
        title: object = task.title
        steps: object = list(task.steps)
        params: object = task.params
    else:
        task_type = next((task[key] for key in _TASK_TYPE_KEYS if task.get(key) is not None), None)
        title = task.get("title")
        steps = task.get("steps")
        params = task.get("params")

    return sha256_text(
        encode(
            {
                "task_type": DEFAULT_TASK_TYPE if task_type is None else task_type,
                "title": title,
                "steps": [] if steps is None else steps,
                "params": {} if params is None else params,
                "directive_objective": "" if directive_objective is None else directive_objective,
            }
        )
    )


__all__ = ["STORAGE_ONLY_FIELDS", "payload_hash", "task_hash"]
