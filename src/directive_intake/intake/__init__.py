"""Directive intake pipeline: validation, fingerprinting, and lifecycle."""

from directive_intake.intake.canonical import encode
from directive_intake.intake.errors import (
    DirectiveNotFoundError,
    DirectiveValidationError,
    DirectiveValidationIssue,
    DuplicateTaskError,
    InvalidTransitionError,
    PlannerResponseError,
)
from directive_intake.intake.fingerprint import payload_hash, task_hash
from directive_intake.intake.lifecycle import DirectiveLifecycle
from directive_intake.intake.schema import (
    DirectiveValidationResult,
    assert_valid_directive,
    validate_directive,
)

__all__ = [
    "DirectiveLifecycle",
    "DirectiveNotFoundError",
    "DirectiveValidationError",
    "DirectiveValidationIssue",
    "DirectiveValidationResult",
    "DuplicateTaskError",
    "InvalidTransitionError",
    "PlannerResponseError",
    "assert_valid_directive",
    "encode",
    "payload_hash",
    "task_hash",
    "validate_directive",
]
