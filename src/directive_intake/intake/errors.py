"""Error taxonomy for directive intake and lifecycle operations."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from directive_intake.constants import DIRECTIVE_VERSION


@dataclass(frozen=True, slots=True)
class DirectiveValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str

    def render(self) -> str:
        return f"{self.path}: {self.message}"


class DirectiveValidationError(ValueError):
    """Raised when a raw payload violates the directive contract."""

    def __init__(self, issues: Sequence[DirectiveValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.render()}" for item in self.issues)
        super().__init__(f"{DIRECTIVE_VERSION} validation failed:\n{rendered}")

    def to_dict(self) -> dict[str, object]:
        return {
            "error": "validation_failed",
            "issues": [{"path": item.path, "message": item.message} for item in self.issues],
        }


class DirectiveNotFoundError(LookupError):
    """Raised when a directive id does not exist in the directive store."""

    def __init__(self, directive_id: str) -> None:
        self.directive_id = directive_id
        super().__init__(f"directive not found: {directive_id}")


class InvalidTransitionError(RuntimeError):
    """Raised when an operation is requested in the wrong lifecycle state."""

    def __init__(self, directive_id: str, current: str, attempted: str) -> None:
        self.directive_id = directive_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"directive {directive_id} cannot move from {current} to {attempted}"
        )


class DuplicateTaskError(RuntimeError):
    """Raised by a task store when ``(scope, content_hash)`` already exists."""

    def __init__(self, scope: str, content_hash: str) -> None:
        self.scope = scope
        self.content_hash = content_hash
        super().__init__(f"task with content hash {content_hash} already exists in {scope!r}")


class PlannerResponseError(ValueError):
    """Raised when planner output cannot be decoded into directive candidates."""


# Short names used by callers that speak in terms of the lifecycle contract.
ValidationError = DirectiveValidationError
NotFoundError = DirectiveNotFoundError


__all__ = [
    "DirectiveNotFoundError",
    "DirectiveValidationError",
    "DirectiveValidationIssue",
    "DuplicateTaskError",
    "InvalidTransitionError",
    "NotFoundError",
    "PlannerResponseError",
    "ValidationError",
]
