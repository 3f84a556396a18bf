"""Domain entities and identifier helpers."""

from directive_intake.domain.models import (
    ApplyResult,
    Decision,
    DecisionEntry,
    Directive,
    DirectiveRecord,
    DirectiveStatus,
    RequestStatus,
    RequiredRequest,
    Risk,
    RiskSeverity,
    Task,
    TaskProposal,
    TaskStatus,
)

__all__ = [
    "ApplyResult",
    "Decision",
    "DecisionEntry",
    "Directive",
    "DirectiveRecord",
    "DirectiveStatus",
    "RequestStatus",
    "RequiredRequest",
    "Risk",
    "RiskSeverity",
    "Task",
    "TaskProposal",
    "TaskStatus",
]
