"""Stable constants shared across the intake pipeline."""

from __future__ import annotations

from typing import Final

# Directive contract.
DIRECTIVE_VERSION: Final[str] = "directive_v1"
DEFAULT_DIRECTIVE_SCHEMA_VERSION: Final[str] = "v1"
DEFAULT_TASK_TYPE: Final[str] = "generic"
DEFAULT_TASK_PRIORITY: Final[int] = 3
DEFAULT_TASK_PHASE: Final[int] = 0
DIRECTIVE_TITLE_MAX_LEN: Final[int] = 120

# Directive field bounds.
OBJECTIVE_MIN_LEN: Final[int] = 10
OBJECTIVE_MAX_LEN: Final[int] = 500
CONTEXT_SUMMARY_MAX_LEN: Final[int] = 2_000
APPLY_NOTES_MAX_LEN: Final[int] = 1_000
SCHEMA_VERSION_MAX_LEN: Final[int] = 20
ESTIMATED_IMPACT_MAX_LEN: Final[int] = 500
SUCCESS_CRITERION_MAX_LEN: Final[int] = 500
RISK_ID_MAX_LEN: Final[int] = 100
RISK_TEXT_MAX_LEN: Final[int] = 500
TASK_ID_MAX_LEN: Final[int] = 200
TASK_TYPE_MAX_LEN: Final[int] = 50
TASK_TITLE_MAX_LEN: Final[int] = 200
TASK_STEP_MAX_LEN: Final[int] = 500
TASK_MAX_STEPS: Final[int] = 20
TASK_DESCRIPTION_MAX_LEN: Final[int] = 4_000
TASK_PRIORITY_RANGE: Final[tuple[int, int]] = (1, 5)
TASK_PHASE_RANGE: Final[tuple[int, int]] = (0, 99)
REQUEST_ID_MAX_LEN: Final[int] = 200
REQUEST_REASON_MAX_LEN: Final[int] = 500

# Record provenance.
DEFAULT_DIRECTIVE_SOURCE: Final[str] = "planner"
DEFAULT_SCOPE: Final[str] = "default"
DEFAULT_APPLIED_BY: Final[str] = "human"
DEFAULT_MAX_DIRECTIVES_PER_RESPONSE: Final[int] = 3

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
DEFAULT_STATE_DB_PATH: Final[str] = "state/directives.sqlite"
DEFAULT_LOG_DIR: Final[str] = "logs/"

__all__ = [
    "APPLY_NOTES_MAX_LEN",
    "CONFIG_SCHEMA_VERSION",
    "CONTEXT_SUMMARY_MAX_LEN",
    "DEFAULT_APPLIED_BY",
    "DEFAULT_DIRECTIVE_SCHEMA_VERSION",
    "DEFAULT_DIRECTIVE_SOURCE",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_DIRECTIVES_PER_RESPONSE",
    "DEFAULT_SCOPE",
    "DEFAULT_STATE_DB_PATH",
    "DEFAULT_TASK_PHASE",
    "DEFAULT_TASK_PRIORITY",
    "DEFAULT_TASK_TYPE",
    "DIRECTIVE_TITLE_MAX_LEN",
    "DIRECTIVE_VERSION",
    "ESTIMATED_IMPACT_MAX_LEN",
    "OBJECTIVE_MAX_LEN",
    "OBJECTIVE_MIN_LEN",
    "REQUEST_ID_MAX_LEN",
    "REQUEST_REASON_MAX_LEN",
    "RISK_ID_MAX_LEN",
    "RISK_TEXT_MAX_LEN",
    "SCHEMA_VERSION_MAX_LEN",
    "STATE_DB_SCHEMA_VERSION",
    "SUCCESS_CRITERION_MAX_LEN",
    "TASK_DESCRIPTION_MAX_LEN",
    "TASK_ID_MAX_LEN",
    "TASK_MAX_STEPS",
    "TASK_PHASE_RANGE",
    "TASK_PRIORITY_RANGE",
    "TASK_STEP_MAX_LEN",
    "TASK_TITLE_MAX_LEN",
    "TASK_TYPE_MAX_LEN",
]
