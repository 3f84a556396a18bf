"""Command-line interface router for nexus-directive-intake."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from directive_intake.config import IntakeSettings, effective_config, load_config
from directive_intake.domain import ids
from directive_intake.domain.models import DirectiveRecord, DirectiveStatus, Task
from directive_intake.intake.errors import (
    DirectiveNotFoundError,
    DirectiveValidationError,
    InvalidTransitionError,
    PlannerResponseError,
)
from directive_intake.intake.fingerprint import payload_hash
from directive_intake.intake.lifecycle import DirectiveLifecycle
from directive_intake.intake.planner_response import ingest_planner_response
from directive_intake.intake.schema import validate_directive
from directive_intake.observability import correlation_scope, setup_logging, shutdown_logging
from directive_intake.persistence.repositories import (
    DecisionLogRepo,
    DirectiveRepo,
    RequiredDataRepo,
    TaskRepo,
)
from directive_intake.persistence.state_db import StateDB


class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class _Runtime:
    settings: IntakeSettings
    db: StateDB
    directives: DirectiveRepo
    tasks: TaskRepo
    requests: RequiredDataRepo
    decisions: DecisionLogRepo
    lifecycle: DirectiveLifecycle


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for every intake workflow."""

    parser = argparse.ArgumentParser(
        prog="directives",
        description=(
            "nexus-directive-intake — review and apply planner directives.\n\n"
            "Common workflows:\n"
            "  directives ingest response.txt   Create directives from planner output\n"
            "  directives approve dir-...       Approve a pending directive\n"
            "  directives apply dir-...         Materialize its tasks into the backlog\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to directives TOML config (default: ./directives.toml if present).",
    )
    common.add_argument(
        "--state-db",
        dest="state_db",
        default=None,
        help="Override paths.state_db for this invocation.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate", parents=[common], help="Validate a directive file without storing it"
    )
    validate_parser.add_argument("file", help="Directive JSON/YAML file, or '-' for stdin")
    validate_parser.set_defaults(handler=_cmd_validate)

    create_parser = subparsers.add_parser(
        "create", parents=[common], help="Validate and store a directive for review"
    )
    create_parser.add_argument("file", help="Directive JSON/YAML file, or '-' for stdin")
    create_parser.add_argument("--scope", default=None, help="Backlog scope (default from config)")
    create_parser.add_argument("--source", default="cli", help="Provenance label")
    create_parser.set_defaults(handler=_cmd_create)

    ingest_parser = subparsers.add_parser(
        "ingest", parents=[common], help="Create directives from raw planner output"
    )
    ingest_parser.add_argument("file", help="Planner response text file, or '-' for stdin")
    ingest_parser.add_argument("--scope", default=None, help="Backlog scope (default from config)")
    ingest_parser.set_defaults(handler=_cmd_ingest)

    approve_parser = subparsers.add_parser(
        "approve", parents=[common], help="Approve a pending directive"
    )
    approve_parser.add_argument("directive_id")
    approve_parser.set_defaults(handler=_cmd_approve)

    reject_parser = subparsers.add_parser(
        "reject", parents=[common], help="Reject a pending directive"
    )
    reject_parser.add_argument("directive_id")
    reject_parser.add_argument("--reason", default=None, help="Why the directive was rejected")
    reject_parser.set_defaults(handler=_cmd_reject)

    apply_parser = subparsers.add_parser(
        "apply", parents=[common], help="Materialize an approved directive's tasks"
    )
    apply_parser.add_argument("directive_id")
    apply_parser.set_defaults(handler=_cmd_apply)

    show_parser = subparsers.add_parser("show", parents=[common], help="Show one directive")
    show_parser.add_argument("directive_id")
    show_parser.set_defaults(handler=_cmd_show)

    list_parser = subparsers.add_parser("list", parents=[common], help="List directives")
    list_parser.add_argument(
        "--status",
        default=None,
        choices=[status.value for status in DirectiveStatus],
        help="Only list directives in this status",
    )
    list_parser.add_argument("--scope", default=None)
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.set_defaults(handler=_cmd_list)

    tasks_parser = subparsers.add_parser(
        "tasks", parents=[common], help="List tasks materialized from a directive"
    )
    tasks_parser.add_argument("directive_id")
    tasks_parser.set_defaults(handler=_cmd_tasks)

    request_add_parser = subparsers.add_parser(
        "request-add", parents=[common], help="Register a required-data request"
    )
    request_add_parser.add_argument("request_id")
    request_add_parser.add_argument("--reason", default="")
    request_add_parser.set_defaults(handler=_cmd_request_add)

    request_provide_parser = subparsers.add_parser(
        "request-provide", parents=[common], help="Mark a required-data request as provided"
    )
    request_provide_parser.add_argument("request_id")
    request_provide_parser.set_defaults(handler=_cmd_request_provide)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show the redacted effective config"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_validate(args: argparse.Namespace) -> int:
    raw = _load_payload(args.file)
    result = validate_directive(raw)
    issues = [issue.render() for issue in result.issues]
    digest = payload_hash(result.directive) if result.directive is not None else None

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "validate",
                "valid": result.is_valid,
                "issues": issues,
                "payload_hash": digest,
            }
        )
    elif result.is_valid:
        print(f"valid directive_v1 (payload_hash {digest})")
    else:
        print("invalid directive_v1:")
        for line in issues:
            print(f"- {line}")
    return 0 if result.is_valid else 1


def _cmd_create(args: argparse.Namespace) -> int:
    raw = _load_payload(args.file)
    with _runtime(args) as runtime:
        try:
            record = runtime.lifecycle.create(raw, scope=args.scope, source=args.source)
        except DirectiveValidationError as exc:
            _report_validation_failure(args, exc)
            return 1
    _emit_record(args, "create", record)
    return 0


def _cmd_ingest(args: argparse.Namespace) -> int:
    text = _read_text(args.file)
    with _runtime(args) as runtime:
        try:
            result = ingest_planner_response(
                runtime.lifecycle,
                text,
                max_directives=runtime.settings.max_directives_per_response,
                scope=args.scope,
            )
        except PlannerResponseError as exc:
            raise CLIError(str(exc)) from exc

    if _flag(args, "json"):
        _emit_json({"command": "ingest", **result.to_dict()})
    else:
        print(f"created {len(result.created)} directive(s)")
        for record in result.created:
            print(f"  {record.id}  {record.title}")
        if result.dropped:
            print(f"dropped {result.dropped} directive(s) over the per-response limit")
        for line in result.errors:
            print(f"- {line}")
    return 1 if result.errors and not result.created else 0


def _cmd_approve(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime, _rejections(), correlation_scope(
        directive_id=args.directive_id
    ):
        record = runtime.lifecycle.approve(args.directive_id)
    _emit_record(args, "approve", record)
    return 0


def _cmd_reject(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime, _rejections(), correlation_scope(
        directive_id=args.directive_id
    ):
        record = runtime.lifecycle.reject(args.directive_id, args.reason)
    _emit_record(args, "reject", record)
    return 0


def _cmd_apply(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime, _rejections(), correlation_scope(
        directive_id=args.directive_id
    ):
        result = runtime.lifecycle.apply(args.directive_id)

    if _flag(args, "json"):
        _emit_json({"command": "apply", **result.to_dict()})
    elif result.blocked_by_requests:
        print(f"{result.directive_id}: blocked by required requests")
        for request_id in result.missing_requests:
            print(f"  waiting on {request_id}")
    elif result.idempotent:
        print(f"{result.directive_id}: already applied")
    else:
        print(
            f"{result.directive_id}: applied "
            f"({result.tasks_created} created, {result.tasks_skipped} skipped)"
        )
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime, _rejections():
        record = runtime.lifecycle.get(args.directive_id)
        decisions = runtime.decisions.list_for_directive(record.id)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "show",
                "directive": record.to_dict(),
                "decisions": [entry.to_dict() for entry in decisions],
            }
        )
        return 0

    _print_record(record)
    print(f"objective: {record.directive.objective}")
    for proposal in record.directive.tasks_to_create:
        print(f"  task {proposal.task_id or '-'}: {proposal.title}")
    for request in record.directive.required_requests:
        print(f"  requires {request.request_id}")
    for entry in decisions:
        print(f"  decision {entry.decision_key} at {entry.to_dict()['created_at']}")
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    if args.limit < 1:
        raise CLIError("--limit must be >= 1", exit_code=2)
    with _runtime(args) as runtime:
        records = runtime.directives.list(status=args.status, scope=args.scope, limit=args.limit)

    if _flag(args, "json"):
        _emit_json({"command": "list", "directives": [_summary(item) for item in records]})
        return 0
    if not records:
        print("no directives")
    for record in records:
        _print_record(record)
    return 0


def _cmd_tasks(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime, _rejections():
        record = runtime.lifecycle.get(args.directive_id)
        tasks = runtime.tasks.list_for_directive(record.id)

    if _flag(args, "json"):
        _emit_json(
            {"command": "tasks", "directive_id": record.id, "tasks": [t.to_dict() for t in tasks]}
        )
        return 0
    if not tasks:
        print(f"{record.id}: no tasks")
    for task in tasks:
        _print_task(task)
    return 0


def _cmd_request_add(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime:
        try:
            record = runtime.requests.upsert(args.request_id, reason=args.reason)
        except ValueError as exc:
            raise CLIError(str(exc)) from exc
    if _flag(args, "json"):
        _emit_json({"command": "request-add", "request": record.to_dict()})
    else:
        print(f"{record.id}: {record.status.value}")
    return 0


def _cmd_request_provide(args: argparse.Namespace) -> int:
    with _runtime(args) as runtime:
        try:
            record = runtime.requests.mark_provided(args.request_id)
        except ValueError as exc:
            raise CLIError(str(exc)) from exc
    if _flag(args, "json"):
        _emit_json({"command": "request-provide", "request": record.to_dict()})
    else:
        print(f"{record.id}: {record.status.value}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = effective_config(config)
    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
    else:
        print(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Wiring helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    return load_config(
        getattr(args, "config_path", None),
        cli_overrides={"paths.state_db": getattr(args, "state_db", None)},
    )


@contextmanager
def _runtime(args: argparse.Namespace) -> Iterator[_Runtime]:
    """Open the state DB, wire the lifecycle, and log to a per-session JSONL sink."""

    config = _load_effective_config(args)
    settings = IntakeSettings.from_config(config)
    handle = setup_logging(
        config["observability"],
        session_id=ids.generate_ulid(),
        log_dir=settings.log_dir,
    )
    try:
        db = StateDB(
            settings.state_db,
            busy_timeout_ms=settings.busy_timeout_ms,
            busy_retry_limit=settings.busy_retry_limit,
        )
        directives = DirectiveRepo(db)
        tasks = TaskRepo(db)
        requests = RequiredDataRepo(db)
        decisions = DecisionLogRepo(db)
        lifecycle = DirectiveLifecycle(
            directives,
            tasks,
            requests,
            decision_log=decisions,
            unit_of_work=db.transaction,
            default_scope=settings.default_scope,
            applied_by=settings.applied_by,
        )
        with correlation_scope(command=args.command):
            yield _Runtime(
                settings=settings,
                db=db,
                directives=directives,
                tasks=tasks,
                requests=requests,
                decisions=decisions,
                lifecycle=lifecycle,
            )
    finally:
        shutdown_logging(handle)


@contextmanager
def _rejections() -> Iterator[None]:
    """Turn lifecycle rejections into exit code 1 failures."""

    try:
        yield
    except (DirectiveNotFoundError, InvalidTransitionError) as exc:
        raise CLIError(str(exc)) from exc


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"unable to read {path}: {exc}", exit_code=2) from exc


def _load_payload(source: str) -> object:
    """Decode a directive file: JSON first, YAML for ``.yaml``/``.yml`` or as fallback."""

    text = _read_text(source)
    if source.endswith((".yaml", ".yml")):
        return _load_yaml(text, source)
    try:
        return json.loads(text)
    except json.JSONDecodeError as json_exc:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            raise CLIError(f"{source}: invalid JSON: {json_exc.msg}") from json_exc


def _load_yaml(text: str, source: str) -> object:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CLIError(f"{source}: invalid YAML: {exc}") from exc


def _report_validation_failure(args: argparse.Namespace, exc: DirectiveValidationError) -> None:
    if _flag(args, "json"):
        _emit_json({"command": args.command, **exc.to_dict()})
        return
    print(str(exc), file=sys.stderr)


def _summary(record: DirectiveRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "status": record.status.value,
        "scope": record.scope,
        "title": record.title,
        "payload_hash": record.payload_hash,
        "task_count": len(record.directive.tasks_to_create),
    }


def _emit_record(args: argparse.Namespace, command: str, record: DirectiveRecord) -> None:
    if _flag(args, "json"):
        _emit_json({"command": command, "directive": record.to_dict()})
        return
    _print_record(record)


def _print_record(record: DirectiveRecord) -> None:
    print(f"{record.id}  {record.status.value:<14}  {record.scope}  {record.title}")
    if record.rejection_reason:
        print(f"  reason: {record.rejection_reason}")


def _print_task(task: Task) -> None:
    label = task.proposal_task_id or "-"
    print(f"{task.id}  {task.status.value:<8}  p{task.priority}  [{label}] {task.title}")


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
