"""
nexus-directive-intake — runtime config loader.

File: src/directive_intake/config/loader.py
Last updated: 2026-10-18

Purpose
- Build the effective intake config from defaults, ``directives.toml``,
  ``DIRECTIVES_`` environment variables, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env > file > defaults.
- Environment variable names derived from config paths
  (``paths.state_db`` -> ``DIRECTIVES_PATHS_STATE_DB``).
- Path normalization relative to the config file location.
- A typed ``IntakeSettings`` view for wiring stores and the lifecycle.

Functional requirements
- Missing default config file is not an error; a missing explicit one is.
- Every layer is validated; the final result is always schema-valid.

Non-functional requirements
- Deterministic: same inputs produce the same config and the same dump.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from directive_intake.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "directives.toml"
ENV_PREFIX: Final[str] = "DIRECTIVES_"

_ValueKind = Literal["str", "int", "bool"]

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


@dataclass(frozen=True, slots=True)
class _EnvBinding:
    path: tuple[str, ...]
    kind: _ValueKind

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True, slots=True)
class IntakeSettings:
    """Typed projection of a validated config used to wire the runtime."""

    state_db: Path
    log_dir: Path
    default_scope: str
    max_directives_per_response: int
    applied_by: str
    busy_timeout_ms: int
    busy_retry_limit: int
    log_level: str
    log_to_stdout: bool
    redact_secrets: bool

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> IntakeSettings:
        valid = assert_valid_config(config)
        paths = valid["paths"]
        intake = valid["intake"]
        storage = valid["storage"]
        observability = valid["observability"]
        return cls(
            state_db=Path(paths["state_db"]),
            log_dir=Path(paths["log_dir"]),
            default_scope=intake["default_scope"],
            max_directives_per_response=intake["max_directives_per_response"],
            applied_by=intake["applied_by"],
            busy_timeout_ms=storage["busy_timeout_ms"],
            busy_retry_limit=storage["busy_retry_limit"],
            log_level=observability["log_level"],
            log_to_stdout=observability["log_to_stdout"],
            redact_secrets=observability["redact_secrets"],
        )


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    env_map = os.environ if environ is None else environ

    file_payload = _read_toml(resolved_path, required=config_path is not None)
    merged = assert_valid_config(merge_config(default_config(), file_payload))

    merged = merge_config(merged, _env_overrides(merged, env_map))
    merged = merge_config(merged, _cli_overrides(cli_overrides or {}))
    merged = assert_valid_config(merged)

    return assert_valid_config(normalize_paths(merged, base_dir=resolved_path.parent))


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> IntakeSettings:
    return IntakeSettings.from_config(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir`` and return a new mapping."""

    materialized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        section = materialized.get(field_path[0])
        if not isinstance(section, dict):
            continue
        raw = section.get(field_path[1])
        if isinstance(raw, str):
            section[field_path[1]] = _normalize_one_path(raw, base_dir)
    return materialized


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    bindings = _bindings_for(config)
    for env_name in sorted(bindings):
        raw = environ.get(env_name)
        if raw is None:
            continue
        binding = bindings[env_name]
        if binding.path == ("meta", "schema_version"):
            continue
        _set_nested(overrides, binding.path, _coerce_env(raw, binding, env_name))
    return overrides


def _bindings_for(config: Mapping[str, object]) -> dict[str, _EnvBinding]:
    bindings: dict[str, _EnvBinding] = {}
    for section_name in sorted(config):
        section = config[section_name]
        if not isinstance(section, Mapping):
            continue
        for key in sorted(section):
            kind = _kind_for_value(section[key])
            if kind is None:
                continue
            path = (section_name, key)
            bindings[env_name_for_path(path)] = _EnvBinding(path=path, kind=kind)
    return bindings


def _kind_for_value(value: object) -> _ValueKind | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, str):
        return "str"
    return None


def _coerce_env(raw: str, binding: _EnvBinding, env_name: str) -> object:
    value = raw.strip()
    if binding.kind == "str":
        return value
    if binding.kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {binding.dotted} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {binding.dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted keys (``storage.busy_retry_limit``); ``None`` values are unset flags."""

    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if len(path) < 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected section.field")
        _set_nested(payload, path, value)
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "IntakeSettings",
    "dump_effective_config",
    "effective_config",
    "env_name_for_path",
    "load_config",
    "load_settings",
    "normalize_paths",
]
