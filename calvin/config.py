from __future__ import annotations

from pathlib import Path
import tomllib
from typing import Any

from .errors import ConfigParseError, ConfigValidationError
from .models import (
    CONFLICT_POLICIES,
    DEFAULT_TARGETS,
    CalvinConfig,
    DeployConfig,
    Scope,
    SyncConfig,
    WatchConfig,
)


CONFIG_FILE_NAME = "config.toml"
CONFIG_VERSION = 1


def config_path(source: Path) -> Path:
    """Default config path inside the source dir (.promptpack/config.toml)."""

    return source / CONFIG_FILE_NAME


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigValidationError(path=path, message="file not found") from e
    except OSError as e:
        raise ConfigValidationError(path=path, message=f"unable to read file: {e}") from e

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        msg = getattr(e, "msg", str(e))
        lineno = getattr(e, "lineno", None)
        colno = getattr(e, "colno", None)
        raise ConfigParseError(path=path, message=str(msg), lineno=lineno, colno=colno) from e

    return data


def _unknown_keys_message(unknown: set[str]) -> str:
    keys = ", ".join(sorted(unknown))
    return f"unknown keys: {keys}"


def _check_keys(path: Path, table: dict[str, Any], allowed: set[str], where: str) -> None:
    unknown = set(table.keys()) - allowed
    if unknown:
        prefix = f"{where}: " if where else ""
        raise ConfigValidationError(path=path, message=prefix + _unknown_keys_message(unknown))


def _require_table(path: Path, value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigValidationError(path=path, message=f"{where}: expected table")
    return value


def _require_str(path: Path, value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise ConfigValidationError(path=path, message=f"{where}: expected string")
    return value


def _require_bool(path: Path, value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(path=path, message=f"{where}: expected bool")
    return value


def _require_int(path: Path, value: Any, where: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(path=path, message=f"{where}: expected integer")
    return value


def _require_str_list(path: Path, value: Any, where: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigValidationError(path=path, message=f"{where}: expected list of strings")
    return value


def _require_choice(path: Path, value: Any, where: str, choices: tuple[str, ...]) -> str:
    s = _require_str(path, value, where)
    if s not in choices:
        raise ConfigValidationError(path=path, message=f"{where}: expected one of {list(choices)}, got {s!r}")
    return s


def _parse_deploy(path: Path, raw: Any) -> DeployConfig:
    tbl = _require_table(path, raw, "deploy")
    _check_keys(path, tbl, {"scope", "targets"}, "deploy")

    scope = Scope.PROJECT
    if "scope" in tbl:
        scope = Scope(_require_choice(path, tbl["scope"], "deploy.scope", tuple(s.value for s in Scope)))

    targets = DEFAULT_TARGETS
    if "targets" in tbl:
        lst = _require_str_list(path, tbl["targets"], "deploy.targets")
        bad = sorted(set(lst) - set(DEFAULT_TARGETS))
        if bad:
            raise ConfigValidationError(
                path=path,
                message=f"deploy.targets: unknown targets {bad}; expected a subset of {list(DEFAULT_TARGETS)}",
            )
        # Deduplicate, keep declaration order.
        targets = tuple(dict.fromkeys(lst))

    return DeployConfig(scope=scope, targets=targets)


def _parse_sync(path: Path, raw: Any) -> SyncConfig:
    tbl = _require_table(path, raw, "sync")
    _check_keys(path, tbl, {"conflicts", "marker_scan"}, "sync")

    conflicts = "fail-fast"
    if "conflicts" in tbl:
        conflicts = _require_choice(path, tbl["conflicts"], "sync.conflicts", CONFLICT_POLICIES)
    marker_scan = True
    if "marker_scan" in tbl:
        marker_scan = _require_bool(path, tbl["marker_scan"], "sync.marker_scan")
    return SyncConfig(conflicts=conflicts, marker_scan=marker_scan)


def _parse_watch(path: Path, raw: Any) -> WatchConfig:
    tbl = _require_table(path, raw, "watch")
    _check_keys(path, tbl, {"debounce_ms"}, "watch")

    debounce_ms = 100
    if "debounce_ms" in tbl:
        debounce_ms = _require_int(path, tbl["debounce_ms"], "watch.debounce_ms")
        if debounce_ms < 0:
            raise ConfigValidationError(path=path, message="watch.debounce_ms: must be >= 0")
    return WatchConfig(debounce_ms=debounce_ms)


def parse_config(path: Path, data: dict[str, Any]) -> CalvinConfig:
    _check_keys(path, data, {"version", "deploy", "sync", "watch"}, "")

    version = CONFIG_VERSION
    if "version" in data:
        version = _require_int(path, data["version"], "version")
        if version != CONFIG_VERSION:
            raise ConfigValidationError(path=path, message=f"version: expected {CONFIG_VERSION}, got {version}")

    return CalvinConfig(
        version=version,
        deploy=_parse_deploy(path, data["deploy"]) if "deploy" in data else DeployConfig(),
        sync=_parse_sync(path, data["sync"]) if "sync" in data else SyncConfig(),
        watch=_parse_watch(path, data["watch"]) if "watch" in data else WatchConfig(),
    )


def load_config(source: Path, path: Path | None = None) -> CalvinConfig:
    """Load `.promptpack/config.toml`; a missing default file means defaults."""

    p = path or config_path(source)
    if path is None and not p.exists():
        return CalvinConfig()
    return parse_config(p, _load_toml(p))
