"""Configuration loading for practice-audit."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from practice_audit.scanner import DEFAULT_EXCLUDE, DEFAULT_INCLUDE

CONFIG_FILENAMES = (".practice-audit.toml", "practice-audit.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("practice_audit", "practice-audit")

SEVERITIES = ("warning", "error")
CATEGORIES = ("architecture", "database", "routes", "templates", "testing", "tooling")
OUTPUT_FORMATS = ("text", "json")
DEFAULT_TIMEOUT_SECONDS = 10.0

_TOP_LEVEL_KEYS = {"format", "include", "exclude", "jobs", "timeout_seconds", "categories", "rules"}
_RULE_KEYS = {"enabled", "severity"}


class ConfigError(ValueError):
    """Raised when configuration or rule selection is invalid."""


@dataclass(frozen=True, slots=True)
class RuleConfig:
    """Per-rule overrides."""

    enabled: bool | None = None
    severity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "severity": self.severity}


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    format: str = "text"
    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    jobs: int | None = None
    timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS
    categories: dict[str, bool] = field(default_factory=dict)
    rules: dict[str, RuleConfig] = field(default_factory=dict)
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "include": list(self.include),
            "exclude": list(self.exclude),
            "jobs": self.jobs,
            "timeout_seconds": self.timeout_seconds,
            "categories": dict(self.categories),
            "rules": {rule_id: item.to_dict() for rule_id, item in sorted(self.rules.items())},
            "source": self.source,
        }


def load_app_config(root: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from explicit path or project-local files with precedence."""
    root = root.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (root / config_path)
        if not resolved.exists():
            raise ConfigError(f"Config file does not exist: {resolved}")
        mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
        return _from_mapping(mapping, source=str(resolved))

    for filename in CONFIG_FILENAMES:
        resolved = root / filename
        if resolved.exists():
            mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
            return _from_mapping(mapping, source=str(resolved))

    pyproject_path = root / PYPROJECT_FILENAME
    if pyproject_path.exists():
        mapping = _extract_config_mapping(_load_toml(pyproject_path), source_path=pyproject_path)
        if mapping:
            return _from_mapping(mapping, source=str(pyproject_path))

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config template users can customize."""
    return "\n".join(
        [
            'format = "text"',
            'include = ["*.php"]',
            "exclude = [",
            '  ".git/*",',
            '  "bootstrap/cache/*",',
            '  "node_modules/*",',
            '  "storage/*",',
            '  "vendor/*",',
            "]",
            "# jobs = 4",
            f"timeout_seconds = {DEFAULT_TIMEOUT_SECONDS}",
            "",
            "[categories]",
            "architecture = true",
            "database = true",
            "routes = true",
            "templates = true",
            "testing = true",
            "",
            "[rules.mass-assignment]",
            'severity = "error"',
            "",
            "[rules.route-closures]",
            "enabled = false",
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    return loaded


def _extract_config_mapping(loaded: dict[str, Any], *, source_path: Path) -> dict[str, Any]:
    if source_path.name == PYPROJECT_FILENAME:
        section = _find_pyproject_tool_section(loaded)
        return section if section is not None else {}

    tool_section = _find_pyproject_tool_section(loaded)
    if tool_section is not None:
        return tool_section
    return loaded


def _find_pyproject_tool_section(loaded: dict[str, Any]) -> dict[str, Any] | None:
    tool = loaded.get("tool")
    if not isinstance(tool, dict):
        return None
    for key in PYPROJECT_TOOL_KEYS:
        section = tool.get(key)
        if isinstance(section, dict):
            return section
    return None


def _from_mapping(mapping: dict[str, Any], *, source: str) -> AppConfig:
    _reject_unknown_keys(mapping, _TOP_LEVEL_KEYS, "config")

    raw_jobs = mapping.get("jobs")
    jobs = None if raw_jobs is None else _as_int(raw_jobs, "jobs")
    if jobs is not None and jobs < 1:
        raise ConfigError("jobs must be >= 1")

    timeout = _as_float(mapping.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "timeout_seconds")
    if timeout <= 0:
        raise ConfigError("timeout_seconds must be > 0")

    include = mapping.get("include")
    exclude = mapping.get("exclude")
    return AppConfig(
        format=_as_choice(mapping.get("format", "text"), OUTPUT_FORMATS, "format"),
        include=DEFAULT_INCLUDE if include is None else _as_glob_list(include, "include"),
        exclude=DEFAULT_EXCLUDE if exclude is None else _as_glob_list(exclude, "exclude"),
        jobs=jobs,
        timeout_seconds=timeout,
        categories=_parse_categories(_as_table(mapping.get("categories"), "categories")),
        rules=_parse_rules(_as_table(mapping.get("rules"), "rules")),
        source=source,
    )


def _parse_categories(value: dict[str, Any]) -> dict[str, bool]:
    unknown = [key for key in value if key not in CATEGORIES]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown rule categories: {joined}")
    return {key: _as_bool(raw, f"categories.{key}") for key, raw in value.items()}


def _parse_rules(value: dict[str, Any]) -> dict[str, RuleConfig]:
    parsed: dict[str, RuleConfig] = {}
    for rule_id, raw in value.items():
        field_name = f"rules.{rule_id}"
        table = _as_table(raw, field_name)
        _reject_unknown_keys(table, _RULE_KEYS, field_name)
        enabled = table.get("enabled")
        severity = table.get("severity")
        if severity is not None:
            severity = _as_choice(severity, SEVERITIES, f"{field_name}.severity")
        parsed[rule_id] = RuleConfig(
            enabled=None if enabled is None else _as_bool(enabled, f"{field_name}.enabled"),
            severity=severity,
        )
    return parsed


def _reject_unknown_keys(value: dict[str, Any], allowed: set[str], field_name: str) -> None:
    unknown = [key for key in value if key not in allowed]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {field_name}: {joined}")


def validate_glob(pattern: str, field_name: str) -> str:
    """Reject empty, absolute, or bracket-unbalanced glob patterns."""
    if not pattern.strip():
        raise ConfigError(f"{field_name} contains an empty glob")
    if pattern.startswith("/"):
        raise ConfigError(f"{field_name} globs are relative to the audited root: {pattern}")
    depth = 0
    for char in pattern:
        if char == "[":
            depth += 1
        elif char == "]" and depth:
            depth -= 1
    if depth:
        raise ConfigError(f"{field_name} has an invalid glob: {pattern}")
    return pattern


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a table/object")
    return value


def _as_glob_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{field_name} must be a list of strings")
        items.append(validate_glob(item, field_name))
    return tuple(items)


def _as_choice(raw: Any, allowed: tuple[str, ...], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ConfigError(f"{field_name} must be one of: {choices}")
    return value


def _as_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{field_name} must be an integer")
    return raw


def _as_bool(raw: Any, field_name: str) -> bool:
    if not isinstance(raw, bool):
        raise ConfigError(f"{field_name} must be a boolean")
    return raw


def _as_float(raw: Any, field_name: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ConfigError(f"{field_name} must be a number")
    return float(raw)
