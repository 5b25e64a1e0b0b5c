"""Rules package."""

from collections.abc import Iterable
from dataclasses import dataclass, replace

from practice_audit.config import CATEGORIES, SEVERITIES, AppConfig, ConfigError
from practice_audit.rules import architecture, database, routes, templates, testing, tooling
from practice_audit.rules.base import Rule

_RULE_MODULES = (architecture, database, routes, templates, testing, tooling)


@dataclass(frozen=True, slots=True)
class RuleInfo:
    """Rule metadata for listing and selection."""

    rule_id: str
    title: str
    category: str
    severity: str
    remediation: str


def builtin_rules() -> list[Rule]:
    """Return every built-in rule in catalogue order."""
    rules: list[Rule] = []
    for module in _RULE_MODULES:
        rules.extend(module.RULES)
    return rules


def validate_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Check rule definitions, raising ``ConfigError`` on the first problem."""
    validated: list[Rule] = []
    seen: set[str] = set()
    for rule in rules:
        if not rule.rule_id:
            raise ConfigError("Rule definition has an empty rule id")
        if rule.rule_id in seen:
            raise ConfigError(f"Duplicate rule id: {rule.rule_id}")
        if not callable(rule.predicate):
            raise ConfigError(f"Rule {rule.rule_id} has no predicate")
        if rule.category not in CATEGORIES:
            raise ConfigError(f"Rule {rule.rule_id} has unknown category '{rule.category}'")
        if rule.severity not in SEVERITIES:
            raise ConfigError(f"Rule {rule.rule_id} has unknown severity '{rule.severity}'")
        seen.add(rule.rule_id)
        validated.append(rule)
    return validated


def load_rules(
    config: AppConfig | None = None,
    *,
    rule_sources: Iterable[Rule] | None = None,
    only: list[str] | None = None,
    exclude: list[str] | None = None,
) -> list[Rule]:
    """Build the active rule set.

    Configuration toggles categories and rules and overrides severities.
    ``only`` (the CLI ``--rules`` list) replaces the configured selection
    entirely; ``exclude`` removes rules from whatever is selected.
    """
    effective = config or AppConfig()
    rules = validate_rules(rule_sources if rule_sources is not None else builtin_rules())
    registry = {rule.rule_id: rule for rule in rules}

    requested = set(effective.rules) | set(only or []) | set(exclude or [])
    unknown = [rule_id for rule_id in requested if rule_id not in registry]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown rule ids: {joined}")

    excluded = set(exclude or [])
    selected_ids = set(only) if only is not None else None
    active: list[Rule] = []
    for rule in rules:
        overrides = effective.rules.get(rule.rule_id)
        if selected_ids is not None:
            enabled = rule.rule_id in selected_ids
        else:
            enabled = effective.categories.get(rule.category, True)
            if overrides is not None and overrides.enabled is not None:
                enabled = overrides.enabled
        if not enabled or rule.rule_id in excluded:
            continue
        if overrides is not None and overrides.severity is not None:
            rule = replace(rule, severity=overrides.severity)
        active.append(rule)
    return active


def list_rule_info(rules: Iterable[Rule] | None = None) -> list[RuleInfo]:
    """Return metadata for rules, defaulting to the built-in catalogue."""
    return [
        RuleInfo(
            rule_id=rule.rule_id,
            title=rule.title,
            category=rule.category,
            severity=rule.severity,
            remediation=rule.remediation,
        )
        for rule in (rules if rules is not None else builtin_rules())
    ]


def parse_rule_list(value: str | None) -> list[str] | None:
    """Split a comma-separated rule id list, dropping blanks and duplicates."""
    if value is None:
        return None
    return _dedupe([item.strip() for item in value.split(",") if item.strip()])


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        output.append(item)
    return output
