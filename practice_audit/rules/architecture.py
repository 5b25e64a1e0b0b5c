"""Architecture practice rules."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet
from practice_audit.rules.base import Match, Rule

# Bases whose job is wiring the container or building fixtures.
LOCATOR_EXEMPT_BASES = {"ServiceProvider", "TestCase", "Seeder", "Factory"}


def _inline_service_lookups(facts: FactSet) -> Iterator[Match]:
    lookups = facts.get("service_lookups")
    if not lookups:
        return
    if facts.get("extends") in LOCATOR_EXEMPT_BASES or facts.name.endswith("ServiceProvider"):
        return
    for line, expression in lookups:
        yield Match(line=line, subject=expression)


def _env_calls(facts: FactSet) -> Iterator[Match]:
    for line in facts.get("env_calls") or ():
        yield Match(line=line, subject="env()")


def _controller_middleware(facts: FactSet) -> Iterator[Match]:
    if not facts.name.endswith("Controller"):
        return
    for line in facts.get("middleware_calls") or ():
        yield Match(line=line, subject="$this->middleware()")


RULES = (
    Rule(
        rule_id="constructor-injection",
        title="Inject dependencies through the constructor",
        category="architecture",
        severity="warning",
        kinds=("class",),
        predicate=_inline_service_lookups,
        message="{name} resolves a dependency inline with {subject}.",
        remediation=(
            "Type-hint the dependency in __construct() and let the service container "
            "inject it, so the class can be tested with a substitute."
        ),
    ),
    Rule(
        rule_id="env-outside-config",
        title="Read environment values only from configuration files",
        category="architecture",
        severity="error",
        kinds=("class", "route-list", "view"),
        predicate=_env_calls,
        message="{name} calls env() outside the config directory.",
        remediation=(
            "Expose the value from a file in config/ and read it with config('file.key'); "
            "env() returns null once the configuration is cached."
        ),
    ),
    Rule(
        rule_id="controller-middleware",
        title="Attach middleware to routes, not controller constructors",
        category="architecture",
        severity="warning",
        kinds=("class",),
        predicate=_controller_middleware,
        message="{name} registers middleware with {subject}.",
        remediation=(
            "Declare middleware on the route or route group with ->middleware(), "
            "or implement HasMiddleware on the controller."
        ),
    ),
)
