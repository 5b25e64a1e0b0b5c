"""Route declaration practice rules."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet, RouteFact
from practice_audit.rules.base import Match, Rule


def _describe(route: RouteFact) -> str:
    return f"{route.verb.upper()} {route.uri}"


def _unnamed_routes(facts: FactSet) -> Iterator[Match]:
    for route in facts.get("routes") or ():
        if not route.named:
            yield Match(line=route.line, subject=_describe(route))


def _closure_routes(facts: FactSet) -> Iterator[Match]:
    for route in facts.get("routes") or ():
        if route.closure:
            yield Match(line=route.line, subject=_describe(route))


RULES = (
    Rule(
        rule_id="named-routes",
        title="Name every route",
        category="routes",
        severity="warning",
        kinds=("route-list",),
        predicate=_unnamed_routes,
        message="Route {subject} has no name.",
        remediation=(
            "Chain ->name('resource.action') and generate URLs with route() instead of paths."
        ),
    ),
    Rule(
        rule_id="route-closures",
        title="Point routes at controllers",
        category="routes",
        severity="warning",
        kinds=("route-list",),
        predicate=_closure_routes,
        message="Route {subject} is handled by a closure.",
        remediation=(
            "Move the handler into a controller action, e.g. [PostController::class, 'index'], "
            "so routes can be cached."
        ),
    ),
)
