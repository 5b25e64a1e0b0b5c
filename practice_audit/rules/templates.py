"""Template organization rules."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet
from practice_audit.rules.base import Match, Rule


def _raw_echoes(facts: FactSet) -> Iterator[Match]:
    for line, expression in facts.get("raw_echoes") or ():
        yield Match(line=line, subject=expression)


def _template_queries(facts: FactSet) -> Iterator[Match]:
    for line, call in facts.get("queries") or ():
        yield Match(line=line, subject=call)


RULES = (
    Rule(
        rule_id="unescaped-output",
        title="Escape template output",
        category="templates",
        severity="warning",
        kinds=("view",),
        predicate=_raw_echoes,
        message="Template {name} prints {{!! {subject} !!}} without escaping.",
        remediation="Use {{ $value }} unless the value is trusted, pre-sanitized HTML.",
    ),
    Rule(
        rule_id="queries-in-templates",
        title="Keep queries out of templates",
        category="templates",
        severity="warning",
        kinds=("view",),
        predicate=_template_queries,
        message="Template {name} runs {subject} while rendering.",
        remediation="Load the data in the controller or a view composer and pass it to the view.",
    ),
)
