"""Rules reporting problems of the audit itself."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet
from practice_audit.rules.base import Match, Rule

UNPARSEABLE_RULE_ID = "unparseable-source"
RULE_FAULT_RULE_ID = "rule-fault"


def _unparseable(facts: FactSet) -> Iterator[Match]:
    yield Match(line=facts.line, subject=facts.get("reason") or "unknown reason")


def _no_matches(facts: FactSet) -> Iterator[Match]:
    # Findings for this rule are raised by the engine when another rule fails.
    return iter(())


RULES = (
    Rule(
        rule_id=UNPARSEABLE_RULE_ID,
        title="Source file could not be analysed",
        category="tooling",
        severity="warning",
        kinds=("unparseable",),
        predicate=_unparseable,
        message="File could not be analysed: {subject}.",
        remediation="Fix the syntax or encoding, or exclude the file from the audit.",
    ),
    Rule(
        rule_id=RULE_FAULT_RULE_ID,
        title="Rule failed while evaluating a unit",
        category="tooling",
        severity="warning",
        kinds=(),
        predicate=_no_matches,
        message="Rule {subject} failed on {name}.",
        remediation="Report the failure; other rules still ran on this unit.",
    ),
)
