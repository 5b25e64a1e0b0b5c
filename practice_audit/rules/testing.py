"""Test isolation rules."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet
from practice_audit.rules.base import Match, Rule

RESET_TRAITS = {
    "DatabaseMigrations",
    "DatabaseTransactions",
    "DatabaseTruncation",
    "LazilyRefreshDatabase",
    "RefreshDatabase",
}


def _unisolated_database_tests(facts: FactSet) -> Iterator[Match]:
    if facts.get("extends") != "TestCase":
        return
    traits = facts.get("traits")
    database_calls = facts.get("database_calls")
    if traits is None or not database_calls:
        return
    if RESET_TRAITS.isdisjoint(traits):
        yield Match(line=facts.line, subject=facts.name)


RULES = (
    Rule(
        rule_id="test-database-isolation",
        title="Reset the database between tests",
        category="testing",
        severity="warning",
        kinds=("class",),
        predicate=_unisolated_database_tests,
        message="Test {subject} writes to the database without resetting it between tests.",
        remediation="Add `use RefreshDatabase;` (or DatabaseTransactions) to the test class.",
    ),
)
