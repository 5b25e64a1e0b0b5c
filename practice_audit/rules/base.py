"""Rule definition model and finding record."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from practice_audit.facts import FactSet


@dataclass(frozen=True, slots=True)
class Match:
    """A predicate hit inside one fact set."""

    line: int
    subject: str


@dataclass(frozen=True, slots=True)
class Finding:
    """A single rule violation at a source location."""

    rule_id: str
    path: str
    line: int
    severity: str
    message: str
    remediation: str
    category: str


Predicate = Callable[[FactSet], Iterable[Match]]


@dataclass(frozen=True, slots=True)
class Rule:
    """One checkable practice.

    ``predicate`` must be pure: it reads the fact set and yields matches,
    yielding nothing when the attributes it needs are missing. ``message``
    may reference ``{subject}`` (the offending identifier) and ``{name}``
    (the unit name).
    """

    rule_id: str
    title: str
    category: str
    severity: str
    kinds: tuple[str, ...]
    predicate: Predicate
    message: str
    remediation: str

    def evaluate(self, facts: FactSet) -> list[Finding]:
        """Evaluate one fact set and return findings."""
        if facts.kind not in self.kinds:
            return []
        findings: list[Finding] = []
        for match in self.predicate(facts):
            findings.append(
                Finding(
                    rule_id=self.rule_id,
                    path=facts.path,
                    line=match.line,
                    severity=self.severity,
                    message=self.message.format(subject=match.subject, name=facts.name),
                    remediation=self.remediation,
                    category=self.category,
                )
            )
        return findings
