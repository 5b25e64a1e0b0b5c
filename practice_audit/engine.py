"""Rule evaluation and report assembly."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from practice_audit.facts import FactSet
from practice_audit.rules.base import Finding, Rule
from practice_audit.rules.tooling import RULE_FAULT_RULE_ID

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Report:
    """Frozen, ordered result of one audit run."""

    findings: tuple[Finding, ...]
    rule_ids: tuple[str, ...]
    files_scanned: int = 0

    @property
    def error_count(self) -> int:
        return sum(1 for finding in self.findings if finding.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for finding in self.findings if finding.severity == "warning")


class ReportBuilder:
    """Append-only collector that freezes into a ``Report`` exactly once."""

    def __init__(self, rule_ids: Iterable[str]) -> None:
        self._rule_ids = tuple(rule_ids)
        self._known = set(self._rule_ids)
        self._findings: dict[tuple[str, str, int, str], Finding] = {}
        self._frozen = False

    def add(self, finding: Finding) -> None:
        if self._frozen:
            raise RuntimeError("Report is frozen")
        if finding.rule_id not in self._known:
            raise ValueError(f"Finding references inactive rule '{finding.rule_id}'")
        key = (finding.rule_id, finding.path, finding.line, finding.message)
        self._findings.setdefault(key, finding)

    def freeze(self, *, files_scanned: int = 0) -> Report:
        if self._frozen:
            raise RuntimeError("Report is frozen")
        self._frozen = True
        ordered = sorted(
            self._findings.values(),
            key=lambda item: (item.path, item.line, item.rule_id, item.message),
        )
        return Report(findings=tuple(ordered), rule_ids=self._rule_ids, files_scanned=files_scanned)


def run(rules: Sequence[Rule], fact_sets: Iterable[FactSet]) -> Report:
    """Evaluate every rule against every fact set.

    ``fact_sets`` is consumed lazily, one unit at a time. A rule that raises
    for a unit is reported through the ``rule-fault`` rule when it is active
    and does not stop evaluation of other rules or units.
    """
    builder = ReportBuilder(rule.rule_id for rule in rules)
    fault_rule = next((rule for rule in rules if rule.rule_id == RULE_FAULT_RULE_ID), None)

    for facts in fact_sets:
        for rule in rules:
            try:
                findings = rule.evaluate(facts)
            except Exception as exc:
                logger.warning(
                    "Rule %s failed on %s (%s): %s",
                    rule.rule_id,
                    facts.name,
                    facts.path,
                    exc,
                )
                if fault_rule is not None:
                    builder.add(_fault_finding(fault_rule, rule, facts, exc))
                continue
            for finding in findings:
                builder.add(finding)

    return builder.freeze()


def _fault_finding(fault_rule: Rule, failed: Rule, facts: FactSet, exc: Exception) -> Finding:
    subject = f"{failed.rule_id} ({exc.__class__.__name__}: {exc})"
    return Finding(
        rule_id=fault_rule.rule_id,
        path=facts.path,
        line=facts.line,
        severity=fault_rule.severity,
        message=fault_rule.message.format(subject=subject, name=facts.name),
        remediation=fault_rule.remediation,
        category=fault_rule.category,
    )
