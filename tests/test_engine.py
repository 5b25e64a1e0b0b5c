from __future__ import annotations

from dataclasses import replace

import pytest

from practice_audit.engine import ReportBuilder, run
from practice_audit.facts import FactSet
from practice_audit.rules import builtin_rules, load_rules
from practice_audit.rules.base import Finding, Match, Rule
from practice_audit.source_parser import parse_source
from tests.helpers_project import BILLING_CONTROLLER, BROKEN_RELATIONS_MODEL, UNGUARDED_MODEL


def test_run_collects_findings_in_path_line_rule_order() -> None:
    fact_sets = [
        *parse_source("app/Models/Post.php", UNGUARDED_MODEL),
        *parse_source("app/Http/Controllers/BillingController.php", BILLING_CONTROLLER),
        *parse_source("app/Models/Comment.php", BROKEN_RELATIONS_MODEL),
    ]

    report = run(load_rules(), fact_sets)

    assert [(item.path, item.line, item.rule_id) for item in report.findings] == [
        ("app/Http/Controllers/BillingController.php", 9, "controller-middleware"),
        ("app/Http/Controllers/BillingController.php", 14, "constructor-injection"),
        ("app/Http/Controllers/BillingController.php", 15, "env-outside-config"),
        ("app/Http/Controllers/BillingController.php", 16, "constructor-injection"),
        ("app/Models/Comment.php", 11, "relationship-return"),
        ("app/Models/Comment.php", 16, "relationship-return"),
        ("app/Models/Post.php", 7, "mass-assignment"),
    ]
    assert report.error_count == 3
    assert report.warning_count == 4


def test_run_is_deterministic_regardless_of_input_order() -> None:
    fact_sets = [
        *parse_source("app/Models/Post.php", UNGUARDED_MODEL),
        *parse_source("app/Models/Comment.php", BROKEN_RELATIONS_MODEL),
    ]

    forward = run(load_rules(), fact_sets)
    backward = run(load_rules(), list(reversed(fact_sets)))

    assert forward == backward


def test_failing_rule_becomes_rule_fault_and_others_still_run() -> None:
    def explode(facts: FactSet) -> list[Match]:
        raise KeyError("methods")

    broken = Rule(
        rule_id="exploding",
        title="Always fails",
        category="database",
        severity="error",
        kinds=("class",),
        predicate=explode,
        message="never",
        remediation="none",
    )
    rules = load_rules(rule_sources=[broken, *builtin_rules()])
    facts = parse_source("app/Models/Post.php", UNGUARDED_MODEL)

    report = run(rules, facts)

    assert [(item.rule_id, item.line) for item in report.findings] == [
        ("mass-assignment", 7),
        ("rule-fault", 7),
    ]
    fault = report.findings[1]
    assert fault.severity == "warning"
    assert fault.message == "Rule exploding (KeyError: 'methods') failed on Post."


def test_failing_rule_without_fault_rule_is_dropped() -> None:
    def explode(facts: FactSet) -> list[Match]:
        raise ValueError("bad")

    broken = Rule(
        rule_id="exploding",
        title="Always fails",
        category="database",
        severity="error",
        kinds=("class",),
        predicate=explode,
        message="never",
        remediation="none",
    )
    facts = parse_source("app/Models/Post.php", UNGUARDED_MODEL)

    report = run([broken, *load_rules(only=["mass-assignment"])], facts)

    assert [item.rule_id for item in report.findings] == ["mass-assignment"]


def test_each_failing_rule_gets_its_own_fault_on_one_unit() -> None:
    def explode(facts: FactSet) -> list[Match]:
        raise RuntimeError("boom")

    broken = [
        Rule(
            rule_id=rule_id,
            title="Always fails",
            category="database",
            severity="error",
            kinds=("class",),
            predicate=explode,
            message="never",
            remediation="none",
        )
        for rule_id in ("exploding-b", "exploding-a")
    ]
    rules = load_rules(rule_sources=[*broken, *builtin_rules()])
    facts = parse_source("app/Models/Post.php", UNGUARDED_MODEL)

    report = run(rules, facts)

    assert [(item.rule_id, item.line, item.message) for item in report.findings] == [
        ("mass-assignment", 7, "Model Post declares neither $fillable nor $guarded."),
        ("rule-fault", 7, "Rule exploding-a (RuntimeError: boom) failed on Post."),
        ("rule-fault", 7, "Rule exploding-b (RuntimeError: boom) failed on Post."),
    ]


def test_run_reports_unparseable_units() -> None:
    facts = FactSet(
        kind="unparseable",
        name="app/Broken.php",
        path="app/Broken.php",
        attributes={"reason": "unterminated string literal (line 7)"},
    )

    report = run(load_rules(), [facts])

    [finding] = report.findings
    assert finding.rule_id == "unparseable-source"
    assert finding.path == "app/Broken.php"


def test_report_builder_deduplicates_identical_findings() -> None:
    builder = ReportBuilder(["mass-assignment"])
    first = _finding(message="first")
    builder.add(first)
    builder.add(_finding(message="first"))
    builder.add(_finding(message="second"))
    builder.add(_finding(line=9))

    report = builder.freeze(files_scanned=3)

    assert [(item.line, item.message) for item in report.findings] == [
        (7, "first"),
        (7, "second"),
        (9, "Model Post declares neither $fillable nor $guarded."),
    ]
    assert report.findings[0] is first
    assert report.files_scanned == 3
    assert report.rule_ids == ("mass-assignment",)


def test_report_builder_rejects_inactive_rule_ids() -> None:
    builder = ReportBuilder(["mass-assignment"])
    with pytest.raises(ValueError, match="inactive rule 'named-routes'"):
        builder.add(_finding(rule_id="named-routes"))


def test_report_builder_freezes_once() -> None:
    builder = ReportBuilder(["mass-assignment"])
    builder.freeze()

    with pytest.raises(RuntimeError, match="frozen"):
        builder.add(_finding())
    with pytest.raises(RuntimeError, match="frozen"):
        builder.freeze()


def test_report_is_immutable() -> None:
    report = ReportBuilder(["mass-assignment"]).freeze()
    with pytest.raises(AttributeError):
        report.findings = ()  # type: ignore[misc]
    assert replace(report, files_scanned=2).files_scanned == 2


def _finding(
    *,
    rule_id: str = "mass-assignment",
    line: int = 7,
    message: str = "Model Post declares neither $fillable nor $guarded.",
) -> Finding:
    return Finding(
        rule_id=rule_id,
        path="app/Models/Post.php",
        line=line,
        severity="warning",
        message=message,
        remediation="Declare $fillable.",
        category="database",
    )
