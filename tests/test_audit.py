from __future__ import annotations

import json
from pathlib import Path

import pytest

from practice_audit.audit import AuditPhase, AuditRun, audit
from practice_audit.config import ConfigError
from tests.helpers_project import (
    BROKEN_SOURCE,
    GUARDED_MODEL,
    UNGUARDED_MODEL,
    build_project,
    full_project,
)


def test_audit_run_walks_every_phase(tmp_path: Path) -> None:
    root = build_project(tmp_path, {"app/Models/Post.php": UNGUARDED_MODEL})
    audit_run = AuditRun(root, output_format="json")

    assert audit_run.phase is AuditPhase.IDLE
    audit_run.load()
    assert audit_run.phase is AuditPhase.LOADING
    report = audit_run.execute()
    assert audit_run.phase is AuditPhase.EVALUATING
    rendered = audit_run.render()
    assert audit_run.phase is AuditPhase.DONE

    assert report.files_scanned == 1
    assert json.loads(rendered)["findings"][0]["rule_id"] == "mass-assignment"


def test_audit_run_fails_only_while_loading(tmp_path: Path) -> None:
    root = build_project(tmp_path, {".practice-audit.toml": "[rules.ghost]\nenabled = true\n"})
    audit_run = AuditRun(root)

    with pytest.raises(ConfigError, match="Unknown rule ids: ghost"):
        audit_run.load()
    assert audit_run.phase is AuditPhase.FAILED
    with pytest.raises(RuntimeError, match="Illegal audit transition failed -> scanning"):
        audit_run.execute()


def test_audit_run_rejects_missing_root(tmp_path: Path) -> None:
    audit_run = AuditRun(tmp_path / "missing")

    with pytest.raises(ConfigError, match="not a directory"):
        audit_run.load()
    assert audit_run.phase is AuditPhase.FAILED


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"jobs": 0}, "jobs must be >= 1"),
        ({"timeout": 0.0}, "timeout must be > 0"),
        ({"include": ["/abs/*.php"]}, "relative to the audited root"),
        ({"output_format": "xml"}, "format must be one of"),
        ({"only": ["nope"]}, "Unknown rule ids: nope"),
    ],
)
def test_audit_run_validates_cli_overrides(
    tmp_path: Path, kwargs: dict[str, object], message: str
) -> None:
    root = build_project(tmp_path, {"app/Models/Tag.php": GUARDED_MODEL})

    with pytest.raises(ConfigError, match=message):
        AuditRun(root, **kwargs).load()


def test_audit_run_refuses_to_render_before_execute(tmp_path: Path) -> None:
    root = build_project(tmp_path, {"app/Models/Tag.php": GUARDED_MODEL})
    audit_run = AuditRun(root)
    audit_run.load()

    with pytest.raises(RuntimeError, match="not been executed"):
        audit_run.render()


def test_audit_run_cannot_be_reused(tmp_path: Path) -> None:
    root = build_project(tmp_path, {"app/Models/Tag.php": GUARDED_MODEL})
    audit_run = AuditRun(root)
    audit_run.load()
    audit_run.execute()
    audit_run.render()

    with pytest.raises(RuntimeError, match="Illegal audit transition done -> loading"):
        audit_run.load()


def test_audit_reports_broken_files_alongside_findings(tmp_path: Path) -> None:
    root = build_project(
        tmp_path,
        {
            "app/Models/Broken.php": BROKEN_SOURCE,
            "app/Models/Post.php": UNGUARDED_MODEL,
        },
    )

    report = audit(root)

    assert [(item.path, item.rule_id) for item in report.findings] == [
        ("app/Models/Broken.php", "unparseable-source"),
        ("app/Models/Post.php", "mass-assignment"),
    ]
    assert report.files_scanned == 2


def test_audit_full_project_is_idempotent(tmp_path: Path) -> None:
    root = full_project(tmp_path)

    first = audit(root, jobs=1)
    second = audit(root, jobs=4)

    assert first == second
    assert first.files_scanned == 11
    assert first.error_count == 4
    assert first.warning_count == 11
    assert [(item.path, item.line, item.rule_id) for item in first.findings] == [
        ("app/Http/Controllers/BillingController.php", 9, "controller-middleware"),
        ("app/Http/Controllers/BillingController.php", 14, "constructor-injection"),
        ("app/Http/Controllers/BillingController.php", 15, "env-outside-config"),
        ("app/Http/Controllers/BillingController.php", 16, "constructor-injection"),
        ("app/Models/Comment.php", 11, "relationship-return"),
        ("app/Models/Comment.php", 16, "relationship-return"),
        ("app/Models/Post.php", 7, "mass-assignment"),
        ("app/Repositories/ReportRepository.php", 12, "raw-query-interpolation"),
        ("database/migrations/2024_01_01_000000_create_posts_table.php", 7, "reversible-migration"),
        ("resources/views/posts/show.blade.php", 2, "unescaped-output"),
        ("resources/views/posts/show.blade.php", 5, "queries-in-templates"),
        ("routes/web.php", 7, "named-routes"),
        ("routes/web.php", 8, "named-routes"),
        ("routes/web.php", 8, "route-closures"),
        ("tests/Feature/PostTest.php", 8, "test-database-isolation"),
    ]


def test_audit_honours_project_config(tmp_path: Path) -> None:
    root = full_project(tmp_path)
    (root / ".practice-audit.toml").write_text(
        "\n".join(
            [
                'exclude = ["tests/*", "app/*"]',
                "",
                "[categories]",
                "templates = false",
                "",
                "[rules.named-routes]",
                'severity = "error"',
            ]
        ),
        encoding="utf-8",
    )

    report = audit(root, exclude_rules=["route-closures"])

    assert [(item.path, item.line, item.rule_id, item.severity) for item in report.findings] == [
        (
            "database/migrations/2024_01_01_000000_create_posts_table.php",
            7,
            "reversible-migration",
            "warning",
        ),
        ("routes/web.php", 7, "named-routes", "error"),
        ("routes/web.php", 8, "named-routes", "error"),
    ]
