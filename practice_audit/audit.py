"""Audit run orchestration."""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from pathlib import Path

from practice_audit.config import (
    OUTPUT_FORMATS,
    AppConfig,
    ConfigError,
    load_app_config,
    validate_glob,
)
from practice_audit.engine import Report, run
from practice_audit.output import format_report
from practice_audit.rules import load_rules
from practice_audit.rules.base import Rule
from practice_audit.scanner import Scanner

logger = logging.getLogger(__name__)


class AuditPhase(str, Enum):
    """Lifecycle of one audit run."""

    IDLE = "idle"
    LOADING = "loading"
    SCANNING = "scanning"
    EVALUATING = "evaluating"
    FORMATTING = "formatting"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    AuditPhase.IDLE: {AuditPhase.LOADING},
    AuditPhase.LOADING: {AuditPhase.SCANNING, AuditPhase.FAILED},
    AuditPhase.SCANNING: {AuditPhase.EVALUATING},
    AuditPhase.EVALUATING: {AuditPhase.FORMATTING},
    AuditPhase.FORMATTING: {AuditPhase.DONE},
}


class AuditRun:
    """One audit of one source tree.

    ``load()`` is the only step that can fail: configuration problems raise
    ``ConfigError`` and move the run to ``FAILED``. Everything after loading
    degrades to findings. CLI arguments left as ``None`` fall back to the
    loaded configuration.
    """

    def __init__(
        self,
        root: Path,
        *,
        config_path: Path | None = None,
        output_format: str | None = None,
        only: list[str] | None = None,
        exclude_rules: list[str] | None = None,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
        jobs: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self.root = root
        self.phase = AuditPhase.IDLE
        self.config = AppConfig()
        self.rules: list[Rule] = []
        self.output_format = output_format
        self.report: Report | None = None
        self._config_path = config_path
        self._only = only
        self._exclude_rules = exclude_rules
        self._include = include
        self._exclude = exclude
        self._jobs = jobs
        self._timeout = timeout

    def load(self) -> list[Rule]:
        """Resolve configuration and build the active rule set."""
        self._advance(AuditPhase.LOADING)
        try:
            if not self.root.is_dir():
                raise ConfigError(f"Audit root is not a directory: {self.root}")
            self.config = load_app_config(self.root, config_path=self._config_path)
            self.output_format = (self.output_format or self.config.format).lower()
            if self.output_format not in OUTPUT_FORMATS:
                raise ConfigError("format must be one of: json, text")
            if self._jobs is not None and self._jobs < 1:
                raise ConfigError("jobs must be >= 1")
            if self._timeout is not None and self._timeout <= 0:
                raise ConfigError("timeout must be > 0")
            for pattern in (self._include or []) + (self._exclude or []):
                validate_glob(pattern, "--include/--exclude")
            self.rules = load_rules(self.config, only=self._only, exclude=self._exclude_rules)
        except ConfigError:
            self._advance(AuditPhase.FAILED)
            raise
        logger.debug(
            "Loaded %d rules from %s",
            len(self.rules),
            self.config.source or "defaults",
        )
        return self.rules

    def execute(self) -> Report:
        """Scan the tree and evaluate every active rule."""
        self._advance(AuditPhase.SCANNING)
        scanner = Scanner(
            include=tuple(self._include) if self._include is not None else self.config.include,
            exclude=tuple(self._exclude) if self._exclude is not None else self.config.exclude,
            jobs=self._jobs if self._jobs is not None else self.config.jobs,
            timeout=self._timeout if self._timeout is not None else self.config.timeout_seconds,
        )
        fact_sets = scanner.scan(self.root)
        # Scanning is streamed: the engine pulls fact sets as it evaluates.
        self._advance(AuditPhase.EVALUATING)
        report = run(self.rules, fact_sets)
        self.report = replace(report, files_scanned=scanner.files_scanned)
        logger.debug(
            "Scanned %d files: %d errors, %d warnings",
            self.report.files_scanned,
            self.report.error_count,
            self.report.warning_count,
        )
        return self.report

    def render(self, *, timestamp: bool = False) -> str:
        """Format the frozen report in the resolved output format."""
        if self.report is None:
            raise RuntimeError("Audit has not been executed")
        self._advance(AuditPhase.FORMATTING)
        rendered = format_report(self.report, self.output_format or "text", timestamp=timestamp)
        self._advance(AuditPhase.DONE)
        return rendered

    def _advance(self, phase: AuditPhase) -> None:
        if phase not in _TRANSITIONS.get(self.phase, set()):
            raise RuntimeError(f"Illegal audit transition {self.phase.value} -> {phase.value}")
        self.phase = phase


def audit(
    root: Path,
    *,
    config_path: Path | None = None,
    only: list[str] | None = None,
    exclude_rules: list[str] | None = None,
    jobs: int | None = None,
) -> Report:
    """Load, scan, and evaluate in one call; raises ``ConfigError`` on bad configuration."""
    audit_run = AuditRun(
        root,
        config_path=config_path,
        only=only,
        exclude_rules=exclude_rules,
        jobs=jobs,
    )
    audit_run.load()
    return audit_run.execute()
