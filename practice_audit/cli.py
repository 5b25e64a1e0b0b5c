"""CLI entrypoint for practice-audit."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, NoReturn

import click
import typer

from practice_audit import __version__
from practice_audit.audit import AuditRun
from practice_audit.config import (
    OUTPUT_FORMATS,
    AppConfig,
    ConfigError,
    default_config_template,
    load_app_config,
)
from practice_audit.output import EXIT_CONFIG, EXIT_INTERRUPTED, exit_code, write_report
from practice_audit.rules import list_rule_info, load_rules, parse_rule_list
from practice_audit.rules.base import Rule

app = typer.Typer(
    name="practice-audit",
    no_args_is_help=True,
    help="Audit a PHP web application against documented framework practices.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log scan and rule diagnostics to stderr."),
    ] = False,
) -> None:
    """Root command callback."""
    _ = version
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            force=True,
        )


@app.command("audit")
def audit_command(
    path: Annotated[Path | None, typer.Argument(help="Project root to audit.")] = None,
    format: Annotated[
        str | None, typer.Option(help="Output format: text|json.", show_default="text")
    ] = None,
    rules: Annotated[
        str | None,
        typer.Option("--rules", help="Comma-separated rule ids; only these rules run."),
    ] = None,
    exclude_rules: Annotated[
        str | None,
        typer.Option("--exclude-rules", help="Comma-separated rule ids to skip."),
    ] = None,
    include: Annotated[list[str] | None, typer.Option(help="Include glob pattern.")] = None,
    exclude: Annotated[list[str] | None, typer.Option(help="Exclude glob pattern.")] = None,
    jobs: Annotated[int | None, typer.Option(help="Parallel scan workers.")] = None,
    timeout: Annotated[
        float | None, typer.Option(help="Per-file parse time budget in seconds.")
    ] = None,
    output: Annotated[
        Path | None, typer.Option(help="Write the report to this file instead of stdout.")
    ] = None,
    timestamp: Annotated[
        bool, typer.Option("--timestamp", help="Embed generation time in JSON output.")
    ] = False,
    list_rules: Annotated[
        bool, typer.Option("--list-rules", help="List every known rule and exit.")
    ] = False,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Run every enabled rule against a project tree."""
    if list_rules:
        _echo_rule_catalogue()
        raise typer.Exit(code=0)
    if path is None:
        _fail_config("Missing project path to audit.")

    audit_run = AuditRun(
        path,
        config_path=config_file,
        output_format=format,
        only=parse_rule_list(rules),
        exclude_rules=parse_rule_list(exclude_rules),
        include=include,
        exclude=exclude,
        jobs=jobs,
        timeout=timeout,
    )
    try:
        audit_run.load()
    except ConfigError as exc:
        _fail_config(str(exc))

    try:
        report = audit_run.execute()
        rendered = audit_run.render(timestamp=timestamp)
    except KeyboardInterrupt:
        typer.echo("Interrupted; no report written.", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED) from None

    if output is not None:
        # Files are never terminals; styles would land as raw escape codes.
        write_report(output, click.unstyle(rendered))
        typer.echo(f"Report written to: {output}", err=True)
    else:
        typer.echo(rendered)
    raise typer.Exit(code=exit_code(report))


@app.command("rules")
def rules_command(
    repo: Annotated[Path, typer.Option(help="Project path.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """List available rules and whether configuration enables them."""
    output_format = _output_format(format)
    app_config = _load_config_or_exit(repo, config_file)
    active = {rule.rule_id: rule for rule in _load_rules_or_exit(app_config)}

    if output_format == "json":
        payload = {
            "rules": [
                {
                    "rule_id": item.rule_id,
                    "title": item.title,
                    "category": item.category,
                    "severity": active[item.rule_id].severity
                    if item.rule_id in active
                    else item.severity,
                    "enabled": item.rule_id in active,
                }
                for item in list_rule_info()
            ],
            "meta": {"config_source": app_config.source},
        }
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = ["Available rules:"]
    for item in list_rule_info():
        status = "enabled" if item.rule_id in active else "disabled"
        severity = active[item.rule_id].severity if item.rule_id in active else item.severity
        lines.append(f"- {item.rule_id} [{status}, {item.category}, {severity}] - {item.title}")
    typer.echo("\n".join(lines))


@app.command("config")
def config_command(
    repo: Annotated[Path, typer.Option(help="Project path.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show resolved configuration."""
    output_format = _output_format(format)
    app_config = _load_config_or_exit(repo, config_file)
    active_rules = _load_rules_or_exit(app_config)
    payload = app_config.to_dict()
    payload["active_rule_ids"] = [rule.rule_id for rule in active_rules]

    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = [
        "Resolved configuration:",
        f"- source: {payload['source'] or 'defaults'}",
        f"- format: {payload['format']}",
        f"- include: {payload['include']}",
        f"- exclude: {payload['exclude']}",
        f"- jobs: {payload['jobs'] or 'auto'}",
        f"- timeout_seconds: {payload['timeout_seconds']}",
        f"- categories: {payload['categories']}",
        f"- active_rule_ids: {payload['active_rule_ids']}",
    ]
    typer.echo("\n".join(lines))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Output path for starter config TOML.")] = Path(
        ".practice-audit.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite if file already exists."),
    ] = False,
) -> None:
    """Create a starter project config file."""
    out_path = out.resolve()
    if out_path.exists() and not force:
        raise typer.BadParameter(
            f"Refusing to overwrite existing file: {out_path}. Use --force to overwrite."
        )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {out_path}")


@app.command("config-validate")
def config_validate_command(
    repo: Annotated[Path, typer.Option(help="Project path.")] = Path("."),
    config_file: Annotated[
        Path,
        typer.Option("--config", help="Path to config TOML file to validate."),
    ] = Path(".practice-audit.toml"),
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
) -> None:
    """Validate a config file and report active rules."""
    output_format = _output_format(format)
    app_config = _load_config_or_exit(repo, config_file)
    active_rules = _load_rules_or_exit(app_config)
    payload = {
        "ok": True,
        "source": app_config.source,
        "active_rule_ids": [rule.rule_id for rule in active_rules],
    }
    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return
    typer.echo(
        "\n".join(
            [
                "Config is valid.",
                f"- source: {payload['source']}",
                f"- active_rule_ids: {payload['active_rule_ids']}",
            ]
        )
    )


def main() -> None:
    """Console script entrypoint."""
    app()


def _echo_rule_catalogue() -> None:
    for item in list_rule_info():
        typer.echo(f"{item.rule_id}\t{item.category}\t{item.severity}\t{item.title}")


def _output_format(value: str) -> str:
    output_format = value.lower()
    if output_format not in OUTPUT_FORMATS:
        raise typer.BadParameter("format must be one of: json, text", param_hint="--format")
    return output_format


def _fail_config(message: str) -> NoReturn:
    typer.echo(f"Configuration error: {message}", err=True)
    raise typer.Exit(code=EXIT_CONFIG)


def _load_config_or_exit(repo: Path, config_file: Path | None = None) -> AppConfig:
    try:
        return load_app_config(repo, config_path=config_file)
    except ConfigError as exc:
        _fail_config(str(exc))


def _load_rules_or_exit(app_config: AppConfig) -> list[Rule]:
    try:
        return load_rules(app_config)
    except ConfigError as exc:
        _fail_config(str(exc))
