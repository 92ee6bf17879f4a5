"""CLI entrypoint for canon-check."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import DATA_DIR_ENV, load_config
from .errors import CanonError
from .models import ARTIFACT_TYPES
from .rules.schema import ACCESS_LEVELS


class CommandError(click.ClickException):
    """Pre-evaluation failure: nothing was proven compliant."""

    exit_code = 2


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _run(fn, *args, **kwargs) -> None:
    """Run a command implementation and exit with its code."""
    try:
        exit_code = fn(*args, **kwargs)
    except KeyError as e:
        raise CommandError(str(e.args[0]) if e.args else str(e)) from e
    except (CanonError, ValueError, OSError) as e:
        raise CommandError(str(e)) from e
    sys.exit(exit_code)


@click.group()
@click.version_option(__version__, prog_name="canon-check")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to canon-check.toml (defaults to the nearest one above the working directory)",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=DATA_DIR_ENV,
    default=None,
    help="Directory for reports, overrides and stored rule sets (default: .canon)",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, data_dir: Path | None, verbose: int) -> None:
    """canon-check - Canon compliance engine.

    Evaluate documents, code and commits against machine-checkable canons
    and gate on the verdict.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path, data_dir=data_dir)
    except (ValueError, OSError) as e:
        raise CommandError(f"invalid configuration: {e}") from e


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--ruleset",
    "rulesets",
    multiple=True,
    metavar="VERSION|PATH",
    help="Stored ruleset version (or unique prefix) or rule source file; repeatable for files. Defaults to the bundled core canon.",
)
@click.option("--persona", default=None, help="Persona (defaults to front matter)")
@click.option("--jurisdiction", default=None, help="Jurisdiction code (defaults to front matter)")
@click.option("--document-type", default=None, help="Document type (defaults to front matter)")
@click.option(
    "--access-level",
    type=click.Choice(list(ACCESS_LEVELS), case_sensitive=False),
    default=None,
    help="Access level (defaults to front matter)",
)
@click.option(
    "--artifact-type",
    type=click.Choice(list(ARTIFACT_TYPES)),
    default=None,
    help="Artifact type (inferred from the file name when omitted)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option("--strict", is_flag=True, help="Treat WARN as a failing exit (2)")
@click.option("--full", is_flag=True, help="Re-run every rule instead of carrying forward unchanged results")
@click.pass_context
def evaluate(
    ctx: click.Context,
    paths: tuple[Path, ...],
    rulesets: tuple[str, ...],
    persona: str | None,
    jurisdiction: str | None,
    document_type: str | None,
    access_level: str | None,
    artifact_type: str | None,
    output_format: str,
    strict: bool,
    full: bool,
) -> None:
    """Evaluate artifacts against a rule set.

    PATHS are files or directories; directories are searched for documents
    (hidden directories skipped). With several artifacts a summary table and
    error/warning totals follow the per-file reports, and the exit code is
    that of the worst verdict.

    Exit codes: 0 PASS, 1 WARN (2 with --strict), 2 FAIL or evaluation error.

    Examples:

        canon-check evaluate docs/adr/0007.md --document-type adr

        canon-check evaluate README.md --ruleset 3fa9c1 --format json --strict

        canon-check evaluate docs/ CHANGELOG.md --strict
    """
    from .commands.evaluate import run_evaluate

    _run(
        run_evaluate,
        ctx.obj["config"],
        paths,
        rulesets=rulesets,
        persona=persona,
        jurisdiction=jurisdiction,
        document_type=document_type,
        access_level=access_level,
        artifact_type=artifact_type,
        output_format=output_format,
        strict=strict,
        full=full,
    )


@cli.group()
def ruleset() -> None:
    """Rule set commands."""
    pass


@ruleset.command("ingest")
@click.argument("sources", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ruleset_ingest(ctx: click.Context, sources: tuple[Path, ...], output_json: bool) -> None:
    """Validate rule sources and store the resulting rule set."""
    from .commands.ruleset_cmd import run_ruleset_ingest

    _run(run_ruleset_ingest, ctx.obj["config"], sources, output_json=output_json)


@ruleset.command("show")
@click.argument("version")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ruleset_show(ctx: click.Context, version: str, output_json: bool) -> None:
    """Show a stored rule set (VERSION may be a unique prefix or a source path)."""
    from .commands.ruleset_cmd import run_ruleset_show

    _run(run_ruleset_show, ctx.obj["config"], version, output_json=output_json)


@ruleset.command("list")
@click.pass_context
def ruleset_list(ctx: click.Context) -> None:
    """List stored rule set versions."""
    from .commands.ruleset_cmd import run_ruleset_list

    _run(run_ruleset_list, ctx.obj["config"])


@cli.group()
def override() -> None:
    """Override commands."""
    pass


@override.command("request")
@click.argument("rule_id")
@click.option("--ruleset", "rulesets", multiple=True, metavar="VERSION|PATH", help="Rule set the rule belongs to")
@click.option("--approver", required=True, help="Principal approving the override")
@click.option("--justification", required=True, help="Why the rule may be waived")
@click.option("--expires", required=True, help="ISO timestamp or duration (e.g. 30d, 12h, 2w)")
@click.option("--document-type", "document_types", multiple=True, help="Scope: document type (repeatable)")
@click.option("--persona", "personas", multiple=True, help="Scope: persona (repeatable)")
@click.option("--jurisdiction", "jurisdictions", multiple=True, help="Scope: jurisdiction (repeatable)")
@click.option("--access-level", "access_levels", multiple=True, help="Scope: access level (repeatable)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def override_request(
    ctx: click.Context,
    rule_id: str,
    rulesets: tuple[str, ...],
    approver: str,
    justification: str,
    expires: str,
    document_types: tuple[str, ...],
    personas: tuple[str, ...],
    jurisdictions: tuple[str, ...],
    access_levels: tuple[str, ...],
    output_json: bool,
) -> None:
    """Request a scoped, expiring override for a rule.

    Example:

        canon-check override request core:voice:4 --approver docs-lead \\
            --justification "quoted customer text" --expires 30d --document-type case-study
    """
    from .commands.override_cmd import run_override_request

    _run(
        run_override_request,
        ctx.obj["config"],
        rule_id,
        rulesets=rulesets,
        approver=approver,
        justification=justification,
        expires=expires,
        scope={
            "document_type": document_types,
            "persona": personas,
            "jurisdiction": jurisdictions,
            "access_level": access_levels,
        },
        output_json=output_json,
    )


@override.command("list")
@click.option("--history", is_flag=True, help="Include superseded overrides")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def override_list(ctx: click.Context, history: bool, output_json: bool) -> None:
    """List overrides (latest per rule and scope)."""
    from .commands.override_cmd import run_override_list

    _run(run_override_list, ctx.obj["config"], include_history=history, output_json=output_json)


@cli.group()
def report() -> None:
    """Audit report commands."""
    pass


@report.command("list")
@click.option("--fingerprint", default=None, help="Only reports for this artifact fingerprint (prefix)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def report_list(ctx: click.Context, fingerprint: str | None, output_json: bool) -> None:
    """List recorded audit reports."""
    from .commands.report_cmd import run_report_list

    _run(run_report_list, ctx.obj["config"], fingerprint=fingerprint, output_json=output_json)


@report.command("show")
@click.argument("report_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def report_show(ctx: click.Context, report_id: str, output_json: bool) -> None:
    """Show one audit report (REPORT_ID may be a unique prefix)."""
    from .commands.report_cmd import run_report_show

    _run(run_report_show, ctx.obj["config"], report_id, output_json=output_json)


if __name__ == "__main__":
    cli()
