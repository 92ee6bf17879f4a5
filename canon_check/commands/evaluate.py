"""Evaluate command: check artifacts against a rule set and gate on the worst verdict."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import CanonConfig
from ..loader import collect_documents, load_artifact
from ..models import Verdict
from ..orchestrator import Orchestrator
from ..overrides import OverrideStore
from ..report import AuditReport, ReportLog
from .ruleset_cmd import resolve_ruleset

EXIT_PASS = 0
EXIT_WARN = 1
EXIT_FAIL = 2

VERDICT_STYLE = {Verdict.PASS: "bold green", Verdict.WARN: "bold yellow", Verdict.FAIL: "bold red"}
EFFECT_STYLE = {"fail": "red", "warn": "yellow", "pass": "green", "ignored": "dim"}
VERDICT_RANK = {Verdict.PASS: 0, Verdict.WARN: 1, Verdict.FAIL: 2}


def exit_code_for(verdict: Verdict, *, strict: bool = False) -> int:
    if verdict == Verdict.FAIL:
        return EXIT_FAIL
    if verdict == Verdict.WARN:
        return EXIT_FAIL if strict else EXIT_WARN
    return EXIT_PASS


def build_orchestrator(config: CanonConfig) -> Orchestrator:
    return Orchestrator(
        reports=ReportLog(config.reports_path, io_retries=config.io_retries, io_backoff=config.io_backoff),
        overrides=OverrideStore(
            config.overrides_path,
            authorities=config.authorities,
            io_retries=config.io_retries,
            io_backoff=config.io_backoff,
        ),
        oracles=config.build_oracles(),
        max_workers=config.max_workers,
        default_timeout=config.checker_timeout,
    )


def worst_verdict(verdicts: Iterable[Verdict]) -> Verdict:
    """FAIL over WARN over PASS; PASS for no verdicts."""
    worst = Verdict.PASS
    for verdict in verdicts:
        if VERDICT_RANK[verdict] > VERDICT_RANK[worst]:
            worst = verdict
    return worst


def run_evaluate(
    config: CanonConfig,
    paths: Sequence[Path],
    *,
    rulesets: tuple[str, ...] = (),
    persona: str | None = None,
    jurisdiction: str | None = None,
    document_type: str | None = None,
    access_level: str | None = None,
    artifact_type: str | None = None,
    output_format: str = "text",
    strict: bool = False,
    full: bool = False,
) -> int:
    """Evaluate one or more artifacts.

    Args:
        config: Loaded engine configuration
        paths: Artifact files, or directories searched for documents
        rulesets: Rule source paths, or one stored version
        persona, jurisdiction, document_type, access_level: Metadata overriding front matter
        artifact_type: document, code or commit (inferred from each file when omitted)
        output_format: "text" or "json"
        strict: Treat WARN as a failing exit
        full: Re-run every rule instead of carrying forward unchanged results

    Returns:
        Exit code for the worst gating verdict (0 = PASS, 1 = WARN, 2 = FAIL)
    """
    ruleset = resolve_ruleset(config, rulesets)
    files = collect_documents(paths)
    if not files:
        raise ValueError("no artifacts to evaluate")
    # A malformed file aborts the run before any report is written.
    artifacts = [
        load_artifact(
            path,
            artifact_type=artifact_type,  # type: ignore[arg-type]
            document_type=document_type,
            persona=persona,
            jurisdiction=jurisdiction,
            access_level=access_level,
        )
        for path in files
    ]

    orchestrator = build_orchestrator(config)
    reports = [orchestrator.evaluate(artifact, ruleset, incremental=not full) for artifact in artifacts]
    verdict = worst_verdict(r.gating_verdict for r in reports)
    single = len(paths) == 1 and len(files) == 1 and not paths[0].is_dir()

    if output_format == "json":
        if single:
            data = _report_json(reports[0])
        else:
            data = {"verdict": verdict.value, "reports": [_report_json(r) for r in reports]}
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        console = Console()
        for report in reports:
            print_report(console, report)
        if not single:
            print_summary(console, reports)

    return exit_code_for(verdict, strict=strict)


def _report_json(report: AuditReport) -> dict[str, Any]:
    data = report.to_dict()
    data["gating_verdict"] = report.gating_verdict.value
    return data


def _effect_counts(report: AuditReport) -> tuple[int, int]:
    errors = sum(1 for e in report.entries if e.effect == "fail")
    warnings = sum(1 for e in report.entries if e.effect == "warn")
    return errors, warnings


def print_report(console: Console, report: AuditReport, *, show_all: bool = False) -> None:
    meta = ", ".join(f"{k}={v}" for k, v in report.metadata.to_dict().items() if v) or "no metadata"
    subject = escape(report.origin or report.artifact_fingerprint[:12])
    console.print(f"{subject} ({report.artifact_type}; {escape(meta)})", style="dim")
    console.print(f"ruleset {report.ruleset_version[:12]}  report {report.report_id}  revision {report.revision}", style="dim")

    shown = [e for e in report.entries if show_all or e.effect in ("fail", "warn")]
    if shown:
        table = Table()
        table.add_column("rule", style="cyan", no_wrap=True)
        table.add_column("severity")
        table.add_column("status")
        table.add_column("message")
        table.add_column("evidence", style="dim")
        table.add_column("override", style="dim")
        for entry in shown:
            evidence = ", ".join(str(ev) for ev in entry.result.evidence[:3])
            if len(entry.result.evidence) > 3:
                evidence += f" (+{len(entry.result.evidence) - 3})"
            override = entry.override_flag or ""
            if entry.overridden and entry.override:
                override += f" by {entry.override.get('approver')}"
            table.add_row(
                entry.rule_id,
                entry.severity.value,
                f"[{EFFECT_STYLE.get(entry.effect, '')}]{entry.result.status.value}[/]",
                escape(entry.result.message),
                escape(evidence),
                escape(override),
            )
        console.print(table)

    counts = report.counts()
    summary = "  ".join(f"{k}: {v}" for k, v in counts.items() if v)
    console.print(summary, style="dim")
    if report.carried_forward:
        console.print(f"carried forward: {len(report.carried_forward)} rule(s)", style="dim")
    if report.unpersisted:
        console.print("report NOT persisted; absolute failures gate as FAIL", style="bold red")
    verdict = report.gating_verdict
    console.print(f"Verdict: {verdict.value}", style=VERDICT_STYLE[verdict])


def print_summary(console: Console, reports: Sequence[AuditReport]) -> None:
    """Per-file verdicts followed by error and warning totals."""
    table = Table(title="Summary")
    table.add_column("artifact")
    table.add_column("verdict")
    table.add_column("errors", justify="right")
    table.add_column("warnings", justify="right")
    total_errors = total_warnings = 0
    for report in reports:
        errors, warnings = _effect_counts(report)
        total_errors += errors
        total_warnings += warnings
        verdict = report.gating_verdict
        table.add_row(
            escape(report.origin or report.artifact_fingerprint[:12]),
            f"[{VERDICT_STYLE[verdict]}]{verdict.value}[/]",
            str(errors),
            str(warnings),
        )
    console.print(table)
    console.print(f"Files: {len(reports)}  Errors: {total_errors}  Warnings: {total_warnings}")
    verdict = worst_verdict(r.gating_verdict for r in reports)
    console.print(f"Overall verdict: {verdict.value}", style=VERDICT_STYLE[verdict])
