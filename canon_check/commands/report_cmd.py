"""Report CLI commands: browse the append-only report log."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import CanonConfig
from ..report import ReportLog
from .evaluate import VERDICT_STYLE, print_report


def _log(config: CanonConfig) -> ReportLog:
    return ReportLog(config.reports_path, io_retries=config.io_retries, io_backoff=config.io_backoff)


def run_report_list(config: CanonConfig, *, fingerprint: str | None = None, output_json: bool = False) -> int:
    reports = list(_log(config).iter_reports())
    if fingerprint:
        reports = [r for r in reports if r.artifact_fingerprint.startswith(fingerprint.lower())]

    if output_json:
        rows = [
            {
                "report_id": r.report_id,
                "artifact_fingerprint": r.artifact_fingerprint,
                "ruleset_version": r.ruleset_version,
                "revision": r.revision,
                "verdict": r.verdict.value,
                "timestamp": r.timestamp.isoformat(),
                "origin": r.origin,
            }
            for r in reports
        ]
        print(json.dumps(rows, indent=2))
        return 0

    console = Console()
    table = Table(title="Audit Reports")
    table.add_column("report_id", style="cyan", no_wrap=True)
    table.add_column("timestamp", style="dim")
    table.add_column("artifact")
    table.add_column("ruleset", style="dim")
    table.add_column("rev")
    table.add_column("verdict")
    for r in reports:
        table.add_row(
            r.report_id,
            r.timestamp.isoformat(timespec="seconds"),
            escape(r.origin or r.artifact_fingerprint[:12]),
            r.ruleset_version[:12],
            str(r.revision),
            f"[{VERDICT_STYLE[r.verdict]}]{r.verdict.value}[/]",
        )
    console.print(table)
    console.print(f"\nReports: {len(reports)}")
    return 0


def run_report_show(config: CanonConfig, report_id: str, *, output_json: bool = False) -> int:
    report = _log(config).get(report_id)
    if report is None:
        Console(stderr=True).print(f"Report not found: {report_id}", style="bold red")
        return 1

    if output_json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_report(Console(), report, show_all=True)
    return 0
