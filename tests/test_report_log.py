from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from canon_check.aggregate import ReportEntry
from canon_check.errors import StorageError
from canon_check.models import ArtifactMetadata, CheckResult, Evidence, Status, Verdict
from canon_check.report import AuditReport, ReportLog
from canon_check.rules.schema import Category, Severity
from canon_check.util import new_ulid

from conftest import FIXED_NOW


def _report(report_id: str, fingerprint: str = "f" * 64, version: str = "v" * 64, **kw) -> AuditReport:
    entry = ReportEntry(
        result=CheckResult(
            rule_id="core:formatting:1",
            status=Status.FAIL,
            message="emoji found",
            evidence=(Evidence(offset=3, length=1, line=1, column=4, text="x"),),
        ),
        severity=Severity.ABSOLUTE,
        category=Category.FORMATTING,
        rule_hash="h" * 64,
        effect="fail",
        override_flag="never overridden",
    )
    kw.setdefault("verdict", Verdict.FAIL)
    return AuditReport(
        report_id=report_id,
        artifact_fingerprint=fingerprint,
        ruleset_version=version,
        timestamp=FIXED_NOW,
        entries=(entry,),
        metadata=ArtifactMetadata(document_type="readme"),
        **kw,
    )


def test_record_assigns_revisions_per_key(tmp_path: Path) -> None:
    log = ReportLog(tmp_path / "reports.jsonl")
    first = log.record(_report("01AAA"))
    other = log.record(_report("01BBB", fingerprint="e" * 64))
    second = log.record(_report("01CCC"))

    assert (first.revision, other.revision, second.revision) == (1, 1, 2)
    assert log.next_revision("f" * 64, "v" * 64) == 3
    assert [r.report_id for r in log.history("f" * 64)] == ["01AAA", "01CCC"]
    assert log.latest("f" * 64).report_id == "01CCC"
    assert log.latest("0" * 64) is None


def test_log_is_append_only(tmp_path: Path) -> None:
    path = tmp_path / "reports.jsonl"
    log = ReportLog(path)
    log.record(_report("01AAA"))
    before = path.read_text(encoding="utf-8")
    log.record(_report("01BBB"))
    after = path.read_text(encoding="utf-8")

    assert after.startswith(before)
    assert len(after.splitlines()) == 2


def test_report_survives_serialization(tmp_path: Path) -> None:
    log = ReportLog(tmp_path / "reports.jsonl")
    recorded = log.record(_report("01AAA", carried_forward=("core:formatting:1",), overrides_as_of=FIXED_NOW))
    loaded = log.get("01AAA")

    assert loaded == recorded
    assert loaded.entries[0].result.evidence[0].column == 4
    assert loaded.entries[0].severity == Severity.ABSOLUTE


def test_get_by_unique_prefix(tmp_path: Path) -> None:
    log = ReportLog(tmp_path / "reports.jsonl")
    log.record(_report("01AAA"))
    log.record(_report("01ABB"))

    assert log.get("01aa").report_id == "01AAA"
    assert log.get("01A") is None
    assert log.get("99") is None


def test_unreadable_log_raises_storage_error(tmp_path: Path) -> None:
    path = tmp_path / "reports.jsonl"
    path.mkdir()
    log = ReportLog(path, io_retries=2, io_backoff=0.001)
    with pytest.raises(StorageError):
        log.record(_report("01AAA"))


def test_gating_verdict_for_unpersisted_report() -> None:
    report = _report("01AAA", verdict=Verdict.WARN, unpersisted=True)
    assert report.gating_verdict == Verdict.FAIL
    assert json.loads(report.to_json())["unpersisted"] is True
    assert _report("01AAA", verdict=Verdict.WARN).gating_verdict == Verdict.WARN


def test_counts(tmp_path: Path) -> None:
    counts = _report("01AAA").counts()
    assert counts["fail"] == 1
    assert counts["pass"] == 0


def test_report_ids_sort_by_time() -> None:
    first = new_ulid(FIXED_NOW)
    second = new_ulid(FIXED_NOW + timedelta(milliseconds=1))
    assert len(first) == 26
    assert first < second
