"""
Audit reports and the append-only report log.

A finalized AuditReport is never modified. Re-evaluating the same artifact
against the same rule set appends a new revision under the same
``(fingerprint, ruleset_version)`` key.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from .aggregate import ReportEntry
from .models import ArtifactMetadata, CheckResult, Status, Verdict
from .rules.schema import Severity
from .util import parse_timestamp, retry_io

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditReport:
    report_id: str
    artifact_fingerprint: str
    ruleset_version: str
    verdict: Verdict
    timestamp: datetime
    entries: tuple[ReportEntry, ...] = ()
    metadata: ArtifactMetadata = field(default_factory=ArtifactMetadata)
    artifact_type: str = "document"
    origin: str | None = None
    revision: int = 0
    carried_forward: tuple[str, ...] = ()
    overrides_as_of: datetime | None = None
    unpersisted: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.artifact_fingerprint, self.ruleset_version)

    @property
    def results(self) -> tuple[CheckResult, ...]:
        return tuple(e.result for e in self.entries)

    def entry(self, rule_id: str) -> ReportEntry | None:
        for e in self.entries:
            if e.rule_id == rule_id:
                return e
        return None

    @property
    def gating_verdict(self) -> Verdict:
        """
        Verdict used for gating.

        A report that could not be persisted has no audit trail for its
        overrides, so any absolute failure gates as FAIL.
        """
        if self.unpersisted:
            for e in self.entries:
                if e.severity == Severity.ABSOLUTE and e.result.failed and not e.result.is_scope_conflict:
                    return Verdict.FAIL
        return self.verdict

    def counts(self) -> dict[str, int]:
        out = {s.value: 0 for s in Status}
        for e in self.entries:
            out[e.result.status.value] += 1
        return out

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "report_id": self.report_id,
            "artifact_fingerprint": self.artifact_fingerprint,
            "ruleset_version": self.ruleset_version,
            "revision": self.revision,
            "verdict": self.verdict.value,
            "timestamp": self.timestamp.isoformat(),
            "artifact_type": self.artifact_type,
            "origin": self.origin,
            "metadata": self.metadata.to_dict(),
            "carried_forward": list(self.carried_forward),
            "entries": [e.to_dict() for e in self.entries],
        }
        if self.overrides_as_of is not None:
            data["overrides_as_of"] = self.overrides_as_of.isoformat()
        if self.unpersisted:
            data["unpersisted"] = True
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditReport":
        as_of = data.get("overrides_as_of")
        return cls(
            report_id=str(data["report_id"]),
            artifact_fingerprint=str(data["artifact_fingerprint"]),
            ruleset_version=str(data["ruleset_version"]),
            verdict=Verdict(data["verdict"]),
            timestamp=parse_timestamp(str(data["timestamp"])),
            entries=tuple(ReportEntry.from_dict(e) for e in data.get("entries", [])),
            metadata=ArtifactMetadata.from_dict(data.get("metadata", {})),
            artifact_type=str(data.get("artifact_type", "document")),
            origin=data.get("origin"),
            revision=int(data.get("revision", 0)),
            carried_forward=tuple(data.get("carried_forward", [])),
            overrides_as_of=parse_timestamp(as_of) if as_of else None,
            unpersisted=bool(data.get("unpersisted", False)),
        )


class ReportLog:
    """
    Append-only JSONL log of audit reports.

    INVARIANT: existing lines are never modified. The only write operation
    is record().
    """

    def __init__(self, path: Path, *, io_retries: int = 3, io_backoff: float = 0.1):
        """
        Args:
            path: Path to reports.jsonl
            io_retries: attempts for each read or append
            io_backoff: base delay between attempts, in seconds
        """
        self.path = path
        self.io_retries = io_retries
        self.io_backoff = io_backoff
        self._lock = threading.Lock()

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        text = retry_io(
            lambda: self.path.read_text(encoding="utf-8"),
            attempts=self.io_retries,
            base_delay=self.io_backoff,
            what="reading report log",
        )
        return [line for line in text.splitlines() if line.strip()]

    def iter_reports(self) -> Iterator[AuditReport]:
        """Reports in append order."""
        for line in self._read_lines():
            yield AuditReport.from_dict(json.loads(line))

    def _write(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def record(self, report: AuditReport) -> AuditReport:
        """
        Assign the next revision for the report's key and append it.

        Returns the finalized report. Raises StorageError when the append
        keeps failing.
        """
        with self._lock:
            revision = self._next_revision(report.key)
            final = replace(report, revision=revision, unpersisted=False)
            line = final.to_json()
            retry_io(
                lambda: self._write(line),
                attempts=self.io_retries,
                base_delay=self.io_backoff,
                what="appending audit report",
            )
        logger.debug("Recorded report %s (revision %d)", final.report_id, revision)
        return final

    def _next_revision(self, key: tuple[str, str]) -> int:
        return 1 + sum(1 for r in self.iter_reports() if r.key == key)

    def next_revision(self, fingerprint: str, ruleset_version: str) -> int:
        return self._next_revision((fingerprint, ruleset_version))

    def history(self, fingerprint: str, ruleset_version: str | None = None) -> list[AuditReport]:
        return [
            r
            for r in self.iter_reports()
            if r.artifact_fingerprint == fingerprint and (ruleset_version is None or r.ruleset_version == ruleset_version)
        ]

    def latest(self, fingerprint: str, ruleset_version: str | None = None) -> AuditReport | None:
        reports = self.history(fingerprint, ruleset_version)
        return reports[-1] if reports else None

    def get(self, report_id: str) -> AuditReport | None:
        """Find a report by id or unique id prefix."""
        matches = [r for r in self.iter_reports() if r.report_id.startswith(report_id.upper())]
        if len(matches) == 1:
            return matches[0]
        return None
