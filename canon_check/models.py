"""Data models for artifacts and check results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from .util import compute_hash

ArtifactType = Literal["document", "code", "commit"]
ARTIFACT_TYPES: tuple[str, ...] = ("document", "code", "commit")

ErrorKind = Literal["timeout", "checker", "scope-conflict"]


class Status(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    NOT_APPLICABLE = "not-applicable"
    ERROR = "error"


class Verdict(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class ArtifactMetadata:
    """Scope-relevant metadata of an artifact."""

    document_type: str | None = None
    persona: str | None = None
    jurisdiction: str | None = None
    access_level: str | None = None

    def __post_init__(self) -> None:
        for name in ("document_type", "persona", "jurisdiction", "access_level"):
            value = getattr(self, name)
            if value is not None:
                value = str(value).strip().lower() or None
                object.__setattr__(self, name, value)

    def to_dict(self) -> dict[str, str | None]:
        return {
            "document_type": self.document_type,
            "persona": self.persona,
            "jurisdiction": self.jurisdiction,
            "access_level": self.access_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArtifactMetadata":
        return cls(
            document_type=data.get("document_type"),
            persona=data.get("persona"),
            jurisdiction=data.get("jurisdiction"),
            access_level=data.get("access_level"),
        )


@dataclass(frozen=True)
class Artifact:
    """
    A candidate document, code change or commit. Lives for one evaluation.

    ``prefix`` is the source text that precedes ``content`` (front matter and
    leading blank lines), kept so evidence can point into the original file.
    """

    content: str
    type: ArtifactType = "document"
    metadata: ArtifactMetadata = field(default_factory=ArtifactMetadata)
    origin: Path | None = None
    prefix: str = ""

    @property
    def fingerprint(self) -> str:
        return compute_hash(
            {
                "content": self.content,
                "type": self.type,
                "metadata": self.metadata.to_dict(),
                "prefix": self.prefix,
            }
        )


@dataclass(frozen=True)
class Evidence:
    """A located span in the artifact source (offsets are 0-based, lines 1-based)."""

    offset: int
    length: int
    line: int
    column: int
    text: str
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "offset": self.offset,
            "length": self.length,
            "line": self.line,
            "column": self.column,
            "text": self.text,
        }
        if self.note:
            data["note"] = self.note
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Evidence":
        return cls(
            offset=int(data["offset"]),
            length=int(data["length"]),
            line=int(data["line"]),
            column=int(data["column"]),
            text=str(data.get("text", "")),
            note=data.get("note"),
        )

    def __str__(self) -> str:
        return f"{self.line}:{self.column} {self.text!r}"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one rule against one artifact."""

    rule_id: str
    status: Status
    message: str = ""
    evidence: tuple[Evidence, ...] = ()
    error_kind: ErrorKind | None = None

    @property
    def failed(self) -> bool:
        return self.status in (Status.FAIL, Status.ERROR)

    @property
    def is_scope_conflict(self) -> bool:
        return self.status == Status.ERROR and self.error_kind == "scope-conflict"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "rule_id": self.rule_id,
            "status": self.status.value,
            "message": self.message,
            "evidence": [e.to_dict() for e in self.evidence],
        }
        if self.error_kind:
            data["error_kind"] = self.error_kind
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckResult":
        return cls(
            rule_id=str(data["rule_id"]),
            status=Status(data["status"]),
            message=str(data.get("message", "")),
            evidence=tuple(Evidence.from_dict(e) for e in data.get("evidence", [])),
            error_kind=data.get("error_kind"),
        )

    def __str__(self) -> str:
        return f"{self.status.value.upper()}: [{self.rule_id}] {self.message}"
