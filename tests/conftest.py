"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from canon_check.checkers import CheckContext
from canon_check.models import Artifact, ArtifactMetadata
from canon_check.rules import Rule, RuleSet, ingest
from canon_check.rules.load import parse_rule

FIXED_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_rule(rule_id: str, check: dict[str, Any], **fields: Any) -> Rule:
    """Build one validated rule with sensible defaults."""
    return parse_rule(rule_table(rule_id, check, **fields), source="test")


def make_ruleset(*rules: dict[str, Any]) -> RuleSet:
    """Ingest raw rule tables as one in-memory source."""
    return ingest({"ruleset_id": "test", "rules": list(rules)})


def rule_table(rule_id: str, check: dict[str, Any], **fields: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "id": rule_id,
        "category": "formatting",
        "severity": "major",
        "message": f"{rule_id} violated",
        "check": check,
    }
    raw.update(fields)
    return raw


def doc(content: str, **metadata: str) -> Artifact:
    return Artifact(content=content, metadata=ArtifactMetadata(**metadata))


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def ctx() -> CheckContext:
    return CheckContext()


@pytest.fixture
def core_canon_path() -> Path:
    """The canon bundled with the package."""
    return Path(__file__).resolve().parent.parent / "canon_check" / "canons" / "core.toml"


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
