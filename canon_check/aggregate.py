"""
Decision engine: reduce per-rule results to a verdict.

The reduction is order-independent. Each entry gets a gating effect; failing
entries are checked against the override snapshot taken at evaluation start.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal

from .models import ArtifactMetadata, CheckResult, Status, Verdict
from .overrides import OverrideSnapshot
from .rules.schema import Category, RuleSet, Severity

Effect = Literal["pass", "warn", "fail", "ignored"]
OverrideFlag = Literal["overridden", "override expired", "never overridden"]

OVERRIDDEN: OverrideFlag = "overridden"
OVERRIDE_EXPIRED: OverrideFlag = "override expired"
NEVER_OVERRIDDEN: OverrideFlag = "never overridden"

GATING_SEVERITIES = (Severity.ABSOLUTE, Severity.MAJOR)


@dataclass(frozen=True)
class ReportEntry:
    """One CheckResult annotated with how it gates the verdict."""

    result: CheckResult
    severity: Severity
    category: Category
    rule_hash: str
    effect: Effect
    override: dict[str, Any] | None = None
    override_flag: OverrideFlag | None = None

    @property
    def rule_id(self) -> str:
        return self.result.rule_id

    @property
    def overridden(self) -> bool:
        return self.override_flag == OVERRIDDEN

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data.update(
            {
                "severity": self.severity.value,
                "category": self.category.value,
                "rule_hash": self.rule_hash,
                "effect": self.effect,
            }
        )
        if self.override_flag is not None:
            data["override_flag"] = self.override_flag
        if self.override is not None:
            data["override"] = self.override
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReportEntry":
        return cls(
            result=CheckResult.from_dict(data),
            severity=Severity(data["severity"]),
            category=Category(data["category"]),
            rule_hash=str(data.get("rule_hash", "")),
            effect=data.get("effect", "ignored"),
            override=data.get("override"),
            override_flag=data.get("override_flag"),
        )


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    entries: tuple[ReportEntry, ...]


def _base_effect(result: CheckResult, severity: Severity) -> Effect:
    if result.status == Status.NOT_APPLICABLE:
        return "ignored"
    if result.status == Status.PASS:
        return "pass"
    if result.status == Status.WARN or result.is_scope_conflict:
        return "warn"
    return "fail" if severity in GATING_SEVERITIES else "warn"


def classify(
    result: CheckResult,
    severity: Severity,
    category: Category,
    rule_hash: str,
    snapshot: OverrideSnapshot,
    metadata: ArtifactMetadata,
) -> ReportEntry:
    effect = _base_effect(result, severity)
    if result.status not in (Status.FAIL, Status.ERROR) or result.is_scope_conflict:
        return ReportEntry(result, severity, category, rule_hash, effect)

    valid = snapshot.find_valid(result.rule_id, metadata)
    if valid is not None:
        return ReportEntry(result, severity, category, rule_hash, "warn", valid.provenance(), OVERRIDDEN)
    expired = snapshot.find_expired(result.rule_id, metadata)
    if expired is not None:
        return ReportEntry(result, severity, category, rule_hash, effect, expired.provenance(), OVERRIDE_EXPIRED)
    return ReportEntry(result, severity, category, rule_hash, effect, None, NEVER_OVERRIDDEN)


def verdict_for(entries: Iterable[ReportEntry]) -> Verdict:
    """
    FAIL if any absolute rule failed without a valid override; WARN if any
    major rule failed, an absolute rule was overridden, or a scope conflict
    occurred; PASS otherwise.
    """
    warn = False
    for entry in entries:
        result = entry.result
        if result.is_scope_conflict:
            warn = True
            continue
        if not result.failed:
            continue
        if entry.severity == Severity.ABSOLUTE:
            if not entry.overridden:
                return Verdict.FAIL
            warn = True
        elif entry.severity == Severity.MAJOR:
            warn = True
    return Verdict.WARN if warn else Verdict.PASS


def aggregate(
    results: Iterable[CheckResult],
    ruleset: RuleSet,
    snapshot: OverrideSnapshot,
    metadata: ArtifactMetadata,
) -> Decision:
    """Annotate results in deterministic rule order and compute the verdict."""
    by_id = {r.rule_id: r for r in results}
    entries: list[ReportEntry] = []
    for rule in ruleset.rules:
        result = by_id.get(rule.id)
        if result is None:
            continue
        entries.append(classify(result, rule.severity, rule.category, rule.content_hash, snapshot, metadata))
    return Decision(verdict=verdict_for(entries), entries=tuple(entries))
