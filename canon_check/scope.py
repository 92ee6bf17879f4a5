"""
Scope resolution: which rules of a RuleSet apply to an artifact.

Resolution is a pure function of (metadata, ruleset.version). Rules that
share a slot compete on specificity, then priority. A tie on both is never
broken arbitrarily; every tied rule is reported as a scope conflict.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .errors import ScopeConflictError
from .models import ArtifactMetadata
from .rules.schema import Rule, RuleSet


@dataclass(frozen=True)
class Resolution:
    """Applicable rules plus the reason every other rule was left out."""

    ruleset_version: str
    metadata: ArtifactMetadata
    applicable: tuple[Rule, ...] = ()
    excluded: dict[str, str] = field(default_factory=dict)
    conflicts: tuple[ScopeConflictError, ...] = ()

    @property
    def applicable_ids(self) -> tuple[str, ...]:
        return tuple(r.id for r in self.applicable)

    def conflict_for(self, rule_id: str) -> ScopeConflictError | None:
        for conflict in self.conflicts:
            if rule_id in conflict.rule_ids:
                return conflict
        return None


def _exception_hit(rule: Rule, metadata: ArtifactMetadata) -> str | None:
    for predicate in rule.exceptions:
        if predicate.matches(metadata):
            return predicate.describe()
    return None


def resolve(ruleset: RuleSet, metadata: ArtifactMetadata) -> Resolution:
    candidates: list[Rule] = []
    excluded: dict[str, str] = {}

    for rule in ruleset.rules:
        if not rule.scope.matches(metadata):
            excluded[rule.id] = f"out of scope ({rule.scope.describe()})"
            continue
        hit = _exception_hit(rule, metadata)
        if hit is not None:
            excluded[rule.id] = f"excluded by exception ({hit})"
            continue
        candidates.append(rule)

    by_slot: dict[str, list[Rule]] = {}
    for rule in candidates:
        if rule.slot:
            by_slot.setdefault(rule.slot, []).append(rule)

    conflicts: list[ScopeConflictError] = []
    dropped: set[str] = set()
    for slot in sorted(by_slot):
        contenders = by_slot[slot]
        if len(contenders) < 2:
            continue
        best = max((r.scope.specificity, r.priority) for r in contenders)
        top = [r for r in contenders if (r.scope.specificity, r.priority) == best]
        if len(top) > 1:
            conflict = ScopeConflictError(slot, tuple(r.id for r in top), specificity=best[0], priority=best[1])
            conflicts.append(conflict)
            for r in contenders:
                dropped.add(r.id)
                if r not in top:
                    excluded[r.id] = f"shadowed in slot {slot!r} by conflicting rules {', '.join(conflict.rule_ids)}"
            continue
        winner = top[0]
        for r in contenders:
            if r is not winner:
                dropped.add(r.id)
                excluded[r.id] = f"shadowed in slot {slot!r} by {winner.id}"

    applicable = tuple(r for r in candidates if r.id not in dropped)
    return Resolution(
        ruleset_version=ruleset.version,
        metadata=metadata,
        applicable=applicable,
        excluded=excluded,
        conflicts=tuple(conflicts),
    )


class ScopeResolver:
    """Resolver with a cache keyed by (ruleset version, metadata)."""

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._cache: dict[tuple[str, ArtifactMetadata], Resolution] = {}
        self._lock = threading.Lock()

    def resolve(self, ruleset: RuleSet, metadata: ArtifactMetadata) -> Resolution:
        key = (ruleset.version, metadata)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        resolution = resolve(ruleset, metadata)
        with self._lock:
            if len(self._cache) >= self.max_entries:
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = resolution
        return resolution
