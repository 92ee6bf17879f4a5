from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from ..util import compute_hash


class Category(str, Enum):
    FORMATTING = "formatting"
    VOICE = "voice"
    STRUCTURE = "structure"
    SECURITY = "security"
    TESTING = "testing"
    DOCS_FORMAT = "docs-format"
    NAMING = "naming"


class Severity(str, Enum):
    ABSOLUTE = "absolute"
    MAJOR = "major"
    MINOR = "minor"
    ADVISORY = "advisory"

    @property
    def rank(self) -> int:
        """Gating weight; higher is stricter."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.ABSOLUTE: 3,
    Severity.MAJOR: 2,
    Severity.MINOR: 1,
    Severity.ADVISORY: 0,
}

CATEGORY_ORDER = {c: i for i, c in enumerate(Category)}

ACCESS_LEVELS = ("public", "internal", "restricted", "confidential")

# Scope dimensions that count towards specificity.
SCOPE_FIELDS = ("document_type", "persona", "jurisdiction", "access_level")

RULE_ID_RE = re.compile(r"^([a-z0-9][a-z0-9_.-]*):([a-z0-9][a-z0-9_.-]*):0*(\d+)$")


def canonical_rule_id(raw: str) -> str | None:
    """Normalize ``Core:Formatting:01`` to ``core:formatting:1``; None if malformed."""
    m = RULE_ID_RE.match(raw.strip().lower())
    if not m:
        return None
    return f"{m.group(1)}:{m.group(2)}:{int(m.group(3))}"


def rule_sort_key(rule_id: str) -> tuple[str, str, int]:
    namespace, section, seq = rule_id.split(":")
    return (namespace, section, int(seq))


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _freeze(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_freeze(v) for v in value]
    return value


@dataclass(frozen=True)
class ScopePredicate:
    """
    Predicate over artifact metadata.

    Each bound field holds the accepted values (compared case-insensitively).
    Unbound fields match anything.
    """

    document_type: frozenset[str] | None = None
    persona: frozenset[str] | None = None
    jurisdiction: frozenset[str] | None = None
    access_level: frozenset[str] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScopePredicate":
        kwargs: dict[str, frozenset[str]] = {}
        for name in SCOPE_FIELDS:
            raw = data.get(name)
            if raw is None:
                continue
            values = [raw] if isinstance(raw, str) else list(raw)
            normalized = frozenset(str(v).strip().lower() for v in values if str(v).strip())
            if normalized:
                kwargs[name] = normalized
        return cls(**kwargs)

    @property
    def bound_fields(self) -> tuple[str, ...]:
        return tuple(name for name in SCOPE_FIELDS if getattr(self, name) is not None)

    @property
    def specificity(self) -> int:
        return len(self.bound_fields)

    @property
    def is_empty(self) -> bool:
        return not self.bound_fields

    def matches(self, metadata: Any) -> bool:
        for name in self.bound_fields:
            value = getattr(metadata, name, None)
            if value is None or value.strip().lower() not in getattr(self, name):
                return False
        return True

    def to_dict(self) -> dict[str, list[str]]:
        return {name: sorted(getattr(self, name)) for name in self.bound_fields}

    def key(self) -> str:
        """Stable string form, used to key overrides by scope."""
        parts = [f"{name}={','.join(sorted(getattr(self, name)))}" for name in self.bound_fields]
        return ";".join(parts) or "*"

    def describe(self) -> str:
        return self.key() if self.bound_fields else "any"


@dataclass(frozen=True)
class CheckSpec:
    type: str
    params: dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None

    @property
    def uses_oracle(self) -> bool:
        return bool(self.params.get("oracle"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "params": _freeze(self.params)}
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data


@dataclass(frozen=True)
class Rule:
    id: str
    category: Category
    severity: Severity
    check: CheckSpec
    message: str
    scope: ScopePredicate = field(default_factory=ScopePredicate)
    rationale: str = ""
    priority: int = 0
    exceptions: tuple[ScopePredicate, ...] = ()
    slot: str | None = None
    requires: tuple[str, ...] = ()
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Canonical definition; `source` is provenance and is not part of it."""
        scope = dict(self.scope.to_dict())
        if self.requires:
            scope["requires"] = list(self.requires)
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity.value,
            "scope": scope,
            "check": self.check.to_dict(),
            "message": self.message,
            "rationale": self.rationale,
            "priority": self.priority,
            "exceptions": [e.to_dict() for e in self.exceptions],
            "slot": self.slot,
        }

    @property
    def content_hash(self) -> str:
        return compute_hash(self.to_dict())


def _order_key(rule: Rule) -> tuple[int, int, tuple[str, str, int]]:
    return (CATEGORY_ORDER[rule.category], -rule.severity.rank, rule_sort_key(rule.id))


@dataclass(frozen=True)
class RuleSet:
    """
    Immutable, content-hashed collection of rules.

    `version` is the sha256 of the canonical definitions sorted by id, so two
    registries loaded from identical content share a version.
    """

    rules: tuple[Rule, ...]
    version: str
    sources: tuple[str, ...] = ()
    _by_id: dict[str, Rule] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(sorted(self.rules, key=_order_key)))
        object.__setattr__(self, "_by_id", {r.id: r for r in self.rules})

    @classmethod
    def build(cls, rules: Iterable[Rule], sources: Iterable[str] = ()) -> "RuleSet":
        rules = tuple(rules)
        return cls(rules=rules, version=compute_ruleset_version(rules), sources=tuple(sources))

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def get(self, rule_id: str) -> Rule | None:
        return self._by_id.get(rule_id)

    def get_rules(
        self,
        *,
        category: Category | str | None = None,
        severity: Severity | str | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Rule]:
        """Rules in deterministic order: category, severity descending, id ascending."""
        wanted_ids = set(ids) if ids is not None else None
        cat = Category(category) if category is not None else None
        sev = Severity(severity) if severity is not None else None
        out = []
        for rule in self.rules:
            if cat is not None and rule.category != cat:
                continue
            if sev is not None and rule.severity != sev:
                continue
            if wanted_ids is not None and rule.id not in wanted_ids:
                continue
            out.append(rule)
        return out

    def dependency_levels(self) -> list[list[Rule]]:
        """Topological layers of the `requires` DAG (prerequisites first)."""
        depth: dict[str, int] = {}

        def _depth(rule_id: str) -> int:
            if rule_id in depth:
                return depth[rule_id]
            rule = self._by_id[rule_id]
            d = 0 if not rule.requires else 1 + max(_depth(r) for r in rule.requires)
            depth[rule_id] = d
            return d

        levels: dict[int, list[Rule]] = {}
        for rule in self.rules:
            levels.setdefault(_depth(rule.id), []).append(rule)
        return [levels[k] for k in sorted(levels)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "sources": list(self.sources),
            "rules": [r.to_dict() for r in sorted(self.rules, key=lambda r: rule_sort_key(r.id))],
        }


def compute_ruleset_version(rules: Iterable[Rule]) -> str:
    ordered = sorted(rules, key=lambda r: rule_sort_key(r.id))
    return compute_hash([r.to_dict() for r in ordered])
