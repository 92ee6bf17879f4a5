"""
Override store: human-approved, time-bounded exceptions to failing rules.

Storage format: JSON Lines (.jsonl), one approved override per line, never
rewritten. Writes are serialized by a single-writer lock; evaluations read an
immutable snapshot taken when they start.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from .errors import OverrideAuthorityError
from .models import ArtifactMetadata
from .rules.schema import Category, RuleSet, ScopePredicate
from .util import new_ulid, parse_timestamp, retry_io, utc_now

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class Override:
    rule_id: str
    scope: ScopePredicate
    justification: str
    approver: str
    created_at: datetime
    expiry: datetime
    override_id: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.rule_id, self.scope.key())

    def is_valid(self, at: datetime) -> bool:
        return at < self.expiry

    def matches(self, rule_id: str, metadata: ArtifactMetadata) -> bool:
        return rule_id == self.rule_id and self.scope.matches(metadata)

    def provenance(self) -> dict[str, Any]:
        return {
            "override_id": self.override_id,
            "approver": self.approver,
            "justification": self.justification,
            "scope": self.scope.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expiry": self.expiry.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {"rule_id": self.rule_id, **self.provenance()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Override":
        return cls(
            rule_id=str(data["rule_id"]),
            scope=ScopePredicate.from_mapping(data.get("scope", {})),
            justification=str(data.get("justification", "")),
            approver=str(data.get("approver", "")),
            created_at=parse_timestamp(str(data["created_at"])),
            expiry=parse_timestamp(str(data["expiry"])),
            override_id=str(data.get("override_id", "")),
        )


@dataclass(frozen=True)
class OverrideSnapshot:
    """Immutable view of the override table at one instant."""

    taken_at: datetime
    overrides: tuple[Override, ...] = ()

    def _matching(self, rule_id: str, metadata: ArtifactMetadata) -> list[Override]:
        return [o for o in self.overrides if o.matches(rule_id, metadata)]

    def find_valid(self, rule_id: str, metadata: ArtifactMetadata) -> Override | None:
        valid = [o for o in self._matching(rule_id, metadata) if o.is_valid(self.taken_at)]
        if not valid:
            return None
        return max(valid, key=lambda o: (o.scope.specificity, o.created_at))

    def find_expired(self, rule_id: str, metadata: ArtifactMetadata) -> Override | None:
        expired = [o for o in self._matching(rule_id, metadata) if not o.is_valid(self.taken_at)]
        if not expired:
            return None
        return max(expired, key=lambda o: o.expiry)


@dataclass
class AuthorityTable:
    """Principal -> rule categories it may override (``*`` for all)."""

    grants: dict[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Iterable[str]]) -> "AuthorityTable":
        grants: dict[str, frozenset[str]] = {}
        for principal, categories in data.items():
            if isinstance(categories, str):
                categories = [categories]
            values = {str(c).strip().lower() for c in categories}
            unknown = values - {c.value for c in Category} - {WILDCARD}
            if unknown:
                raise ValueError(f"unknown categories for {principal!r}: {', '.join(sorted(unknown))}")
            grants[principal.strip().lower()] = frozenset(values)
        return cls(grants=grants)

    def may_override(self, principal: str, category: Category) -> bool:
        allowed = self.grants.get(principal.strip().lower(), frozenset())
        return WILDCARD in allowed or category.value in allowed


class OverrideStore:
    """
    Append-only override table keyed by (rule_id, scope).

    With ``path=None`` the store lives in memory only.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        authorities: AuthorityTable | Mapping[str, Iterable[str]] | None = None,
        clock: Callable[[], datetime] = utc_now,
        io_retries: int = 3,
        io_backoff: float = 0.1,
    ):
        self.path = path
        if authorities is None:
            authorities = AuthorityTable()
        elif not isinstance(authorities, AuthorityTable):
            authorities = AuthorityTable.from_mapping(authorities)
        self.authorities = authorities
        self.clock = clock
        self.io_retries = io_retries
        self.io_backoff = io_backoff
        self._write_lock = threading.Lock()
        self._overrides: tuple[Override, ...] = self._load()

    def _load(self) -> tuple[Override, ...]:
        if self.path is None or not self.path.exists():
            return ()
        text = retry_io(
            lambda: self.path.read_text(encoding="utf-8"),
            attempts=self.io_retries,
            base_delay=self.io_backoff,
            what="reading override table",
        )
        overrides = []
        for line in text.splitlines():
            line = line.strip()
            if line:
                overrides.append(Override.from_dict(json.loads(line)))
        return tuple(overrides)

    @staticmethod
    def _append(path: Path, override: Override) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(override.to_dict(), separators=(",", ":")) + "\n")

    def request_override(
        self,
        ruleset: RuleSet,
        rule_id: str,
        scope: ScopePredicate | Mapping[str, Any],
        justification: str,
        approver: str,
        expiry: datetime,
    ) -> Override:
        """
        Approve an override, or raise OverrideAuthorityError.

        Raises:
            OverrideAuthorityError: approver lacks authority over the rule's category
            ValueError: unknown rule, empty justification or scope, expiry not in the future
        """
        rule = ruleset.get(rule_id)
        if rule is None:
            raise ValueError(f"unknown rule {rule_id!r} in ruleset {ruleset.version[:12]}")
        if not justification.strip():
            raise ValueError("justification is required")
        if not approver.strip():
            raise ValueError("approver is required")
        if not isinstance(scope, ScopePredicate):
            scope = ScopePredicate.from_mapping(scope)
        if scope.is_empty:
            raise ValueError("override scope must bind at least one field")

        if not self.authorities.may_override(approver, rule.category):
            logger.warning("Override for %s rejected: %s lacks %s authority", rule_id, approver, rule.category.value)
            raise OverrideAuthorityError(approver, rule_id, rule.category.value)

        with self._write_lock:
            now = self.clock()
            if expiry.tzinfo is None:
                raise ValueError("expiry must be timezone-aware")
            if expiry <= now:
                raise ValueError("expiry must be in the future")
            override = Override(
                rule_id=rule.id,
                scope=scope,
                justification=justification.strip(),
                approver=approver.strip(),
                created_at=now,
                expiry=expiry,
                override_id=new_ulid(),
            )
            path = self.path
            if path is not None:
                retry_io(
                    lambda: self._append(path, override),
                    attempts=self.io_retries,
                    base_delay=self.io_backoff,
                    what="appending override",
                )
            self._overrides = self._overrides + (override,)

        logger.info("Override %s approved by %s for %s until %s", override.override_id, override.approver, rule.id, expiry.isoformat())
        return override

    def all(self) -> tuple[Override, ...]:
        return self._overrides

    def current(self) -> list[Override]:
        """Latest override per (rule_id, scope) key."""
        latest: dict[tuple[str, str], Override] = {}
        for o in self._overrides:
            prev = latest.get(o.key)
            if prev is None or o.created_at >= prev.created_at:
                latest[o.key] = o
        return sorted(latest.values(), key=lambda o: o.key)

    def snapshot(self, at: datetime | None = None) -> OverrideSnapshot:
        """Immutable view for one evaluation; later approvals do not affect it."""
        return OverrideSnapshot(taken_at=at or self.clock(), overrides=tuple(self.current()))
