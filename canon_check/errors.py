"""
Error taxonomy for the compliance engine.

Load-time errors (SchemaError) abort before any evaluation begins.
Evaluation-time errors are captured per rule and surface in the report.
"""

from __future__ import annotations


class CanonError(Exception):
    """Base class for all engine errors."""


class SchemaError(CanonError):
    """Malformed rule definition or a rule dependency cycle."""

    def __init__(self, message: str, *, rule_id: str | None = None, source: str | None = None):
        self.rule_id = rule_id
        self.source = source
        prefix = ""
        if source:
            prefix += f"{source}: "
        if rule_id:
            prefix += f"[{rule_id}] "
        super().__init__(prefix + message)


class ScopeConflictError(CanonError):
    """Two or more equally specific, equally prioritized rules occupy one slot."""

    def __init__(self, slot: str, rule_ids: tuple[str, ...], specificity: int, priority: int):
        self.slot = slot
        self.rule_ids = tuple(sorted(rule_ids))
        self.specificity = specificity
        self.priority = priority
        super().__init__(
            f"scope conflict in slot {slot!r}: {', '.join(self.rule_ids)} "
            f"(specificity={specificity}, priority={priority})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScopeConflictError):
            return NotImplemented
        return (self.slot, self.rule_ids, self.specificity, self.priority) == (
            other.slot,
            other.rule_ids,
            other.specificity,
            other.priority,
        )

    def __hash__(self) -> int:
        return hash((self.slot, self.rule_ids, self.specificity, self.priority))


class CheckerTimeoutError(CanonError):
    """A checker ran past its per-rule timeout."""

    def __init__(self, rule_id: str, timeout: float):
        self.rule_id = rule_id
        self.timeout = timeout
        super().__init__(f"checker for {rule_id} timed out after {timeout:g}s")


class OverrideAuthorityError(CanonError):
    """The approver has no authority over the rule's category."""

    def __init__(self, approver: str, rule_id: str, category: str):
        self.approver = approver
        self.rule_id = rule_id
        self.category = category
        super().__init__(f"{approver!r} has no override authority over {category!r} rules ({rule_id})")


class StorageError(CanonError):
    """Persisting engine state failed after retries."""


class EvaluationCancelled(CanonError):
    """The evaluation was cancelled externally; nothing was persisted."""
