"""Built-in checkers, registered by name."""

from __future__ import annotations

from .base import CancellationToken, CheckContext, CheckerFn
from .checklist import check_checklist
from .pattern import check_pattern
from .reference import check_reference
from .statistical import check_statistical
from .structural import check_structural

CHECKERS: dict[str, CheckerFn] = {
    "pattern": check_pattern,
    "statistical": check_statistical,
    "structural": check_structural,
    "checklist": check_checklist,
    "reference": check_reference,
}

__all__ = [
    "CHECKERS",
    "CancellationToken",
    "CheckContext",
    "CheckerFn",
    "check_checklist",
    "check_pattern",
    "check_reference",
    "check_statistical",
    "check_structural",
]
