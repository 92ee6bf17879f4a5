"""
Checker protocol and shared helpers.

A checker is a plain function ``(artifact, rule, ctx) -> CheckResult``.
Checkers hold no state between calls and never write anywhere; everything
they may consult (oracle terms, a filesystem root for references, the
cancellation signal) arrives through the CheckContext.
"""

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from ..errors import EvaluationCancelled
from ..models import Artifact, CheckResult, Evidence, Status
from ..rules.schema import Rule


class CancellationToken:
    """
    Cooperative cancellation signal.

    A child token is cancelled when either it or any ancestor is cancelled,
    so a per-task token can be tripped by a timeout without touching the
    whole evaluation.
    """

    def __init__(self, parent: "CancellationToken | None" = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise EvaluationCancelled("evaluation cancelled")


@dataclass(frozen=True)
class CheckContext:
    """Capabilities injected into every checker call."""

    cancel: CancellationToken = field(default_factory=CancellationToken)
    oracle_terms: Mapping[str, frozenset[str]] = field(default_factory=dict)
    reference_root: Path | None = None

    def checkpoint(self) -> None:
        """Raise EvaluationCancelled if this task should stop."""
        self.cancel.raise_if_cancelled()


CheckerFn = Callable[[Artifact, Rule, CheckContext], CheckResult]


class LineIndex:
    """
    Maps offsets in checked text to 1-based (line, column) positions.

    Offsets passed in are relative to ``text``; positions and evidence offsets
    come out relative to ``prefix + text``, i.e. the original source.
    """

    def __init__(self, text: str, prefix: str = ""):
        self._base = len(prefix)
        self._starts = [0]
        for i, ch in enumerate(prefix + text):
            if ch == "\n":
                self._starts.append(i + 1)

    @classmethod
    def for_artifact(cls, artifact: Artifact) -> "LineIndex":
        return cls(artifact.content, artifact.prefix)

    def position(self, offset: int) -> tuple[int, int]:
        offset += self._base
        line_idx = bisect.bisect_right(self._starts, offset) - 1
        return line_idx + 1, offset - self._starts[line_idx] + 1

    def evidence(self, text: str, offset: int, length: int, note: str | None = None) -> Evidence:
        line, column = self.position(offset)
        return Evidence(offset=self._base + offset, length=length, line=line, column=column, text=text, note=note)


def passed(rule: Rule, message: str = "") -> CheckResult:
    return CheckResult(rule_id=rule.id, status=Status.PASS, message=message)


def failed(rule: Rule, detail: str = "", evidence: tuple[Evidence, ...] | list[Evidence] = ()) -> CheckResult:
    msg = rule.message
    if detail:
        msg = f"{msg} ({detail})"
    return CheckResult(rule_id=rule.id, status=Status.FAIL, message=msg, evidence=tuple(evidence))


def not_applicable(rule: Rule, reason: str) -> CheckResult:
    return CheckResult(rule_id=rule.id, status=Status.NOT_APPLICABLE, message=reason)


def checker_error(rule: Rule, message: str) -> CheckResult:
    return CheckResult(rule_id=rule.id, status=Status.ERROR, message=message, error_kind="checker")
