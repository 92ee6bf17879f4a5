"""Checklist checker: binary ``[ ]`` / ``[x]`` items in the artifact."""

from __future__ import annotations

from ..models import Artifact, CheckResult
from ..rules.schema import Rule
from .base import CheckContext, LineIndex, checker_error, failed, passed
from .text import extract_checklist


def check_checklist(artifact: Artifact, rule: Rule, ctx: CheckContext) -> CheckResult:
    params = rule.check.params
    items = params.get("items", [])
    if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
        return checker_error(rule, "'items' must be a list of item labels")
    require_all = bool(params.get("require_all_checked", not items))
    min_items = int(params.get("min_items", 0))

    found = extract_checklist(artifact.content)
    ctx.checkpoint()
    index = LineIndex.for_artifact(artifact)
    problems: list[str] = []
    evidence = []

    if len(found) < min_items:
        problems.append(f"{len(found)} checklist item(s), expected at least {min_items}")

    by_label = {}
    for item in found:
        by_label.setdefault(item.label.lower(), item)

    missing = []
    for label in items:
        item = by_label.get(label.strip().lower())
        if item is None:
            missing.append(label)
        elif not item.checked:
            evidence.append(index.evidence(item.label, item.offset, len(item.label), note="unchecked"))
    if missing:
        problems.append(f"missing items: {', '.join(missing)}")

    if require_all:
        for item in found:
            if not item.checked and item.label.lower() not in {i.strip().lower() for i in items}:
                evidence.append(index.evidence(item.label, item.offset, len(item.label), note="unchecked"))

    if evidence:
        evidence.sort(key=lambda e: e.offset)
        problems.append(f"{len(evidence)} unchecked item(s)")

    if problems:
        return failed(rule, "; ".join(problems), evidence)
    return passed(rule, f"{sum(1 for i in found if i.checked)}/{len(found)} items checked")
