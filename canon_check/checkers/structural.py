"""Structural checker: required sections present, at the right level, in order."""

from __future__ import annotations

from ..models import Artifact, CheckResult
from ..rules.schema import Rule
from .base import CheckContext, LineIndex, checker_error, failed, passed
from .text import extract_headings


def check_structural(artifact: Artifact, rule: Rule, ctx: CheckContext) -> CheckResult:
    params = rule.check.params
    sections = params.get("sections", [])
    if not isinstance(sections, list) or not sections or not all(isinstance(s, str) for s in sections):
        return checker_error(rule, "structural rule needs a non-empty 'sections' list")

    ordered = bool(params.get("ordered", True))
    level = params.get("level")

    headings = extract_headings(artifact.content)
    if level is not None:
        headings = [h for h in headings if h.level == int(level)]
    ctx.checkpoint()

    wanted = [s.strip().lower() for s in sections]
    positions: dict[str, int] = {}
    for i, h in enumerate(headings):
        title = h.title.strip().lower()
        if title in wanted and title not in positions:
            positions[title] = i

    missing = [sections[i] for i, w in enumerate(wanted) if w not in positions]
    if missing:
        return failed(rule, f"missing sections: {', '.join(missing)}")

    if ordered:
        index = LineIndex.for_artifact(artifact)
        found = [positions[w] for w in wanted]
        for i in range(1, len(found)):
            if found[i] < found[i - 1]:
                name = sections[i]
                heading = headings[found[i]]
                ev = index.evidence(heading.title, heading.offset, len(heading.title) + heading.level + 1)
                return failed(rule, f"section {name!r} out of order (expected {' > '.join(sections)})", [ev])

    return passed(rule)
