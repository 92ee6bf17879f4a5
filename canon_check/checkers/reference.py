"""Reference checker: cross-references and links must resolve to existing targets."""

from __future__ import annotations

import re
from pathlib import Path

from ..models import Artifact, CheckResult, Evidence
from ..rules.schema import Rule
from .base import CheckContext, LineIndex, failed, not_applicable, passed
from .text import extract_headings, extract_links, slugify

SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):")
DEFAULT_SCHEMES = ("http", "https", "mailto")


def _root_for(artifact: Artifact, ctx: CheckContext) -> Path | None:
    if ctx.reference_root is not None:
        return ctx.reference_root
    if artifact.origin is not None:
        return artifact.origin.parent
    return None


def _resolve_local(root: Path, target: str, kind: str, extensions: tuple[str, ...]) -> bool:
    candidate = (root / target).resolve()
    if candidate.exists():
        return True
    if kind == "wiki" and not Path(target).suffix:
        # Wiki-links name notes without extension; search below the root.
        name = Path(target).name.lower()
        for ext in extensions:
            if (root / f"{target}{ext}").exists():
                return True
        for path in root.rglob("*"):
            if path.is_file() and path.stem.lower() == name and path.suffix in extensions:
                return True
    return False


def check_reference(artifact: Artifact, rule: Rule, ctx: CheckContext) -> CheckResult:
    params = rule.check.params
    schemes = tuple(s.lower() for s in params.get("allowed_schemes", DEFAULT_SCHEMES))
    extensions = tuple(params.get("note_extensions", (".md", ".rst", ".txt")))
    check_files = bool(params.get("check_files", True))

    links = extract_links(artifact.content)
    if not links:
        return not_applicable(rule, "no references in artifact")

    anchors = {slugify(h.title) for h in extract_headings(artifact.content)}
    root = _root_for(artifact, ctx)
    index = LineIndex.for_artifact(artifact)

    broken: list[Evidence] = []
    for link in links:
        ctx.checkpoint()
        target = link.target
        scheme = SCHEME_RE.match(target)
        if scheme and len(scheme.group(1)) > 1:
            if scheme.group(1).lower() not in schemes:
                broken.append(index.evidence(target, link.offset, len(target), note="disallowed scheme"))
            continue

        if not target:
            # Same-document anchor.
            if link.anchor and slugify(link.anchor) not in anchors:
                broken.append(index.evidence(f"#{link.anchor}", link.offset, len(link.anchor) + 1, note="unknown anchor"))
            continue

        if not check_files:
            continue
        if root is None:
            broken.append(index.evidence(target, link.offset, len(target), note="no root to resolve against"))
            continue
        if not _resolve_local(root, target, link.kind, extensions):
            broken.append(index.evidence(target, link.offset, len(target), note="target not found"))

    if broken:
        targets = ", ".join(sorted({e.text for e in broken}))
        return failed(rule, f"{len(broken)} unresolved reference(s): {targets}", broken)
    return passed(rule, f"{len(links)} reference(s) resolved")
