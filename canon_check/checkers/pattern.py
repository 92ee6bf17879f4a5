"""Pattern checker: forbidden (or required) words, substrings, regexes and presets."""

from __future__ import annotations

import re

from ..models import Artifact, CheckResult, Evidence
from ..rules.schema import Rule
from .base import CheckContext, LineIndex, checker_error, failed, passed
from .text import mask_code

_EMOJI_BASE = (
    "\U0001F1E6-\U0001F1FF"  # regional indicators (flags)
    "\U0001F300-\U0001F5FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F700-\U0001F77F"
    "\U0001F780-\U0001F7FF"
    "\U0001F800-\U0001F8FF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA00-\U0001FAFF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\u2B05-\u2B07\u2B1B\u2B1C\u2B50\u2B55"
    "\u231A\u231B\u23E9-\u23F3\u23F8-\u23FA"
)
EMOJI_RE = re.compile(
    f"[{_EMOJI_BASE}](?:\uFE0F|[\U0001F3FB-\U0001F3FF]|\u200D[{_EMOJI_BASE}])*"
)

PRESETS: dict[str, re.Pattern[str]] = {
    "emoji": EMOJI_RE,
    "em-dash": re.compile("\u2014"),
}

DEFAULT_MAX_EVIDENCE = 50


def _str_list(value: object) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value if str(v)]
    return []


def _phrase_re(phrase: str) -> re.Pattern[str]:
    # Whole-word match that tolerates punctuation at either end of the phrase.
    escaped = r"\s+".join(re.escape(part) for part in phrase.split())
    left = r"\b" if phrase[:1].isalnum() else ""
    right = r"\b" if phrase[-1:].isalnum() else ""
    return re.compile(f"{left}{escaped}{right}", re.IGNORECASE)


def build_matchers(rule: Rule, ctx: CheckContext) -> tuple[list[tuple[str, re.Pattern[str]]], str | None]:
    """Compile every matcher a rule declares. Returns (matchers, error)."""
    params = rule.check.params
    matchers: list[tuple[str, re.Pattern[str]]] = []

    for name in _str_list(params.get("preset")):
        preset = PRESETS.get(name.lower())
        if preset is None:
            return [], f"unknown preset {name!r} (expected one of {', '.join(sorted(PRESETS))})"
        matchers.append((f"preset:{name}", preset))

    for word in _str_list(params.get("words")):
        matchers.append((word, _phrase_re(word)))

    case_sensitive = bool(params.get("case_sensitive", False))
    for sub in _str_list(params.get("substrings")):
        flags = 0 if case_sensitive else re.IGNORECASE
        matchers.append((sub, re.compile(re.escape(sub), flags)))

    for pattern in _str_list(params.get("patterns")):
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            matchers.append((pattern, re.compile(pattern, flags | re.MULTILINE)))
        except re.error as e:
            return [], f"invalid regex {pattern!r}: {e}"

    oracle = params.get("oracle")
    if oracle:
        terms = ctx.oracle_terms.get(str(oracle))
        if terms is None:
            return [], f"oracle {oracle!r} is not configured"
        for term in sorted(terms):
            if term.strip():
                matchers.append((term, _phrase_re(term.strip())))

    return matchers, None


def check_pattern(artifact: Artifact, rule: Rule, ctx: CheckContext) -> CheckResult:
    params = rule.check.params
    mode = str(params.get("mode", "forbid")).lower()
    if mode not in ("forbid", "require"):
        return checker_error(rule, f"unknown pattern mode {mode!r}")

    matchers, error = build_matchers(rule, ctx)
    if error:
        return checker_error(rule, error)
    if not matchers:
        return checker_error(rule, "pattern rule declares no words, substrings, patterns, presets or oracle")

    content = artifact.content
    haystack = mask_code(content) if params.get("ignore_code", False) else content
    index = LineIndex.for_artifact(artifact)
    max_evidence = int(params.get("max_evidence", DEFAULT_MAX_EVIDENCE))

    hits: list[Evidence] = []
    labels: set[str] = set()
    total = 0
    for label, regex in matchers:
        ctx.checkpoint()
        for m in regex.finditer(haystack):
            if m.end() == m.start():
                continue
            total += 1
            labels.add(label)
            if len(hits) < max_evidence:
                hits.append(index.evidence(content[m.start():m.end()], m.start(), m.end() - m.start(), note=label))
            if mode == "require":
                break
        if mode == "require" and total:
            break

    if mode == "require":
        if total:
            return passed(rule)
        return failed(rule, "required pattern not found")

    if not total:
        return passed(rule)
    hits.sort(key=lambda e: (e.offset, e.length))
    detail = f"{total} match{'es' if total != 1 else ''}: {', '.join(sorted(labels))}"
    return failed(rule, detail, hits)
