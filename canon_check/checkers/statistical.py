"""Statistical checker: sentence-length distribution against declared minimum shares."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..models import Artifact, CheckResult, Evidence
from ..rules.schema import Rule
from .base import CheckContext, LineIndex, checker_error, failed, not_applicable, passed
from .text import Sentence, split_sentences

# Shares are compared with a small tolerance so an exact 15% is not lost to float error.
EPSILON = 1e-9


@dataclass(frozen=True)
class Bucket:
    name: str
    max_words: int | None  # None = open-ended remainder
    min_share: float


DEFAULT_BUCKETS: tuple[Bucket, ...] = (
    Bucket("short", 10, 0.15),
    Bucket("medium", 20, 0.35),
    Bucket("long", 30, 0.20),
    Bucket("remainder", None, 0.30),
)


def parse_buckets(raw: Any) -> tuple[Bucket, ...]:
    """Parse bucket params; upper bounds must ascend and only the last may be open."""
    if raw is None:
        return DEFAULT_BUCKETS
    if not isinstance(raw, list) or not raw:
        raise ValueError("buckets must be a non-empty list")
    buckets: list[Bucket] = []
    last_max = 0
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict) or "name" not in entry:
            raise ValueError(f"bucket #{i + 1} must be a table with a name")
        max_words = entry.get("max_words")
        if max_words is None and i != len(raw) - 1:
            raise ValueError("only the last bucket may omit max_words")
        if max_words is not None:
            max_words = int(max_words)
            if max_words <= last_max:
                raise ValueError("bucket max_words must strictly ascend")
            last_max = max_words
        share = float(entry.get("min_share", 0.0))
        if share > 1.0:
            share = share / 100.0
        buckets.append(Bucket(str(entry["name"]), max_words, share))
    return tuple(buckets)


def bucket_for(words: int, buckets: tuple[Bucket, ...]) -> Bucket | None:
    for bucket in buckets:
        if bucket.max_words is None or words <= bucket.max_words:
            return bucket
    return None


def sentence_distribution(sentences: list[Sentence], buckets: tuple[Bucket, ...]) -> dict[str, float]:
    counts = {b.name: 0 for b in buckets}
    for s in sentences:
        bucket = bucket_for(s.words, buckets)
        if bucket is not None:
            counts[bucket.name] += 1
    total = len(sentences)
    return {name: (count / total if total else 0.0) for name, count in counts.items()}


def check_statistical(artifact: Artifact, rule: Rule, ctx: CheckContext) -> CheckResult:
    params = rule.check.params
    metric = str(params.get("metric", "sentence-length")).lower()
    if metric != "sentence-length":
        return checker_error(rule, f"unknown metric {metric!r}")

    try:
        buckets = parse_buckets(params.get("buckets"))
    except (TypeError, ValueError) as e:
        return checker_error(rule, f"invalid buckets: {e}")

    sentences = split_sentences(artifact.content)
    ctx.checkpoint()
    if not sentences:
        return not_applicable(rule, "no prose sentences to measure")

    shares = sentence_distribution(sentences, buckets)
    index = LineIndex.for_artifact(artifact)

    problems: list[str] = []
    evidence: list[Evidence] = []
    for bucket in buckets:
        share = shares[bucket.name]
        if share + EPSILON < bucket.min_share:
            problems.append(f"{bucket.name} {share:.0%} < {bucket.min_share:.0%}")

    max_words = params.get("max_sentence_words")
    if max_words is not None:
        for s in sentences:
            if s.words > int(max_words):
                evidence.append(index.evidence(s.text, s.offset, len(s.text), note=f"{s.words} words"))
        if evidence:
            problems.append(f"{len(evidence)} sentence(s) over {int(max_words)} words")

    summary = ", ".join(f"{name} {share:.0%}" for name, share in shares.items())
    if problems:
        return failed(rule, "; ".join(problems), evidence)
    return passed(rule, f"{len(sentences)} sentences: {summary}")
