"""
Rule registry: ingest rule sources into immutable, versioned rule sets.

A rule set only becomes usable once every rule validates and the rule
dependency graph is acyclic. Nothing partial is ever returned.
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Iterable, Mapping

from ..errors import SchemaError
from ..util import retry_io
from .load import parse_rule, parse_source
from .schema import Rule, RuleSet

logger = logging.getLogger(__name__)

RuleSource = Path | str | Mapping[str, Any]


def find_dependency_cycle(rules: Iterable[Rule]) -> list[str] | None:
    """Return one cycle in the `requires` graph as a closed path, or None."""
    edges = {r.id: list(r.requires) for r in rules}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {rule_id: WHITE for rule_id in edges}

    for start in sorted(edges):
        if color[start] != WHITE:
            continue
        stack: list[tuple[str, int]] = [(start, 0)]
        path: list[str] = [start]
        color[start] = GREY
        while stack:
            node, idx = stack[-1]
            deps = edges.get(node, [])
            if idx < len(deps):
                stack[-1] = (node, idx + 1)
                dep = deps[idx]
                if color.get(dep) == GREY:
                    return path[path.index(dep):] + [dep]
                if color.get(dep) == WHITE:
                    color[dep] = GREY
                    stack.append((dep, 0))
                    path.append(dep)
            else:
                color[node] = BLACK
                stack.pop()
                path.pop()
    return None


class RuleRegistry:
    """Builds RuleSets from declarative rule sources."""

    def __init__(self, *, io_retries: int = 3, io_backoff: float = 0.1):
        self.io_retries = io_retries
        self.io_backoff = io_backoff

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise SchemaError("rule source not found", source=str(path))
        text = retry_io(
            lambda: path.read_text(encoding="utf-8"),
            attempts=self.io_retries,
            base_delay=self.io_backoff,
            what=f"reading rule source {path}",
        )
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise SchemaError(f"invalid TOML: {e}", source=str(path)) from e

    def ingest(self, *sources: RuleSource) -> RuleSet:
        """
        Validate and combine rule sources into one RuleSet.

        Args:
            sources: TOML file paths, or mappings shaped like a parsed source

        Raises:
            SchemaError: on any malformed rule, duplicate id, unknown
                dependency or dependency cycle
        """
        if not sources:
            raise SchemaError("no rule sources given")

        rules: list[Rule] = []
        labels: list[str] = []
        seen: dict[str, str] = {}

        for index, src in enumerate(sources):
            if isinstance(src, Mapping):
                label = str(src.get("ruleset_id") or f"<source {index + 1}>")
                data: Mapping[str, Any] = src
            else:
                path = Path(src)
                label = str(path)
                data = self._read(path)

            for rule in parse_source(data, source=label):
                if rule.id in seen:
                    raise SchemaError(
                        f"duplicate rule id (first defined in {seen[rule.id]})",
                        rule_id=rule.id,
                        source=label,
                    )
                seen[rule.id] = label
                rules.append(rule)
            labels.append(label)

        ids = set(seen)
        for rule in rules:
            for dep in rule.requires:
                if dep == rule.id:
                    raise SchemaError("rule requires itself", rule_id=rule.id, source=rule.source)
                if dep not in ids:
                    raise SchemaError(f"requires unknown rule {dep!r}", rule_id=rule.id, source=rule.source)

        cycle = find_dependency_cycle(rules)
        if cycle:
            raise SchemaError(f"rule dependency cycle: {' -> '.join(cycle)}")

        ruleset = RuleSet.build(rules, sources=labels)
        logger.info("Ingested %d rules from %d source(s); version %s", len(ruleset), len(labels), ruleset.version[:12])
        return ruleset


def ingest(*sources: RuleSource) -> RuleSet:
    """Convenience wrapper around RuleRegistry().ingest()."""
    return RuleRegistry().ingest(*sources)


def ruleset_from_dict(data: Mapping[str, Any]) -> RuleSet:
    """Rebuild a stored RuleSet and verify it re-hashes to its recorded version."""
    label = "stored ruleset"
    rules = [parse_rule(raw, source=label) for raw in data.get("rules", [])]
    sources = [str(s) for s in data.get("sources", [])]
    ruleset = RuleSet.build(rules, sources=sources)
    expected = str(data.get("version", ""))
    if expected and ruleset.version != expected:
        raise SchemaError(f"stored ruleset hash mismatch (expected {expected[:12]}, got {ruleset.version[:12]})")
    return ruleset


class RuleSetStore:
    """
    Content-addressed storage for ingested rule sets.

        <data_dir>/rulesets/<version>.json
    """

    def __init__(self, data_dir: Path, *, io_retries: int = 3, io_backoff: float = 0.1):
        self.data_dir = data_dir
        self.rulesets_dir = data_dir / "rulesets"
        self.io_retries = io_retries
        self.io_backoff = io_backoff

    def _path(self, version: str) -> Path:
        return self.rulesets_dir / f"{version}.json"

    def save(self, ruleset: RuleSet) -> Path:
        """Store a ruleset; a no-op if that version is already stored."""
        path = self._path(ruleset.version)
        if path.exists():
            return path

        def _write() -> None:
            self.rulesets_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(ruleset.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(path)

        retry_io(_write, attempts=self.io_retries, base_delay=self.io_backoff, what=f"storing ruleset {ruleset.version[:12]}")
        return path

    def versions(self) -> list[str]:
        if not self.rulesets_dir.exists():
            return []
        return sorted(p.stem for p in self.rulesets_dir.glob("*.json"))

    def resolve_version(self, version_or_prefix: str) -> str:
        """Expand a unique version prefix. Raises KeyError if unknown or ambiguous."""
        needle = version_or_prefix.strip().lower()
        matches = [v for v in self.versions() if v.startswith(needle)]
        if not matches:
            raise KeyError(f"no stored ruleset matches {version_or_prefix!r}")
        if len(matches) > 1:
            raise KeyError(f"ruleset prefix {version_or_prefix!r} is ambiguous ({len(matches)} matches)")
        return matches[0]

    def load(self, version_or_prefix: str) -> RuleSet:
        version = self.resolve_version(version_or_prefix)
        path = self._path(version)
        text = retry_io(
            lambda: path.read_text(encoding="utf-8"),
            attempts=self.io_retries,
            base_delay=self.io_backoff,
            what=f"reading ruleset {version[:12]}",
        )
        return ruleset_from_dict(json.loads(text))
