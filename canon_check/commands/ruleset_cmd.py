"""Rule set CLI commands: ingest sources, show a stored version."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import CanonConfig
from ..rules import RuleRegistry, RuleSet, RuleSetStore

BUNDLED_CANON = Path(__file__).resolve().parent.parent / "canons" / "core.toml"


def _store(config: CanonConfig) -> RuleSetStore:
    return RuleSetStore(config.data_dir, io_retries=config.io_retries, io_backoff=config.io_backoff)


def resolve_ruleset(config: CanonConfig, refs: tuple[str, ...] | list[str]) -> RuleSet:
    """
    Resolve ``--ruleset`` values to one RuleSet.

    Each value is a rule source path, or a stored version (or unique prefix).
    Paths are ingested together and the result is stored; a version must be
    given alone. With no value the bundled core canon is used.
    """
    store = _store(config)
    if not refs:
        refs = [str(BUNDLED_CANON)]

    paths = [Path(r) for r in refs if Path(r).exists()]
    if not paths:
        if len(refs) > 1:
            raise ValueError("a stored ruleset version cannot be combined with other --ruleset values")
        return store.load(refs[0])
    if len(paths) != len(refs):
        missing = [r for r in refs if not Path(r).exists()]
        raise ValueError(f"rule source not found: {', '.join(missing)}")

    registry = RuleRegistry(io_retries=config.io_retries, io_backoff=config.io_backoff)
    ruleset = registry.ingest(*paths)
    store.save(ruleset)
    return ruleset


def run_ruleset_ingest(config: CanonConfig, sources: tuple[Path, ...], *, output_json: bool = False) -> int:
    console = Console(stderr=True)
    registry = RuleRegistry(io_retries=config.io_retries, io_backoff=config.io_backoff)
    ruleset = registry.ingest(*sources)
    path = _store(config).save(ruleset)

    if output_json:
        print(json.dumps({"version": ruleset.version, "rules": len(ruleset), "path": str(path)}, indent=2))
        return 0

    console.print(f"Ingested {len(ruleset)} rules from {len(sources)} source(s)", style="green")
    console.print(f"version: {ruleset.version}")
    console.print(f"stored:  {escape(str(path))}", style="dim")
    return 0


def run_ruleset_show(config: CanonConfig, ref: str, *, output_json: bool = False) -> int:
    ruleset = resolve_ruleset(config, [ref])

    if output_json:
        print(json.dumps(ruleset.to_dict(), indent=2, sort_keys=True))
        return 0

    console = Console()
    table = Table(title=f"RuleSet {ruleset.version[:12]}")
    table.add_column("rule", style="cyan", no_wrap=True)
    table.add_column("category", style="magenta")
    table.add_column("severity")
    table.add_column("check")
    table.add_column("scope", style="dim")
    table.add_column("slot", style="dim")
    for rule in ruleset.rules:
        table.add_row(
            rule.id,
            rule.category.value,
            rule.severity.value,
            rule.check.type,
            escape(rule.scope.describe()),
            rule.slot or "",
        )
    console.print(table)
    console.print(f"\nRules: {len(ruleset)}  Sources: {escape(', '.join(ruleset.sources)) or '-'}")
    return 0


def run_ruleset_list(config: CanonConfig) -> int:
    for version in _store(config).versions():
        print(version)
    return 0
