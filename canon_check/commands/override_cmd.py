"""Override CLI commands: request an override, list the override table."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import CanonConfig
from ..overrides import OverrideStore
from ..rules.schema import ScopePredicate
from ..util import parse_timestamp, utc_now
from .ruleset_cmd import resolve_ruleset

DURATION_RE = re.compile(r"^(\d+)([hdw])$")
_UNITS = {"h": "hours", "d": "days", "w": "weeks"}


def parse_expiry(value: str, *, now: datetime | None = None) -> datetime:
    """Accept an ISO-8601 timestamp/date or a relative duration like ``30d``, ``12h``, ``2w``."""
    m = DURATION_RE.match(value.strip().lower())
    if m:
        return (now or utc_now()) + timedelta(**{_UNITS[m.group(2)]: int(m.group(1))})
    return parse_timestamp(value)


def _store(config: CanonConfig) -> OverrideStore:
    return OverrideStore(
        config.overrides_path,
        authorities=config.authorities,
        io_retries=config.io_retries,
        io_backoff=config.io_backoff,
    )


def run_override_request(
    config: CanonConfig,
    rule_id: str,
    *,
    rulesets: tuple[str, ...],
    approver: str,
    justification: str,
    expires: str,
    scope: dict[str, tuple[str, ...]],
    output_json: bool = False,
) -> int:
    ruleset = resolve_ruleset(config, rulesets)
    predicate = ScopePredicate.from_mapping({k: list(v) for k, v in scope.items() if v})
    override = _store(config).request_override(
        ruleset,
        rule_id.strip().lower(),
        predicate,
        justification,
        approver,
        parse_expiry(expires),
    )

    if output_json:
        print(json.dumps(override.to_dict(), indent=2))
        return 0

    console = Console(stderr=True)
    console.print(f"Override {override.override_id} approved", style="green")
    console.print(f"rule: {override.rule_id}  scope: {escape(override.scope.describe())}")
    console.print(f"approver: {escape(override.approver)}  expires: {override.expiry.isoformat()}", style="dim")
    return 0


def run_override_list(config: CanonConfig, *, include_history: bool = False, output_json: bool = False) -> int:
    store = _store(config)
    now = utc_now()
    overrides = list(store.all()) if include_history else store.current()

    if output_json:
        rows = [{**o.to_dict(), "valid": o.is_valid(now)} for o in overrides]
        print(json.dumps(rows, indent=2))
        return 0

    console = Console()
    table = Table(title="Overrides")
    table.add_column("override_id", style="cyan", no_wrap=True)
    table.add_column("rule")
    table.add_column("scope", style="magenta")
    table.add_column("approver")
    table.add_column("expires")
    table.add_column("justification", style="dim")
    for o in overrides:
        expiry = o.expiry.isoformat()
        if not o.is_valid(now):
            expiry = f"[red]{expiry} (expired)[/]"
        table.add_row(o.override_id, o.rule_id, escape(o.scope.describe()), escape(o.approver), expiry, escape(o.justification))
    console.print(table)
    console.print(f"\nOverrides: {len(overrides)}")
    return 0
