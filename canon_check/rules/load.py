from __future__ import annotations

from typing import Any, Mapping

from ..errors import SchemaError
from .schema import (
    ACCESS_LEVELS,
    SCOPE_FIELDS,
    Category,
    CheckSpec,
    Rule,
    ScopePredicate,
    Severity,
    canonical_rule_id,
)

REQUIRED_FIELDS = ("id", "category", "severity", "check", "message")
_SCOPE_KEYS = set(SCOPE_FIELDS) | {"requires"}


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_scope(raw: Any, *, rule_id: str, source: str, what: str) -> tuple[ScopePredicate, list[str]]:
    if raw is None:
        return ScopePredicate(), []
    if not isinstance(raw, Mapping):
        raise SchemaError(f"{what} must be a table", rule_id=rule_id, source=source)

    unknown = sorted(set(raw) - _SCOPE_KEYS)
    if unknown:
        raise SchemaError(f"unknown {what} fields: {', '.join(unknown)}", rule_id=rule_id, source=source)

    for name in SCOPE_FIELDS:
        value = raw.get(name)
        if value is None:
            continue
        values = [value] if isinstance(value, str) else value
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise SchemaError(f"{what}.{name} must be a string or list of strings", rule_id=rule_id, source=source)
        if name == "access_level":
            bad = sorted({v.strip().lower() for v in values} - set(ACCESS_LEVELS))
            if bad:
                raise SchemaError(
                    f"unknown access level(s) {', '.join(bad)} (expected one of {', '.join(ACCESS_LEVELS)})",
                    rule_id=rule_id,
                    source=source,
                )

    requires_raw = raw.get("requires", [])
    if not isinstance(requires_raw, list) or not all(isinstance(r, str) for r in requires_raw):
        raise SchemaError(f"{what}.requires must be a list of rule ids", rule_id=rule_id, source=source)
    requires: list[str] = []
    for ref in requires_raw:
        canonical = canonical_rule_id(ref)
        if canonical is None:
            raise SchemaError(f"malformed rule id in requires: {ref!r}", rule_id=rule_id, source=source)
        requires.append(canonical)

    return ScopePredicate.from_mapping(raw), requires


def parse_rule(raw: Mapping[str, Any], *, source: str, defaults: Mapping[str, Any] | None = None) -> Rule:
    """Validate one rule entry and build a Rule. Raises SchemaError."""
    defaults = defaults or {}
    raw_id = raw.get("id")
    label = str(raw_id) if raw_id is not None else None

    missing = [f for f in REQUIRED_FIELDS if raw.get(f) in (None, "")]
    if missing:
        raise SchemaError(f"missing required fields: {', '.join(missing)}", rule_id=label, source=source)

    rule_id = canonical_rule_id(str(raw_id))
    if rule_id is None:
        raise SchemaError(
            f"malformed id {raw_id!r} (expected namespace:section:seq)",
            source=source,
        )

    try:
        category = Category(str(raw["category"]).strip().lower())
    except ValueError:
        raise SchemaError(f"unknown category {raw['category']!r}", rule_id=rule_id, source=source) from None

    try:
        severity = Severity(str(raw["severity"]).strip().lower())
    except ValueError:
        raise SchemaError(f"unknown severity {raw['severity']!r}", rule_id=rule_id, source=source) from None

    check_raw = raw["check"]
    if isinstance(check_raw, str):
        check_raw = {"type": check_raw}
    if not isinstance(check_raw, Mapping) or not str(check_raw.get("type", "")).strip():
        raise SchemaError("check.type is required", rule_id=rule_id, source=source)

    from ..checkers import CHECKERS

    check_type = str(check_raw["type"]).strip().lower()
    if check_type not in CHECKERS:
        raise SchemaError(
            f"unknown checker type {check_type!r} (expected one of {', '.join(sorted(CHECKERS))})",
            rule_id=rule_id,
            source=source,
        )
    timeout = check_raw.get("timeout")
    if timeout is not None:
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
            raise SchemaError("check.timeout must be a positive number", rule_id=rule_id, source=source)
        timeout = float(timeout)
    check = CheckSpec(type=check_type, params=_coerce_dict(check_raw.get("params")), timeout=timeout)

    scope, requires = _parse_scope(
        raw.get("scope", defaults.get("scope")), rule_id=rule_id, source=source, what="scope"
    )

    exceptions: list[ScopePredicate] = []
    exceptions_raw = raw.get("exceptions", [])
    if not isinstance(exceptions_raw, list):
        raise SchemaError("exceptions must be a list of scope tables", rule_id=rule_id, source=source)
    for entry in exceptions_raw:
        predicate, extra = _parse_scope(entry, rule_id=rule_id, source=source, what="exception")
        if extra:
            raise SchemaError("exceptions cannot declare requires", rule_id=rule_id, source=source)
        if predicate.is_empty:
            raise SchemaError("empty exception would exclude every artifact", rule_id=rule_id, source=source)
        exceptions.append(predicate)

    priority = raw.get("priority", defaults.get("priority", 0))
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise SchemaError("priority must be an integer", rule_id=rule_id, source=source)

    slot = raw.get("slot")
    slot_str = str(slot).strip().lower() if isinstance(slot, str) and slot.strip() else None

    rationale = raw.get("rationale")

    return Rule(
        id=rule_id,
        category=category,
        severity=severity,
        check=check,
        message=str(raw["message"]).strip(),
        scope=scope,
        rationale=str(rationale).strip() if isinstance(rationale, str) else "",
        priority=priority,
        exceptions=tuple(exceptions),
        slot=slot_str,
        requires=tuple(requires),
        source=source,
    )


def parse_source(data: Mapping[str, Any], *, source: str) -> list[Rule]:
    """
    Parse a whole rule source (TOML document or equivalent mapping).

    The schema is intentionally small: rules are data, checkers are code.
    """
    rules_raw = data.get("rules", [])
    if not isinstance(rules_raw, list):
        raise SchemaError("'rules' must be an array of tables", source=source)

    defaults = _coerce_dict(data.get("defaults"))

    rules: list[Rule] = []
    for index, raw in enumerate(rules_raw):
        if not isinstance(raw, Mapping):
            raise SchemaError(f"rule #{index + 1} is not a table", source=source)
        rules.append(parse_rule(raw, source=source, defaults=defaults))
    return rules
