from __future__ import annotations

from pathlib import Path

import pytest

from canon_check.errors import SchemaError
from canon_check.rules import RuleRegistry, RuleSetStore, find_dependency_cycle, ingest
from canon_check.rules.schema import Category, Severity, canonical_rule_id

from conftest import _write, make_rule, make_ruleset, rule_table

PATTERN = {"type": "pattern", "params": {"words": ["foo"]}}


def test_canonical_rule_id_normalizes_case_and_leading_zeros() -> None:
    assert canonical_rule_id("Core:Formatting:01") == "core:formatting:1"
    assert canonical_rule_id("core:formatting") is None
    assert canonical_rule_id("core formatting 1") is None


def test_ingest_bundled_canon(core_canon_path: Path) -> None:
    ruleset = ingest(core_canon_path)
    assert "core:formatting:1" in ruleset
    assert ruleset.get("core:formatting:1").severity == Severity.ABSOLUTE
    assert ruleset.get("docs:structure:2").requires == ("docs:structure:1",)
    assert ruleset.sources == (str(core_canon_path),)


def test_version_is_content_hash_independent_of_source_order(tmp_path: Path) -> None:
    a = rule_table("t:a:1", PATTERN)
    b = rule_table("t:a:2", PATTERN, severity="minor")
    first = ingest({"rules": [a, b]})
    second = ingest({"ruleset_id": "other-name", "rules": [b, a]})
    assert first.version == second.version

    changed = ingest({"rules": [a, {**b, "message": "different"}]})
    assert changed.version != first.version


def test_get_rules_deterministic_order() -> None:
    ruleset = make_ruleset(
        rule_table("t:x:10", PATTERN, category="voice", severity="minor"),
        rule_table("t:x:2", PATTERN, category="voice", severity="minor"),
        rule_table("t:x:3", PATTERN, category="voice", severity="absolute"),
        rule_table("t:x:4", PATTERN, category="formatting", severity="advisory"),
    )
    assert [r.id for r in ruleset.get_rules()] == ["t:x:4", "t:x:3", "t:x:2", "t:x:10"]
    assert [r.id for r in ruleset.get_rules(category="voice", severity=Severity.MINOR)] == ["t:x:2", "t:x:10"]
    assert [r.id for r in ruleset.get_rules(ids=["t:x:10"])] == ["t:x:10"]
    assert ruleset.get_rules(category=Category.SECURITY) == []


@pytest.mark.parametrize(
    "raw, fragment",
    [
        ({"id": "t:a:1", "category": "formatting", "severity": "major", "check": PATTERN}, "missing required fields: message"),
        (rule_table("t:a:1", PATTERN, category="tone"), "unknown category"),
        (rule_table("t:a:1", PATTERN, severity="critical"), "unknown severity"),
        (rule_table("t:a:1", {"type": "spellcheck"}), "unknown checker type"),
        (rule_table("bad-id", PATTERN), "malformed id"),
        (rule_table("t:a:1", PATTERN, scope={"audience": "dev"}), "unknown scope fields: audience"),
        (rule_table("t:a:1", PATTERN, scope={"access_level": "secret"}), "unknown access level"),
        (rule_table("t:a:1", PATTERN, exceptions=[{}]), "empty exception"),
        (rule_table("t:a:1", PATTERN, priority="high"), "priority must be an integer"),
        (rule_table("t:a:1", {"type": "pattern", "timeout": 0}), "timeout must be a positive number"),
    ],
)
def test_malformed_rules_raise_schema_error(raw: dict, fragment: str) -> None:
    with pytest.raises(SchemaError, match=fragment):
        ingest({"rules": [raw]})


def test_duplicate_ids_detected_after_canonicalization() -> None:
    with pytest.raises(SchemaError, match="duplicate rule id"):
        ingest(
            {"ruleset_id": "one", "rules": [rule_table("Core:Formatting:01", PATTERN)]},
            {"ruleset_id": "two", "rules": [rule_table("core:formatting:1", PATTERN)]},
        )


def test_unknown_requires_rejected() -> None:
    with pytest.raises(SchemaError, match="requires unknown rule 't:a:9'"):
        make_ruleset(rule_table("t:a:1", PATTERN, scope={"requires": ["t:a:9"]}))


def test_dependency_cycle_named_in_error() -> None:
    with pytest.raises(SchemaError, match="cycle: t:a:1 -> t:a:2 -> t:a:3 -> t:a:1"):
        make_ruleset(
            rule_table("t:a:1", PATTERN, scope={"requires": ["t:a:2"]}),
            rule_table("t:a:2", PATTERN, scope={"requires": ["t:a:3"]}),
            rule_table("t:a:3", PATTERN, scope={"requires": ["t:a:1"]}),
        )


def test_find_dependency_cycle_none_for_dag() -> None:
    rules = [
        make_rule("t:a:1", PATTERN),
        make_rule("t:a:2", PATTERN, scope={"requires": ["t:a:1"]}),
        make_rule("t:a:3", PATTERN, scope={"requires": ["t:a:1", "t:a:2"]}),
    ]
    assert find_dependency_cycle(rules) is None


def test_dependency_levels() -> None:
    ruleset = make_ruleset(
        rule_table("t:a:3", PATTERN, scope={"requires": ["t:a:2"]}),
        rule_table("t:a:2", PATTERN, scope={"requires": ["t:a:1"]}),
        rule_table("t:a:1", PATTERN),
        rule_table("t:a:4", PATTERN),
    )
    levels = [[r.id for r in level] for level in ruleset.dependency_levels()]
    assert levels == [["t:a:1", "t:a:4"], ["t:a:2"], ["t:a:3"]]


def test_invalid_toml_is_schema_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.toml"
    _write(path, "[[rules]\nid = ")
    with pytest.raises(SchemaError, match="invalid TOML"):
        RuleRegistry().ingest(path)


def test_missing_rule_source_is_schema_error(tmp_path: Path) -> None:
    with pytest.raises(SchemaError, match="rule source not found"):
        RuleRegistry(io_backoff=5.0).ingest(tmp_path / "nowhere.toml")


def test_store_roundtrip_by_prefix(tmp_path: Path, core_canon_path: Path) -> None:
    store = RuleSetStore(tmp_path / ".canon")
    ruleset = ingest(core_canon_path)
    path = store.save(ruleset)
    assert path.name == f"{ruleset.version}.json"

    loaded = store.load(ruleset.version[:10])
    assert loaded.version == ruleset.version
    assert [r.id for r in loaded.rules] == [r.id for r in ruleset.rules]
    assert loaded.get("core:voice:3").check.params == ruleset.get("core:voice:3").check.params


def test_store_rejects_tampered_ruleset(tmp_path: Path) -> None:
    store = RuleSetStore(tmp_path)
    ruleset = make_ruleset(rule_table("t:a:1", PATTERN))
    path = store.save(ruleset)
    path.write_text(path.read_text(encoding="utf-8").replace("t:a:1 violated", "edited"), encoding="utf-8")
    with pytest.raises(SchemaError, match="hash mismatch"):
        store.load(ruleset.version)


def test_store_unknown_version(tmp_path: Path) -> None:
    with pytest.raises(KeyError):
        RuleSetStore(tmp_path).load("deadbeef")
