from __future__ import annotations

from canon_check.errors import ScopeConflictError
from canon_check.models import ArtifactMetadata
from canon_check.rules import ingest
from canon_check.scope import ScopeResolver, resolve

from conftest import make_ruleset, rule_table

FORBID = {"type": "pattern", "params": {"patterns": ["\\b\\w+n't\\b"]}}
REQUIRE = {"type": "pattern", "params": {"patterns": ["\\b\\w+n't\\b"], "mode": "require"}}


def _contraction_rules(**casual_overrides):
    legal = rule_table("core:voice:3", FORBID, category="voice", slot="contractions", scope={"document_type": "contract"})
    casual = rule_table("core:voice:4", REQUIRE, category="voice", slot="contractions", scope={"persona": "casual-blogger"})
    casual.update(casual_overrides)
    return make_ruleset(legal, casual)


def test_unscoped_rule_applies_everywhere() -> None:
    ruleset = make_ruleset(rule_table("t:a:1", FORBID))
    assert resolve(ruleset, ArtifactMetadata()).applicable_ids == ("t:a:1",)


def test_bound_field_never_matches_missing_metadata() -> None:
    ruleset = make_ruleset(rule_table("t:a:1", FORBID, scope={"jurisdiction": ["us", "eu"]}))
    res = resolve(ruleset, ArtifactMetadata(document_type="readme"))
    assert res.applicable == ()
    assert res.excluded["t:a:1"].startswith("out of scope")


def test_scope_values_compare_case_insensitively() -> None:
    ruleset = make_ruleset(rule_table("t:a:1", FORBID, scope={"document_type": "ADR"}))
    assert resolve(ruleset, ArtifactMetadata(document_type=" adr ")).applicable_ids == ("t:a:1",)


def test_exception_excludes_rule() -> None:
    ruleset = make_ruleset(rule_table("t:a:1", FORBID, exceptions=[{"document_type": "chat-transcript"}]))
    res = resolve(ruleset, ArtifactMetadata(document_type="chat-transcript"))
    assert res.applicable == ()
    assert "excluded by exception" in res.excluded["t:a:1"]


def test_contract_and_casual_blogger_conflict() -> None:
    ruleset = _contraction_rules()
    res = resolve(ruleset, ArtifactMetadata(document_type="contract", persona="casual-blogger"))

    assert res.applicable == ()
    assert len(res.conflicts) == 1
    conflict = res.conflicts[0]
    assert isinstance(conflict, ScopeConflictError)
    assert conflict.slot == "contractions"
    assert conflict.rule_ids == ("core:voice:3", "core:voice:4")
    assert res.conflict_for("core:voice:4") is conflict


def test_no_conflict_when_only_one_rule_in_scope() -> None:
    ruleset = _contraction_rules()
    res = resolve(ruleset, ArtifactMetadata(document_type="contract", persona="lawyer"))
    assert res.applicable_ids == ("core:voice:3",)
    assert res.conflicts == ()


def test_more_specific_rule_wins_slot() -> None:
    ruleset = _contraction_rules(scope={"persona": "casual-blogger", "document_type": "contract"})
    res = resolve(ruleset, ArtifactMetadata(document_type="contract", persona="casual-blogger"))
    assert res.applicable_ids == ("core:voice:4",)
    assert res.excluded["core:voice:3"] == "shadowed in slot 'contractions' by core:voice:4"


def test_priority_breaks_specificity_tie() -> None:
    ruleset = _contraction_rules(priority=5)
    res = resolve(ruleset, ArtifactMetadata(document_type="contract", persona="casual-blogger"))
    assert res.applicable_ids == ("core:voice:4",)
    assert res.conflicts == ()


def test_resolution_is_pure_function_of_metadata_and_version() -> None:
    rules = [
        rule_table("t:a:1", FORBID, scope={"document_type": "adr"}),
        rule_table("t:a:2", FORBID, scope={"persona": "engineer"}),
        rule_table("t:a:3", FORBID),
    ]
    first = ingest({"rules": rules})
    second = ingest({"rules": list(reversed(rules))})
    meta = ArtifactMetadata(document_type="adr", persona="engineer")

    a = resolve(first, meta)
    b = resolve(second, meta)
    assert a.applicable_ids == b.applicable_ids
    assert a.excluded == b.excluded
    assert resolve(first, meta) == a


def test_resolver_cache_returns_same_resolution() -> None:
    ruleset = _contraction_rules()
    resolver = ScopeResolver()
    meta = ArtifactMetadata(document_type="contract")
    assert resolver.resolve(ruleset, meta) is resolver.resolve(ruleset, ArtifactMetadata(document_type="CONTRACT"))
