from __future__ import annotations

from canon_check.checkers import CheckContext, check_pattern
from canon_check.loader import parse_artifact
from canon_check.models import Status

from conftest import doc, make_rule

EMOJI_RULE = make_rule(
    "core:formatting:1",
    {"type": "pattern", "params": {"preset": "emoji"}},
    severity="absolute",
    message="Emoji characters are not allowed.",
)


def test_single_emoji_fails_with_offset(ctx: CheckContext) -> None:
    content = "Release notes\n\nShipped the fix \U0001F389 today."
    result = check_pattern(doc(content), EMOJI_RULE, ctx)

    assert result.status == Status.FAIL
    assert len(result.evidence) == 1
    ev = result.evidence[0]
    assert ev.offset == content.index("\U0001F389")
    assert ev.text == "\U0001F389"
    assert (ev.line, ev.column) == (3, 17)


def test_evidence_points_into_source_with_front_matter(ctx: CheckContext) -> None:
    source = "---\ndocument_type: note\npersona: developer\n---\n\nIntro line.\nShipped \U0001F680 today.\n"
    result = check_pattern(parse_artifact(source), EMOJI_RULE, ctx)

    ev = result.evidence[0]
    assert (ev.line, ev.column) == (7, 9)
    assert ev.offset == source.index("\U0001F680")


def test_clean_text_passes(ctx: CheckContext) -> None:
    assert check_pattern(doc("Plain text, nothing else."), EMOJI_RULE, ctx).status == Status.PASS


def test_em_dash_preset(ctx: CheckContext) -> None:
    rule = make_rule("core:formatting:2", {"type": "pattern", "params": {"preset": "em-dash"}})
    content = "One thing \u2014 and another \u2014 here."
    result = check_pattern(doc(content), rule, ctx)
    assert result.status == Status.FAIL
    assert [e.offset for e in result.evidence] == [10, 24]
    assert "2 matches" in result.message


def test_words_are_whole_word_and_case_insensitive(ctx: CheckContext) -> None:
    rule = make_rule("t:voice:1", {"type": "pattern", "params": {"words": ["utilize"]}})
    assert check_pattern(doc("We Utilize it."), rule, ctx).status == Status.FAIL
    assert check_pattern(doc("Utilizeable is not a word."), rule, ctx).status == Status.PASS


def test_ignore_code_masks_fenced_and_inline_code(ctx: CheckContext) -> None:
    rule = make_rule("t:voice:1", {"type": "pattern", "params": {"words": ["foo"], "ignore_code": True}})
    content = "Use `foo` here.\n\n```\nfoo = 1\n```\n"
    assert check_pattern(doc(content), rule, ctx).status == Status.PASS


def test_require_mode(ctx: CheckContext) -> None:
    rule = make_rule(
        "docs:docs-format:1",
        {"type": "pattern", "params": {"mode": "require", "substrings": ["DOCUMENTATION - Level"], "case_sensitive": True}},
    )
    assert check_pattern(doc("INTERNAL DOCUMENTATION - Level 2\n\nBody."), rule, ctx).status == Status.PASS
    result = check_pattern(doc("Body only."), rule, ctx)
    assert result.status == Status.FAIL
    assert "required pattern not found" in result.message


def test_oracle_terms_come_from_context() -> None:
    rule = make_rule("core:voice:1", {"type": "pattern", "params": {"oracle": "ai-cliches"}})
    ctx = CheckContext(oracle_terms={"ai-cliches": frozenset({"delve into"})})
    result = check_pattern(doc("Let us delve  into the data."), rule, ctx)
    assert result.status == Status.FAIL
    assert result.evidence[0].text == "delve  into"


def test_missing_oracle_is_checker_error(ctx: CheckContext) -> None:
    rule = make_rule("core:voice:1", {"type": "pattern", "params": {"oracle": "ai-cliches"}})
    result = check_pattern(doc("text"), rule, ctx)
    assert result.status == Status.ERROR
    assert result.error_kind == "checker"


def test_invalid_regex_is_checker_error(ctx: CheckContext) -> None:
    rule = make_rule("t:voice:1", {"type": "pattern", "params": {"patterns": ["(unclosed"]}})
    result = check_pattern(doc("text"), rule, ctx)
    assert result.status == Status.ERROR
    assert "invalid regex" in result.message
