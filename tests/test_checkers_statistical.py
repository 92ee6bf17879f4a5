from __future__ import annotations

import pytest

from canon_check.checkers import CheckContext, check_statistical
from canon_check.checkers.statistical import DEFAULT_BUCKETS, bucket_for, parse_buckets
from canon_check.checkers.text import split_sentences
from canon_check.models import Status

from conftest import doc, make_rule

RULE = make_rule("core:voice:2", {"type": "statistical", "params": {"metric": "sentence-length"}}, severity="minor")


def _sentence(words: int) -> str:
    return " ".join(["word"] * words) + "."


def _prose(short: int, medium: int, long: int, remainder: int) -> str:
    parts = [_sentence(5)] * short + [_sentence(15)] * medium + [_sentence(25)] * long + [_sentence(35)] * remainder
    return " ".join(parts)


def test_exact_minimum_shares_pass(ctx: CheckContext) -> None:
    # 3/20 = 15%, 7/20 = 35%, 4/20 = 20%, 6/20 = 30%
    result = check_statistical(doc(_prose(3, 7, 4, 6)), RULE, ctx)
    assert result.status == Status.PASS
    assert "20 sentences" in result.message


def test_zero_short_sentences_fail(ctx: CheckContext) -> None:
    result = check_statistical(doc(_prose(0, 10, 4, 6)), RULE, ctx)
    assert result.status == Status.FAIL
    assert "short 0% < 15%" in result.message


def test_bucket_boundaries() -> None:
    # 10 words is short, 11 is medium, 30 is long, 31 is remainder.
    sentences = split_sentences(" ".join(_sentence(n) for n in (10, 11, 30, 31)))
    assert [s.words for s in sentences] == [10, 11, 30, 31]
    assert [bucket_for(s.words, DEFAULT_BUCKETS).name for s in sentences] == ["short", "medium", "long", "remainder"]


def test_no_sentences_is_not_applicable(ctx: CheckContext) -> None:
    result = check_statistical(doc("# Heading only\n\n| a | b |\n"), RULE, ctx)
    assert result.status == Status.NOT_APPLICABLE


def test_headings_and_code_are_not_prose() -> None:
    content = "# Title\n\nFirst sentence here. Second one!\n\n```\nnot. prose. at. all.\n```\n- [x] list item text\n"
    texts = [s.text for s in split_sentences(content)]
    assert texts == ["First sentence here.", "Second one!", "list item text"]


def test_max_sentence_words_reports_evidence(ctx: CheckContext) -> None:
    rule = make_rule(
        "core:voice:5",
        {
            "type": "statistical",
            "params": {"buckets": [{"name": "any", "min_share": 0}], "max_sentence_words": 12},
        },
    )
    content = _sentence(5) + " " + _sentence(20)
    result = check_statistical(doc(content), rule, ctx)
    assert result.status == Status.FAIL
    assert len(result.evidence) == 1
    assert result.evidence[0].offset == len(_sentence(5)) + 1
    assert result.evidence[0].note == "20 words"


def test_custom_buckets_accept_percentages() -> None:
    buckets = parse_buckets([{"name": "short", "max_words": 8, "min_share": 50}, {"name": "rest", "min_share": 10}])
    assert [b.min_share for b in buckets] == [0.5, 0.1]


@pytest.mark.parametrize(
    "raw",
    [
        [],
        [{"name": "a"}, {"name": "b", "max_words": 5}],
        [{"name": "a", "max_words": 10}, {"name": "b", "max_words": 10}],
    ],
)
def test_invalid_buckets(raw: list) -> None:
    with pytest.raises(ValueError):
        parse_buckets(raw)


def test_invalid_buckets_surface_as_checker_error(ctx: CheckContext) -> None:
    rule = make_rule("core:voice:5", {"type": "statistical", "params": {"buckets": []}})
    result = check_statistical(doc(_prose(1, 1, 1, 1)), rule, ctx)
    assert result.status == Status.ERROR
    assert result.error_kind == "checker"
