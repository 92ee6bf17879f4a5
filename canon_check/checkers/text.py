"""Markdown parsing utilities for headings, sentences, links and checklists.

All helpers report offsets into the original content. Code is masked with
spaces (newlines kept) so offsets stay valid after masking.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

FENCE_RE = re.compile(r"^(```|~~~)[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t#]*$", re.MULTILINE)

# [text](target), ![alt](target), [[target]], [[target|display]], ![[target#section]]
MD_LINK_RE = re.compile(r"!?\[[^\]\n]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
WIKILINK_RE = re.compile(r"!?\[\[([^\]|#\n]*)(#[^\]|\n]+)?(?:\|[^\]\n]+)?\]\]")

CHECKLIST_RE = re.compile(r"^[ \t]*(?:[-*+]|\d+[.)])[ \t]+\[( |x|X)\][ \t]+(.+?)[ \t]*$", re.MULTILINE)

SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+[\"')\]]*|$)")
WORD_RE = re.compile(r"[A-Za-z0-9][\w'\u2019-]*")


@dataclass(frozen=True)
class Heading:
    level: int
    title: str
    offset: int


@dataclass(frozen=True)
class Sentence:
    text: str
    offset: int
    words: int


@dataclass(frozen=True)
class Link:
    target: str
    offset: int
    kind: str  # "markdown" | "wiki"
    anchor: str | None = None


@dataclass(frozen=True)
class ChecklistItem:
    label: str
    checked: bool
    offset: int


def _blank(match: re.Match) -> str:
    return re.sub(r"[^\n]", " ", match.group(0))


def mask_code(content: str) -> str:
    """Replace fenced blocks and inline code with spaces, preserving offsets."""
    masked = FENCE_RE.sub(_blank, content)
    return INLINE_CODE_RE.sub(_blank, masked)


def extract_headings(content: str) -> list[Heading]:
    masked = mask_code(content)
    return [
        Heading(level=len(m.group(1)), title=m.group(2).strip(), offset=m.start())
        for m in HEADING_RE.finditer(masked)
    ]


def slugify(title: str) -> str:
    """GitHub-style heading anchor."""
    slug = title.strip().lower()
    slug = re.sub(r"[^\w\- ]", "", slug)
    return slug.replace(" ", "-")


def count_words(text: str) -> int:
    return len(WORD_RE.findall(text))


def split_sentences(content: str) -> list[Sentence]:
    """
    Split prose into sentences.

    Headings, table rows and code are not prose. Paragraph breaks end a
    sentence even without terminal punctuation.
    """
    masked = mask_code(content)
    lines = masked.split("\n")
    prose_chars = list(masked)
    pos = 0
    for line in lines:
        stripped = line.lstrip()
        if stripped.startswith("#") or stripped.startswith("|") or stripped.startswith(">"):
            for i in range(pos, pos + len(line)):
                prose_chars[i] = " "
        else:
            marker = re.match(r"^[ \t]*(?:[-*+]|\d+[.)])(?:[ \t]+\[[ xX]\])?[ \t]+", line)
            if marker:
                for i in range(pos, pos + marker.end()):
                    prose_chars[i] = " "
        pos += len(line) + 1
    prose = "".join(prose_chars)

    sentences: list[Sentence] = []
    for para in re.finditer(r"(?:[^\n]*\S[^\n]*(?:\n|$))+", prose):
        block = para.group(0)
        for m in SENTENCE_RE.finditer(block):
            raw = m.group(0)
            text = " ".join(raw.split())
            words = count_words(text)
            if words == 0:
                continue
            lead = len(raw) - len(raw.lstrip())
            sentences.append(Sentence(text=text, offset=para.start() + m.start() + lead, words=words))
    return sentences


def extract_links(content: str) -> list[Link]:
    masked = mask_code(content)
    links: list[Link] = []
    for m in MD_LINK_RE.finditer(masked):
        raw = m.group(1).strip()
        target, _, anchor = raw.partition("#")
        links.append(Link(target=target, offset=m.start(), kind="markdown", anchor=anchor or None))
    for m in WIKILINK_RE.finditer(masked):
        anchor = m.group(2)[1:] if m.group(2) else None
        links.append(Link(target=m.group(1).strip(), offset=m.start(), kind="wiki", anchor=anchor))
    links.sort(key=lambda link: link.offset)
    return links


def extract_checklist(content: str) -> list[ChecklistItem]:
    masked = mask_code(content)
    return [
        ChecklistItem(label=m.group(2).strip(), checked=m.group(1).lower() == "x", offset=m.start())
        for m in CHECKLIST_RE.finditer(masked)
    ]
