"""
Markdown Tokenizer
==================

Small block/inline tokenizer used by the SEO evaluator.  It replaces ad-hoc
regex stripping so that scoring stays deterministic across edge cases such as
fenced code containing ``#`` lines, image-only paragraphs, tables and
front-matter values with colons.

Block tokens: heading, paragraph, list, blockquote, code, table.
Inline handling: images are removed (and collected with their alt text),
links are replaced by their text (and collected), emphasis, inline code and
HTML tags are unwrapped.

Usage:
    from articleforge.markdown_tokenizer import tokenize

    doc = tokenize(markdown)
    doc.front_matter["title"], doc.headings, doc.plain_text()
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_HR_RE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")
_LIST_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*)$")
_QUOTE_RE = re.compile(r"^\s*>\s?(.*)$")
_TABLE_SEP_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?\s*$")

_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)\s]*)(?:\s+\"[^\"]*\")?\)")
_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)\s]*)(?:\s+\"[^\"]*\")?\)")
_CODE_SPAN_RE = re.compile(r"`([^`]*)`")
_STRONG_RE = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1")
_EM_RE = re.compile(r"(?<![\w*])([*_])(?=\S)(.+?)(?<=\S)\1(?![\w*])")
_HTML_RE = re.compile(r"<[^>]+>")
_STRIKE_RE = re.compile(r"~~(.+?)~~")


@dataclass
class Token:
    type: str
    text: str = ""
    level: int = 0


@dataclass
class MarkdownDocument:
    front_matter: Dict[str, str] = field(default_factory=dict)
    tokens: List[Token] = field(default_factory=list)
    images: List[Dict[str, str]] = field(default_factory=list)
    links: List[Dict[str, str]] = field(default_factory=list)

    @property
    def headings(self) -> List[Tuple[int, str]]:
        return [(t.level, t.text) for t in self.tokens if t.type == "heading"]

    def plain_text(self) -> str:
        """Readable text with blank lines between blocks.  Code is excluded."""
        blocks = [t.text for t in self.tokens if t.type != "code" and t.text.strip()]
        return "\n\n".join(blocks)


# ---------------------------------------------------------------------------
# Front matter
# ---------------------------------------------------------------------------


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        if value[0] == '"':
            inner = inner.replace('\\"', '"').replace("\\\\", "\\")
        return inner
    return value


def split_front_matter(text: str) -> Tuple[Dict[str, str], str]:
    """Return (front-matter fields, body).  Only flat ``key: value`` lines."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text
    for end in range(1, len(lines)):
        if lines[end].strip() in ("---", "..."):
            fields: Dict[str, str] = {}
            for line in lines[1:end]:
                if ":" in line and not line.startswith((" ", "\t", "-")):
                    key, value = line.split(":", 1)
                    fields[key.strip()] = _unquote(value)
            return fields, "\n".join(lines[end + 1:])
    return {}, text


# ---------------------------------------------------------------------------
# Inline
# ---------------------------------------------------------------------------


def strip_inline(text: str, images: List[Dict[str, str]], links: List[Dict[str, str]]) -> str:
    """Unwrap inline markup, collecting images and links as a side effect."""
    def _image(match: re.Match) -> str:
        images.append({"alt": match.group(1).strip(), "url": match.group(2)})
        return ""

    def _link(match: re.Match) -> str:
        links.append({"text": match.group(1).strip(), "url": match.group(2)})
        return match.group(1)

    text = _IMAGE_RE.sub(_image, text)
    text = _LINK_RE.sub(_link, text)
    text = _CODE_SPAN_RE.sub(r"\1", text)
    text = _STRONG_RE.sub(r"\2", text)
    text = _EM_RE.sub(r"\2", text)
    text = _STRIKE_RE.sub(r"\1", text)
    text = _HTML_RE.sub("", text)
    return " ".join(text.split())


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def tokenize(markdown: str) -> MarkdownDocument:
    """Tokenize *markdown* (optionally with front-matter) into a document."""
    front_matter, body = split_front_matter(markdown or "")
    doc = MarkdownDocument(front_matter=front_matter)
    lines = body.splitlines()

    paragraph: List[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            text = strip_inline(" ".join(paragraph), doc.images, doc.links)
            if text:
                doc.tokens.append(Token("paragraph", text))
            paragraph.clear()

    i = 0
    while i < len(lines):
        line = lines[i]

        if not line.strip():
            flush_paragraph()
            i += 1
            continue

        fence = _FENCE_RE.match(line)
        if fence:
            flush_paragraph()
            marker = fence.group(1)
            code: List[str] = []
            i += 1
            while i < len(lines) and not lines[i].strip().startswith(marker):
                code.append(lines[i])
                i += 1
            doc.tokens.append(Token("code", "\n".join(code)))
            i += 1
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            flush_paragraph()
            text = strip_inline(heading.group(2), doc.images, doc.links)
            doc.tokens.append(Token("heading", text, level=len(heading.group(1))))
            i += 1
            continue

        if _HR_RE.match(line):
            flush_paragraph()
            i += 1
            continue

        if "|" in line and i + 1 < len(lines) and _TABLE_SEP_RE.match(lines[i + 1]):
            flush_paragraph()
            rows: List[str] = []
            cells = [c.strip() for c in line.strip().strip("|").split("|")]
            rows.append(" ".join(strip_inline(c, doc.images, doc.links) for c in cells if c))
            i += 2
            while i < len(lines) and "|" in lines[i] and lines[i].strip():
                cells = [c.strip() for c in lines[i].strip().strip("|").split("|")]
                rows.append(" ".join(strip_inline(c, doc.images, doc.links) for c in cells if c))
                i += 1
            doc.tokens.append(Token("table", "\n".join(r for r in rows if r)))
            continue

        if _QUOTE_RE.match(line):
            flush_paragraph()
            quoted: List[str] = []
            while i < len(lines) and _QUOTE_RE.match(lines[i]):
                quoted.append(_QUOTE_RE.match(lines[i]).group(1))
                i += 1
            text = strip_inline(" ".join(quoted), doc.images, doc.links)
            if text:
                doc.tokens.append(Token("blockquote", text))
            continue

        if _LIST_RE.match(line):
            flush_paragraph()
            items: List[str] = []
            while i < len(lines):
                item = _LIST_RE.match(lines[i])
                if item:
                    items.append(item.group(1))
                elif lines[i].strip() and lines[i].startswith((" ", "\t")) and items:
                    items[-1] += " " + lines[i].strip()
                else:
                    break
                i += 1
            cleaned = [strip_inline(it, doc.images, doc.links) for it in items]
            text = "\n".join(c for c in cleaned if c)
            if text:
                doc.tokens.append(Token("list", text))
            continue

        paragraph.append(line.strip())
        i += 1

    flush_paragraph()
    return doc
