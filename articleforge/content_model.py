"""
Content Model
=============

Canonical documents that flow between pipeline stages:

    Keyword -> IntentProfile -> ContentOutline -> Draft -> ScoredDraft
            -> ImagePlanItem[] -> ContentBundle

Every document serializes to plain JSON through ``to_dict()`` and is rebuilt
with ``from_dict()``, which ignores unknown keys so older artifacts stay
readable.  ``render_markdown()`` produces the markdown the SEO evaluator
scores and the markdown writer persists.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from articleforge.errors import ValidationError

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ArtifactKind(str, Enum):
    """Artifact kinds, in pipeline order."""
    KW_METRICS = "kw-metrics"
    PAA = "paa"
    SERP = "serp"
    LLM_RESEARCH = "llm-research"
    INTENT = "intent"
    OUTLINE = "outline"
    DRAFT = "draft"
    SCORED_DRAFT = "scored-draft"
    IMAGE_SET = "image-set"
    BUNDLE = "bundle"


ARTIFACT_KINDS: List[str] = [k.value for k in ArtifactKind]
RESEARCH_KINDS: List[str] = [
    ArtifactKind.KW_METRICS.value,
    ArtifactKind.PAA.value,
    ArtifactKind.SERP.value,
    ArtifactKind.LLM_RESEARCH.value,
]


class SearchIntent(str, Enum):
    INFORMATIONAL = "informational"
    COMMERCIAL = "commercial"
    TRANSACTIONAL = "transactional"
    NAVIGATIONAL = "navigational"


class JourneyStage(str, Enum):
    AWARENESS = "awareness"
    CONSIDERATION = "consideration"
    DECISION = "decision"
    RETENTION = "retention"


class SnippetType(str, Enum):
    DEFINITION = "definition"
    LIST = "list"
    TABLE = "table"
    PARAGRAPH = "paragraph"
    NONE = "none"


# ---------------------------------------------------------------------------
# Keyword helpers
# ---------------------------------------------------------------------------

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase *text*, collapse non-alphanumeric runs to ``-`` and trim."""
    return _NON_ALNUM.sub("-", (text or "").lower()).strip("-")


def normalize_keyword(keyword: str) -> str:
    """Collapse internal whitespace and trim."""
    return " ".join((keyword or "").split())


def validate_keyword(keyword: str) -> str:
    """Return the slug for *keyword*, raising ValidationError when empty."""
    slug = slugify(normalize_keyword(keyword))
    if not slug:
        raise ValidationError(f"Keyword {keyword!r} is empty or has no alphanumeric characters")
    return slug


def title_case(text: str) -> str:
    """Capitalize each whitespace-separated word, leaving the rest untouched."""
    return " ".join(w[:1].upper() + w[1:] for w in text.split())


def canonical_json(data: Any) -> str:
    """Stable JSON encoding used for hashing (sorted keys, compact)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_of(data: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of *data*."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def _filter_known(cls: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in known}


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------


@dataclass
class IntentProfile:
    """Search-intent classification for a keyword."""
    keyword: str
    primary_intent: str = SearchIntent.INFORMATIONAL.value
    secondary_intent: Optional[str] = None
    intent_scores: Dict[str, int] = field(default_factory=dict)
    journey_stage: str = JourneyStage.AWARENESS.value
    buyer_stage: str = "top-funnel"
    content_formats: List[str] = field(default_factory=list)
    ideal_word_count: int = 2000
    heading_structure: List[Dict[str, Any]] = field(default_factory=list)
    snippet_opportunity: bool = False
    snippet_type: str = SnippetType.NONE.value
    questions: List[str] = field(default_factory=list)
    paa_questions: List[str] = field(default_factory=list)
    is_local: bool = False
    needs_rich_media: bool = False
    related_subtopics: List[str] = field(default_factory=list)
    main_topic: str = ""
    content_elements: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IntentProfile:
        return cls(**_filter_known(cls, data))


# ---------------------------------------------------------------------------
# Outline / Draft
# ---------------------------------------------------------------------------


@dataclass
class Section:
    """One node of the article's section tree."""
    heading: str
    content_hint: str = ""
    body: str = ""
    subsections: List[Section] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "heading": self.heading,
            "content_hint": self.content_hint,
            "body": self.body,
            "subsections": [s.to_dict() for s in self.subsections],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Section:
        subs = [cls.from_dict(s) for s in data.get("subsections") or [] if isinstance(s, dict)]
        return cls(
            heading=str(data.get("heading", "")).strip(),
            content_hint=str(data.get("content_hint", "") or ""),
            body=str(data.get("body", "") or ""),
            subsections=subs,
        )

    def walk(self) -> List[Section]:
        """Depth-first list of this section and all descendants."""
        nodes = [self]
        for sub in self.subsections:
            nodes.extend(sub.walk())
        return nodes


@dataclass
class FAQItem:
    question: str
    answer_hint: str = ""
    answer: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FAQItem:
        return cls(**_filter_known(cls, data))


@dataclass
class ContentOutline:
    """Planned article structure; bodies are still hints."""
    keyword: str
    title: str
    meta_description: str = ""
    introduction: str = ""
    sections: List[Section] = field(default_factory=list)
    faq: List[FAQItem] = field(default_factory=list)
    conclusion_hint: str = ""
    keywords: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    references: List[Dict[str, str]] = field(default_factory=list)
    source: str = "deterministic"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["sections"] = [s.to_dict() for s in self.sections]
        data["faq"] = [f.to_dict() for f in self.faq]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentOutline:
        filtered = _filter_known(cls, data)
        filtered["sections"] = [Section.from_dict(s) for s in data.get("sections") or [] if isinstance(s, dict)]
        filtered["faq"] = [FAQItem.from_dict(f) for f in data.get("faq") or [] if isinstance(f, dict)]
        return cls(**filtered)

    def validate(self) -> None:
        """Raise ValidationError unless the outline is usable downstream."""
        if not self.title.strip():
            raise ValidationError("Outline title is empty")
        if len(self.sections) < 3:
            raise ValidationError(f"Outline needs at least 3 sections, got {len(self.sections)}")
        for section in self.sections:
            if not section.heading:
                raise ValidationError("Outline contains a section without a heading")


@dataclass
class Draft:
    """Outline with every hint replaced by body text."""
    keyword: str
    title: str
    meta_description: str = ""
    introduction: str = ""
    sections: List[Section] = field(default_factory=list)
    faq: List[FAQItem] = field(default_factory=list)
    conclusion: str = ""
    keywords: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    references: List[Dict[str, str]] = field(default_factory=list)
    featured_image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["sections"] = [s.to_dict() for s in self.sections]
        data["faq"] = [f.to_dict() for f in self.faq]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Draft:
        filtered = _filter_known(cls, data)
        filtered["sections"] = [Section.from_dict(s) for s in data.get("sections") or [] if isinstance(s, dict)]
        filtered["faq"] = [FAQItem.from_dict(f) for f in data.get("faq") or [] if isinstance(f, dict)]
        return cls(**filtered)

    @classmethod
    def from_outline(cls, outline: ContentOutline, featured_image: str = "") -> Draft:
        """Start a draft that mirrors *outline*'s shape with empty bodies."""
        return cls(
            keyword=outline.keyword,
            title=outline.title,
            meta_description=outline.meta_description,
            introduction="",
            sections=[Section.from_dict(s.to_dict()) for s in outline.sections],
            faq=[FAQItem(question=f.question, answer_hint=f.answer_hint) for f in outline.faq],
            conclusion="",
            keywords=list(outline.keywords),
            categories=list(outline.categories),
            references=[dict(r) for r in outline.references],
            featured_image=featured_image,
        )

    def copy(self) -> Draft:
        return Draft.from_dict(json.loads(json.dumps(self.to_dict())))


# ---------------------------------------------------------------------------
# Scoring / images / bundle
# ---------------------------------------------------------------------------


@dataclass
class ScoreReport:
    """Readability and SEO assessment of a rendered draft."""
    readability: float
    band: str
    text_metrics: Dict[str, Any] = field(default_factory=dict)
    seo_metrics: Dict[str, Any] = field(default_factory=dict)
    composite: float = 0.0
    rubric: Dict[str, int] = field(default_factory=dict)
    deficits: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    recommended_image_count: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ScoreReport:
        return cls(**_filter_known(cls, data))

    def summary(self) -> str:
        """Return a human-readable summary of the report."""
        tm, sm = self.text_metrics, self.seo_metrics
        lines = [
            "=" * 60,
            "  SEO SCORE REPORT",
            "=" * 60,
            f"  Composite:      {self.composite:.0f}/100",
            f"  Readability:    {self.readability:.1f} ({self.band})",
            f"  Words:          {tm.get('word_count', 0):,}",
            f"  Sentences:      {tm.get('sentence_count', 0):,}",
            f"  Paragraphs:     {tm.get('paragraph_count', 0):,}",
            f"  Density:        {sm.get('keyword_density', 0):.2f}%",
            f"  Headings:       H1={sm.get('h1_count', 0)} H2={sm.get('h2_count', 0)} H3={sm.get('h3_count', 0)}",
            f"  Links/Images:   {sm.get('link_count', 0)}/{sm.get('image_count', 0)}",
        ]
        if self.deficits:
            lines.append("")
            lines.append("  Deficits:")
            for i, d in enumerate(self.deficits[:5], 1):
                lines.append(f"    {i}. {d}")
        lines.append("=" * 60)
        return "\n".join(lines)


@dataclass
class ImagePlanItem:
    slot: int
    aspect: str
    prompt: str
    alt: str = ""
    target_url: str = ""
    status: str = "pending"
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ImagePlanItem:
        return cls(**_filter_known(cls, data))


@dataclass
class ContentBundle:
    """Terminal record referencing every contributing artifact."""
    keyword: str
    slug: str
    outline_ref: Dict[str, Any] = field(default_factory=dict)
    scored_draft_ref: Dict[str, Any] = field(default_factory=dict)
    intent_ref: Dict[str, Any] = field(default_factory=dict)
    image_set_ref: Optional[Dict[str, Any]] = None
    research_refs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    iteration: int = 0
    score: float = 0.0
    warnings: List[str] = field(default_factory=list)
    related_articles: List[Dict[str, str]] = field(default_factory=list)
    markdown_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentBundle:
        return cls(**_filter_known(cls, data))


# ---------------------------------------------------------------------------
# Markdown rendering
# ---------------------------------------------------------------------------


def _yaml_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_front_matter(draft: Draft) -> str:
    lines = [
        "---",
        f"title: {_yaml_string(draft.title)}",
        f"description: {_yaml_string(draft.meta_description)}",
        f"slug: {_yaml_string(slugify(draft.keyword))}",
        "keywords: [" + ", ".join(_yaml_string(k) for k in draft.keywords) + "]",
        "categories: [" + ", ".join(_yaml_string(c) for c in draft.categories) + "]",
    ]
    if draft.featured_image:
        lines.append(f"featured_image: {_yaml_string(draft.featured_image)}")
    lines.append("---")
    return "\n".join(lines)


def _render_section(section: Section, level: int, out: List[str]) -> None:
    out.append(f"{'#' * level} {section.heading}")
    out.append("")
    if section.body.strip():
        out.append(section.body.strip())
        out.append("")
    for sub in section.subsections:
        _render_section(sub, min(level + 1, 6), out)


def render_markdown(draft: Draft) -> str:
    """Render *draft* as front-matter plus markdown body."""
    out: List[str] = [render_front_matter(draft), ""]
    if draft.featured_image:
        out.append(f"![{draft.keyword}]({draft.featured_image})")
        out.append("")
    if draft.introduction.strip():
        out.append(draft.introduction.strip())
        out.append("")
    for section in draft.sections:
        _render_section(section, 2, out)
    if draft.faq:
        out.append(f"## Frequently Asked Questions About {title_case(draft.keyword)}")
        out.append("")
        for item in draft.faq:
            out.append(f"### {item.question}")
            out.append("")
            if item.answer.strip():
                out.append(item.answer.strip())
                out.append("")
    if draft.conclusion.strip():
        out.append("## Conclusion")
        out.append("")
        out.append(draft.conclusion.strip())
        out.append("")
    if draft.references:
        out.append("## Sources")
        out.append("")
        for ref in draft.references:
            out.append(f"- [{ref.get('title') or ref.get('url')}]({ref.get('url', '')})")
        out.append("")
    return "\n".join(out).rstrip() + "\n"
