"""
Structure Synthesizer
=====================

Fuses the intent profile and the research artifacts into a Content Outline.

The live path sends the LLM a structured prompt (intent profile plus
compacted research) and expects a JSON outline back.  A malformed or invalid
reply gets exactly one re-prompt that names the problem; a second failure
falls back to a deterministic outline built from the intent heading template
and the top questions.  Without a live LLM the deterministic outline is used
straight away.

Outline invariants: non-empty title, at least three sections, and an FAQ list
taken from people-also-ask whenever that research is available.

Usage:
    from articleforge.structure_synthesizer import StructureSynthesizer

    synthesizer = StructureSynthesizer(llm)
    outline = await synthesizer.synthesize(profile, research)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from articleforge.content_model import (
    ArtifactKind,
    ContentOutline,
    FAQItem,
    IntentProfile,
    SearchIntent,
    Section,
    title_case,
)
from articleforge.errors import (
    CredentialMissing,
    ProviderTransportError,
    ValidationError,
)
from articleforge.llm_client import LLMClient, PromptRecorder, extract_json

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("structure_synthesizer")

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TITLE_MIN, TITLE_MAX = 30, 60
DESCRIPTION_MIN, DESCRIPTION_MAX = 120, 160
MAX_FAQ = 6
MAX_KEYWORDS = 8
MAX_REFERENCES = 5
RESEARCH_PROMPT_CHARS = 3000

# Template headings that the renderer already emits on its own
RENDERER_HEADINGS = {"conclusion"}

INTENT_CATEGORY: Dict[str, str] = {
    SearchIntent.INFORMATIONAL.value: "Guides",
    SearchIntent.COMMERCIAL.value: "Reviews",
    SearchIntent.TRANSACTIONAL.value: "Buying Guides",
    SearchIntent.NAVIGATIONAL.value: "Resources",
}

OUTLINE_SYSTEM_PROMPT = (
    "You are an SEO content strategist. You design article outlines that match "
    "search intent, answer real reader questions and use the target keyword "
    "naturally. Reply with a single JSON object and nothing else."
)

OUTLINE_SCHEMA_HINT = """{
  "title": "30-60 characters, includes the keyword",
  "meta_description": "120-160 characters, includes the keyword",
  "introduction": "what the introduction should cover",
  "sections": [
    {"heading": "...", "content_hint": "...", "subsections": [{"heading": "...", "content_hint": "..."}]}
  ],
  "faq": [{"question": "...", "answer_hint": "..."}],
  "conclusion_hint": "...",
  "keywords": ["..."],
  "categories": ["..."]
}"""


# ---------------------------------------------------------------------------
# Title / description fitting
# ---------------------------------------------------------------------------


def fit_title(candidate: str, keyword: str) -> str:
    """Return a title of 30-60 characters that contains *keyword*."""
    k = title_case(keyword)
    options = [
        (candidate or "").strip(),
        f"Complete Guide to {k}",
        f"{k}: A Complete Guide",
        f"{k}: Everything You Need to Know",
        f"{k} Guide",
        k,
    ]
    for option in options:
        if option and keyword.lower() in option.lower() and TITLE_MIN <= len(option) <= TITLE_MAX:
            return option
    return k if len(k) <= TITLE_MAX else k[:TITLE_MAX].rstrip()


def fit_description(candidate: str, keyword: str) -> str:
    """Return a meta description of 120-160 characters that contains *keyword*."""
    desc = " ".join((candidate or "").split())
    if not desc:
        desc = (
            f"Discover everything about {keyword}: what it is, how it works "
            f"and practical tips to get started with confidence."
        )
    if keyword.lower() not in desc.lower():
        desc = f"{title_case(keyword)}: {desc}"
    fillers = [
        " Learn the essentials, practical steps and expert advice.",
        " Updated with clear examples.",
        " Read the full guide.",
    ]
    for filler in fillers:
        if len(desc) >= DESCRIPTION_MIN:
            break
        desc += filler
    if len(desc) > DESCRIPTION_MAX:
        cut = desc[: DESCRIPTION_MAX - 3].rsplit(" ", 1)[0].rstrip(",;:")
        desc = cut + "..."
    return desc


# ---------------------------------------------------------------------------
# Research helpers
# ---------------------------------------------------------------------------


def paa_entries(paa_payload: Any) -> List[Dict[str, str]]:
    """Questions (and answers when present) from a PAA payload."""
    if not isinstance(paa_payload, dict):
        return []
    entries = []
    for item in paa_payload.get("results") or []:
        if isinstance(item, dict) and item.get("question"):
            entries.append({
                "question": str(item["question"]).strip(),
                "answer": str(item.get("google_answer") or "").strip(),
            })
    return entries


def serp_references(serp_payload: Any) -> List[Dict[str, str]]:
    if not isinstance(serp_payload, dict):
        return []
    refs = []
    for item in serp_payload.get("serp") or []:
        if isinstance(item, dict) and item.get("url"):
            refs.append({"title": str(item.get("title") or item["url"]), "url": str(item["url"])})
    return refs[:MAX_REFERENCES]


def research_text(research_payload: Any) -> str:
    try:
        return str(research_payload["choices"][0]["message"]["content"])
    except (KeyError, IndexError, TypeError):
        return ""


def metric_keywords(kw_payload: Any) -> List[str]:
    if not isinstance(kw_payload, dict):
        return []
    rows = kw_payload.get("keywords") or kw_payload.get("results") or []
    found = []
    for row in rows:
        if isinstance(row, dict) and row.get("keyword"):
            found.append(str(row["keyword"]))
    return found


def _dedupe(items: List[str], limit: int) -> List[str]:
    seen, out = set(), []
    for item in items:
        norm = item.strip().lower()
        if norm and norm not in seen:
            seen.add(norm)
            out.append(item.strip())
        if len(out) >= limit:
            break
    return out


# ---------------------------------------------------------------------------
# StructureSynthesizer
# ---------------------------------------------------------------------------


class StructureSynthesizer:
    """
    Build a Content Outline from an intent profile and research payloads.

    Parameters
    ----------
    llm : LLMClient, optional
        Live LLM adapter.  None or a non-live adapter means deterministic mode.
    max_tokens : int
        Output budget for the outline call.
    """

    def __init__(self, llm: Optional[LLMClient] = None, max_tokens: int = 2500):
        self.llm = llm
        self.max_tokens = max_tokens

    async def synthesize(
        self,
        profile: IntentProfile,
        research: Dict[str, Any],
        recorder: Optional[PromptRecorder] = None,
    ) -> ContentOutline:
        """Return a validated outline for *profile.keyword*."""
        if self.llm is None or not self.llm.is_live():
            logger.info("No live LLM; building deterministic outline for '%s'", profile.keyword)
            return self.deterministic_outline(profile, research)

        prompt = self.build_prompt(profile, research)
        problem = ""
        for attempt in (1, 2):
            if problem:
                prompt_to_send = (
                    f"{prompt}\n\nYour previous reply was rejected: {problem}\n"
                    "Return only the corrected JSON object."
                )
            else:
                prompt_to_send = prompt
            response = None
            try:
                response = await self.llm.complete(
                    prompt_to_send, system=OUTLINE_SYSTEM_PROMPT, max_tokens=self.max_tokens,
                )
                if recorder:
                    recorder.record(f"outline-attempt-{attempt}", prompt_to_send, response)
                outline = self.parse_outline(response.text, profile, research)
                outline.source = "llm"
                return outline
            except (ValueError, ValidationError) as exc:
                problem = str(exc)
                logger.warning("Outline attempt %d rejected: %s", attempt, problem)
            except (CredentialMissing, ProviderTransportError) as exc:
                if recorder:
                    recorder.record(f"outline-attempt-{attempt}", prompt_to_send, response, error=str(exc))
                logger.warning("Outline LLM call failed: %s", exc)
                break

        logger.info("Falling back to deterministic outline for '%s'", profile.keyword)
        return self.deterministic_outline(profile, research)

    # -- Prompting -----------------------------------------------------------

    def build_prompt(self, profile: IntentProfile, research: Dict[str, Any]) -> str:
        compact = {
            "keyword_variants": metric_keywords(research.get(ArtifactKind.KW_METRICS.value))[:8],
            "people_also_ask": [e["question"] for e in paa_entries(research.get(ArtifactKind.PAA.value))][:8],
            "serp_titles": [r["title"] for r in serp_references(research.get(ArtifactKind.SERP.value))],
            "research_notes": research_text(research.get(ArtifactKind.LLM_RESEARCH.value))[:RESEARCH_PROMPT_CHARS],
        }
        intent = {
            "primary_intent": profile.primary_intent,
            "secondary_intent": profile.secondary_intent,
            "journey_stage": profile.journey_stage,
            "content_formats": profile.content_formats,
            "ideal_word_count": profile.ideal_word_count,
            "recommended_headings": [h["text"] for h in profile.heading_structure],
            "snippet_type": profile.snippet_type,
            "related_subtopics": profile.related_subtopics,
            "content_elements": profile.content_elements,
        }
        return (
            f"Create an SEO article outline for the keyword \"{profile.keyword}\".\n\n"
            f"Search intent profile:\n{json.dumps(intent, indent=2)}\n\n"
            f"Research:\n{json.dumps(compact, indent=2)}\n\n"
            "Requirements:\n"
            "- at least 5 sections, each with a specific content_hint\n"
            "- use the keyword in the title and in at least two headings\n"
            "- FAQ entries should answer the people-also-ask questions\n\n"
            f"Return JSON matching this shape:\n{OUTLINE_SCHEMA_HINT}"
        )

    def parse_outline(self, text: str, profile: IntentProfile, research: Dict[str, Any]) -> ContentOutline:
        """Parse and normalize an LLM outline, raising on schema problems."""
        data = extract_json(text)
        if not isinstance(data, dict):
            raise ValueError("outline must be a JSON object")
        if not isinstance(data.get("sections"), list):
            raise ValueError("outline has no 'sections' list")
        data["keyword"] = profile.keyword
        outline = ContentOutline.from_dict(data)
        outline.sections = [s for s in outline.sections if s.heading]
        outline.title = fit_title(outline.title, profile.keyword)
        outline.meta_description = fit_description(outline.meta_description, profile.keyword)
        self._finish(outline, profile, research)
        outline.validate()
        return outline

    # -- Deterministic fallback ---------------------------------------------

    def deterministic_outline(self, profile: IntentProfile, research: Dict[str, Any]) -> ContentOutline:
        keyword = profile.keyword
        headings = [h["text"] for h in profile.heading_structure]
        title_source = headings[0] if headings else ""

        sections: List[Section] = []
        for heading in headings[1:]:
            if heading.lower() in RENDERER_HEADINGS or heading.lower().startswith("faqs about"):
                continue
            section = Section(heading=heading, content_hint=self._hint_for(heading, profile))
            if "how-to" in profile.content_formats and heading.lower().startswith("how to"):
                section.subsections = [
                    Section(heading="Step 1: Prepare and Plan", content_hint="what to gather and decide first"),
                    Section(heading="Step 2: Work Through the Process", content_hint="the core steps in order"),
                    Section(heading="Step 3: Review and Refine", content_hint="checking results and fixing issues"),
                ]
            sections.append(section)

        # Short templates still need three sections
        for subtopic in profile.related_subtopics:
            if len(sections) >= 3:
                break
            sections.append(Section(
                heading=title_case(subtopic),
                content_hint=f"how {subtopic} relates to {keyword}",
            ))

        outline = ContentOutline(
            keyword=keyword,
            title=fit_title(title_source, keyword),
            meta_description=fit_description("", keyword),
            introduction=(
                f"Introduce {keyword}, who it is for and what the reader will learn."
            ),
            sections=sections,
            conclusion_hint=f"Summarize the key points about {keyword} and suggest a next step.",
            source="deterministic",
        )
        self._finish(outline, profile, research)
        outline.validate()
        return outline

    @staticmethod
    def _hint_for(heading: str, profile: IntentProfile) -> str:
        lowered = heading.lower()
        if lowered.startswith("what is"):
            return f"a clear definition of {profile.keyword} suitable for a featured snippet"
        if "benefit" in lowered:
            return "the main advantages, with a concrete example for each"
        if "challenge" in lowered or "troubleshoot" in lowered:
            return "frequent problems and how to solve them"
        if "pric" in lowered or "deal" in lowered:
            return "current price ranges and how to find good value"
        if "compar" in lowered:
            return "side-by-side comparison of the main options"
        return f"practical guidance on {heading.lower()}"

    def _finish(self, outline: ContentOutline, profile: IntentProfile, research: Dict[str, Any]) -> None:
        """Apply FAQ, keyword, category and reference rules shared by both paths."""
        paa = paa_entries(research.get(ArtifactKind.PAA.value))
        llm_faq = [f for f in outline.faq if f.question.strip()]
        faq: List[FAQItem] = []
        if paa:
            for entry in paa[:MAX_FAQ]:
                faq.append(FAQItem(question=entry["question"], answer_hint=entry["answer"]))
        for item in llm_faq:
            if len(faq) >= MAX_FAQ:
                break
            if item.question.lower() not in {f.question.lower() for f in faq}:
                faq.append(item)
        for question in profile.paa_questions:
            if len(faq) >= MAX_FAQ or (paa and len(faq) >= len(paa)):
                break
            if question.lower() not in {f.question.lower() for f in faq}:
                faq.append(FAQItem(question=question))
        outline.faq = faq

        outline.keywords = _dedupe(
            [profile.keyword]
            + list(outline.keywords)
            + metric_keywords(research.get(ArtifactKind.KW_METRICS.value))
            + list(profile.related_subtopics),
            MAX_KEYWORDS,
        )
        outline.categories = _dedupe(
            list(outline.categories)
            + [title_case(profile.main_topic or profile.keyword),
               INTENT_CATEGORY.get(profile.primary_intent, "Guides")],
            3,
        )
        if not outline.references:
            outline.references = serp_references(research.get(ArtifactKind.SERP.value))
