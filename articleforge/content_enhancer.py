"""
Content Enhancer
================

Expands a Content Outline into a Draft by writing a body for every node of the
section tree, every FAQ entry, the introduction and the conclusion.

Each LLM call carries the keyword, the section heading, the sibling headings
(for coherence) and a compact intent summary.  Responses are capped by a hard
token ceiling; a response cut off by the provider raises ``TruncationError``,
which is handled by splitting the section into smaller subsections and
writing each one separately.  Every prompt and response is recorded through
a ``PromptRecorder``.

Without a live LLM the enhancer composes deterministic bodies from the
research notes and a seeded sentence bank, sized to the intent's ideal word
count.

Usage:
    from articleforge.content_enhancer import ContentEnhancer

    enhancer = ContentEnhancer(llm, max_tokens=1200)
    draft = await enhancer.enhance(outline, profile, research, recorder=recorder)
"""

from __future__ import annotations

import logging
import random
import re
from typing import Any, Dict, List, Optional

from articleforge.content_model import (
    ArtifactKind,
    ContentOutline,
    Draft,
    FAQItem,
    IntentProfile,
    Section,
    slugify,
)
from articleforge.errors import TruncationError
from articleforge.llm_client import LLMClient, PromptRecorder
from articleforge.providers import _seed_for
from articleforge.structure_synthesizer import research_text

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("content_enhancer")

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

SECTION_SYSTEM_PROMPT = (
    "You are an expert writer producing clear, accurate, well-structured web "
    "articles. Write in plain markdown paragraphs. Do not repeat the section "
    "heading and do not add new headings."
)

# Share of the ideal word count per part of the article
INTRO_SHARE = 0.08
CONCLUSION_SHARE = 0.06
FAQ_SHARE = 0.15
PARENT_SHARE_WITH_SUBSECTIONS = 0.4

CHARS_PER_TOKEN = 6
MAX_SPLIT_DEPTH = 2
MIN_SECTION_WORDS = 60
SPLIT_HEADINGS = ("Overview", "Key Details", "Practical Tips")

FILLER_SENTENCES = [
    "Start with the basics and build from there.",
    "Small, steady steps tend to give the best results.",
    "Take notes as you go so you can repeat what works.",
    "Many people find that a simple plan saves time later.",
    "Check each step before moving on to the next one.",
    "Good tools help, but clear habits matter more.",
    "If something goes wrong, go back one step and try again.",
    "Experienced readers often return to these points as a quick reminder.",
    "It also helps to compare your results with trusted sources.",
    "Patience is important, since careful work rarely happens in a rush.",
    "Ask for feedback from people who have done this before.",
    "Keep your goals realistic and review them often.",
    "A short checklist makes the process easier to follow.",
    "Most problems have simple causes that are easy to fix.",
    "Over time these habits become second nature.",
    "Set aside time to practice on a regular schedule.",
    "Look at real examples to see how the ideas work in practice.",
    "Focus on one change at a time so you can see its effect.",
]

_WORD_RE = re.compile(r"\b\w+\b")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def count_words(text: str) -> int:
    return len(_WORD_RE.findall(text or ""))


def _strip_headings(text: str) -> str:
    """Drop markdown heading lines an LLM may add despite instructions."""
    lines = [line for line in (text or "").splitlines() if not line.lstrip().startswith("#")]
    return "\n".join(lines).strip()


# ---------------------------------------------------------------------------
# ContentEnhancer
# ---------------------------------------------------------------------------


class ContentEnhancer:
    """
    Fill an outline's hints with body text.

    Parameters
    ----------
    llm : LLMClient, optional
        Live LLM adapter.  None or a non-live adapter means deterministic mode.
    max_tokens : int
        Hard output ceiling per LLM call.
    max_split_depth : int
        How many times a truncated section may be split further.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        max_tokens: int = 1200,
        max_split_depth: int = MAX_SPLIT_DEPTH,
    ):
        self.llm = llm
        self.max_tokens = max_tokens
        self.max_split_depth = max_split_depth

    @property
    def live(self) -> bool:
        return self.llm is not None and self.llm.is_live()

    async def enhance(
        self,
        outline: ContentOutline,
        profile: IntentProfile,
        research: Optional[Dict[str, Any]] = None,
        recorder: Optional[PromptRecorder] = None,
        featured_image: str = "",
    ) -> Draft:
        """Return a Draft with the same section tree and FAQ shape as *outline*."""
        research = research or {}
        draft = Draft.from_outline(outline, featured_image=featured_image)
        total = max(profile.ideal_word_count, 300)
        section_budget = total * (1 - INTRO_SHARE - CONCLUSION_SHARE - FAQ_SHARE)
        per_section = max(int(section_budget / max(len(draft.sections), 1)), MIN_SECTION_WORDS)
        notes = self._research_sentences(research, profile.keyword)

        if self.live:
            logger.info("Writing %d sections for '%s' with %s", len(draft.sections), profile.keyword, self.llm.name)
        else:
            logger.info("No live LLM; composing deterministic bodies for '%s'", profile.keyword)

        draft.introduction = await self._write(
            name="introduction",
            heading="Introduction",
            hint=outline.introduction,
            siblings=[s.heading for s in draft.sections],
            profile=profile,
            words=int(total * INTRO_SHARE),
            notes=notes,
            recorder=recorder,
            lead=f"This guide explains {profile.keyword} in plain language.",
        )

        headings = [s.heading for s in draft.sections]
        for section in draft.sections:
            siblings = [h for h in headings if h != section.heading]
            await self._fill_section(section, siblings, profile, per_section, notes, recorder, depth=0)

        if draft.faq:
            per_answer = max(int(total * FAQ_SHARE / len(draft.faq)), 30)
            for item in draft.faq:
                item.answer = await self._answer(item, profile, per_answer, notes, recorder)

        draft.conclusion = await self._write(
            name="conclusion",
            heading="Conclusion",
            hint=outline.conclusion_hint,
            siblings=headings,
            profile=profile,
            words=int(total * CONCLUSION_SHARE),
            notes=notes,
            recorder=recorder,
            lead=f"You now have a clear picture of {profile.keyword}.",
        )
        return draft

    # -- Section tree --------------------------------------------------------

    async def _fill_section(
        self,
        section: Section,
        siblings: List[str],
        profile: IntentProfile,
        words: int,
        notes: List[str],
        recorder: Optional[PromptRecorder],
        depth: int,
    ) -> None:
        own_words = int(words * PARENT_SHARE_WITH_SUBSECTIONS) if section.subsections else words
        try:
            section.body = await self._write(
                name=section.heading,
                heading=section.heading,
                hint=section.content_hint,
                siblings=siblings,
                profile=profile,
                words=max(own_words, MIN_SECTION_WORDS // 2),
                notes=notes,
                recorder=recorder,
                lead=f"This part covers {section.heading.rstrip('?').lower()} for anyone working with {profile.keyword}.",
                max_tokens=self._budget(depth),
            )
        except TruncationError:
            if depth >= self.max_split_depth:
                raise
            logger.warning("Section '%s' truncated; splitting into subsections", section.heading)
            if not section.subsections:
                section.subsections = [
                    Section(heading=f"{section.heading}: {part}", content_hint=f"{part.lower()} of {section.content_hint}")
                    for part in SPLIT_HEADINGS
                ]
            section.body = await self._write(
                name=f"{section.heading} lead",
                heading=section.heading,
                hint="a two or three sentence lead-in for the subsections that follow",
                siblings=siblings,
                profile=profile,
                words=MIN_SECTION_WORDS,
                notes=notes,
                recorder=recorder,
                lead=f"Here is how {profile.keyword} applies to {section.heading.rstrip('?').lower()}.",
                max_tokens=self._budget(depth + 1),
            )
            own_words = int(words * PARENT_SHARE_WITH_SUBSECTIONS)

        if section.subsections:
            remaining = max(words - own_words, MIN_SECTION_WORDS)
            per_sub = max(int(remaining / len(section.subsections)), MIN_SECTION_WORDS // 2)
            sub_headings = [s.heading for s in section.subsections]
            for sub in section.subsections:
                sub_siblings = [h for h in sub_headings if h != sub.heading]
                await self._fill_section(sub, sub_siblings, profile, per_sub, notes, recorder, depth + 1)

    def _budget(self, depth: int) -> int:
        return max(self.max_tokens // (2 ** depth), 128)

    async def _answer(
        self,
        item: FAQItem,
        profile: IntentProfile,
        words: int,
        notes: List[str],
        recorder: Optional[PromptRecorder],
    ) -> str:
        lead = item.answer_hint.strip() or "Here is a short answer to this common question."
        return await self._write(
            name=f"faq {item.question}",
            heading=item.question,
            hint=item.answer_hint or "a direct answer in the first sentence, then brief detail",
            siblings=[],
            profile=profile,
            words=words,
            notes=notes,
            recorder=recorder,
            lead=lead,
        )

    # -- Writing -------------------------------------------------------------

    async def _write(
        self,
        name: str,
        heading: str,
        hint: str,
        siblings: List[str],
        profile: IntentProfile,
        words: int,
        notes: List[str],
        recorder: Optional[PromptRecorder],
        lead: str,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.live:
            return self.compose(profile.keyword, heading, lead, words, notes)

        max_tokens = max_tokens or self.max_tokens
        prompt = self.build_prompt(heading, hint, siblings, profile, words)
        response = await self.llm.complete(prompt, system=SECTION_SYSTEM_PROMPT, max_tokens=max_tokens)
        if recorder:
            recorder.record(name, prompt, response)
        if response.truncated or len(response.text) > max_tokens * CHARS_PER_TOKEN:
            raise TruncationError(
                f"Response for '{heading}' exceeded {max_tokens} tokens",
                partial_text=response.text,
                section=heading,
            )
        return _strip_headings(response.text)

    @staticmethod
    def build_prompt(
        heading: str,
        hint: str,
        siblings: List[str],
        profile: IntentProfile,
        words: int,
    ) -> str:
        others = "; ".join(siblings) if siblings else "(none)"
        return (
            f"Write the body for the section \"{heading}\" of an article about "
            f"\"{profile.keyword}\".\n\n"
            f"Guidance: {hint or 'cover the topic of the heading thoroughly'}\n"
            f"Other sections in this article (avoid repeating them): {others}\n"
            f"Search intent: {profile.primary_intent}; reader stage: {profile.journey_stage}; "
            f"formats: {', '.join(profile.content_formats)}\n"
            f"Target length: about {words} words.\n"
            "Use the keyword naturally once. Short sentences, concrete examples."
        )

    # -- Deterministic composer ---------------------------------------------

    @staticmethod
    def _research_sentences(research: Dict[str, Any], keyword: str) -> List[str]:
        """Plain sentences from the research notes that do not repeat the keyword."""
        text = research_text(research.get(ArtifactKind.LLM_RESEARCH.value))
        sentences = []
        for line in text.splitlines():
            line = line.strip().lstrip("-*").strip()
            if not line or line.startswith("#"):
                continue
            for sentence in _SENTENCE_SPLIT.split(line):
                sentence = sentence.strip()
                if (
                    sentence.endswith((".", "!", "?"))
                    and count_words(sentence) >= 5
                    and keyword.lower() not in sentence.lower()
                ):
                    sentences.append(sentence)
        return sentences

    @staticmethod
    def compose(keyword: str, heading: str, lead: str, words: int, notes: List[str]) -> str:
        """Deterministic body of roughly *words* words, seeded by keyword and heading."""
        rng = random.Random(_seed_for(f"{slugify(keyword)}|{heading}"))
        pool = list(FILLER_SENTENCES) + list(notes)
        rng.shuffle(pool)

        paragraphs: List[List[str]] = [[lead]]
        total = count_words(lead)
        i = 0
        while total < words and pool:
            sentence = pool[i % len(pool)]
            i += 1
            if len(paragraphs[-1]) >= 5:
                paragraphs.append([])
            paragraphs[-1].append(sentence)
            total += count_words(sentence)
            if i % len(pool) == 0:
                rng.shuffle(pool)
        return "\n\n".join(" ".join(p) for p in paragraphs if p)
