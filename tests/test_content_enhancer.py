"""Test content_enhancer -- ArticleForge."""
from __future__ import annotations

from typing import Optional

import pytest

from articleforge.content_enhancer import ContentEnhancer, count_words
from articleforge.content_model import ContentOutline, FAQItem, Section
from articleforge.errors import TruncationError
from articleforge.intent_analyzer import analyze_intent
from articleforge.llm_client import LLMClient, LLMResponse

KEYWORD = "antique lamps"


class TruncatingLLM(LLMClient):
    """Truncates the first request for *heading* (every request when *always*)."""

    name = "truncating"

    def __init__(self, heading: str, always: bool = False):
        self.heading = heading
        self.always = always
        self.prompts = []
        self.truncations = 0

    def is_live(self) -> bool:
        return True

    async def complete(self, prompt: str, system: Optional[str] = None, max_tokens: int = 1024) -> LLMResponse:
        self.prompts.append(prompt)
        target = f"section \"{self.heading}\""
        if target in prompt and (self.always or not self.truncations):
            self.truncations += 1
            return LLMResponse(text="cut off mid", truncated=True, stop_reason="max_tokens")
        return LLMResponse(text="## Stray heading\nA short body about lamps.", stop_reason="end_turn")


@pytest.fixture
def outline():
    return ContentOutline(
        keyword=KEYWORD,
        title="Antique Lamps: A Complete Guide for Collectors",
        meta_description="About antique lamps.",
        introduction="Introduce the topic.",
        sections=[
            Section(heading="History", content_hint="origins"),
            Section(heading="Restoration", content_hint="how to restore", subsections=[
                Section(heading="Cleaning", content_hint="cleaning"),
                Section(heading="Rewiring", content_hint="rewiring"),
            ]),
            Section(heading="Valuation", content_hint="what they are worth"),
        ],
        faq=[FAQItem(question="Are antique lamps safe?", answer_hint="Mostly, after rewiring.")],
        conclusion_hint="Wrap up.",
    )


@pytest.fixture
def profile():
    return analyze_intent(KEYWORD, year=2025)


class TestDeterministic:

    @pytest.mark.asyncio
    async def test_every_node_written(self, outline, profile):
        draft = await ContentEnhancer(None).enhance(outline, profile, {}, featured_image="/images/antique-lamps.jpg")
        nodes = [n for s in draft.sections for n in s.walk()]
        assert len(nodes) == 5
        assert all(n.body for n in nodes)
        assert draft.introduction.startswith("This guide explains antique lamps")
        assert draft.conclusion
        assert draft.faq[0].answer.startswith("Mostly, after rewiring.")
        assert draft.featured_image == "/images/antique-lamps.jpg"

    @pytest.mark.asyncio
    async def test_shape_preserved(self, outline, profile):
        draft = await ContentEnhancer(None).enhance(outline, profile, {})
        assert [s.heading for s in draft.sections] == [s.heading for s in outline.sections]
        assert [s.heading for s in draft.sections[1].subsections] == ["Cleaning", "Rewiring"]

    @pytest.mark.asyncio
    async def test_length_tracks_ideal_word_count(self, outline, profile):
        draft = await ContentEnhancer(None).enhance(outline, profile, {})
        total = count_words(draft.introduction) + count_words(draft.conclusion)
        total += sum(count_words(n.body) for s in draft.sections for n in s.walk())
        total += sum(count_words(f.answer) for f in draft.faq)
        assert profile.ideal_word_count * 0.7 <= total <= profile.ideal_word_count * 1.3

    @pytest.mark.asyncio
    async def test_repeatable(self, outline, profile):
        a = await ContentEnhancer(None).enhance(outline, profile, {})
        b = await ContentEnhancer(None).enhance(outline, profile, {})
        assert a.to_dict() == b.to_dict()

    def test_compose_reaches_word_target(self):
        body = ContentEnhancer.compose(KEYWORD, "History", "Lead sentence here.", 150, [])
        assert count_words(body) >= 150
        assert body.startswith("Lead sentence here.")
        assert "\n\n" in body


class TestLive:

    @pytest.mark.asyncio
    async def test_headings_stripped(self, outline, profile, scripted_llm):
        llm = scripted_llm("## Heading\nBody text for the section.")
        draft = await ContentEnhancer(llm).enhance(outline, profile, {})
        assert draft.sections[0].body == "Body text for the section."
        # intro + 5 nodes + 1 FAQ + conclusion
        assert len(llm.prompts) == 8

    @pytest.mark.asyncio
    async def test_truncated_section_is_split(self, outline, profile):
        llm = TruncatingLLM("Valuation")
        draft = await ContentEnhancer(llm).enhance(outline, profile, {})
        valuation = draft.sections[2]
        assert [s.heading for s in valuation.subsections] == [
            "Valuation: Overview", "Valuation: Key Details", "Valuation: Practical Tips",
        ]
        assert valuation.body == "A short body about lamps."
        assert all(s.body for s in valuation.subsections)

    @pytest.mark.asyncio
    async def test_truncation_past_split_depth_raises(self, outline, profile):
        llm = TruncatingLLM("Valuation", always=True)
        with pytest.raises(TruncationError) as exc_info:
            await ContentEnhancer(llm, max_split_depth=1).enhance(outline, profile, {})
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_oversized_response_counts_as_truncated(self, outline, profile, scripted_llm):
        llm = scripted_llm("word " * 2000)
        with pytest.raises(TruncationError):
            await ContentEnhancer(llm, max_tokens=100, max_split_depth=0).enhance(outline, profile, {})
