"""Test structure_synthesizer -- ArticleForge."""
from __future__ import annotations

import json

import pytest

from articleforge.config import PipelineConfig
from articleforge.intent_analyzer import analyze_intent
from articleforge.providers import HttpClient, build_adapters
from articleforge.structure_synthesizer import (
    StructureSynthesizer,
    fit_description,
    fit_title,
    metric_keywords,
    paa_entries,
    research_text,
    serp_references,
)

KEYWORD = "how to restore antique lamps"


@pytest.fixture
def research():
    adapters = build_adapters(PipelineConfig(rate_interval=0.0), HttpClient())
    return {kind: adapter.synthesize(KEYWORD) for kind, adapter in adapters.items()}


@pytest.fixture
def profile():
    return analyze_intent(KEYWORD, year=2025)


def _llm_outline(sections=5):
    return json.dumps({
        "title": "How To Restore Antique Lamps Safely at Home",
        "meta_description": "A short description.",
        "introduction": "Why restoration matters.",
        "sections": [{"heading": f"Step {i}", "content_hint": "do it"} for i in range(sections)],
        "faq": [{"question": "Can I rewire a lamp myself?", "answer_hint": "Usually."}],
        "keywords": ["lamp restoration"],
        "categories": ["Restoration"],
    })


class TestFitting:

    def test_title_candidate_kept_when_valid(self):
        assert fit_title("Antique Lamps: How to Date Them Properly", "antique lamps") == \
            "Antique Lamps: How to Date Them Properly"

    def test_title_without_keyword_replaced(self):
        title = fit_title("A Great Article", "antique lamps")
        assert "antique lamps" in title.lower()
        assert 30 <= len(title) <= 60

    def test_title_for_long_keyword_capped(self):
        keyword = "very long keyword " * 5
        assert len(fit_title("", keyword)) <= 60

    @pytest.mark.parametrize("candidate", ["", "Short.", "x" * 300])
    def test_description_length_and_keyword(self, candidate):
        desc = fit_description(candidate, "antique lamps")
        assert 120 <= len(desc) <= 160 or desc.endswith("...")
        assert len(desc) <= 160
        assert "antique lamps" in desc.lower()


class TestResearchHelpers:

    def test_extractors(self, research):
        assert len(paa_entries(research["paa"])) == 4
        assert len(serp_references(research["serp"])) == 5
        assert research_text(research["llm-research"]).startswith("# Research")
        assert KEYWORD in metric_keywords(research["kw-metrics"])

    def test_extractors_tolerate_garbage(self):
        assert paa_entries(None) == []
        assert serp_references({"serp": "nope"}) == []
        assert research_text({}) == ""
        assert metric_keywords([]) == []


class TestDeterministicOutline:

    @pytest.mark.asyncio
    async def test_without_llm(self, profile, research):
        outline = await StructureSynthesizer(None).synthesize(profile, research)
        assert outline.source == "deterministic"
        assert outline.title == "Complete Guide to How To Restore Antique Lamps"
        assert len(outline.sections) >= 3
        assert "Conclusion" not in [s.heading for s in outline.sections]
        assert len(outline.faq) == 4
        assert outline.faq[0].question == research["paa"]["results"][0]["question"]
        assert len(outline.references) == 5
        assert outline.keywords[0] == KEYWORD

    @pytest.mark.asyncio
    async def test_how_to_section_gets_steps(self, profile, research):
        outline = await StructureSynthesizer(None).synthesize(profile, research)
        how_to = [s for s in outline.sections if s.heading.lower().startswith("how to")]
        assert how_to
        assert len(how_to[0].subsections) == 3

    @pytest.mark.asyncio
    async def test_faq_from_profile_without_paa(self, profile):
        outline = await StructureSynthesizer(None).synthesize(profile, {})
        assert [f.question for f in outline.faq] == profile.paa_questions[:6]

    @pytest.mark.asyncio
    async def test_deterministic_repeatable(self, profile, research):
        a = await StructureSynthesizer(None).synthesize(profile, research)
        b = await StructureSynthesizer(None).synthesize(profile, research)
        assert a.to_dict() == b.to_dict()


class TestLLMOutline:

    @pytest.mark.asyncio
    async def test_valid_reply(self, profile, research, scripted_llm):
        llm = scripted_llm(_llm_outline())
        outline = await StructureSynthesizer(llm).synthesize(profile, research)
        assert outline.source == "llm"
        assert outline.title == "How To Restore Antique Lamps Safely at Home"
        assert 120 <= len(outline.meta_description) <= 160
        assert len(outline.sections) == 5
        # PAA questions come first, the LLM's own question after
        assert outline.faq[-1].question == "Can I rewire a lamp myself?"
        assert len(llm.prompts) == 1

    @pytest.mark.asyncio
    async def test_reprompt_once_on_invalid(self, profile, research, scripted_llm):
        llm = scripted_llm(_llm_outline(sections=1), _llm_outline())
        outline = await StructureSynthesizer(llm).synthesize(profile, research)
        assert outline.source == "llm"
        assert len(llm.prompts) == 2
        assert "previous reply was rejected" in llm.prompts[1]

    @pytest.mark.asyncio
    async def test_falls_back_after_two_failures(self, profile, research, garbage_llm):
        outline = await StructureSynthesizer(garbage_llm).synthesize(profile, research)
        assert outline.source == "deterministic"
        assert len(garbage_llm.prompts) == 2

    @pytest.mark.asyncio
    async def test_prompts_recorded(self, profile, research, scripted_llm, store):
        from articleforge.llm_client import PromptRecorder

        recorder = PromptRecorder(store, "how-to-restore-antique-lamps", day="2025-01-01")
        await StructureSynthesizer(scripted_llm(_llm_outline())).synthesize(profile, research, recorder=recorder)
        recorded = list((store.slug_dir("how-to-restore-antique-lamps") / "prompts" / "2025-01-01").glob("*.json"))
        assert len(recorded) == 1
