"""Test seo_evaluator -- ArticleForge."""
from __future__ import annotations

import json

import pytest

from articleforge.content_enhancer import ContentEnhancer
from articleforge.content_model import Draft, Section
from articleforge.intent_analyzer import analyze_intent
from articleforge.llm_client import LLMResponse
from articleforge.seo_evaluator import (
    DEFICIT_MESSAGES,
    RefinementResult,
    SEOEvaluator,
    SEORefiner,
    count_syllables,
    flesch_reading_ease,
    readability_band,
    recommend_image_count,
    text_metrics,
)
from articleforge.structure_synthesizer import StructureSynthesizer

KEYWORD = "antique lamps"


def _poor_draft():
    return Draft(
        keyword=KEYWORD,
        title="Lamps",
        sections=[Section(heading="One", body="Some text about lamps.")],
    )


async def _full_draft():
    profile = analyze_intent("how to restore antique lamps", year=2025)
    outline = await StructureSynthesizer(None).synthesize(profile, {})
    return await ContentEnhancer(None).enhance(outline, profile, {}, featured_image="/images/x.jpg")


# ===========================================================================
# TEXT METRICS
# ===========================================================================


class TestTextMetrics:

    @pytest.mark.parametrize("word,expected", [
        ("the", 1), ("table", 2), ("released", 2), ("beautiful", 3), ("rhythm", 1),
    ])
    def test_syllables(self, word, expected):
        assert count_syllables(word) == expected

    def test_flesch_clamped(self):
        assert flesch_reading_ease("The cat sat.") == 100.0
        assert flesch_reading_ease("no sentence terminator") == 0.0
        assert flesch_reading_ease("") == 0.0

    def test_flesch_in_range(self):
        text = "Incomprehensibility characterizes institutionalization internationally. " * 3
        assert 0.0 <= flesch_reading_ease(text) <= 100.0

    @pytest.mark.parametrize("score,band", [
        (95, "Very Easy"), (65, "Standard"), (45, "Difficult"), (10, "Very Difficult"),
    ])
    def test_bands(self, score, band):
        assert readability_band(score) == band

    def test_metrics(self):
        metrics = text_metrics("One two three. Four five.\n\nSix seven eight nine ten.")
        assert metrics["word_count"] == 10
        assert metrics["sentence_count"] == 3
        assert metrics["paragraph_count"] == 2
        assert metrics["average_sentence_length"] == 3.33


class TestImageRecommendation:

    @pytest.mark.parametrize("headings,expected", [
        ([], 1),
        (["How to Start", "Other"], 2),
        (["A", "B", "C", "D", "E", "F", "G", "H"], 5),
        (["Tips", "A", "B"], 3),
        (["A", "B"], 1),
        (["A", "B", "C", "D", "E"], 3),
    ])
    def test_rules(self, headings, expected):
        assert recommend_image_count(headings) == expected


# ===========================================================================
# EVALUATOR
# ===========================================================================


class TestEvaluator:

    def test_sample_document(self, sample_markdown):
        report = SEOEvaluator().score(sample_markdown, KEYWORD, ideal_word_count=2000)
        sm = report.seo_metrics
        assert sm["title_has_keyword"]
        assert sm["heading_count"] == 3
        assert sm["h2_count"] == 2
        assert sm["h3_count"] == 1
        assert sm["link_count"] == 2
        assert sm["images_with_alt"] == 1
        assert sm["keyword_count"] == 2
        assert report.text_metrics["word_count"] == 35
        assert report.composite == 70.0
        assert report.deficits == [
            DEFICIT_MESSAGES["keyword_density"],
            DEFICIT_MESSAGES["description_length"],
            DEFICIT_MESSAGES["word_count"],
        ]
        assert report.rubric["keyword_in_title"] == 20

    def test_empty_document(self):
        report = SEOEvaluator().score("", KEYWORD)
        assert report.composite == 0.0
        assert report.readability == 0.0
        assert report.band == "Very Difficult"

    @pytest.mark.asyncio
    async def test_score_bounds_on_real_draft(self):
        report = SEOEvaluator().score_draft(await _full_draft(), 2000)
        assert 0 <= report.readability <= 100
        assert 0 <= report.composite <= 100

    def test_deterministic(self, sample_markdown):
        a = SEOEvaluator().score(sample_markdown, KEYWORD)
        b = SEOEvaluator().score(sample_markdown, KEYWORD)
        assert a.to_dict() == b.to_dict()

    def test_suggestions_and_summary(self, sample_markdown):
        report = SEOEvaluator().score(sample_markdown, KEYWORD)
        assert "Aim for a meta description length between 120-160 characters." in report.suggestions
        assert "Composite:      70/100" in report.summary()


# ===========================================================================
# REFINER
# ===========================================================================


class TestLocalRevision:

    def test_fixes_title_description_and_headings(self):
        refiner = SEORefiner(None)
        draft = _poor_draft()
        before = refiner.evaluator.score_draft(draft, 600)
        revised = refiner.local_revision(draft, before, 600)
        after = refiner.evaluator.score_draft(revised, 600)
        assert KEYWORD in revised.title.lower()
        assert 120 <= len(revised.meta_description) <= 160
        assert len(revised.sections) >= 3
        assert revised.sections[0].heading == "Antique Lamps: One"
        assert after.composite > before.composite
        assert draft.title == "Lamps"


class TestRefine:

    @pytest.mark.asyncio
    async def test_never_worse_than_initial(self):
        result = await SEORefiner(None, min_score=85, max_iterations=3).refine(await _full_draft(), 2000)
        assert result.iteration <= 3
        assert len(result.score_history) == result.iteration + 1
        assert result.report.composite >= result.score_history[0]
        assert result.report.composite == max(result.score_history)

    @pytest.mark.asyncio
    async def test_zero_iterations(self):
        result = await SEORefiner(None, min_score=85, max_iterations=0).refine(_poor_draft(), 600)
        assert result.iteration == 0
        assert result.exhausted
        assert result.warnings[0].startswith("score_budget_exhausted:")

    @pytest.mark.asyncio
    async def test_stops_after_two_non_improving(self, garbage_llm):
        result = await SEORefiner(garbage_llm, max_iterations=5).refine(_poor_draft(), 600)
        assert result.iteration == 2
        assert result.best_iteration == 0
        assert result.exhausted
        assert result.report.composite == result.score_history[0]

    @pytest.mark.asyncio
    async def test_llm_revision_applied(self, scripted_llm):
        improved = _poor_draft().to_dict()
        improved["title"] = "Antique Lamps: A Complete Guide for Collectors"
        improved["keyword"] = "something else"
        llm = scripted_llm(json.dumps(improved))
        refiner = SEORefiner(llm)
        draft = _poor_draft()
        revised = await refiner.revise(draft, refiner.evaluator.score_draft(draft), 600)
        assert revised.title == "Antique Lamps: A Complete Guide for Collectors"
        assert revised.keyword == KEYWORD
        assert "Fix these problems first" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_truncated_revision_keeps_draft(self, scripted_llm):
        llm = scripted_llm(LLMResponse(text="{\"title\": ", truncated=True))
        refiner = SEORefiner(llm)
        draft = _poor_draft()
        assert await refiner.revise(draft, refiner.evaluator.score_draft(draft), 600) is draft


class TestRefinementResult:

    def test_round_trip(self):
        report = SEOEvaluator().score_draft(_poor_draft())
        result = RefinementResult(draft=_poor_draft(), report=report, iteration=1, score_history=[0.0, 10.0])
        restored = RefinementResult.from_dict(result.to_dict())
        assert restored.draft == result.draft
        assert restored.report.composite == report.composite
        assert restored.score_history == [0.0, 10.0]
        assert not restored.exhausted
