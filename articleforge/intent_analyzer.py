"""
Intent Analyzer
===============

Rule-based search-intent classifier.  Pure: ``analyze_intent(keyword, serp)``
touches no network and no disk, so identical inputs always produce identical
profiles.

Classification steps:
    1. Count substring matches per intent signal set; argmax wins, ties go to
       the earlier intent (informational, commercial, transactional,
       navigational).  All-zero defaults to informational.
    2. Content formats from a second signal table, plus any format that shows
       up in at least two of the top five SERP titles.  Default ultimate-guide.
    3. User-journey stage from explicit signals, else from primary intent.
    4. Ideal word count from competitor word counts (mean of top 5 x 1.10),
       else a per-intent default.
    5. Featured-snippet type, heading template, questions, subtopics and
       content elements.

Usage:
    from articleforge.intent_analyzer import analyze_intent

    profile = analyze_intent("best wireless headphones", serp_payload)
    print(profile.primary_intent, profile.content_formats)
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from articleforge.content_model import (
    IntentProfile,
    JourneyStage,
    SearchIntent,
    SnippetType,
    normalize_keyword,
    title_case,
)
from articleforge.providers import seeded_questions

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("intent_analyzer")

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
# Signal tables (order matters: it breaks ties)
# ---------------------------------------------------------------------------

INTENT_SIGNALS: List[Tuple[str, Sequence[str]]] = [
    (SearchIntent.INFORMATIONAL.value, (
        "what", "how", "why", "who", "when", "where", "guide", "tutorial",
        "tips", "ideas", "vs", "versus", "difference", "examples",
    )),
    (SearchIntent.COMMERCIAL.value, (
        "best", "top", "review", "compare", "vs", "versus", "alternative", "comparison",
    )),
    (SearchIntent.TRANSACTIONAL.value, (
        "buy", "price", "cost", "cheap", "purchase", "deal", "coupon",
        "discount", "shipping", "order", "shop",
    )),
    (SearchIntent.NAVIGATIONAL.value, (
        "login", "sign in", "account", "official", "website",
    )),
]

FORMAT_SIGNALS: List[Tuple[str, Sequence[str]]] = [
    ("how-to", ("how to", "guide", "tutorial", "steps", "instructions")),
    ("list-post", ("best", "top", "reasons", "ways", "tips", "ideas", "examples")),
    ("comparison", ("vs", "versus", "compare", "comparison", "difference between")),
    ("ultimate-guide", ("complete", "ultimate", "comprehensive", "definitive", "guide")),
    ("case-study", ("case study", "example", "success story", "results")),
    ("question-answer", ("what is", "why", "how does", "where can")),
]
DEFAULT_FORMAT = "ultimate-guide"
SERP_TITLE_SCAN = 5
SERP_FORMAT_MIN_TITLES = 2

JOURNEY_SIGNALS: List[Tuple[str, Sequence[str]]] = [
    (JourneyStage.AWARENESS.value, (
        "what is", "definition", "meaning", "explained", "basics",
        "introduction", "beginners", "tutorial",
    )),
    (JourneyStage.CONSIDERATION.value, (
        "best", "top", "review", "compare", "vs", "benefits", "advantages",
        "disadvantages", "pros and cons",
    )),
    (JourneyStage.DECISION.value, (
        "buy", "price", "cost", "purchase", "deal", "discount", "where to",
    )),
    (JourneyStage.RETENTION.value, (
        "how to use", "tips", "advanced", "guide", "troubleshooting",
        "problems", "help with",
    )),
]

JOURNEY_FROM_INTENT: Dict[str, str] = {
    SearchIntent.INFORMATIONAL.value: JourneyStage.AWARENESS.value,
    SearchIntent.COMMERCIAL.value: JourneyStage.CONSIDERATION.value,
    SearchIntent.TRANSACTIONAL.value: JourneyStage.DECISION.value,
    SearchIntent.NAVIGATIONAL.value: JourneyStage.DECISION.value,
}

BUYER_STAGE: Dict[str, str] = {
    JourneyStage.AWARENESS.value: "top-funnel",
    JourneyStage.CONSIDERATION.value: "mid-funnel",
    JourneyStage.DECISION.value: "bottom-funnel",
    JourneyStage.RETENTION.value: "post-purchase",
}

DEFAULT_WORD_COUNT: Dict[str, int] = {
    SearchIntent.INFORMATIONAL.value: 2000,
    SearchIntent.COMMERCIAL.value: 2500,
    SearchIntent.TRANSACTIONAL.value: 1500,
    SearchIntent.NAVIGATIONAL.value: 1000,
}
WORD_COUNT_MARGIN = 1.10

SNIPPET_SIGNALS: List[Tuple[str, Sequence[str]]] = [
    (SnippetType.DEFINITION.value, ("what is", "definition of", "meaning of")),
    (SnippetType.LIST.value, ("best", "steps", "ways to", "tips for", "how to")),
    (SnippetType.TABLE.value, ("vs", "versus", "compare", "comparison", "price")),
]
INTERROGATIVES = ("how", "what", "why", "when", "where")

LOCAL_SIGNALS = ("near me", "in my area", "local", "nearby", "city", "location")
VISUAL_SIGNALS = (
    "how to", "tutorial", "guide", "examples", "images", "pictures",
    "photos", "design", "look",
)
TOPIC_MODIFIERS = ("how to", "what is", "best", "top", "guide to", "tutorial")

HEADING_TEMPLATES: Dict[str, List[str]] = {
    SearchIntent.INFORMATIONAL.value: [
        "Complete Guide to {K}",
        "What is {K}?",
        "Benefits of {K}",
        "How to Get Started with {K}",
        "Best Practices for {K}",
        "Common Challenges and Solutions",
        "{K} Case Studies",
        "Future Trends in {K}",
        "Conclusion",
    ],
    SearchIntent.COMMERCIAL.value: [
        "Best {K}: Complete Guide & Reviews",
        "Top {K} in {year}",
        "How to Choose the Right {K}",
        "What to Look for in {K}",
        "Reviews of the Top 5 {K}",
        "Comparison of {K} Features",
        "Budget Options for {K}",
        "Premium Options for {K}",
        "Final Recommendations",
    ],
    SearchIntent.TRANSACTIONAL.value: [
        "How to Buy {K}: Complete Purchasing Guide",
        "Best Places to Buy {K}",
        "Current Pricing for {K}",
        "Special Deals and Discounts",
        "What's Included When You Purchase",
        "Ordering Process Explained",
        "Payment Options",
        "Shipping and Delivery Information",
        "Warranty and Return Policy",
    ],
    SearchIntent.NAVIGATIONAL.value: [
        "Official Guide to {K}",
        "Overview of {K}",
        "How to Access {K}",
        "Features and Capabilities",
        "Troubleshooting Common Issues",
        "Contact Information",
        "FAQs About {K}",
    ],
}

BASE_ELEMENTS = ["introduction", "clear_headings", "conclusion"]
INTENT_ELEMENTS: Dict[str, List[str]] = {
    SearchIntent.INFORMATIONAL.value: [
        "definitions", "step_by_step_instructions", "examples", "expert_quotes",
    ],
    SearchIntent.COMMERCIAL.value: [
        "pros_cons_tables", "comparison_tables", "product_images", "ratings",
    ],
    SearchIntent.TRANSACTIONAL.value: [
        "pricing_tables", "cta_buttons", "testimonials", "guarantee_information",
    ],
    SearchIntent.NAVIGATIONAL.value: [
        "direct_links", "contact_information", "maps", "business_hours",
    ],
}
JOURNEY_ELEMENTS: Dict[str, List[str]] = {
    JourneyStage.AWARENESS.value: ["beginner_explanations", "infographics", "video_introductions"],
    JourneyStage.CONSIDERATION.value: ["comparison_charts", "expert_opinions", "case_studies"],
    JourneyStage.DECISION.value: ["detailed_specifications", "pricing_information", "social_proof"],
    JourneyStage.RETENTION.value: ["advanced_tips", "troubleshooting_guides", "community_resources"],
}

QUESTION_COUNT = 7
PAA_COUNT = 4


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _count_matches(text: str, signals: Sequence[str]) -> int:
    return sum(1 for s in signals if s in text)


def _serp_results(serp_payload: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(serp_payload, dict):
        return []
    results = serp_payload.get("serp")
    if not isinstance(results, list):
        return []
    return [r for r in results if isinstance(r, dict)]


def classify_intent(keyword: str) -> Tuple[str, Optional[str], Dict[str, int]]:
    """Return (primary, secondary, scores) for *keyword*."""
    text = keyword.lower()
    scores = {intent: _count_matches(text, signals) for intent, signals in INTENT_SIGNALS}
    # sorted() is stable, so equal scores keep declaration order
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    primary, top = ranked[0]
    if top == 0:
        return SearchIntent.INFORMATIONAL.value, None, scores
    runner_up, second = ranked[1]
    return primary, (runner_up if second > 0 else None), scores


def detect_formats(keyword: str, serp_payload: Optional[Dict[str, Any]] = None) -> List[str]:
    text = keyword.lower()
    formats = [fmt for fmt, signals in FORMAT_SIGNALS if _count_matches(text, signals) > 0]

    titles = [
        str(r.get("title", "")).lower()
        for r in _serp_results(serp_payload)[:SERP_TITLE_SCAN]
    ]
    if titles:
        for fmt, signals in FORMAT_SIGNALS:
            hits = sum(1 for t in titles if _count_matches(t, signals) > 0)
            if hits >= SERP_FORMAT_MIN_TITLES:
                formats.append(fmt)

    if not formats:
        formats.append(DEFAULT_FORMAT)

    deduped: List[str] = []
    for fmt in formats:
        if fmt not in deduped:
            deduped.append(fmt)
    return deduped


def detect_journey(keyword: str, primary_intent: str) -> str:
    text = keyword.lower()
    for stage, signals in JOURNEY_SIGNALS:
        if _count_matches(text, signals) > 0:
            return stage
    return JOURNEY_FROM_INTENT.get(primary_intent, JourneyStage.AWARENESS.value)


def ideal_word_count(primary_intent: str, serp_payload: Optional[Dict[str, Any]] = None) -> int:
    counts = []
    for result in _serp_results(serp_payload)[:SERP_TITLE_SCAN]:
        value = result.get("wordCount")
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            counts.append(float(value))
    if counts:
        return int(round(sum(counts) / len(counts) * WORD_COUNT_MARGIN))
    return DEFAULT_WORD_COUNT.get(primary_intent, DEFAULT_WORD_COUNT[SearchIntent.INFORMATIONAL.value])


def detect_snippet(keyword: str) -> str:
    text = keyword.lower()
    for snippet_type, signals in SNIPPET_SIGNALS:
        if _count_matches(text, signals) > 0:
            return snippet_type
    first_word = text.split()[0] if text.split() else ""
    if first_word in INTERROGATIVES:
        return SnippetType.PARAGRAPH.value
    return SnippetType.NONE.value


def heading_structure(keyword: str, primary_intent: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
    """Intent-specific heading template with the keyword title-cased in."""
    template = HEADING_TEMPLATES.get(primary_intent, HEADING_TEMPLATES[SearchIntent.INFORMATIONAL.value])
    k = title_case(keyword)
    year = year or date.today().year
    return [
        {"level": 1 if i == 0 else 2, "text": text.format(K=k, year=year)}
        for i, text in enumerate(template)
    ]


def main_topic(keyword: str) -> str:
    text = keyword.lower()
    for modifier in TOPIC_MODIFIERS:
        text = re.sub(rf"\b{re.escape(modifier)}\b", " ", text)
    words = text.split()
    return " ".join(words[:3]) if words else keyword.lower()


def related_subtopics(keyword: str, serp_payload: Optional[Dict[str, Any]] = None) -> List[str]:
    if isinstance(serp_payload, dict):
        for field_name in ("relatedKeywords", "pasf"):
            related = serp_payload.get(field_name)
            if isinstance(related, list) and related:
                return [str(r) for r in related[:5]]
    topic = main_topic(keyword)
    return [
        f"best {topic}",
        f"{topic} guide",
        f"how to use {topic}",
        f"{topic} examples",
        f"{topic} trends",
    ]


def content_elements(primary_intent: str, journey_stage: str) -> List[str]:
    elements = list(BASE_ELEMENTS)
    elements += INTENT_ELEMENTS.get(primary_intent, [])
    elements += JOURNEY_ELEMENTS.get(journey_stage, [])
    return elements


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze_intent(
    keyword: str,
    serp_payload: Optional[Dict[str, Any]] = None,
    year: Optional[int] = None,
) -> IntentProfile:
    """Classify *keyword* into a full IntentProfile.

    *serp_payload* may be None; SERP-derived signals (format augmentation,
    competitor word counts, related keywords) are skipped in that case.
    *year* pins the year used by the commercial heading template.
    """
    keyword = normalize_keyword(keyword)
    primary, secondary, scores = classify_intent(keyword)
    journey = detect_journey(keyword, primary)
    snippet = detect_snippet(keyword)
    text = keyword.lower()

    questions = seeded_questions(keyword, QUESTION_COUNT)
    profile = IntentProfile(
        keyword=keyword,
        primary_intent=primary,
        secondary_intent=secondary,
        intent_scores=scores,
        journey_stage=journey,
        buyer_stage=BUYER_STAGE[journey],
        content_formats=detect_formats(keyword, serp_payload),
        ideal_word_count=ideal_word_count(primary, serp_payload),
        heading_structure=heading_structure(keyword, primary, year=year),
        snippet_opportunity=snippet != SnippetType.NONE.value,
        snippet_type=snippet,
        questions=questions,
        paa_questions=questions[:PAA_COUNT],
        is_local=_count_matches(text, LOCAL_SIGNALS) > 0,
        needs_rich_media=(
            _count_matches(text, VISUAL_SIGNALS) > 0
            or primary in (SearchIntent.COMMERCIAL.value, SearchIntent.TRANSACTIONAL.value)
        ),
        related_subtopics=related_subtopics(keyword, serp_payload),
        main_topic=main_topic(keyword),
        content_elements=content_elements(primary, journey),
    )
    logger.debug(
        "Intent for '%s': %s/%s journey=%s formats=%s words=%d",
        keyword, primary, secondary, journey, profile.content_formats, profile.ideal_word_count,
    )
    return profile


def default_profile(keyword: str, year: Optional[int] = None) -> IntentProfile:
    """Profile used when intent analysis is skipped: keyword signals only."""
    return analyze_intent(keyword, serp_payload=None, year=year)
