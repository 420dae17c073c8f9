"""Test image_planner -- ArticleForge."""
from __future__ import annotations

import json

import pytest

from articleforge.content_model import ContentOutline, Section
from articleforge.errors import ProviderTransportError
from articleforge.image_planner import (
    ASPECTS,
    ImageAdapter,
    ImagePlanner,
    ImageServiceAdapter,
    SyntheticImageAdapter,
    build_image_adapter,
    placeholder_url,
    select_aspects,
)
from articleforge.providers import HttpClient


@pytest.fixture
def outline():
    return ContentOutline(
        keyword="antique lamps",
        title="Antique Lamps: A Complete Guide",
        meta_description="All about antique lamps.",
        sections=[Section(heading="History"), Section(heading="Care"), Section(heading="Value")],
    )


class FailingAdapter(ImageAdapter):
    """Fails every slot except ``main``."""

    name = "failing"

    def is_live(self) -> bool:
        return True

    async def generate(self, slug, keyword, prompt, description=""):
        if slug == "antique-lamps":
            return {"imageUrl": "https://img.example.com/main.jpg", "prompt": prompt}
        raise ProviderTransportError(f"HTTP 503 for {slug}", status_code=503)


# ===========================================================================
# COUNT AND ASPECTS
# ===========================================================================


class TestResolveCount:

    def test_explicit_wins(self):
        assert ImagePlanner().resolve_count(explicit=2, recommended=4) == 2

    def test_recommended_when_auto(self):
        assert ImagePlanner().resolve_count(recommended=4) == 4

    def test_default_when_auto_disabled(self):
        assert ImagePlanner().resolve_count(recommended=4, auto=False) == 5

    def test_default_without_recommendation(self):
        assert ImagePlanner().resolve_count() == 5

    def test_clamped_to_max(self):
        assert ImagePlanner().resolve_count(explicit=50) == 10
        assert ImagePlanner(max_images=3).resolve_count(explicit=5) == 3


class TestAspects:

    def test_main_first(self):
        aspects = select_aspects("antique-lamps", 4)
        assert aspects[0] == "main"
        assert len(aspects) == 4
        assert len(set(aspects)) == 4

    def test_deterministic_per_slug(self):
        assert select_aspects("antique-lamps", 10) == select_aspects("antique-lamps", 10)
        assert sorted(select_aspects("antique-lamps", 10)) == sorted(ASPECTS)

    def test_count_clamped(self):
        assert select_aspects("x", 0) == ["main"]
        assert len(select_aspects("x", 99)) == len(ASPECTS)

    def test_placeholder_url(self):
        assert placeholder_url("main") == "https://via.placeholder.com/800x450?text=Main+Image"


# ===========================================================================
# GENERATION
# ===========================================================================


class TestGenerate:

    @pytest.mark.asyncio
    async def test_synthetic_slots(self, outline):
        items = await ImagePlanner().generate("antique lamps", outline, 3)
        assert [i.slot for i in items] == [0, 1, 2]
        assert items[0].aspect == "main"
        assert items[0].alt == "antique lamps"
        assert all(i.status == "synthetic" for i in items)
        assert items[0].target_url.startswith("https://picsum.photos/seed/antique-lamps")
        assert "History, Care, Value" in items[0].prompt

    @pytest.mark.asyncio
    async def test_synthetic_is_stable(self, outline):
        first = await ImagePlanner().generate("antique lamps", outline, 3)
        second = await ImagePlanner().generate("antique lamps", outline, 3)
        assert [i.to_dict() for i in first] == [i.to_dict() for i in second]

    @pytest.mark.asyncio
    async def test_failed_slots_get_placeholders(self, outline):
        items = await ImagePlanner(FailingAdapter()).generate("antique lamps", outline, 3)
        assert items[0].status == "generated"
        assert items[0].target_url == "https://img.example.com/main.jpg"
        for item in items[1:]:
            assert item.status == "placeholder"
            assert item.target_url == placeholder_url(item.aspect)

    def test_payload(self, outline):
        planner = ImagePlanner()
        items = planner.plan("antique lamps", outline, 2)
        payload = planner.payload("antique lamps", items)
        assert payload["slug"] == "antique-lamps"
        assert payload["count"] == 2
        assert payload["images"][0]["aspect"] == "main"


class TestImageServiceAdapter:

    @pytest.mark.asyncio
    async def test_posts_contract(self, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(
            200, {"success": True, "data": {"imageUrl": "https://cdn.example.com/a.png"}}
        )
        adapter = ImageServiceAdapter("https://images.example.com/", HttpClient(session=mock_aiohttp_session))
        result = await adapter.generate("antique-lamps", "antique lamps", "a prompt", "desc")
        assert result == {"imageUrl": "https://cdn.example.com/a.png", "prompt": "a prompt"}
        method, url = mock_aiohttp_session.request.call_args.args
        body = mock_aiohttp_session.request.call_args.kwargs["json"]
        assert method == "POST"
        assert url == "https://images.example.com/api/generate"
        assert body["appraiser"]["id"] == "antique-lamps"
        assert body["customPrompt"] == "a prompt"

    @pytest.mark.asyncio
    async def test_unsuccessful_response_falls_back(self, outline, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(200, {"success": False})
        adapter = ImageServiceAdapter("https://images.example.com", HttpClient(session=mock_aiohttp_session))
        items = await ImagePlanner(adapter).generate("antique lamps", outline, 2)
        assert [i.status for i in items] == ["placeholder", "placeholder"]

    def test_build_adapter(self, synthetic_config):
        assert isinstance(build_image_adapter(synthetic_config, HttpClient()), SyntheticImageAdapter)
        synthetic_config.image_service_url = "https://images.example.com"
        assert isinstance(build_image_adapter(synthetic_config, HttpClient()), ImageServiceAdapter)


class TestRecords:

    @pytest.mark.asyncio
    async def test_write_records(self, tmp_path, outline):
        items = await ImagePlanner().generate("antique lamps", outline, 2)
        paths = ImagePlanner.write_records(tmp_path, "antique-lamps", "antique lamps", items)
        assert [p.name for p in paths] == ["antique-lamps-images.json", "antique-lamps-image.json"]
        image_set = json.loads(paths[0].read_text())
        single = json.loads(paths[1].read_text())
        assert image_set["count"] == 2
        assert single["imageUrl"] == items[0].target_url
        assert single["source"] == "synthetic"
