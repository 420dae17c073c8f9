"""Test content_registry -- ArticleForge."""
from __future__ import annotations

import json

import pytest

from articleforge.content_model import Draft
from articleforge.content_registry import ContentRegistry, extract_topics, related_section
from articleforge.errors import ArtifactStoreError


@pytest.fixture
def registry(tmp_path):
    return ContentRegistry(tmp_path / "content-registry.json")


class TestExtractTopics:

    def test_keyword_first_and_stopwords_dropped(self):
        draft = Draft(
            keyword="antique lamps",
            title="The Complete Guide to Antique Lamps",
            keywords=["oil lamps"],
            categories=["Collecting"],
        )
        topics = extract_topics(draft)
        assert topics[:3] == ["antique lamps", "antique", "lamps"]
        assert "oil lamps" in topics
        assert "collecting" in topics
        assert "the" not in topics
        assert "guide" not in topics
        assert len(topics) == len(set(topics))


class TestRegistry:

    def test_empty(self, registry):
        assert registry.entries() == []
        assert registry.latest() == {}
        assert registry.related("antique lamps", ["antique lamps"]) == []

    def test_register_appends(self, registry):
        registry.register("antique lamps", "Old", "d", ["antique lamps"], bundle_revision=1)
        registry.register("antique lamps", "New", "d", ["antique lamps"], bundle_revision=2)
        assert len(registry.entries()) == 2
        latest = registry.latest()["antique-lamps"]
        assert latest["title"] == "New"
        assert latest["bundle_revision"] == 2

    def test_related_ranks_overlap_and_excludes_self(self, registry):
        registry.register("antique lamps", "Antique Lamps", "d", ["antique lamps", "antique", "lamps"], 1)
        registry.register("oil lamps", "Oil Lamps", "d", ["oil lamps", "oil", "lamps"], 1)
        registry.register("garden hoses", "Garden Hoses", "d", ["garden hoses", "garden", "hoses"], 1)

        related = registry.related("antique lamps", ["antique lamps", "antique", "lamps"])
        assert [r["slug"] for r in related] == ["oil-lamps"]
        assert related[0]["relevance"] > 0.2
        assert "lamps" in related[0]["matched_phrases"]

    def test_limit(self, registry):
        for i in range(4):
            registry.register(f"lamps {i}", f"Lamps {i}", "d", ["lamps", f"lamps {i}"], 1)
        assert len(registry.related("lamps", ["lamps"], limit=2)) == 2

    def test_corrupt_file_raises(self, registry):
        registry.path.write_text("{not json")
        with pytest.raises(ArtifactStoreError):
            registry.entries()

    def test_file_is_json_list(self, registry):
        registry.register("antique lamps", "T", "d", [], 1)
        data = json.loads(registry.path.read_text())
        assert isinstance(data, list)
        assert data[0]["slug"] == "antique-lamps"


class TestRelatedSection:

    def test_empty(self):
        assert related_section([]) == ""

    def test_links(self):
        block = related_section([
            {"keyword": "oil lamps", "slug": "oil-lamps", "title": "Oil Lamps"},
            {"keyword": "lamp shades", "slug": "lamp-shades", "title": ""},
        ])
        assert block.startswith("## Related Articles\n")
        assert "- [Oil Lamps](/oil-lamps/)" in block
        assert "- [lamp shades](/lamp-shades/)" in block
