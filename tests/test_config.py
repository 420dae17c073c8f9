"""Test config -- ArticleForge."""
from __future__ import annotations

from pathlib import Path

import pytest

from articleforge.config import SERP_ENDPOINT_NAMES, PipelineConfig
from articleforge.providers import SERP_ENDPOINTS


class TestFromEnv:

    def test_reads_credentials(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KWRDS_API_KEY", "kw-secret")
        monkeypatch.setenv("SERP_ENDPOINT", "serp-api")
        monkeypatch.setenv("ARTICLEFORGE_OUTPUT_DIR", str(tmp_path))
        config = PipelineConfig.from_env()
        assert config.kwrds_api_key == "kw-secret"
        assert config.serp_endpoint == "serp-api"
        assert config.output_path == tmp_path
        assert config.store_dir == tmp_path / "store"

    def test_overrides_ignore_none(self, monkeypatch):
        monkeypatch.delenv("ARTICLEFORGE_OUTPUT_DIR", raising=False)
        config = PipelineConfig.from_env(min_score=90, output_dir=None, skip_image=True)
        assert config.min_score == 90
        assert config.skip_image
        assert Path(config.output_dir).name == "output"

    def test_secrets_masked(self):
        data = PipelineConfig(anthropic_api_key="sk-1").to_dict()
        assert data["anthropic_api_key"] == "***"
        assert data["kwrds_api_key"] == ""

    def test_from_dict_drops_unknown(self):
        config = PipelineConfig.from_dict({"min_score": 70, "bogus": 1})
        assert config.min_score == 70


class TestValidate:

    @pytest.mark.parametrize("score", [0, 101])
    def test_min_score_range(self, score):
        with pytest.raises(ValueError):
            PipelineConfig(min_score=score).validate()

    def test_negative_iterations(self):
        with pytest.raises(ValueError):
            PipelineConfig(max_iterations=-1).validate()

    def test_image_count_clamped(self):
        config = PipelineConfig(image_count=25)
        config.validate()
        assert config.image_count == 10

    def test_image_count_positive(self):
        with pytest.raises(ValueError):
            PipelineConfig(image_count=0).validate()

    def test_unknown_serp_endpoint(self):
        with pytest.raises(ValueError, match="SERP endpoint"):
            PipelineConfig(serp_endpoint="bing").validate()

    def test_unknown_serp_endpoint_from_env(self, monkeypatch):
        monkeypatch.setenv("SERP_ENDPOINT", "bing")
        with pytest.raises(ValueError):
            PipelineConfig.from_env()

    def test_endpoint_names_match_providers(self):
        assert set(SERP_ENDPOINT_NAMES) == set(SERP_ENDPOINTS)
