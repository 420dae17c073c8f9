"""
Shared fixtures for the ArticleForge test suite.

Provides temp stores, an all-synthetic config and scripted LLM stubs so
that all tests run WITHOUT any external services.
"""

from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from articleforge.artifact_store import ArtifactStore
from articleforge.config import PipelineConfig
from articleforge.llm_client import LLMClient, LLMResponse


# ---------------------------------------------------------------------------
# Directory / store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store(tmp_path):
    """Empty artifact store under a temp directory."""
    return ArtifactStore(tmp_path / "store")


@pytest.fixture
def synthetic_config(tmp_path):
    """Config with no credentials, no backoff and output under tmp_path."""
    return PipelineConfig(
        output_dir=str(tmp_path / "output"),
        backoff_base=0.0,
        rate_interval=0.0,
        kwrds_api_key="",
        perplexity_api_key="",
        anthropic_api_key="",
        image_service_url="",
    )


# ---------------------------------------------------------------------------
# LLM stubs
# ---------------------------------------------------------------------------

class ScriptedLLM(LLMClient):
    """Live LLM stub that replays canned responses in order (last one repeats)."""

    name = "scripted"

    def __init__(self, responses: List[LLMResponse]):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def is_live(self) -> bool:
        return True

    async def complete(self, prompt: str, system: Optional[str] = None, max_tokens: int = 1024) -> LLMResponse:
        self.prompts.append(prompt)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def scripted_llm():
    """Factory: scripted_llm("text", LLMResponse(...), ...)."""

    def _make(*responses):
        return ScriptedLLM([
            r if isinstance(r, LLMResponse) else LLMResponse(text=r, model="stub", stop_reason="end_turn")
            for r in responses
        ])

    return _make


@pytest.fixture
def garbage_llm(scripted_llm):
    """Live LLM that always answers with unusable prose."""
    return scripted_llm("Sorry, I cannot help with that.")


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""

    def _make(status=200, json_data=None, text="", headers=None):
        resp = AsyncMock()
        resp.status = status
        resp.json = AsyncMock(return_value=json_data or {})
        resp.text = AsyncMock(return_value=text)
        resp.headers = headers or {"Content-Type": "application/json"}
        resp.__aenter__ = AsyncMock(return_value=resp)
        resp.__aexit__ = AsyncMock(return_value=False)
        return resp

    return _make


@pytest.fixture
def mock_aiohttp_session(mock_aiohttp_response):
    """Create a mock aiohttp ClientSession."""
    session = AsyncMock()
    default_resp = mock_aiohttp_response(200, {"ok": True})
    session.closed = False
    session.request = MagicMock(return_value=default_resp)
    session.close = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_markdown():
    """A small article with front-matter, headings, links, an image and code."""
    return "\n".join([
        "---",
        'title: "Antique Lamps: A Complete Guide for Collectors"',
        'description: "Learn how antique lamps are dated, cleaned and valued."',
        "slug: antique-lamps",
        "---",
        "",
        "![antique lamps](/images/antique-lamps.jpg)",
        "",
        "Antique lamps brighten a room. They also tell a story.",
        "",
        "## Caring for Antique Lamps",
        "",
        "Dust the shade **gently** with a soft brush. See [this guide](https://example.com/guide).",
        "",
        "```",
        "# not a heading",
        "```",
        "",
        "### Wiring",
        "",
        "- Check the cord",
        "- Replace the plug",
        "",
        "## Sources",
        "",
        "- [Lamp Museum](https://example.com/museum)",
    ])
