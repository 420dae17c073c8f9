"""
LLM Adapter
===========

Thin async wrapper over the Anthropic Messages API used by the structure
synthesizer, the content enhancer and the SEO refiner.

A response that stops because it hit ``max_tokens`` is flagged as truncated
so callers can raise ``TruncationError`` and retry with a smaller request.
When no API key is configured the adapter reports ``is_live() == False`` and
callers switch to their deterministic fallbacks.

Usage:
    from articleforge.llm_client import AnthropicLLMClient, extract_json

    llm = AnthropicLLMClient(api_key="...", model=MODEL_SONNET)
    response = await llm.complete("Write an outline ...", max_tokens=2000)
    outline = extract_json(response.text)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from articleforge.config import MODEL_SONNET
from articleforge.errors import CredentialMissing, ProviderTransportError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("llm_client")

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


def _truncate(text: str, max_len: int = 200) -> str:
    """Truncate text for logging."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


@dataclass
class LLMResponse:
    text: str
    truncated: bool = False
    model: str = ""
    stop_reason: str = ""


class LLMClient:
    """Interface shared by every LLM adapter."""

    name = "llm"

    def is_live(self) -> bool:
        raise NotImplementedError

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        raise NotImplementedError


class AnthropicLLMClient(LLMClient):
    """
    Anthropic Messages API adapter.

    Parameters
    ----------
    api_key : str
        Anthropic API key.  Empty means the adapter is not live.
    model : str
        Model identifier.
    timeout : float
        Per-call timeout in seconds. Default 60.
    """

    name = "anthropic"

    def __init__(self, api_key: str, model: str = MODEL_SONNET, timeout: float = 60.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def is_live(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)
        return self._client

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        if not self.api_key:
            raise CredentialMissing("ANTHROPIC_API_KEY", "llm")

        import anthropic

        client = self._get_client()
        system_messages = []
        if system:
            system_messages = [
                {
                    "type": "text",
                    "text": system,
                    "cache_control": {"type": "ephemeral"},
                }
            ]

        try:
            response = await asyncio.wait_for(
                client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system_messages if system_messages else anthropic.NOT_GIVEN,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTransportError(f"LLM call timed out after {self.timeout:.0f}s") from exc
        except anthropic.APIStatusError as exc:
            raise ProviderTransportError(
                f"Anthropic API error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except anthropic.APIError as exc:
            raise ProviderTransportError(f"Anthropic API error: {exc}") from exc

        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
        )
        stop_reason = getattr(response, "stop_reason", "") or ""
        logger.debug(
            "LLM %s returned %d chars (stop=%s)", self.model, len(text), stop_reason,
        )
        return LLMResponse(
            text=text,
            truncated=stop_reason == "max_tokens",
            model=self.model,
            stop_reason=stop_reason,
        )


class PromptRecorder:
    """Persist every prompt/response pair under ``<slug>/prompts/<date>/``."""

    def __init__(self, store: Any, slug: str, day: Optional[str] = None):
        self.store = store
        self.slug = slug
        self.day = day or date.today().isoformat()
        self._seq: Optional[int] = None

    def _next_seq(self) -> int:
        # Continue after records left by earlier runs on the same day
        if self._seq is None:
            folder = self.store.slug_dir(self.slug) / "prompts" / self.day
            existing = [0]
            if folder.is_dir():
                for path in folder.glob("*.json"):
                    prefix = path.name.split("-", 1)[0]
                    if prefix.isdigit():
                        existing.append(int(prefix))
            self._seq = max(existing)
        self._seq += 1
        return self._seq

    def record(self, name: str, prompt: str, response: Optional[LLMResponse], error: str = "") -> None:
        seq = self._next_seq()
        safe = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:60] or "prompt"
        self.store.write_record(
            self.slug,
            f"prompts/{self.day}/{seq:03d}-{safe}.json",
            {
                "name": name,
                "prompt": prompt,
                "response": response.text if response else "",
                "truncated": bool(response and response.truncated),
                "model": response.model if response else "",
                "error": error,
            },
        )


def extract_json(text: str) -> Any:
    """Parse a JSON document out of an LLM response.

    Handles fenced code blocks and leading/trailing prose.  Raises
    ValueError when nothing parseable is found.
    """
    text = (text or "").strip()
    if text.startswith("```"):
        json_lines = []
        in_block = False
        for line in text.split("\n"):
            if line.strip().startswith("```") and not in_block:
                in_block = True
                continue
            elif line.strip() == "```":
                break
            elif in_block:
                json_lines.append(line)
        text = "\n".join(json_lines)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        json_match = re.search(r"\{[\s\S]*\}", text)
        if json_match:
            try:
                return json.loads(json_match.group())
            except json.JSONDecodeError:
                pass
        raise ValueError(f"Could not parse JSON from AI response: {_truncate(text, 200)}")
