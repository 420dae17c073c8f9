"""
Provider Adapters
=================

Uniform capability set over the four research data sources:

    kw-metrics    -- kwrds.ai keywords-with-volumes
    paa           -- kwrds.ai people-also-ask
    serp          -- kwrds.ai SERP (endpoint selectable: "kwrds" or "serp-api")
    llm-research  -- Perplexity chat completions

Every adapter exposes ``fetch(keyword)``, ``is_live()`` and
``synthesize(keyword)``.  Caching, the live/synthetic decision and error
wrapping are NOT part of the adapters; they live in ``ProviderCache``, which
composes an adapter with the artifact store.  Synthetic payloads share the
live schema and are fully deterministic (no timestamps, seeded variation).

Usage:
    from articleforge.providers import HttpClient, ProviderCache, build_adapters

    http = HttpClient(timeout=30)
    adapters = build_adapters(config, http)
    cache = ProviderCache(store, research_dir=config.research_dir)
    artifact = await cache.resolve(adapters["serp"], "best running shoes")
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import random
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiohttp

from articleforge.artifact_store import Artifact, ArtifactStore, Provenance, _save_json
from articleforge.config import (
    ENV_KWRDS_API_KEY,
    ENV_PERPLEXITY_API_KEY,
    PipelineConfig,
)
from articleforge.content_model import ArtifactKind, sha256_of, slugify, title_case
from articleforge.errors import (
    ArtifactStoreError,
    CredentialMissing,
    ProviderError,
    ProviderSchemaError,
    ProviderTransportError,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("providers")

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
# Endpoints
# ---------------------------------------------------------------------------

KWRDS_BASE_URL = "https://keywordresearch.api.kwrds.ai"
KWRDS_KEYWORDS_ENDPOINT = f"{KWRDS_BASE_URL}/keywords-with-volumes"
KWRDS_PAA_ENDPOINT = "https://paa.api.kwrds.ai/people-also-ask"
SERP_ENDPOINTS: Dict[str, str] = {
    "kwrds": f"{KWRDS_BASE_URL}/serp",
    "serp-api": "https://serp.api.kwrds.ai/search",
}
PERPLEXITY_ENDPOINT = "https://api.perplexity.ai/chat/completions"
PERPLEXITY_MODEL = "sonar"

SEARCH_COUNTRY = "en-US"
USER_AGENT = "articleforge/1.0"

# Question templates shared with the intent analyzer
QUESTION_TEMPLATES: List[str] = [
    "What is {k}?",
    "How does {k} work?",
    "Why is {k} important?",
    "What are the benefits of {k}?",
    "How to get started with {k}?",
    "What are common problems with {k}?",
    "How much does {k} cost?",
    "What are alternatives to {k}?",
    "Is {k} worth it?",
    "How to choose the best {k}?",
]


def _seed_for(text: str) -> int:
    """Stable integer seed derived from *text* (independent of PYTHONHASHSEED)."""
    return int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:16], 16)


def seeded_questions(keyword: str, count: int = 7) -> List[str]:
    """Deterministically shuffled question templates for *keyword*."""
    questions = [q.format(k=keyword) for q in QUESTION_TEMPLATES]
    random.Random(_seed_for(slugify(keyword))).shuffle(questions)
    return questions[:count]


# ---------------------------------------------------------------------------
# Shared HTTP client
# ---------------------------------------------------------------------------


class RateLimiter:
    """Enforce a minimum interval between successive calls."""

    def __init__(self, min_interval: float = 0.0):
        self.min_interval = min_interval
        self._last_call = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_call
            if self._last_call and elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_call = time.monotonic()


class HttpClient:
    """
    Shared aiohttp session for every adapter.

    Parameters
    ----------
    timeout : float
        Default per-request timeout in seconds.
    session : aiohttp.ClientSession, optional
        Pre-built session (tests inject a mock here).
    """

    def __init__(self, timeout: float = 30.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=10, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Perform one request and return the decoded JSON body.

        Raises ProviderTransportError on network errors, timeouts and
        non-2xx responses, ProviderSchemaError on a non-JSON body.
        """
        session = await self._get_session()
        kwargs: Dict[str, Any] = {
            "timeout": aiohttp.ClientTimeout(total=timeout or self.timeout),
        }
        if headers is not None:
            kwargs["headers"] = headers
        if json_body is not None:
            kwargs["json"] = json_body
        if params is not None:
            kwargs["params"] = params

        try:
            async with session.request(method, url, **kwargs) as resp:
                status = resp.status
                if status < 200 or status >= 300:
                    body = await resp.text()
                    raise ProviderTransportError(
                        f"HTTP {status} from {url}",
                        status_code=status,
                        response_body=body[:500],
                    )
                try:
                    return await resp.json(content_type=None)
                except (json.JSONDecodeError, ValueError) as exc:
                    raise ProviderSchemaError(f"Non-JSON response from {url}") from exc
        except asyncio.TimeoutError as exc:
            raise ProviderTransportError(f"Timeout after {timeout or self.timeout:.0f}s calling {url}") from exc
        except aiohttp.ClientError as exc:
            raise ProviderTransportError(f"{type(exc).__name__} calling {url}: {exc}") from exc


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class Adapter:
    """Capability set every research provider implements."""

    kind: str = ""
    name: str = ""
    credential_env: str = ""

    def is_live(self) -> bool:
        raise NotImplementedError

    async def fetch(self, keyword: str) -> Any:
        raise NotImplementedError

    def synthesize(self, keyword: str) -> Any:
        raise NotImplementedError

    def validate(self, payload: Any) -> None:
        """Raise ProviderSchemaError when *payload* is unusable."""
        if not isinstance(payload, dict) or not payload:
            raise ProviderSchemaError(f"{self.name}: expected a non-empty JSON object")


class _KwrdsAdapter(Adapter):
    """Shared credential/throttle plumbing for the kwrds.ai endpoints."""

    credential_env = ENV_KWRDS_API_KEY

    def __init__(self, api_key: str, http: HttpClient, rate_interval: float = 1.0, timeout: float = 30.0):
        self.api_key = api_key
        self.http = http
        self.timeout = timeout
        self.limiter = RateLimiter(rate_interval)

    def is_live(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise CredentialMissing(self.credential_env, self.name)
        return {"X-API-KEY": self.api_key, "Content-Type": "application/json"}


class KeywordMetricsAdapter(_KwrdsAdapter):
    kind = ArtifactKind.KW_METRICS.value
    name = "kwrds-keywords"

    async def fetch(self, keyword: str) -> Any:
        headers = self._headers()
        await self.limiter.wait()
        return await self.http.request_json(
            "POST",
            KWRDS_KEYWORDS_ENDPOINT,
            headers=headers,
            json_body={"search_question": keyword, "search_country": SEARCH_COUNTRY},
            timeout=self.timeout,
        )

    def synthesize(self, keyword: str) -> Any:
        rng = random.Random(_seed_for(f"kw:{slugify(keyword)}"))
        variants = [
            keyword,
            f"best {keyword}",
            f"{keyword} guide",
            f"how to use {keyword}",
            f"{keyword} examples",
            f"{keyword} tips",
        ]
        rows = []
        for i, variant in enumerate(variants):
            rows.append({
                "keyword": variant,
                "volume": rng.randint(100, 5000) // (i + 1) * 10,
                "cpc": round(rng.uniform(0.2, 4.5), 2),
                "competition": round(rng.uniform(0.05, 0.95), 2),
            })
        return {"keyword": keyword, "search_country": SEARCH_COUNTRY, "keywords": rows}


class PeopleAlsoAskAdapter(_KwrdsAdapter):
    kind = ArtifactKind.PAA.value
    name = "kwrds-paa"

    async def fetch(self, keyword: str) -> Any:
        headers = self._headers()
        await self.limiter.wait()
        return await self.http.request_json(
            "GET",
            KWRDS_PAA_ENDPOINT,
            headers=headers,
            params={"keyword": keyword, "search_country": "US", "search_language": "en"},
            timeout=self.timeout,
        )

    def synthesize(self, keyword: str) -> Any:
        slug = slugify(keyword)
        results = []
        for i, question in enumerate(seeded_questions(keyword, 4)):
            results.append({
                "question": question,
                "google_answer": (
                    f"{title_case(keyword)} is a topic many readers research before "
                    f"making decisions. This answer summarizes the essentials."
                ),
                "google_answer_source_title": f"{title_case(keyword)} FAQ",
                "google_answer_source_url": f"https://example.com/{slug}/faq-{i + 1}",
            })
        return {"keyword": keyword, "results": results}


class SerpAdapter(_KwrdsAdapter):
    """SERP provider with a selectable endpoint ("kwrds" or "serp-api")."""

    kind = ArtifactKind.SERP.value
    name = "kwrds-serp"

    def __init__(
        self,
        api_key: str,
        http: HttpClient,
        endpoint: str = "kwrds",
        rate_interval: float = 1.0,
        timeout: float = 30.0,
    ):
        super().__init__(api_key, http, rate_interval=rate_interval, timeout=timeout)
        if endpoint not in SERP_ENDPOINTS:
            raise ValueError(f"Unknown SERP endpoint '{endpoint}'. Must be one of: {sorted(SERP_ENDPOINTS)}")
        self.endpoint = endpoint

    async def fetch(self, keyword: str) -> Any:
        headers = self._headers()
        await self.limiter.wait()
        return await self.http.request_json(
            "POST",
            SERP_ENDPOINTS[self.endpoint],
            headers=headers,
            json_body={"search_question": keyword, "search_country": SEARCH_COUNTRY},
            timeout=self.timeout,
        )

    def validate(self, payload: Any) -> None:
        super().validate(payload)
        serp = payload.get("serp")
        if not isinstance(serp, list):
            raise ProviderSchemaError(f"{self.name}: payload has no 'serp' list")
        for item in serp:
            if not isinstance(item, dict) or not isinstance(item.get("title"), str):
                raise ProviderSchemaError(f"{self.name}: SERP entry without a title")

    def synthesize(self, keyword: str) -> Any:
        rng = random.Random(_seed_for(f"serp:{slugify(keyword)}"))
        k = title_case(keyword)
        slug = slugify(keyword)
        titles = [
            f"Complete Guide to {k}: Value, History, and Market Trends",
            f"{k}: Everything You Need to Know",
            f"{k} Explained: Key Facts and Background",
            f"Understanding {k}: A Practical Overview",
            f"{k} Resources and Expert Insights",
        ]
        serp = []
        for i, title in enumerate(titles):
            serp.append({
                "position": i + 1,
                "title": title,
                "url": f"https://example.com/{slug}-{i + 1}",
                "est_monthly_traffic": rng.randint(200, 9000) // (i + 1),
            })
        return {
            "keyword": keyword,
            "serp": serp,
            "pasf": [f"{keyword} guide", f"{keyword} examples", f"best {keyword}"],
            "pasf_trending": [],
        }


class LLMResearchAdapter(Adapter):
    """Perplexity chat-completions research summary."""

    kind = ArtifactKind.LLM_RESEARCH.value
    name = "perplexity"
    credential_env = ENV_PERPLEXITY_API_KEY

    def __init__(
        self,
        api_key: str,
        http: HttpClient,
        model: str = PERPLEXITY_MODEL,
        rate_interval: float = 1.0,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.http = http
        self.model = model
        self.timeout = timeout
        self.limiter = RateLimiter(rate_interval)

    def is_live(self) -> bool:
        return bool(self.api_key)

    async def fetch(self, keyword: str) -> Any:
        if not self.api_key:
            raise CredentialMissing(self.credential_env, self.name)
        await self.limiter.wait()
        return await self.http.request_json(
            "POST",
            PERPLEXITY_ENDPOINT,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json_body={
                "model": self.model,
                "messages": [
                    {
                        "role": "system",
                        "content": "You are a research assistant. Answer in markdown with "
                                   "Overview, Key Aspects, Expert Insights and Conclusion sections.",
                    },
                    {
                        "role": "user",
                        "content": f"Provide comprehensive, factual research about: {keyword}",
                    },
                ],
            },
            timeout=self.timeout,
        )

    def validate(self, payload: Any) -> None:
        super().validate(payload)
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderSchemaError(f"{self.name}: missing choices[0].message.content") from exc
        if not isinstance(content, str) or not content.strip():
            raise ProviderSchemaError(f"{self.name}: empty research content")

    def synthesize(self, keyword: str) -> Any:
        k = title_case(keyword)
        content = "\n".join([
            f"# Research: {k}",
            "",
            "## Overview",
            "",
            f"{k} draws steady interest from beginners and experienced readers alike. "
            f"People look for clear explanations, practical steps and honest advice. "
            f"A good resource on {keyword} covers the basics first and then moves to "
            f"real examples.",
            "",
            "## Key Aspects",
            "",
            f"- The core ideas behind {keyword} and how they fit together.",
            "- The tools, materials or skills a reader needs before starting.",
            "- Common mistakes and simple ways to avoid them.",
            "- How to measure progress and judge the results.",
            "",
            "## Expert Insights",
            "",
            f"Experts suggest starting small with {keyword}, keeping notes and "
            "building on what works. Patience and good habits matter more than "
            "expensive equipment.",
            "",
            "## Conclusion",
            "",
            f"With a clear plan, {keyword} becomes easy to approach. Start with the "
            "fundamentals, practice often and review the results.",
        ])
        return {
            "id": f"synthetic-{slugify(keyword)}",
            "model": self.model,
            "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
            "citations": [],
        }


def build_adapters(config: PipelineConfig, http: HttpClient) -> Dict[str, Adapter]:
    """Instantiate the four research adapters from *config*."""
    common = {"rate_interval": config.rate_interval, "timeout": config.provider_timeout}
    adapters: List[Adapter] = [
        KeywordMetricsAdapter(config.kwrds_api_key, http, **common),
        PeopleAlsoAskAdapter(config.kwrds_api_key, http, **common),
        SerpAdapter(config.kwrds_api_key, http, endpoint=config.serp_endpoint, **common),
        LLMResearchAdapter(config.perplexity_api_key, http, **common),
    ]
    return {a.kind: a for a in adapters}


# ---------------------------------------------------------------------------
# Caching helper
# ---------------------------------------------------------------------------


class ProviderCache:
    """
    Compose an adapter with the artifact store.

    Serves the latest cached artifact unless ``force`` is set, otherwise asks
    the adapter for live data and downgrades to synthetic data on missing
    credentials, transport failures or schema failures.

    Parameters
    ----------
    store : ArtifactStore
        Destination for research artifacts.
    research_dir : Path, optional
        When given, each fresh payload is also written to the legacy layout
        ``<research_dir>/<slug>-<kind>.json``.
    allow_synthetic : bool
        When False, live failures raise ProviderError instead of synthesizing.
    """

    def __init__(
        self,
        store: ArtifactStore,
        research_dir: Optional[Union[str, Path]] = None,
        allow_synthetic: bool = True,
    ):
        self.store = store
        self.research_dir = Path(research_dir) if research_dir else None
        self.allow_synthetic = allow_synthetic

    async def resolve(self, adapter: Adapter, keyword: str, force: bool = False) -> Artifact:
        """Return an artifact for *adapter.kind*, fetching or synthesizing as needed."""
        slug = slugify(keyword)
        key = (slug, adapter.kind)
        input_hash = sha256_of({"keyword": keyword, "kind": adapter.kind})

        if not force:
            cached = self.store.get_latest(key)
            if cached is not None and not cached.stale and cached.provenance.input_hash == input_hash:
                logger.info("Cache hit for %s/%s (rev %d)", slug, adapter.kind, cached.revision)
                return cached

        payload, mode = await self._produce(adapter, keyword)
        provenance = Provenance(
            stage=adapter.kind,
            provider=adapter.name,
            mode=mode,
            input_hash=input_hash,
        )
        if self.research_dir is not None:
            # Legacy flat copy goes first so a failed write commits no revision
            legacy_path = self.research_dir / f"{slug}-{adapter.kind}.json"
            try:
                _save_json(legacy_path, payload)
            except OSError as exc:
                raise ArtifactStoreError(f"Cannot write research file {legacy_path}: {exc}") from exc
        revision = self.store.put(key, payload, provenance)
        artifact = self.store.get(key, revision)
        if artifact is None:
            raise ProviderError(adapter.kind, "artifact vanished after write")
        return artifact

    async def _produce(self, adapter: Adapter, keyword: str) -> tuple:
        reason = ""
        if adapter.is_live():
            try:
                payload = await adapter.fetch(keyword)
                adapter.validate(payload)
                logger.info("Live %s data fetched for '%s'", adapter.kind, keyword)
                return payload, "live"
            except (ProviderTransportError, ProviderSchemaError) as exc:
                reason = f"{type(exc).__name__}: {exc}"
                logger.warning("%s live fetch failed (%s); trying synthetic data", adapter.name, reason)
        else:
            reason = str(CredentialMissing(adapter.credential_env, adapter.name))
            logger.warning(reason)

        if not self.allow_synthetic:
            raise ProviderError(adapter.kind, reason or "synthetic mode disabled")
        try:
            payload = adapter.synthesize(keyword)
            adapter.validate(payload)
        except (ProviderSchemaError, ValueError, TypeError) as exc:
            raise ProviderError(adapter.kind, f"synthesis failed after live failure ({reason}): {exc}") from exc
        return payload, "synthetic"
