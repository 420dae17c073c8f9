"""
Content Pipeline
================

Keyword-to-article orchestrator.  Drives one keyword through every stage,
persisting each stage's output as a revisioned artifact so that any stage can
be re-run in isolation and unchanged stages are served from the store.

Pipeline stages (in order):
    1.  kw-metrics     -- keyword volumes / related keywords      (concurrent)
    2.  paa            -- "people also ask" questions              (concurrent)
    3.  serp           -- competitor titles and word counts        (concurrent)
    4.  llm-research   -- research notes from the research LLM
    5.  intent         -- search-intent classification
    6.  outline        -- section tree, FAQ, title and description
    7.  draft          -- body text for every section
    8.  scored-draft   -- SEO scoring and bounded refinement
    9.  image-set      -- planned and generated images
    10. bundle         -- content bundle, markdown file, registry entry

A stage is skipped when its latest artifact is intact, not stale, and was
produced from the same inputs (SHA-256 over upstream references and
parameters).  Executing a stage marks every artifact derived from its kind as
stale, so downstream stages re-run.

Data storage: output/
    store/<slug>/                 -- artifacts, index.json, prompts/, runs/
    research/<slug>-<kind>.json   -- research payloads
    markdown/<slug>.md            -- final article
    images/<slug>-images.json     -- image set (+ <slug>-image.json, slot 0)
    content-registry.json         -- append-only registry of bundled articles

Usage:
    from articleforge.content_pipeline import ContentPipeline
    from articleforge.config import PipelineConfig

    pipeline = ContentPipeline(PipelineConfig.from_env())
    run = await pipeline.execute("how to restore antique lamps")
    runs = await pipeline.execute_batch(["antique lamps", "brass lamps"], max_concurrent=2)

CLI:
    articleforge run "how to restore antique lamps" --min-score 85 --max-iterations 3
    articleforge run "best wireless headphones" --skip-image --force-api
    articleforge run "quantum chromodynamics" --intent-only
    articleforge batch keywords.txt --max-concurrent 2
    articleforge status "how to restore antique lamps"
    articleforge stages
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from articleforge.artifact_store import (
    Artifact,
    ArtifactStore,
    DirectoryMirror,
    Provenance,
    _now_iso,
)
from articleforge.config import PipelineConfig
from articleforge.content_enhancer import ContentEnhancer
from articleforge.content_model import (
    RESEARCH_KINDS,
    ArtifactKind,
    ContentBundle,
    ContentOutline,
    Draft,
    ImagePlanItem,
    IntentProfile,
    normalize_keyword,
    render_markdown,
    sha256_of,
    validate_keyword,
)
from articleforge.content_registry import (
    REGISTRY_FILE,
    ContentRegistry,
    extract_topics,
    related_section,
)
from articleforge.errors import ArticleForgeError, ArtifactStoreError, ValidationError
from articleforge.image_planner import ImageAdapter, ImagePlanner, build_image_adapter
from articleforge.intent_analyzer import analyze_intent, default_profile
from articleforge.llm_client import AnthropicLLMClient, LLMClient, PromptRecorder
from articleforge.providers import Adapter, HttpClient, ProviderCache, build_adapters
from articleforge.seo_evaluator import RefinementResult, SEORefiner
from articleforge.structure_synthesizer import StructureSynthesizer

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("content_pipeline")

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

LOGGER_NAMES = (
    "content_pipeline",
    "artifact_store",
    "providers",
    "llm_client",
    "intent_analyzer",
    "structure_synthesizer",
    "content_enhancer",
    "seo_evaluator",
    "image_planner",
    "content_registry",
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FEATURED_IMAGE_TEMPLATE = "/images/{slug}.jpg"
LATEST_RUN_RECORD = "runs/latest.json"

# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------


def _run_sync(coro: Coroutine) -> Any:
    """Run an async coroutine synchronously, handling nested event loops."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(asyncio.run, coro)
            return future.result()
    else:
        return asyncio.run(coro)


def _calc_duration(started: Optional[str], completed: Optional[str]) -> float:
    """Calculate duration in seconds between two ISO timestamps."""
    try:
        s = datetime.fromisoformat(started)
        e = datetime.fromisoformat(completed)
        return max(0.0, (e - s).total_seconds())
    except (ValueError, TypeError):
        return 0.0


def _truncate(text: str, max_len: int = 200) -> str:
    """Truncate text for logging."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PipelineStage(str, Enum):
    """Ordered stages of the pipeline; each produces the artifact kind of the same name."""
    KW_METRICS = ArtifactKind.KW_METRICS.value
    PAA = ArtifactKind.PAA.value
    SERP = ArtifactKind.SERP.value
    LLM_RESEARCH = ArtifactKind.LLM_RESEARCH.value
    INTENT = ArtifactKind.INTENT.value
    OUTLINE = ArtifactKind.OUTLINE.value
    DRAFT = ArtifactKind.DRAFT.value
    SCORED_DRAFT = ArtifactKind.SCORED_DRAFT.value
    IMAGE_SET = ArtifactKind.IMAGE_SET.value
    BUNDLE = ArtifactKind.BUNDLE.value


STAGE_ORDER: List[PipelineStage] = list(PipelineStage)

# Stages without shared inputs, executed together
CONCURRENT_STAGES: List[PipelineStage] = [
    PipelineStage.KW_METRICS,
    PipelineStage.PAA,
    PipelineStage.SERP,
]

STAGE_DESCRIPTIONS: Dict[PipelineStage, str] = {
    PipelineStage.KW_METRICS: "Keyword volumes and related keywords (kwrds.ai)",
    PipelineStage.PAA: "People-also-ask questions (kwrds.ai)",
    PipelineStage.SERP: "Competitor titles, URLs and word counts",
    PipelineStage.LLM_RESEARCH: "Research notes from the research LLM (Perplexity)",
    PipelineStage.INTENT: "Search intent, journey stage, formats, ideal length",
    PipelineStage.OUTLINE: "Section tree, FAQ, title and meta description",
    PipelineStage.DRAFT: "Body text for every section, FAQ answer and conclusion",
    PipelineStage.SCORED_DRAFT: "Readability + SEO scoring with bounded refinement",
    PipelineStage.IMAGE_SET: "Image plan and generation (main + catalog aspects)",
    PipelineStage.BUNDLE: "Content bundle, markdown file and registry entry",
}


class PipelineStatus(str, Enum):
    """Overall status of a pipeline run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    """Status of an individual stage within a pipeline run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CACHED = "cached"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class StageResult:
    """Result of executing a single pipeline stage."""
    stage: str
    status: str = StageStatus.PENDING.value
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_seconds: float = 0.0
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    remediation: Optional[str] = None
    retries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StageResult:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)


@dataclass
class FailureReport:
    """Single structured report for a failed run."""
    stage: str
    error_kind: str
    message: str
    latest_revisions: Dict[str, int] = field(default_factory=dict)
    remediation: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FailureReport:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        return cls(**{k: v for k, v in data.items() if k in known})

    def summary(self) -> str:
        lines = [
            f"Failed stage: {self.stage}",
            f"Error kind:   {self.error_kind}",
            f"Error:        {_truncate(self.message, 160)}",
        ]
        if self.latest_revisions:
            revs = ", ".join(f"{k}@{v}" for k, v in self.latest_revisions.items())
            lines.append(f"Latest revisions: {revs}")
        for hint in self.remediation:
            lines.append(f"Hint: {hint}")
        return "\n".join(lines)


@dataclass
class PipelineRun:
    """Complete state for a single pipeline execution."""
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    keyword: str = ""
    slug: str = ""
    status: str = PipelineStatus.PENDING.value
    current_stage: Optional[str] = None
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    bundle: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    iteration: int = 0
    warnings: List[str] = field(default_factory=list)
    markdown_path: str = ""
    failure: Optional[Dict[str, Any]] = None

    # Timestamps
    created_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    total_duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PipelineRun:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        if "stages" in filtered and isinstance(filtered["stages"], dict):
            filtered["stages"] = {
                k: v if isinstance(v, dict) else {} for k, v in filtered["stages"].items()
            }
        return cls(**filtered)

    def get_stage_result(self, stage: PipelineStage) -> StageResult:
        """Get or create a StageResult for the given stage."""
        if stage.value in self.stages:
            return StageResult.from_dict(self.stages[stage.value])
        return StageResult(stage=stage.value)

    def set_stage_result(self, result: StageResult) -> None:
        self.stages[result.stage] = result.to_dict()

    @property
    def failure_report(self) -> Optional[FailureReport]:
        return FailureReport.from_dict(self.failure) if self.failure else None


@dataclass
class _RunContext:
    """Per-run state threaded through the stage handlers."""
    run: PipelineRun
    config: PipelineConfig
    keyword: str
    slug: str
    year: int
    adapters: Dict[str, Adapter]
    cache: ProviderCache
    llm: LLMClient
    outline_llm: LLMClient
    image_adapter: ImageAdapter
    recorder: PromptRecorder
    artifacts: Dict[str, Artifact] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


# ---------------------------------------------------------------------------
# Markdown writer
# ---------------------------------------------------------------------------


class MarkdownWriter:
    """Destination for the final article markdown."""

    def write(self, slug: str, markdown: str) -> Path:
        raise NotImplementedError


class FileMarkdownWriter(MarkdownWriter):
    """Writes ``<directory>/<slug>.md``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def write(self, slug: str, markdown: str) -> Path:
        path = self.directory / f"{slug}.md"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(markdown, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot write markdown {path}: {exc}") from exc
        return path


# ---------------------------------------------------------------------------
# ContentPipeline
# ---------------------------------------------------------------------------


class ContentPipeline:
    """
    Keyword-to-article orchestrator.

    Every collaborator is injectable; anything left as None is built from the
    run's ``PipelineConfig``.

    Parameters
    ----------
    config : PipelineConfig, optional
        Base configuration.  Per-run overrides are applied on a copy.
    store : ArtifactStore, optional
    adapters : dict, optional
        Research adapters keyed by artifact kind.
    llm : LLMClient, optional
        Used by the synthesizer, enhancer and refiner.
    image_adapter : ImageAdapter, optional
    synthesizer, enhancer, refiner : optional
        Stage components; tests inject stubs here.
    registry : ContentRegistry, optional
    writer : MarkdownWriter, optional
    http : HttpClient, optional
        Shared HTTP client.  When omitted one is created per run or batch.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        store: Optional[ArtifactStore] = None,
        adapters: Optional[Dict[str, Adapter]] = None,
        llm: Optional[LLMClient] = None,
        image_adapter: Optional[ImageAdapter] = None,
        synthesizer: Optional[StructureSynthesizer] = None,
        enhancer: Optional[ContentEnhancer] = None,
        refiner: Optional[SEORefiner] = None,
        registry: Optional[ContentRegistry] = None,
        writer: Optional[MarkdownWriter] = None,
        http: Optional[HttpClient] = None,
    ) -> None:
        self.config = config or PipelineConfig.from_env()
        mirror = DirectoryMirror(self.config.mirror_dir) if self.config.mirror_dir else None
        self.store = store or ArtifactStore(self.config.store_dir, mirror=mirror)
        self.adapters = adapters
        self.llm = llm
        self.image_adapter = image_adapter
        self.synthesizer = synthesizer
        self.enhancer = enhancer
        self.refiner = refiner
        self.registry = registry or ContentRegistry(self.config.output_path / REGISTRY_FILE)
        self.writer = writer or FileMarkdownWriter(self.config.markdown_dir)
        self.http = http
        self._stage_map: Dict[PipelineStage, Callable[[_RunContext, PipelineStage], Awaitable[StageResult]]] = {
            PipelineStage.KW_METRICS: self._stage_research,
            PipelineStage.PAA: self._stage_research,
            PipelineStage.SERP: self._stage_research,
            PipelineStage.LLM_RESEARCH: self._stage_research,
            PipelineStage.INTENT: self._stage_intent,
            PipelineStage.OUTLINE: self._stage_outline,
            PipelineStage.DRAFT: self._stage_draft,
            PipelineStage.SCORED_DRAFT: self._stage_scored_draft,
            PipelineStage.IMAGE_SET: self._stage_image_set,
            PipelineStage.BUNDLE: self._stage_bundle,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_config(self, config_overrides: Optional[Dict[str, Any]] = None) -> PipelineConfig:
        """Copy of the base config with *config_overrides* applied and validated."""
        overrides = {
            k: v for k, v in (config_overrides or {}).items()
            if k in PipelineConfig.__dataclass_fields__ and v is not None
        }
        config = dataclasses.replace(self.config, **overrides)
        config.validate()
        return config

    def plan_stages(self, config: PipelineConfig) -> List[PipelineStage]:
        """Stages that will run under *config*, in order."""
        stages: List[PipelineStage] = []
        for stage in STAGE_ORDER:
            if stage == PipelineStage.IMAGE_SET and config.skip_image:
                continue
            stages.append(stage)
            if stage == PipelineStage.INTENT and config.intent_only:
                break
        return stages

    async def execute(
        self,
        keyword: str,
        config_overrides: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        """
        Run every planned stage for *keyword*.

        Raises ValidationError for an empty keyword before any stage runs.
        Stage failures do not raise; the returned run has status ``failed``
        and a ``failure`` report.
        """
        keyword = normalize_keyword(keyword)
        validate_keyword(keyword)
        config = self.build_config(config_overrides)

        owns_http = self.http is None
        http = self.http or HttpClient(timeout=config.provider_timeout)
        try:
            return await self._execute(keyword, config, http)
        finally:
            if owns_http:
                await http.close()

    async def execute_batch(
        self,
        keywords: List[str],
        max_concurrent: Optional[int] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
    ) -> List[PipelineRun]:
        """
        Execute pipelines for several keywords concurrently.

        Parameters
        ----------
        keywords : list of str
            Keywords to process.  Empty ones are skipped with a warning.
        max_concurrent : int, optional
            Maximum concurrent pipelines. Defaults to the config value.
        config_overrides : dict, optional
            Override config for all pipelines.
        """
        valid: List[str] = []
        for keyword in keywords:
            try:
                validate_keyword(keyword)
            except ValidationError as exc:
                logger.warning("Skipping keyword: %s", exc)
                continue
            valid.append(normalize_keyword(keyword))

        config = self.build_config(config_overrides)
        semaphore = asyncio.Semaphore(max_concurrent or config.max_concurrent_pipelines)
        owns_http = self.http is None
        http = self.http or HttpClient(timeout=config.provider_timeout)
        results: List[PipelineRun] = []

        async def _run_one(kw: str) -> PipelineRun:
            async with semaphore:
                logger.info("Batch: starting pipeline for '%s'", kw)
                return await self._execute(kw, config, http)

        try:
            completed = await asyncio.gather(*(_run_one(kw) for kw in valid), return_exceptions=True)
        finally:
            if owns_http:
                await http.close()

        for item in completed:
            if isinstance(item, PipelineRun):
                results.append(item)
            elif isinstance(item, Exception):
                logger.error("Batch pipeline failed: %s", item)

        logger.info(
            "Batch complete: %d/%d succeeded",
            sum(1 for r in results if r.status == PipelineStatus.COMPLETED.value),
            len(valid),
        )
        return results

    def get_run(self, keyword: str) -> Optional[PipelineRun]:
        """Latest recorded run for *keyword*."""
        data = self.store.read_record(validate_keyword(keyword), LATEST_RUN_RECORD)
        return PipelineRun.from_dict(data) if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _build_context(self, keyword: str, config: PipelineConfig, http: HttpClient, run: PipelineRun) -> _RunContext:
        if self.llm is not None:
            llm = outline_llm = self.llm
        else:
            llm = AnthropicLLMClient(config.anthropic_api_key, model=config.model_content, timeout=config.llm_timeout)
            outline_llm = AnthropicLLMClient(config.anthropic_api_key, model=config.model_outline, timeout=config.llm_timeout)
        if not llm.is_live():
            logger.warning("ANTHROPIC_API_KEY not set; outline, draft and refinement run deterministically")
        return _RunContext(
            run=run,
            config=config,
            keyword=keyword,
            slug=run.slug,
            year=datetime.now(timezone.utc).year,
            adapters=self.adapters or build_adapters(config, http),
            cache=ProviderCache(self.store, research_dir=config.research_dir, allow_synthetic=config.allow_synthetic),
            llm=llm,
            outline_llm=outline_llm,
            image_adapter=self.image_adapter or build_image_adapter(config, http),
            recorder=PromptRecorder(self.store, run.slug),
        )

    async def _execute(self, keyword: str, config: PipelineConfig, http: HttpClient) -> PipelineRun:
        slug = validate_keyword(keyword)
        planned = self.plan_stages(config)
        run = PipelineRun(
            keyword=keyword,
            slug=slug,
            status=PipelineStatus.RUNNING.value,
            config=config.to_dict(),
            started_at=_now_iso(),
        )
        for stage in STAGE_ORDER:
            status = StageStatus.PENDING if stage in planned else StageStatus.SKIPPED
            run.stages[stage.value] = StageResult(stage=stage.value, status=status.value).to_dict()

        logger.info("Pipeline %s started for '%s' (%d stages)", run.run_id[:8], keyword, len(planned))
        ctx = self._build_context(keyword, config, http, run)

        failed: Optional[StageResult] = None
        fan_out = [s for s in CONCURRENT_STAGES if s in planned]
        if fan_out:
            run.current_stage = ",".join(s.value for s in fan_out)
            results = await asyncio.gather(*(self._execute_single_stage(ctx, s) for s in fan_out))
            for result in results:
                run.set_stage_result(result)
                if failed is None and result.status == StageStatus.FAILED.value:
                    failed = result

        if failed is None:
            for stage in planned:
                if stage in CONCURRENT_STAGES:
                    continue
                run.current_stage = stage.value
                result = await self._execute_single_stage(ctx, stage)
                run.set_stage_result(result)
                if result.status == StageStatus.FAILED.value:
                    failed = result
                    break

        run.current_stage = None
        run.completed_at = _now_iso()
        run.total_duration_seconds = _calc_duration(run.started_at, run.completed_at)
        run.warnings = list(ctx.warnings)

        if failed is not None:
            run.status = PipelineStatus.FAILED.value
            run.failure = self._failure_report(ctx, failed).to_dict()
            logger.error(
                "Pipeline %s FAILED at stage %s: %s", run.run_id[:8], failed.stage, failed.error,
            )
        else:
            run.status = PipelineStatus.COMPLETED.value
            logger.info(
                "Pipeline %s COMPLETED for '%s' in %.1fs (score=%.0f, iteration=%d, warnings=%d)",
                run.run_id[:8], keyword, run.total_duration_seconds, run.score, run.iteration, len(run.warnings),
            )
        self._save_run(run)
        return run

    async def _execute_single_stage(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        """Execute a single stage with timeout and retry logic."""
        handler = self._stage_map.get(stage)
        if not handler:
            return StageResult(
                stage=stage.value,
                status=StageStatus.FAILED.value,
                error=f"No handler registered for stage '{stage.value}'",
                error_kind=ValidationError.kind,
            )

        config = ctx.config
        max_attempts = config.max_retries + 1
        last_error = ""
        last_kind = ""
        remediation = ""
        started_at = _now_iso()

        for attempt in range(1, max_attempts + 1):
            logger.info(
                "Pipeline %s | Stage %s | Attempt %d/%d",
                ctx.run.run_id[:8], stage.value, attempt, max_attempts,
            )
            try:
                result = await asyncio.wait_for(handler(ctx, stage), timeout=config.stage_timeout)
                result.started_at = started_at
                result.completed_at = _now_iso()
                result.duration_seconds = _calc_duration(started_at, result.completed_at)
                result.retries = attempt - 1
                return result
            except asyncio.TimeoutError:
                last_error = f"Stage timed out after {config.stage_timeout:.0f}s"
                last_kind = "timeout"
                remediation = "retry later or raise the stage timeout"
            except ArticleForgeError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_kind = exc.kind
                remediation = exc.remediation
                if not exc.retryable:
                    logger.error(
                        "Pipeline %s | Stage %s | Fatal: %s", ctx.run.run_id[:8], stage.value, last_error,
                    )
                    break
            except Exception as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_kind = "unexpected"
                remediation = ""
            logger.error(
                "Pipeline %s | Stage %s | Attempt %d failed: %s",
                ctx.run.run_id[:8], stage.value, attempt, last_error,
            )

            if attempt < max_attempts:
                backoff = config.backoff_base * 2 ** (attempt - 1)
                logger.info("Retrying in %.1fs...", backoff)
                await asyncio.sleep(backoff)

        completed_at = _now_iso()
        return StageResult(
            stage=stage.value,
            status=StageStatus.FAILED.value,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=_calc_duration(started_at, completed_at),
            error=last_error,
            error_kind=last_kind,
            remediation=remediation or None,
            retries=attempt - 1,
        )

    async def _derive(
        self,
        ctx: _RunContext,
        stage: PipelineStage,
        input_kinds: List[str],
        params: Dict[str, Any],
        produce: Callable[[], Awaitable[Tuple[Any, str, str]]],
    ) -> StageResult:
        """Serve *stage* from the store when its inputs are unchanged, else produce it.

        *produce* returns ``(payload, provider, mode)``.
        """
        kind = stage.value
        refs = [ctx.artifacts[k].ref() for k in input_kinds if k in ctx.artifacts]
        input_hash = sha256_of({"keyword": ctx.keyword, "kind": kind, "inputs": refs, "params": params})
        key = (ctx.slug, kind)

        cached = self.store.get_latest(key)
        if cached is not None and not cached.stale and cached.provenance.input_hash == input_hash:
            logger.info("Stage %s unchanged for '%s' (rev %d)", kind, ctx.keyword, cached.revision)
            ctx.artifacts[kind] = cached
            return StageResult(
                stage=kind,
                status=StageStatus.CACHED.value,
                output={"revision": cached.revision, "cached": True},
            )

        payload, provider, mode = await produce()
        provenance = Provenance(stage=kind, provider=provider, mode=mode, input_hash=input_hash, inputs=refs)
        revision = self.store.put(key, payload, provenance)
        self.store.invalidate_downstream(key)
        artifact = self.store.get(key, revision)
        if artifact is None:
            raise ArtifactStoreError(f"{kind} rev {revision} for {ctx.slug} vanished after write")
        ctx.artifacts[kind] = artifact
        return StageResult(
            stage=kind,
            status=StageStatus.COMPLETED.value,
            output={"revision": revision, "cached": False, "mode": mode},
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _stage_research(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        adapter = ctx.adapters[stage.value]
        key = (ctx.slug, stage.value)
        prior = self.store.get_latest(key)
        artifact = await ctx.cache.resolve(adapter, ctx.keyword, force=ctx.config.force_api)
        ctx.artifacts[stage.value] = artifact

        executed = prior is None or prior.revision != artifact.revision
        if executed:
            self.store.invalidate_downstream(key)
        if artifact.provenance.mode == "synthetic":
            ctx.warn(f"synthetic_data: {stage.value} produced by {adapter.name} synthetic mode")
        return StageResult(
            stage=stage.value,
            status=StageStatus.COMPLETED.value if executed else StageStatus.CACHED.value,
            output={
                "revision": artifact.revision,
                "cached": not executed,
                "mode": artifact.provenance.mode,
            },
        )

    async def _stage_intent(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        skip = ctx.config.skip_intent
        serp_kind = ArtifactKind.SERP.value

        async def produce() -> Tuple[Any, str, str]:
            if skip:
                profile = default_profile(ctx.keyword, year=ctx.year)
                return profile.to_dict(), "default-profile", "derived"
            serp = ctx.artifacts.get(serp_kind)
            profile = analyze_intent(ctx.keyword, serp.payload if serp else None, year=ctx.year)
            return profile.to_dict(), "intent-analyzer", "derived"

        inputs = [] if skip else [serp_kind]
        result = await self._derive(ctx, stage, inputs, {"year": ctx.year, "skip_intent": skip}, produce)
        profile = IntentProfile.from_dict(ctx.artifacts[stage.value].payload)
        result.output.update({
            "primary_intent": profile.primary_intent,
            "formats": profile.content_formats,
            "ideal_word_count": profile.ideal_word_count,
        })
        if skip:
            result.status = StageStatus.SKIPPED.value
            result.output["reason"] = "intent analysis skipped; keyword-only default profile"
        return result

    async def _stage_outline(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        synthesizer = self.synthesizer or StructureSynthesizer(ctx.outline_llm)

        async def produce() -> Tuple[Any, str, str]:
            profile = self._profile(ctx)
            research = self._research(ctx)
            outline = await synthesizer.synthesize(profile, research, recorder=ctx.recorder)
            outline.validate()
            mode = "live" if outline.source == "llm" else "derived"
            return outline.to_dict(), outline.source, mode

        inputs = [ArtifactKind.INTENT.value] + list(RESEARCH_KINDS)
        result = await self._derive(ctx, stage, inputs, {}, produce)
        outline = ContentOutline.from_dict(ctx.artifacts[stage.value].payload)
        result.output.update({"title": outline.title, "sections": len(outline.sections), "faq": len(outline.faq)})
        return result

    async def _stage_draft(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        enhancer = self.enhancer or ContentEnhancer(ctx.llm, max_tokens=ctx.config.max_section_tokens)
        featured_image = FEATURED_IMAGE_TEMPLATE.format(slug=ctx.slug)

        async def produce() -> Tuple[Any, str, str]:
            outline = ContentOutline.from_dict(ctx.artifacts[ArtifactKind.OUTLINE.value].payload)
            draft = await enhancer.enhance(
                outline,
                self._profile(ctx),
                self._research(ctx),
                recorder=ctx.recorder,
                featured_image=featured_image,
            )
            live = getattr(enhancer, "live", False)
            return draft.to_dict(), ctx.llm.name if live else "deterministic", "live" if live else "derived"

        inputs = [ArtifactKind.OUTLINE.value, ArtifactKind.INTENT.value, ArtifactKind.LLM_RESEARCH.value]
        return await self._derive(
            ctx, stage, inputs,
            {"featured_image": featured_image, "max_section_tokens": ctx.config.max_section_tokens},
            produce,
        )

    async def _stage_scored_draft(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        config = ctx.config
        refiner = self.refiner or SEORefiner(ctx.llm, min_score=config.min_score, max_iterations=config.max_iterations)

        async def produce() -> Tuple[Any, str, str]:
            draft = Draft.from_dict(ctx.artifacts[ArtifactKind.DRAFT.value].payload)
            result = await refiner.refine(draft, self._profile(ctx).ideal_word_count, recorder=ctx.recorder)
            mode = "live" if getattr(refiner, "live", False) else "derived"
            return result.to_dict(), "seo-refiner", mode

        inputs = [ArtifactKind.DRAFT.value, ArtifactKind.INTENT.value]
        params = {"min_score": refiner.min_score, "max_iterations": refiner.max_iterations}
        result = await self._derive(ctx, stage, inputs, params, produce)

        scored = RefinementResult.from_dict(ctx.artifacts[stage.value].payload)
        for warning in scored.warnings:
            ctx.warn(warning)
        ctx.run.score = scored.report.composite
        ctx.run.iteration = scored.iteration
        result.output.update({
            "score": scored.report.composite,
            "readability": scored.report.readability,
            "iteration": scored.iteration,
            "score_history": scored.score_history,
        })
        return result

    async def _stage_image_set(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        config = ctx.config
        planner = ImagePlanner(ctx.image_adapter)
        scored = RefinementResult.from_dict(ctx.artifacts[ArtifactKind.SCORED_DRAFT.value].payload)
        count = planner.resolve_count(config.image_count, scored.report.recommended_image_count, config.auto_image)

        async def produce() -> Tuple[Any, str, str]:
            outline = ContentOutline.from_dict(ctx.artifacts[ArtifactKind.OUTLINE.value].payload)
            items = await planner.generate(ctx.keyword, outline, count)
            mode = "live" if ctx.image_adapter.is_live() else "synthetic"
            return planner.payload(ctx.keyword, items), ctx.image_adapter.name, mode

        inputs = [ArtifactKind.OUTLINE.value, ArtifactKind.SCORED_DRAFT.value]
        result = await self._derive(ctx, stage, inputs, {"count": count}, produce)

        items = self._image_items(ctx)
        try:
            planner.write_records(config.images_dir, ctx.slug, ctx.keyword, items)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot write image records for {ctx.slug}: {exc}") from exc
        placeholders = sum(1 for item in items if item.status == "placeholder")
        if placeholders:
            ctx.warn(f"image_placeholder: {placeholders} of {len(items)} image(s) use placeholders")
        result.output.update({"count": len(items), "placeholders": placeholders})
        return result

    async def _stage_bundle(self, ctx: _RunContext, stage: PipelineStage) -> StageResult:
        scored = RefinementResult.from_dict(ctx.artifacts[ArtifactKind.SCORED_DRAFT.value].payload)
        markdown_path = self._markdown_path(ctx)

        async def produce() -> Tuple[Any, str, str]:
            topics = extract_topics(scored.draft)
            bundle = ContentBundle(
                keyword=ctx.keyword,
                slug=ctx.slug,
                outline_ref=ctx.artifacts[ArtifactKind.OUTLINE.value].ref(),
                scored_draft_ref=ctx.artifacts[ArtifactKind.SCORED_DRAFT.value].ref(),
                intent_ref=ctx.artifacts[ArtifactKind.INTENT.value].ref(),
                image_set_ref=(
                    ctx.artifacts[ArtifactKind.IMAGE_SET.value].ref()
                    if ArtifactKind.IMAGE_SET.value in ctx.artifacts else None
                ),
                research_refs={k: ctx.artifacts[k].ref() for k in RESEARCH_KINDS if k in ctx.artifacts},
                iteration=scored.iteration,
                score=scored.report.composite,
                warnings=list(ctx.warnings),
                related_articles=self.registry.related(ctx.keyword, topics),
                markdown_path=str(markdown_path),
            )
            return bundle.to_dict(), "bundler", "derived"

        inputs = [ArtifactKind.INTENT.value, ArtifactKind.OUTLINE.value, ArtifactKind.SCORED_DRAFT.value]
        if ArtifactKind.IMAGE_SET.value in ctx.artifacts:
            inputs.append(ArtifactKind.IMAGE_SET.value)
        inputs.extend(RESEARCH_KINDS)
        result = await self._derive(ctx, stage, inputs, {"warnings": sorted(ctx.warnings)}, produce)
        artifact = ctx.artifacts[stage.value]
        bundle = ContentBundle.from_dict(artifact.payload)

        path = self.writer.write(ctx.slug, self._render(scored.draft, self._image_items(ctx), bundle))
        if result.status == StageStatus.COMPLETED.value:
            self.registry.register(
                ctx.keyword,
                scored.draft.title,
                scored.draft.meta_description,
                extract_topics(scored.draft),
                bundle_revision=artifact.revision,
            )

        ctx.run.bundle = {"revision": artifact.revision, **bundle.to_dict()}
        ctx.run.markdown_path = str(path)
        result.output.update({"markdown_path": str(path), "related": len(bundle.related_articles)})
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _markdown_path(self, ctx: _RunContext) -> Path:
        directory = getattr(self.writer, "directory", ctx.config.markdown_dir)
        return Path(directory) / f"{ctx.slug}.md"

    @staticmethod
    def _profile(ctx: _RunContext) -> IntentProfile:
        return IntentProfile.from_dict(ctx.artifacts[ArtifactKind.INTENT.value].payload)

    @staticmethod
    def _research(ctx: _RunContext) -> Dict[str, Any]:
        return {k: ctx.artifacts[k].payload for k in RESEARCH_KINDS if k in ctx.artifacts}

    @staticmethod
    def _image_items(ctx: _RunContext) -> List[ImagePlanItem]:
        artifact = ctx.artifacts.get(ArtifactKind.IMAGE_SET.value)
        if artifact is None:
            return []
        return [ImagePlanItem.from_dict(i) for i in artifact.payload.get("images") or []]

    @staticmethod
    def _render(draft: Draft, images: List[ImagePlanItem], bundle: ContentBundle) -> str:
        draft = draft.copy()
        if images and images[0].target_url:
            draft.featured_image = images[0].target_url
        markdown = render_markdown(draft)
        related = related_section(bundle.related_articles)
        if related:
            markdown = f"{markdown}\n{related}"
        return markdown

    def _failure_report(self, ctx: _RunContext, failed: StageResult) -> FailureReport:
        hints: List[str] = []
        if failed.remediation:
            hints.append(failed.remediation)
        adapter = ctx.adapters.get(failed.stage)
        if adapter is not None and not adapter.is_live():
            hints.append(f"set credential {adapter.credential_env}")
        try:
            revisions = self.store.list_kinds(ctx.slug)
        except ArtifactStoreError as exc:
            logger.warning("Cannot list revisions for %s: %s", ctx.slug, exc)
            revisions = {}
        return FailureReport(
            stage=failed.stage,
            error_kind=failed.error_kind or "unknown",
            message=failed.error or "",
            latest_revisions=revisions,
            remediation=hints,
        )

    def _save_run(self, run: PipelineRun) -> None:
        try:
            self.store.write_record(run.slug, f"runs/{run.run_id}.json", run.to_dict())
            self.store.write_record(run.slug, LATEST_RUN_RECORD, run.to_dict())
        except ArtifactStoreError as exc:
            logger.error("Cannot save run %s: %s", run.run_id[:8], exc)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _format_run_summary(run: PipelineRun) -> str:
    """Format a pipeline run for CLI display."""
    lines = [
        f"Run ID:    {run.run_id}",
        f"Keyword:   {run.keyword}",
        f"Slug:      {run.slug}",
        f"Status:    {run.status.upper()}",
        f"Created:   {run.created_at}",
    ]
    if run.completed_at:
        lines.append(f"Completed: {run.completed_at}")
    if run.total_duration_seconds > 0:
        lines.append(f"Duration:  {run.total_duration_seconds:.1f}s")
    if run.score:
        lines.append(f"SEO:       {run.score:.0f}/100 (iteration {run.iteration})")
    if run.markdown_path:
        lines.append(f"Markdown:  {run.markdown_path}")

    lines.append("")
    lines.append("Stages:")
    for stage in STAGE_ORDER:
        data = run.stages.get(stage.value, {})
        status = data.get("status", "pending")
        duration = data.get("duration_seconds", 0)
        error = data.get("error", "")
        revision = (data.get("output") or {}).get("revision")
        icon = {
            "completed": "[OK]",
            "cached": "[CACHE]",
            "failed": "[FAIL]",
            "skipped": "[SKIP]",
            "running": "[...]",
            "pending": "[  ]",
        }.get(status, "[??]")
        line = f"  {icon:<7s} {stage.value:<15s}"
        if revision:
            line += f" rev {revision}"
        if duration > 0:
            line += f" ({duration:.1f}s)"
        if error:
            line += f" -- {_truncate(error, 80)}"
        lines.append(line)

    if run.warnings:
        lines.append("")
        lines.append("Warnings:")
        for warning in run.warnings:
            lines.append(f"  - {_truncate(warning, 120)}")

    report = run.failure_report
    if report:
        lines.append("")
        lines.append(report.summary())
    return "\n".join(lines)


def _add_run_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--force-api", action="store_true", help="Bypass the cache for research providers")
    parser.add_argument("--skip-image", action="store_true", help="Skip image generation")
    parser.add_argument("--skip-intent", action="store_true", help="Use the keyword-only default intent profile")
    parser.add_argument("--intent-only", action="store_true", help="Stop after intent analysis")
    parser.add_argument("--min-score", type=float, default=None, help="Minimum SEO score, 1-100 (default 85)")
    parser.add_argument("--max-iterations", type=int, default=None, help="Refinement iterations (default 3)")
    images = parser.add_mutually_exclusive_group()
    images.add_argument("--image-count", type=int, default=None, help="Number of images, 1-10")
    images.add_argument("--no-auto-image", action="store_true", help="Ignore the SEO image recommendation")
    parser.add_argument("--output-dir", default=None, help="Output directory (default ./output)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "force_api": args.force_api,
        "skip_image": args.skip_image,
        "skip_intent": args.skip_intent,
        "intent_only": args.intent_only,
        "min_score": args.min_score,
        "max_iterations": args.max_iterations,
        "image_count": args.image_count,
    }
    if args.no_auto_image:
        overrides["auto_image"] = False
    return overrides


def _read_keywords(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as fh:
        return [
            line.strip() for line in fh
            if line.strip() and not line.strip().startswith("#")
        ]


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the article pipeline."""
    parser = argparse.ArgumentParser(
        prog="articleforge",
        description="Keyword-to-article content pipeline",
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline commands")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Execute the pipeline for one keyword")
    p_run.add_argument("keyword", help="Target keyword")
    _add_run_flags(p_run)

    # --- batch ---
    p_batch = subparsers.add_parser("batch", help="Execute pipelines for keywords listed in a file")
    p_batch.add_argument("file", help="File with one keyword per line")
    p_batch.add_argument("--max-concurrent", type=int, default=None, help="Max concurrent pipelines")
    _add_run_flags(p_batch)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show the latest run and artifact revisions for a keyword")
    p_status.add_argument("keyword", help="Target keyword")
    p_status.add_argument("--output-dir", default=None, help="Output directory (default ./output)")

    # --- stages ---
    subparsers.add_parser("stages", help="List all pipeline stages")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if getattr(args, "verbose", False):
        for name in LOGGER_NAMES:
            logging.getLogger(name).setLevel(logging.DEBUG)

    load_dotenv()

    # ---- stages ----
    if args.command == "stages":
        print(f"Content Pipeline Stages ({len(STAGE_ORDER)} total):")
        print("=" * 60)
        for i, stage in enumerate(STAGE_ORDER, 1):
            print(f"  {i:>2}. {stage.value:<15s} -- {STAGE_DESCRIPTIONS.get(stage, '')}")
        return

    try:
        config = PipelineConfig.from_env(output_dir=args.output_dir)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    pipeline = ContentPipeline(config)

    # ---- run ----
    if args.command == "run":
        try:
            run = _run_sync(pipeline.execute(args.keyword, config_overrides=_overrides_from_args(args)))
        except (ValidationError, ValueError) as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        print(_format_run_summary(run))
        sys.exit(0 if run.status == PipelineStatus.COMPLETED.value else 1)

    # ---- batch ----
    elif args.command == "batch":
        try:
            keywords = _read_keywords(args.file)
            runs = _run_sync(pipeline.execute_batch(
                keywords,
                max_concurrent=args.max_concurrent,
                config_overrides=_overrides_from_args(args),
            ))
        except (OSError, ValueError) as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        print(f"\nBatch complete: {len(runs)} pipelines executed\n")
        for r in runs:
            status_icon = "[OK]" if r.status == PipelineStatus.COMPLETED.value else "[FAIL]"
            print(f"  {status_icon:<6s} {_truncate(r.keyword, 40):<42s} score={r.score:.0f} {r.run_id[:8]}")
        ok = len(runs) == len(keywords) and all(r.status == PipelineStatus.COMPLETED.value for r in runs)
        sys.exit(0 if ok else 1)

    # ---- status ----
    elif args.command == "status":
        try:
            run = pipeline.get_run(args.keyword)
            revisions = pipeline.store.list_kinds(validate_keyword(args.keyword))
        except (ValidationError, ArtifactStoreError) as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        if not run and not revisions:
            print(f"No runs or artifacts found for '{args.keyword}'.")
            sys.exit(1)
        if run:
            print(_format_run_summary(run))
            print("")
        print("Artifacts:")
        for stage in STAGE_ORDER:
            rev = revisions.get(stage.value)
            print(f"  {stage.value:<15s} {('rev ' + str(rev)) if rev else '-'}")


if __name__ == "__main__":
    main()
