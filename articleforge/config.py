"""
Pipeline Configuration
======================

Runtime knobs for the article pipeline: quality thresholds, retry and timeout
budgets, feature toggles, output locations and provider credentials.

Credentials are read from fixed environment variable names.  A missing
credential never fails the pipeline; the matching provider is downgraded to
synthetic mode with a warning.

Usage:
    from articleforge.config import PipelineConfig

    config = PipelineConfig.from_env(min_score=90, skip_image=True)
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_DIR = Path.cwd()
DEFAULT_OUTPUT_DIR = BASE_DIR / "output"

# Anthropic model identifiers
MODEL_SONNET = "claude-sonnet-4-20250514"

# Credential environment variables
ENV_KWRDS_API_KEY = "KWRDS_API_KEY"
ENV_PERPLEXITY_API_KEY = "PERPLEXITY_API_KEY"
ENV_ANTHROPIC_API_KEY = "ANTHROPIC_API_KEY"
ENV_IMAGE_SERVICE_URL = "IMAGE_SERVICE_URL"
ENV_SERP_ENDPOINT = "SERP_ENDPOINT"
ENV_OUTPUT_DIR = "ARTICLEFORGE_OUTPUT_DIR"
ENV_MIRROR_DIR = "ARTICLEFORGE_MIRROR_DIR"

# Bounds
MIN_SCORE_RANGE = (1, 100)
MAX_IMAGE_COUNT = 10
DEFAULT_IMAGE_COUNT = 5

# SERP endpoint names accepted by the providers module
SERP_ENDPOINT_NAMES = ("kwrds", "serp-api")


@dataclass
class PipelineConfig:
    """Configuration parameters for a pipeline execution."""

    # Quality thresholds
    min_score: float = 85.0
    max_iterations: int = 3

    # Retry behavior
    max_retries: int = 2
    backoff_base: float = 1.0

    # Timeouts (seconds)
    provider_timeout: float = 30.0
    llm_timeout: float = 60.0
    stage_timeout: float = 600.0

    # Minimum seconds between successive live calls per provider
    rate_interval: float = 1.0

    # Feature toggles
    force_api: bool = False
    skip_image: bool = False
    skip_intent: bool = False
    intent_only: bool = False
    auto_image: bool = True
    image_count: Optional[int] = None
    allow_synthetic: bool = True

    # Output locations
    output_dir: str = str(DEFAULT_OUTPUT_DIR)
    mirror_dir: Optional[str] = None

    # Providers
    serp_endpoint: str = "kwrds"
    kwrds_api_key: str = field(default="", repr=False)
    perplexity_api_key: str = field(default="", repr=False)
    anthropic_api_key: str = field(default="", repr=False)
    image_service_url: str = ""

    # Model selection
    model_content: str = MODEL_SONNET
    model_outline: str = MODEL_SONNET
    max_section_tokens: int = 1200

    # Batch
    max_concurrent_pipelines: int = 2

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for secret in ("kwrds_api_key", "perplexity_api_key", "anthropic_api_key"):
            data[secret] = "***" if data[secret] else ""
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PipelineConfig:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)

    @classmethod
    def from_env(cls, **overrides: Any) -> PipelineConfig:
        """Build a config from environment variables, then apply *overrides*."""
        config = cls(
            output_dir=os.environ.get(ENV_OUTPUT_DIR, str(DEFAULT_OUTPUT_DIR)),
            mirror_dir=os.environ.get(ENV_MIRROR_DIR) or None,
            serp_endpoint=os.environ.get(ENV_SERP_ENDPOINT, "kwrds"),
            kwrds_api_key=os.environ.get(ENV_KWRDS_API_KEY, ""),
            perplexity_api_key=os.environ.get(ENV_PERPLEXITY_API_KEY, ""),
            anthropic_api_key=os.environ.get(ENV_ANTHROPIC_API_KEY, ""),
            image_service_url=os.environ.get(ENV_IMAGE_SERVICE_URL, ""),
        )
        for key, value in overrides.items():
            if hasattr(config, key) and value is not None:
                setattr(config, key, value)
        config.validate()
        return config

    def validate(self) -> None:
        """Clamp and check ranges, raising ValueError on nonsense values."""
        lo, hi = MIN_SCORE_RANGE
        if not lo <= self.min_score <= hi:
            raise ValueError(f"min_score must be within {lo}-{hi}, got {self.min_score}")
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        if self.serp_endpoint not in SERP_ENDPOINT_NAMES:
            raise ValueError(
                f"Unknown SERP endpoint '{self.serp_endpoint}'. Must be one of: {sorted(SERP_ENDPOINT_NAMES)}"
            )
        if self.image_count is not None:
            if self.image_count < 1:
                raise ValueError("image_count must be >= 1")
            self.image_count = min(self.image_count, MAX_IMAGE_COUNT)

    # -- Derived paths -------------------------------------------------------

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    @property
    def store_dir(self) -> Path:
        return self.output_path / "store"

    @property
    def research_dir(self) -> Path:
        return self.output_path / "research"

    @property
    def markdown_dir(self) -> Path:
        return self.output_path / "markdown"

    @property
    def images_dir(self) -> Path:
        return self.output_path / "images"
