"""
Image Planner
=============

Derives an image set from the outline: ``main`` is always slot 0, further
slots are drawn from the aspect catalog by a shuffle seeded from the slug, so
the same keyword always gets the same plan.  Every slot is requested from the
image adapter concurrently; a failed slot gets a stable placeholder URL
instead of failing the pipeline.

Image service contract:
    POST {IMAGE_SERVICE_URL}/api/generate
    {"appraiser": {"id", "name", "specialty", "experience"}, "customPrompt": "..."}
    -> {"success": true, "data": {"imageUrl": "...", "prompt": "..."}}

Without a service URL the synthetic adapter returns deterministic
picsum.photos URLs.

Usage:
    from articleforge.image_planner import ImagePlanner, build_image_adapter

    planner = ImagePlanner(build_image_adapter(config, http))
    items = await planner.generate("antique lamps", outline, count=5)
    planner.write_records(config.images_dir, "antique-lamps", "antique lamps", items)
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from articleforge.artifact_store import _now_iso, _save_json
from articleforge.config import DEFAULT_IMAGE_COUNT, MAX_IMAGE_COUNT, PipelineConfig
from articleforge.content_model import ContentOutline, ImagePlanItem, slugify
from articleforge.errors import ArticleForgeError, ProviderSchemaError
from articleforge.providers import HttpClient, _seed_for

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("image_planner")

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
# Catalog
# ---------------------------------------------------------------------------

MAIN_ASPECT = "main"

IMAGE_CATALOG: Dict[str, str] = {
    "main": "a featured header image representing the whole topic",
    "practical": "the topic being used or applied in a real setting",
    "conceptual": "an abstract illustration of the core idea",
    "instructional": "a step in a process, shown clearly",
    "comparative": "two or more options side by side",
    "technical": "a close-up showing detail and construction",
    "emotional": "people enjoying or caring about the topic",
    "historical": "the topic in an earlier era",
    "futuristic": "where the topic is heading in the future",
    "statistical": "a clean chart-like visual of key numbers",
}

ASPECTS: List[str] = list(IMAGE_CATALOG)

PLACEHOLDER_BASE = "https://via.placeholder.com/800x450"
SYNTHETIC_BASE = "https://picsum.photos/seed"

IMAGE_SERVICE_PATH = "/api/generate"
IMAGE_EXPERIENCE = "SEO content"


def placeholder_url(aspect: str) -> str:
    """Stable placeholder for a slot whose generation failed."""
    return f"{PLACEHOLDER_BASE}?text={quote_plus(aspect.title() + ' Image')}"


def select_aspects(slug: str, count: int) -> List[str]:
    """``main`` followed by ``count - 1`` aspects in a slug-seeded order."""
    count = max(1, min(count, len(ASPECTS)))
    others = [a for a in ASPECTS if a != MAIN_ASPECT]
    random.Random(_seed_for(slug)).shuffle(others)
    return [MAIN_ASPECT] + others[: count - 1]


def build_prompt(keyword: str, aspect: str, outline: Optional[ContentOutline] = None) -> str:
    title = outline.title if outline else keyword
    description = outline.meta_description if outline else ""
    headings = [s.heading for s in outline.sections] if outline else []
    lines = [
        f"Create a professional, high-quality image representing the concept of \"{keyword}\".",
        f"This image will be used in an SEO blog post with the title \"{title}\".",
        f"Show {IMAGE_CATALOG.get(aspect, aspect)}.",
    ]
    if description:
        lines.append(f"The article is about: {description}")
    if headings:
        lines.append(f"Key topics covered include: {', '.join(headings)}")
    lines.extend([
        "",
        "The image should be:",
        "- Visually appealing and professional",
        "- Relevant to the topic",
        "- In landscape orientation (16:9 ratio)",
        "- Clean, modern aesthetic with good lighting",
        "",
        "Avoid text overlays or watermarks in the image.",
    ])
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class ImageAdapter:
    """Interface for image generators."""

    name = "image"

    def is_live(self) -> bool:
        raise NotImplementedError

    async def generate(self, slug: str, keyword: str, prompt: str, description: str = "") -> Dict[str, Any]:
        """Return ``{"imageUrl": ..., "prompt": ...}`` for one image."""
        raise NotImplementedError


class ImageServiceAdapter(ImageAdapter):
    """HTTP image generation service."""

    name = "image-service"

    def __init__(self, base_url: str, http: HttpClient, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.timeout = timeout

    def is_live(self) -> bool:
        return bool(self.base_url)

    async def generate(self, slug: str, keyword: str, prompt: str, description: str = "") -> Dict[str, Any]:
        data = await self.http.request_json(
            "POST",
            f"{self.base_url}{IMAGE_SERVICE_PATH}",
            headers={"Content-Type": "application/json"},
            json_body={
                "appraiser": {
                    "id": slug,
                    "name": keyword,
                    "specialty": description or keyword,
                    "experience": IMAGE_EXPERIENCE,
                },
                "customPrompt": prompt,
            },
            timeout=self.timeout,
        )
        if not isinstance(data, dict) or not data.get("success"):
            raise ProviderSchemaError(f"Image service did not report success for '{keyword}'")
        body = data.get("data") or {}
        if not body.get("imageUrl"):
            raise ProviderSchemaError(f"Image service response for '{keyword}' has no imageUrl")
        return {"imageUrl": body["imageUrl"], "prompt": body.get("prompt") or prompt}


class SyntheticImageAdapter(ImageAdapter):
    """Deterministic stock-photo URLs used when no service is configured."""

    name = "synthetic"

    def is_live(self) -> bool:
        return False

    async def generate(self, slug: str, keyword: str, prompt: str, description: str = "") -> Dict[str, Any]:
        image_id = _seed_for(slug) % 1000
        return {"imageUrl": f"{SYNTHETIC_BASE}/{slug}{image_id}/800/450", "prompt": prompt}


def build_image_adapter(config: PipelineConfig, http: HttpClient) -> ImageAdapter:
    if config.image_service_url:
        return ImageServiceAdapter(config.image_service_url, http, timeout=config.provider_timeout)
    logger.warning("%s not set; using synthetic images", "IMAGE_SERVICE_URL")
    return SyntheticImageAdapter()


# ---------------------------------------------------------------------------
# ImagePlanner
# ---------------------------------------------------------------------------


class ImagePlanner:
    """
    Plan and request the image set for one article.

    Parameters
    ----------
    adapter : ImageAdapter, optional
        Defaults to the synthetic adapter.
    max_images : int
        Hard cap on the number of slots. Default 10.
    """

    def __init__(self, adapter: Optional[ImageAdapter] = None, max_images: int = MAX_IMAGE_COUNT):
        self.adapter = adapter or SyntheticImageAdapter()
        self.max_images = max_images

    def resolve_count(
        self,
        explicit: Optional[int] = None,
        recommended: Optional[int] = None,
        auto: bool = True,
    ) -> int:
        """Explicit count, else the SEO recommendation when auto, else the default."""
        if explicit:
            count = explicit
        elif auto and recommended:
            count = recommended
        else:
            count = DEFAULT_IMAGE_COUNT
        return max(1, min(count, self.max_images))

    def plan(self, keyword: str, outline: Optional[ContentOutline], count: int) -> List[ImagePlanItem]:
        slug = slugify(keyword)
        return [
            ImagePlanItem(
                slot=slot,
                aspect=aspect,
                prompt=build_prompt(keyword, aspect, outline),
                alt=f"{keyword} - {aspect}" if aspect != MAIN_ASPECT else keyword,
            )
            for slot, aspect in enumerate(select_aspects(slug, min(count, self.max_images)))
        ]

    async def generate(
        self,
        keyword: str,
        outline: Optional[ContentOutline],
        count: int,
    ) -> List[ImagePlanItem]:
        """Plan *count* slots and request them concurrently, preserving slot order."""
        items = self.plan(keyword, outline, count)
        slug = slugify(keyword)
        description = outline.meta_description if outline else ""
        logger.info("Requesting %d image(s) for '%s' via %s", len(items), keyword, self.adapter.name)
        await asyncio.gather(*(self._fill(item, slug, keyword, description) for item in items))
        return items

    async def _fill(self, item: ImagePlanItem, slug: str, keyword: str, description: str) -> None:
        slot_slug = slug if item.slot == 0 else f"{slug}-{item.aspect}"
        try:
            result = await self.adapter.generate(slot_slug, keyword, item.prompt, description)
            item.target_url = result["imageUrl"]
            item.status = "generated" if self.adapter.is_live() else "synthetic"
            item.source = self.adapter.name
        except ArticleForgeError as exc:
            logger.warning("Image slot %d (%s) failed: %s; using placeholder", item.slot, item.aspect, exc)
            item.target_url = placeholder_url(item.aspect)
            item.status = "placeholder"
            item.source = "placeholder"

    @staticmethod
    def payload(keyword: str, items: List[ImagePlanItem]) -> Dict[str, Any]:
        return {
            "keyword": keyword,
            "slug": slugify(keyword),
            "count": len(items),
            "images": [item.to_dict() for item in items],
        }

    @staticmethod
    def write_records(images_dir: Path, slug: str, keyword: str, items: List[ImagePlanItem]) -> List[Path]:
        """Write the image-set JSON and the single-image record for slot 0."""
        images_dir = Path(images_dir)
        set_path = images_dir / f"{slug}-images.json"
        single_path = images_dir / f"{slug}-image.json"
        _save_json(set_path, {**ImagePlanner.payload(keyword, items), "timestamp": _now_iso()})
        if items:
            main = items[0]
            _save_json(single_path, {
                "keyword": keyword,
                "slug": slug,
                "imageUrl": main.target_url,
                "prompt": main.prompt,
                "timestamp": _now_iso(),
                "source": main.source,
            })
        return [set_path, single_path]
