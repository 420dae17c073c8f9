"""
Content Registry
================

Append-only record of every article the pipeline has bundled.  Entries are
never rewritten; a re-run of a keyword appends a newer entry and readers use
the latest entry per slug.  Related articles are resolved lazily when a bundle
is emitted, by topic and phrase overlap against the other registered slugs, so
registering an article never has to touch the bundles of older ones.

Scoring (no AI calls):
    relevance = 0.7 * jaccard(topics) + 0.3 * phrase_match

Usage:
    from articleforge.content_registry import ContentRegistry

    registry = ContentRegistry(config.output_path / "content-registry.json")
    related = registry.related("antique lamps", topics)
    registry.register("antique lamps", title, description, topics, bundle_revision=3)
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Sequence, Set

from articleforge.artifact_store import _now_iso, _save_json
from articleforge.content_model import Draft, slugify
from articleforge.errors import ArtifactStoreError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("content_registry")

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
# Constants
# ---------------------------------------------------------------------------

REGISTRY_FILE = "content-registry.json"
TOPIC_WEIGHT = 0.7
PHRASE_WEIGHT = 0.3
RELEVANCE_THRESHOLD = 0.2
MAX_RELATED = 5
MAX_TOPICS = 25

STOPWORDS: Set[str] = {
    "a", "about", "an", "and", "are", "as", "at", "be", "by", "can", "do",
    "for", "from", "guide", "how", "in", "is", "it", "its", "of", "on", "or",
    "the", "this", "to", "what", "when", "where", "which", "why", "with",
    "you", "your", "complete", "everything", "need", "know",
}


def _tokens(text: str) -> List[str]:
    return re.sub(r"[^a-z0-9\s\-]", " ", (text or "").lower()).split()


def extract_topics(draft: Draft) -> List[str]:
    """Topic terms for a draft: keyword, keywords, categories, then title words."""
    seen: Set[str] = set()
    topics: List[str] = []

    def _add(terms: Sequence[str]) -> None:
        for term in terms:
            term = term.lower().strip()
            if term and term not in seen and term not in STOPWORDS and len(term) > 2:
                seen.add(term)
                topics.append(term)

    _add([draft.keyword])
    _add(_tokens(draft.keyword))
    _add(list(draft.keywords))
    _add(list(draft.categories))
    _add(_tokens(draft.title))
    return topics[:MAX_TOPICS]


def _jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    set_a, set_b = {x.lower() for x in a}, {x.lower() for x in b}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def _phrase_match(phrases: Sequence[str], others: Sequence[str]) -> List[str]:
    """Phrases from *phrases* that occur in any of *others* (or vice versa)."""
    matched = []
    lowered = [o.lower() for o in others]
    for phrase in phrases:
        p = phrase.lower()
        if len(p) > 3 and any(p in o or o in p for o in lowered if len(o) > 3):
            matched.append(phrase)
    return matched


class ContentRegistry:
    """Append-only JSON registry of bundled articles."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def entries(self) -> List[Dict[str, Any]]:
        """Every entry ever appended, oldest first."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ArtifactStoreError(f"Cannot read content registry {self.path}: {exc}") from exc
        return data if isinstance(data, list) else []

    def latest(self) -> Dict[str, Dict[str, Any]]:
        """Latest entry per slug."""
        current: Dict[str, Dict[str, Any]] = {}
        for entry in self.entries():
            if isinstance(entry, dict) and entry.get("slug"):
                current[entry["slug"]] = entry
        return current

    def register(
        self,
        keyword: str,
        title: str,
        description: str,
        topics: List[str],
        bundle_revision: int,
    ) -> Dict[str, Any]:
        entry = {
            "keyword": keyword,
            "slug": slugify(keyword),
            "title": title,
            "description": description,
            "topics": list(topics),
            "bundle_revision": bundle_revision,
            "registered_at": _now_iso(),
        }
        with self._lock:
            entries = self.entries()
            entries.append(entry)
            try:
                _save_json(self.path, entries)
            except OSError as exc:
                raise ArtifactStoreError(f"Cannot write content registry {self.path}: {exc}") from exc
        logger.info("Registered '%s' (bundle rev %d)", keyword, bundle_revision)
        return entry

    def related(self, keyword: str, topics: List[str], limit: int = MAX_RELATED) -> List[Dict[str, Any]]:
        """Other registered articles ranked by relevance to *topics*."""
        slug = slugify(keyword)
        phrases = [keyword] + list(topics)
        scored = []
        for other_slug, entry in self.latest().items():
            if other_slug == slug:
                continue
            other_topics = entry.get("topics") or []
            matched = _phrase_match(phrases, [entry.get("keyword", "")] + list(other_topics))
            phrase_score = len(matched) / len(phrases) if phrases else 0.0
            relevance = TOPIC_WEIGHT * _jaccard(topics, other_topics) + PHRASE_WEIGHT * phrase_score
            if relevance > RELEVANCE_THRESHOLD:
                scored.append({
                    "keyword": entry.get("keyword", ""),
                    "slug": other_slug,
                    "title": entry.get("title", ""),
                    "relevance": round(relevance, 3),
                    "matched_phrases": matched,
                })
        scored.sort(key=lambda r: (-r["relevance"], r["slug"]))
        return scored[:limit]


def related_section(related: List[Dict[str, Any]]) -> str:
    """Markdown "Related Articles" block, empty when there is nothing to link."""
    if not related:
        return ""
    lines = ["## Related Articles", ""]
    for item in related:
        lines.append(f"- [{item['title'] or item['keyword']}](/{item['slug']}/)")
    return "\n".join(lines) + "\n"
