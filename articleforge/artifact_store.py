"""
Artifact Store
==============

Content-addressed key/value layer over a local directory with an optional
write-through mirror.  Every stage output is an immutable artifact keyed by
``(keyword_slug, artifact_kind)`` plus a monotonically increasing revision.

Storage layout:
    <root>/<slug>/<kind>.<revision>.json   -- one file per artifact revision
    <root>/<slug>/index.json               -- latest revisions, hashes, stale flags
    <root>/<slug>/prompts/<date>/...       -- auxiliary records (LLM prompts)

Guarantees:
    * ``put`` is atomic (write .tmp, then os.replace) and never reuses a
      revision number, even if the index was lost or a file was corrupted.
    * ``get_latest`` returns the highest revision whose hash chain is intact:
      its payload still hashes to the recorded value and every input it was
      derived from still exists with the same payload hash.
    * ``invalidate_downstream`` marks dependants stale; nothing is deleted.
    * ``index.json`` updates are serialized by a per-slug lock.

Usage:
    from articleforge.artifact_store import ArtifactStore, Provenance

    store = ArtifactStore("output/store")
    rev = store.put(("my-slug", "serp"), payload, Provenance(stage="serp"))
    artifact = store.get_latest(("my-slug", "serp"))
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

try:
    import fcntl
except ImportError:  # Windows has no flock; the in-process lock still applies
    fcntl = None  # type: ignore[assignment]

from articleforge.content_model import ARTIFACT_KINDS, sha256_of
from articleforge.errors import ArtifactStoreError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("artifact_store")

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

INDEX_FILE = "index.json"
LOCK_FILE = ".lock"

ArtifactKey = Tuple[str, str]


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _save_json(path: Path, data: Any) -> None:
    """Atomic JSON write: write to .tmp then os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str, ensure_ascii=False)
    os.replace(tmp_path, path)


def _parse_revision(path: Path, kind: str) -> Optional[int]:
    """Extract the revision from ``<kind>.<rev>.json``."""
    name = path.name
    prefix = kind + "."
    if not (name.startswith(prefix) and name.endswith(".json")):
        return None
    middle = name[len(prefix):-len(".json")]
    return int(middle) if middle.isdigit() else None


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class Provenance:
    """Who produced an artifact and from what."""
    stage: str
    provider: str = ""
    mode: str = "derived"          # live | synthetic | derived
    input_hash: str = ""
    inputs: List[Dict[str, Any]] = field(default_factory=list)
    payload_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Provenance:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)


@dataclass
class Artifact:
    """An immutable, provenance-tagged stage output."""
    kind: str
    keyword_slug: str
    revision: int
    created_at: str
    payload: Any
    provenance: Provenance
    stale: bool = False

    @property
    def key(self) -> ArtifactKey:
        return (self.keyword_slug, self.kind)

    @property
    def payload_hash(self) -> str:
        return self.provenance.payload_hash

    def ref(self) -> Dict[str, Any]:
        """Reference recorded in downstream provenance."""
        return {"kind": self.kind, "revision": self.revision, "payload_hash": self.payload_hash}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "keyword_slug": self.keyword_slug,
            "revision": self.revision,
            "created_at": self.created_at,
            "payload": self.payload,
            "provenance": self.provenance.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], stale: bool = False) -> Artifact:
        return cls(
            kind=data["kind"],
            keyword_slug=data["keyword_slug"],
            revision=int(data["revision"]),
            created_at=data.get("created_at", ""),
            payload=data.get("payload"),
            provenance=Provenance.from_dict(data.get("provenance") or {}),
            stale=stale,
        )


# ---------------------------------------------------------------------------
# Remote mirror
# ---------------------------------------------------------------------------


class RemoteMirror:
    """Write-through mirror interface.  Paths are relative to the store root."""

    name = "mirror"

    def upload(self, relpath: str, text: str) -> None:
        raise NotImplementedError

    def download(self, relpath: str) -> Optional[str]:
        raise NotImplementedError


class DirectoryMirror(RemoteMirror):
    """Mirror backed by a second directory (a mounted bucket or network share)."""

    name = "directory"

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def upload(self, relpath: str, text: str) -> None:
        target = self.root / relpath
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, target)

    def download(self, relpath: str) -> Optional[str]:
        target = self.root / relpath
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# ArtifactStore
# ---------------------------------------------------------------------------


class ArtifactStore:
    """
    Local artifact store with per-slug locking and an optional mirror.

    Parameters
    ----------
    root : str or Path
        Directory holding one sub-directory per keyword slug.
    mirror : RemoteMirror, optional
        Write-through mirror consulted when a local read misses.
    """

    def __init__(self, root: Union[str, Path], mirror: Optional[RemoteMirror] = None):
        self.root = Path(root)
        self.mirror = mirror
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot create store root {self.root}: {exc}") from exc

    # -- Paths & locking -----------------------------------------------------

    def slug_dir(self, slug: str) -> Path:
        return self.root / slug

    def _artifact_path(self, slug: str, kind: str, revision: int) -> Path:
        return self.slug_dir(slug) / f"{kind}.{revision}.json"

    def _index_path(self, slug: str) -> Path:
        return self.slug_dir(slug) / INDEX_FILE

    @contextmanager
    def _slug_lock(self, slug: str) -> Iterator[None]:
        """Serialize index updates for *slug* within and across processes."""
        with self._locks_guard:
            lock = self._locks.setdefault(slug, threading.RLock())
        with lock:
            if fcntl is None:
                yield
                return
            lock_path = self.slug_dir(slug) / LOCK_FILE
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(lock_path, "a+") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    # -- Index ---------------------------------------------------------------

    def _load_index(self, slug: str) -> Dict[str, Any]:
        path = self._index_path(slug)
        if not path.exists() and self.mirror is not None:
            text = self.mirror.download(f"{slug}/{INDEX_FILE}")
            if text:
                logger.info("Restored index for %s from %s mirror", slug, self.mirror.name)
                try:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text(text, encoding="utf-8")
                except OSError as exc:
                    raise ArtifactStoreError(f"Cannot restore index for {slug}: {exc}") from exc
        try:
            with open(path, "r", encoding="utf-8") as fh:
                index = json.load(fh)
        except FileNotFoundError:
            return {"slug": slug, "kinds": {}}
        except json.JSONDecodeError:
            logger.warning("Index for %s is corrupt; rebuilding from artifact files", slug)
            return self._rebuild_index(slug)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot read index for {slug}: {exc}") from exc
        index.setdefault("kinds", {})
        return index

    def _rebuild_index(self, slug: str) -> Dict[str, Any]:
        index: Dict[str, Any] = {"slug": slug, "kinds": {}}
        for kind in ARTIFACT_KINDS:
            for rev in self._disk_revisions(slug, kind):
                artifact = self._read_local(slug, kind, rev)
                if artifact is None:
                    continue
                self._record(index, artifact)
        return index

    def _save_index(self, slug: str, index: Dict[str, Any]) -> None:
        path = self._index_path(slug)
        _save_json(path, index)
        self._mirror_upload(path)

    @staticmethod
    def _record(index: Dict[str, Any], artifact: Artifact) -> None:
        entry = index["kinds"].setdefault(artifact.kind, {"latest": 0, "revisions": {}})
        entry["revisions"][str(artifact.revision)] = {
            "payload_hash": artifact.provenance.payload_hash,
            "input_hash": artifact.provenance.input_hash,
            "inputs": artifact.provenance.inputs,
            "mode": artifact.provenance.mode,
            "created_at": artifact.created_at,
            "stale": False,
        }
        entry["latest"] = max(int(entry.get("latest", 0)), artifact.revision)

    def _disk_revisions(self, slug: str, kind: str) -> List[int]:
        directory = self.slug_dir(slug)
        if not directory.is_dir():
            return []
        revs = []
        for path in directory.glob(f"{kind}.*.json"):
            rev = _parse_revision(path, kind)
            if rev is not None:
                revs.append(rev)
        return revs

    def _known_revisions(self, slug: str, kind: str, index: Dict[str, Any]) -> List[int]:
        revs = set(self._disk_revisions(slug, kind))
        entry = index["kinds"].get(kind, {})
        revs.update(int(r) for r in entry.get("revisions", {}))
        return sorted(revs)

    def _mirror_upload(self, path: Path) -> None:
        if self.mirror is None:
            return
        relpath = path.relative_to(self.root).as_posix()
        try:
            self.mirror.upload(relpath, path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ArtifactStoreError(f"Mirror upload failed for {relpath}: {exc}") from exc

    # -- Public API ----------------------------------------------------------

    def put(self, key: ArtifactKey, payload: Any, provenance: Provenance) -> int:
        """Persist a new revision of *key* and return its revision number."""
        slug, kind = key
        if kind not in ARTIFACT_KINDS:
            raise ArtifactStoreError(f"Unknown artifact kind '{kind}'")
        provenance.payload_hash = sha256_of(payload)
        try:
            with self._slug_lock(slug):
                index = self._load_index(slug)
                known = self._known_revisions(slug, kind, index)
                revision = (known[-1] if known else 0) + 1
                artifact = Artifact(
                    kind=kind,
                    keyword_slug=slug,
                    revision=revision,
                    created_at=_now_iso(),
                    payload=payload,
                    provenance=provenance,
                )
                path = self._artifact_path(slug, kind, revision)
                _save_json(path, artifact.to_dict())
                self._mirror_upload(path)
                self._record(index, artifact)
                self._save_index(slug, index)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot write {kind} for {slug}: {exc}") from exc
        logger.debug("Stored %s/%s rev %d (%s)", slug, kind, revision, provenance.mode)
        return revision

    def get(self, key: ArtifactKey, revision: int) -> Optional[Artifact]:
        """Return one revision of *key*, or None when it does not exist."""
        slug, kind = key
        artifact = self._read_local(slug, kind, revision)
        if artifact is None and self.mirror is not None:
            artifact = self._restore_from_mirror(slug, kind, revision)
        if artifact is None:
            return None
        index = self._load_index(slug)
        entry = index["kinds"].get(kind, {}).get("revisions", {}).get(str(revision), {})
        artifact.stale = bool(entry.get("stale", False))
        return artifact

    def get_latest(self, key: ArtifactKey) -> Optional[Artifact]:
        """Return the highest revision of *key* with an intact hash chain."""
        slug, kind = key
        index = self._load_index(slug)
        for revision in reversed(self._known_revisions(slug, kind, index)):
            artifact = self.get(key, revision)
            if artifact is None:
                continue
            if self._is_intact(artifact, index, set()):
                return artifact
            logger.warning(
                "Skipping %s/%s rev %d: hash chain broken", slug, kind, revision,
            )
        return None

    def invalidate_downstream(self, key: ArtifactKey) -> List[Tuple[str, int]]:
        """Mark every artifact derived (transitively) from *key* as stale."""
        slug, kind = key
        invalidated: List[Tuple[str, int]] = []
        try:
            with self._slug_lock(slug):
                index = self._load_index(slug)
                # Matching is by kind, not revision: a revision derived from an
                # older revision of *key* is just as superseded as one derived
                # from the latest, so every dependent revision is flagged.
                tainted: Set[str] = {kind}
                changed = True
                while changed:
                    changed = False
                    for other_kind, entry in index["kinds"].items():
                        if other_kind == kind:
                            continue
                        for rev, meta in entry.get("revisions", {}).items():
                            if meta.get("stale"):
                                continue
                            if any(ref.get("kind") in tainted for ref in meta.get("inputs", [])):
                                meta["stale"] = True
                                invalidated.append((other_kind, int(rev)))
                                if other_kind not in tainted:
                                    tainted.add(other_kind)
                                changed = True
                if invalidated:
                    self._save_index(slug, index)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot update index for {slug}: {exc}") from exc
        if invalidated:
            logger.info(
                "Invalidated %d artifact(s) downstream of %s/%s", len(invalidated), slug, kind,
            )
        return invalidated

    # -- Administrative helpers ----------------------------------------------

    def history(self, key: ArtifactKey) -> List[Dict[str, Any]]:
        """Index entries for every revision of *key*, oldest first."""
        slug, kind = key
        entry = self._load_index(slug)["kinds"].get(kind, {})
        revisions = entry.get("revisions", {})
        return [
            dict(revisions[r], revision=int(r))
            for r in sorted(revisions, key=int)
        ]

    def list_kinds(self, slug: str) -> Dict[str, int]:
        """Map of artifact kind -> latest recorded revision for *slug*."""
        kinds = self._load_index(slug)["kinds"]
        return {k: int(v.get("latest", 0)) for k, v in kinds.items()}

    def delete(self, slug: str) -> bool:
        """Remove every artifact for *slug* locally.  Mirror copies are kept."""
        directory = self.slug_dir(slug)
        if not directory.exists():
            return False
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot delete {directory}: {exc}") from exc
        logger.info("Deleted all artifacts for %s", slug)
        return True

    def write_record(self, slug: str, relpath: str, data: Any) -> Path:
        """Write an auxiliary JSON record (e.g. an LLM prompt) under *slug*."""
        path = self.slug_dir(slug) / relpath
        try:
            _save_json(path, data)
            self._mirror_upload(path)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot write record {relpath} for {slug}: {exc}") from exc
        return path

    def read_record(self, slug: str, relpath: str) -> Optional[Any]:
        """Read an auxiliary JSON record, or None when it does not exist."""
        path = self.slug_dir(slug) / relpath
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning("Record %s is unreadable", path)
            return None
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot read record {relpath} for {slug}: {exc}") from exc

    # -- Internals -----------------------------------------------------------

    def _read_local(self, slug: str, kind: str, revision: int) -> Optional[Artifact]:
        path = self._artifact_path(slug, kind, revision)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return Artifact.from_dict(data)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Artifact file %s is unreadable", path)
            return None
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot read {path}: {exc}") from exc

    def _restore_from_mirror(self, slug: str, kind: str, revision: int) -> Optional[Artifact]:
        relpath = f"{slug}/{kind}.{revision}.json"
        text = self.mirror.download(relpath) if self.mirror else None
        if not text:
            return None
        try:
            artifact = Artifact.from_dict(json.loads(text))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Mirror copy of %s is unreadable", relpath)
            return None
        try:
            _save_json(self._artifact_path(slug, kind, revision), artifact.to_dict())
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot restore {relpath}: {exc}") from exc
        logger.info("Restored %s from %s mirror", relpath, self.mirror.name)
        return artifact

    def _is_intact(self, artifact: Artifact, index: Dict[str, Any], seen: Set[Tuple[str, int]]) -> bool:
        marker = (artifact.kind, artifact.revision)
        if marker in seen:
            return True
        seen.add(marker)

        actual = sha256_of(artifact.payload)
        if actual != artifact.provenance.payload_hash:
            return False
        entry = index["kinds"].get(artifact.kind, {}).get("revisions", {}).get(str(artifact.revision))
        if entry and entry.get("payload_hash") and entry["payload_hash"] != actual:
            return False

        for ref in artifact.provenance.inputs:
            upstream = self.get((artifact.keyword_slug, ref.get("kind", "")), int(ref.get("revision", 0)))
            if upstream is None or upstream.provenance.payload_hash != ref.get("payload_hash"):
                return False
            if not self._is_intact(upstream, index, seen):
                return False
        return True
