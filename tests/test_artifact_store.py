"""Test artifact_store -- ArticleForge."""
from __future__ import annotations

import json

import pytest

from articleforge.artifact_store import (
    Artifact,
    ArtifactStore,
    DirectoryMirror,
    Provenance,
    _save_json,
)
from articleforge.errors import ArtifactStoreError

SLUG = "antique-lamps"


def _put(store, kind, payload, inputs=None, input_hash="h"):
    return store.put((SLUG, kind), payload, Provenance(stage=kind, input_hash=input_hash, inputs=inputs or []))


# ===========================================================================
# PUT / GET
# ===========================================================================


class TestPutGet:

    def test_first_revision_is_one(self, store):
        assert _put(store, "serp", {"serp": []}) == 1

    def test_revisions_strictly_increase(self, store):
        revs = [_put(store, "serp", {"n": i}) for i in range(4)]
        assert revs == [1, 2, 3, 4]

    def test_get_returns_payload_and_provenance(self, store):
        rev = _put(store, "paa", {"results": [1]})
        artifact = store.get((SLUG, "paa"), rev)
        assert isinstance(artifact, Artifact)
        assert artifact.payload == {"results": [1]}
        assert artifact.provenance.payload_hash
        assert artifact.ref() == {"kind": "paa", "revision": 1, "payload_hash": artifact.payload_hash}

    def test_get_missing(self, store):
        assert store.get((SLUG, "paa"), 7) is None
        assert store.get_latest((SLUG, "paa")) is None

    def test_unknown_kind_rejected(self, store):
        with pytest.raises(ArtifactStoreError):
            _put(store, "banana", {})

    def test_files_laid_out_per_slug(self, store):
        _put(store, "intent", {"a": 1})
        assert (store.slug_dir(SLUG) / "intent.1.json").exists()
        assert (store.slug_dir(SLUG) / "index.json").exists()
        assert not list(store.slug_dir(SLUG).glob("*.tmp"))

    def test_get_latest_picks_highest(self, store):
        _put(store, "serp", {"n": 1})
        _put(store, "serp", {"n": 2})
        assert store.get_latest((SLUG, "serp")).payload == {"n": 2}

    def test_revision_never_reused_after_index_loss(self, store):
        _put(store, "serp", {"n": 1})
        _put(store, "serp", {"n": 2})
        (store.slug_dir(SLUG) / "index.json").unlink()
        assert _put(store, "serp", {"n": 3}) == 3


# ===========================================================================
# INTEGRITY
# ===========================================================================


class TestIntegrity:

    def test_tampered_payload_skipped(self, store):
        _put(store, "outline", {"v": 1})
        _put(store, "outline", {"v": 2})
        path = store.slug_dir(SLUG) / "outline.2.json"
        data = json.loads(path.read_text())
        data["payload"] = {"v": "tampered"}
        path.write_text(json.dumps(data))
        assert store.get_latest((SLUG, "outline")).revision == 1

    def test_unreadable_file_skipped(self, store):
        _put(store, "outline", {"v": 1})
        (store.slug_dir(SLUG) / "outline.1.json").write_text("{not json")
        assert store.get_latest((SLUG, "outline")) is None
        assert _put(store, "outline", {"v": 2}) == 2

    def test_broken_upstream_breaks_chain(self, store):
        _put(store, "outline", {"v": 1})
        outline = store.get_latest((SLUG, "outline"))
        _put(store, "draft", {"d": 1}, inputs=[outline.ref()])
        assert store.get_latest((SLUG, "draft")) is not None
        (store.slug_dir(SLUG) / "outline.1.json").write_text("garbage")
        assert store.get_latest((SLUG, "draft")) is None

    def test_corrupt_index_rebuilt(self, store):
        _put(store, "serp", {"n": 1})
        (store.slug_dir(SLUG) / "index.json").write_text("{")
        assert store.list_kinds(SLUG) == {"serp": 1}


# ===========================================================================
# INVALIDATION
# ===========================================================================


class TestInvalidateDownstream:

    def _chain(self, store):
        _put(store, "outline", {"o": 1})
        outline = store.get_latest((SLUG, "outline"))
        _put(store, "draft", {"d": 1}, inputs=[outline.ref()])
        draft = store.get_latest((SLUG, "draft"))
        _put(store, "scored-draft", {"s": 1}, inputs=[draft.ref()])

    def test_transitive(self, store):
        self._chain(store)
        invalidated = store.invalidate_downstream((SLUG, "outline"))
        assert sorted(invalidated) == [("draft", 1), ("scored-draft", 1)]
        assert store.get_latest((SLUG, "draft")).stale
        assert store.get_latest((SLUG, "scored-draft")).stale
        assert not store.get_latest((SLUG, "outline")).stale

    def test_nothing_deleted(self, store):
        self._chain(store)
        store.invalidate_downstream((SLUG, "outline"))
        assert store.get((SLUG, "draft"), 1).payload == {"d": 1}

    def test_unrelated_kinds_untouched(self, store):
        self._chain(store)
        _put(store, "serp", {"s": 1})
        store.invalidate_downstream((SLUG, "draft"))
        assert not store.get_latest((SLUG, "serp")).stale
        assert not store.get_latest((SLUG, "draft")).stale
        assert store.get_latest((SLUG, "scored-draft")).stale

    def test_every_revision_of_dependent_kind_flagged(self, store):
        _put(store, "outline", {"o": 1})
        first = store.get_latest((SLUG, "outline"))
        _put(store, "draft", {"d": 1}, inputs=[first.ref()])
        _put(store, "outline", {"o": 2})
        second = store.get_latest((SLUG, "outline"))
        _put(store, "draft", {"d": 2}, inputs=[second.ref()])

        invalidated = store.invalidate_downstream((SLUG, "outline"))

        assert sorted(invalidated) == [("draft", 1), ("draft", 2)]
        assert store.get((SLUG, "draft"), 1).stale
        assert store.get((SLUG, "draft"), 2).stale
        assert not store.get((SLUG, "outline"), 1).stale

    def test_already_stale_not_reported_twice(self, store):
        self._chain(store)
        store.invalidate_downstream((SLUG, "outline"))
        assert store.invalidate_downstream((SLUG, "outline")) == []


# ===========================================================================
# ADMIN / RECORDS / MIRROR
# ===========================================================================


class TestAdministration:

    def test_history_and_list_kinds(self, store):
        _put(store, "serp", {"n": 1}, input_hash="a")
        _put(store, "serp", {"n": 2}, input_hash="b")
        history = store.history((SLUG, "serp"))
        assert [h["revision"] for h in history] == [1, 2]
        assert history[1]["input_hash"] == "b"
        assert store.list_kinds(SLUG) == {"serp": 2}

    def test_delete(self, store):
        _put(store, "serp", {"n": 1})
        assert store.delete(SLUG) is True
        assert store.delete(SLUG) is False
        assert store.list_kinds(SLUG) == {}

    def test_records(self, store):
        store.write_record(SLUG, "runs/latest.json", {"status": "completed"})
        assert store.read_record(SLUG, "runs/latest.json") == {"status": "completed"}
        assert store.read_record(SLUG, "runs/missing.json") is None

    def test_corrupt_record_returns_none(self, store):
        path = store.write_record(SLUG, "runs/latest.json", {})
        path.write_text("{")
        assert store.read_record(SLUG, "runs/latest.json") is None


class TestMirror:

    def test_write_through_and_restore(self, tmp_path):
        mirror = DirectoryMirror(tmp_path / "mirror")
        store = ArtifactStore(tmp_path / "store", mirror=mirror)
        store.put((SLUG, "serp"), {"n": 1}, Provenance(stage="serp"))
        assert (tmp_path / "mirror" / SLUG / "serp.1.json").exists()

        fresh = ArtifactStore(tmp_path / "store2", mirror=mirror)
        artifact = fresh.get_latest((SLUG, "serp"))
        assert artifact is not None
        assert artifact.payload == {"n": 1}
        assert (tmp_path / "store2" / SLUG / "serp.1.json").exists()


class TestSaveJson:

    def test_atomic_write_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b" / "c.json"
        _save_json(path, {"x": 1})
        assert json.loads(path.read_text()) == {"x": 1}
        assert not path.with_name("c.json.tmp").exists()
