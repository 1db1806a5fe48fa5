"""Draft storage and worker pool tests."""

import threading
from unittest.mock import MagicMock

import redis

from polish.storage import PersistentDraftStorage, RevisionWorkerPool


class TestPersistentDraftStorage:
    def test_unreachable_redis_falls_back_to_file(self, tmp_path, monkeypatch) -> None:
        # Given
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        monkeypatch.setattr(redis, "from_url", lambda *args, **kwargs: client)

        # When
        storage = PersistentDraftStorage(redis_url="redis://nowhere:6379/0", backup_path=tmp_path / "draft.json")
        storage.save_draft_backup({"text": "Draft body."})

        # Then
        assert storage.redis_available is False
        assert (tmp_path / "draft.json").exists()
        assert storage.load_draft_backup()["text"] == "Draft body."

    def test_draft_backup_lifecycle(self, tmp_path) -> None:
        # Given
        storage = PersistentDraftStorage(backup_path=tmp_path / "draft.json")
        assert storage.load_draft_backup() is None

        # When
        storage.save_draft_backup({"text": "v1"})
        storage.save_draft_backup({"text": "v2"})

        # Then
        backup = storage.load_draft_backup()
        assert backup["text"] == "v2"
        assert "saved_at" in backup
        assert storage.delete_draft_backup() is True
        assert storage.load_draft_backup() is None

    def test_memory_draft_without_backup_path(self) -> None:
        storage = PersistentDraftStorage()

        storage.save_draft_backup({"text": "in memory"})

        assert storage.load_draft_backup()["text"] == "in memory"

    def test_redis_draft_backup(self, monkeypatch) -> None:
        # Given
        store = {}
        client = MagicMock()
        client.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
        client.get.side_effect = store.get
        monkeypatch.setattr(redis, "from_url", lambda *args, **kwargs: client)

        # When
        storage = PersistentDraftStorage(prefix="test", redis_url="redis://localhost:6379/0")
        storage.save_draft_backup({"text": "Shared draft."})

        # Then
        assert storage.redis_available is True
        assert "test_draft_backup" in store
        assert storage.load_draft_backup()["text"] == "Shared draft."

    def test_revision_state(self) -> None:
        # Given
        storage = PersistentDraftStorage()

        # When
        assert storage.update_revision("doc", {"status": "POLISHING"}) is False
        storage.create_revision("doc", {"status": "STARTING"})
        storage.update_revision("doc", {"status": "DONE", "polished": "Text."})

        # Then
        state = storage.get_revision("doc")
        assert state["status"] == "DONE"
        assert state["polished"] == "Text."
        assert state["last_update"] >= state["created_at"]
        storage.cleanup_revision("doc")
        assert storage.get_revision("doc") is None


class TestRevisionWorkerPool:
    def test_one_revision_per_document(self) -> None:
        # Given
        pool = RevisionWorkerPool(max_workers=2)
        release = threading.Event()

        try:
            # When
            first = pool.submit_revision("doc", release.wait, 5)
            second = pool.submit_revision("doc", lambda: None)
            other = pool.submit_revision("other-doc", lambda: "ok")

            # Then
            assert first is not None
            assert second is None
            assert pool.is_busy("doc")
            assert other.result(timeout=5) == "ok"

            release.set()
            first.result(timeout=5)
            assert not pool.is_busy("doc")
            assert pool.submit_revision("doc", lambda: "again").result(timeout=5) == "again"
        finally:
            release.set()
            pool.shutdown()

    def test_on_accept_runs_only_for_accepted_submissions(self) -> None:
        """The accept hook fires before the worker and never for a rejected submit."""
        # Given
        pool = RevisionWorkerPool(max_workers=1)
        release = threading.Event()
        events = []

        try:
            # When
            first = pool.submit_revision(
                "doc",
                lambda: events.append("worker") or release.wait(5),
                on_accept=lambda: events.append("accepted"),
            )
            rejected = pool.submit_revision("doc", lambda: None, on_accept=lambda: events.append("rejected"))
            release.set()
            first.result(timeout=5)

            # Then
            assert rejected is None
            assert events == ["accepted", "worker"]
        finally:
            release.set()
            pool.shutdown()
