"""
Persistent storage for draft backups and revision progress
----------------------------------------------------------
Redis holds the draft backup and the live state of each revision so a
restart or a second browser tab can pick them up. Without Redis the draft
backup goes to a JSON file and revision state stays in memory.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import redis

from .config import MAX_WORKERS

logger = logging.getLogger(__name__)


class PersistentDraftStorage:
    """Redis-backed draft and revision-state storage with local fallback."""

    REVISION_TTL = 86400
    DRAFT_TTL = 7 * 86400

    def __init__(self, prefix: str = "polish", redis_url: Optional[str] = None, backup_path: Optional[Path] = None):
        self.backup_path = Path(backup_path) if backup_path else None
        self.redis_available = False
        self.redis_client = None
        self._memory_revisions: Dict[str, Dict[str, Any]] = {}
        self._memory_draft: Optional[Dict[str, Any]] = None

        if redis_url:
            try:
                self.redis_client = redis.from_url(redis_url, decode_responses=True)
                self.redis_client.ping()
                self.redis_available = True
                logger.info("Redis connected successfully")
            except (redis.ConnectionError, redis.RedisError) as exc:
                logger.warning("Redis not available, falling back to local storage: %s", exc)
                self.redis_client = None

        namespace = prefix.strip() or "polish"
        self.REVISION_PREFIX = f"{namespace}_revision:"
        self.DRAFT_KEY = f"{namespace}_draft_backup"

    def _get_revision_key(self, document_id: str) -> str:
        return f"{self.REVISION_PREFIX}{document_id}"

    def _serialize(self, data: Any) -> str:
        return json.dumps(data, default=str, ensure_ascii=False)

    def _deserialize(self, data: str) -> Any:
        return json.loads(data)

    # Draft backup
    def save_draft_backup(self, data: Dict[str, Any]) -> bool:
        payload = dict(data)
        payload["saved_at"] = time.time()
        try:
            if self.redis_available:
                self.redis_client.setex(self.DRAFT_KEY, self.DRAFT_TTL, self._serialize(payload))
            elif self.backup_path:
                self.backup_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.backup_path, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2, ensure_ascii=False)
            else:
                self._memory_draft = payload
            return True
        except (redis.RedisError, OSError) as exc:
            logger.error("Error saving draft backup: %s", exc)
            return False

    def load_draft_backup(self) -> Optional[Dict[str, Any]]:
        try:
            if self.redis_available:
                data = self.redis_client.get(self.DRAFT_KEY)
                return self._deserialize(data) if data else None
            if self.backup_path:
                if not self.backup_path.exists():
                    return None
                with open(self.backup_path, "r", encoding="utf-8") as handle:
                    return json.load(handle)
            return self._memory_draft
        except (redis.RedisError, OSError, ValueError) as exc:
            logger.error("Error loading draft backup: %s", exc)
            return None

    def delete_draft_backup(self) -> bool:
        try:
            if self.redis_available:
                self.redis_client.delete(self.DRAFT_KEY)
            elif self.backup_path:
                if self.backup_path.exists():
                    os.unlink(self.backup_path)
            else:
                self._memory_draft = None
            return True
        except (redis.RedisError, OSError) as exc:
            logger.error("Error deleting draft backup: %s", exc)
            return False

    # Revision state
    def create_revision(self, document_id: str, data: Dict[str, Any]) -> bool:
        data["created_at"] = time.time()
        data["last_update"] = time.time()
        try:
            if self.redis_available:
                self.redis_client.setex(self._get_revision_key(document_id), self.REVISION_TTL, self._serialize(data))
            else:
                self._memory_revisions[document_id] = data.copy()
            return True
        except redis.RedisError as exc:
            logger.error("Failed to create revision %s: %s", document_id, exc)
            return False

    def get_revision(self, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            if self.redis_available:
                data = self.redis_client.get(self._get_revision_key(document_id))
                return self._deserialize(data) if data else None
            revision = self._memory_revisions.get(document_id)
            return dict(revision) if revision else None
        except redis.RedisError as exc:
            logger.error("Failed to get revision %s: %s", document_id, exc)
            return None

    def update_revision(self, document_id: str, updates: Dict[str, Any]) -> bool:
        updates["last_update"] = time.time()
        try:
            if self.redis_available:
                key = self._get_revision_key(document_id)
                existing = self.redis_client.get(key)
                if not existing:
                    return False
                revision = self._deserialize(existing)
                revision.update(updates)
                self.redis_client.setex(key, self.REVISION_TTL, self._serialize(revision))
                return True
            if document_id in self._memory_revisions:
                self._memory_revisions[document_id].update(updates)
                return True
            return False
        except redis.RedisError as exc:
            logger.error("Failed to update revision %s: %s", document_id, exc)
            return False

    def cleanup_revision(self, document_id: str) -> bool:
        try:
            if self.redis_available:
                self.redis_client.delete(self._get_revision_key(document_id))
            else:
                self._memory_revisions.pop(document_id, None)
            return True
        except redis.RedisError as exc:
            logger.error("Failed to clean up revision %s: %s", document_id, exc)
            return False


class RevisionWorkerPool:
    """Runs revisions in the background, one at a time per document."""

    def __init__(self, max_workers: int = MAX_WORKERS, thread_name_prefix: str = "polish_worker"):
        self.max_workers = max_workers
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self.active_futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def is_busy(self, document_id: str) -> bool:
        future = self.active_futures.get(document_id)
        return future is not None and not future.done()

    def submit_revision(
        self,
        document_id: str,
        func: Callable[..., Any],
        *args,
        on_accept: Optional[Callable[[], Any]] = None,
        **kwargs,
    ) -> Optional[Future]:
        """Submit a revision, or return None while one is still running.

        `on_accept` runs under the pool lock once the submission is accepted,
        before the worker starts.
        """
        with self._lock:
            if self.is_busy(document_id):
                return None
            if on_accept:
                on_accept()
            future = self.executor.submit(func, *args, **kwargs)
            self.active_futures[document_id] = future
            return future

    def get_future(self, document_id: str) -> Optional[Future]:
        return self.active_futures.get(document_id)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
