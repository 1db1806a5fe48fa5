"""Bounded in-memory history of polished versions for the current document."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .config import HISTORY_CAPACITY
from .models import VersionEntry


class VersionHistory:
    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self.capacity = capacity
        self._entries: List[VersionEntry] = []
        self.current: Optional[int] = None

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[VersionEntry]:
        return list(self._entries)

    def push(self, polished: str, original: str) -> VersionEntry:
        entry = VersionEntry(
            polished=polished,
            original=original,
            timestamp=datetime.now().isoformat(timespec="seconds"),
            index=len(self._entries),
        )
        self._entries.append(entry)
        if len(self._entries) > self.capacity:
            del self._entries[0 : len(self._entries) - self.capacity]
            for position, kept in enumerate(self._entries):
                kept.index = position
        self.current = entry.index
        return entry

    def restore(self, index: int) -> Optional[VersionEntry]:
        if index < 0 or index >= len(self._entries):
            return None
        self.current = index
        return self._entries[index]

    def current_entry(self) -> Optional[VersionEntry]:
        if self.current is None:
            return None
        return self._entries[self.current]

    def clear(self) -> None:
        self._entries = []
        self.current = None
