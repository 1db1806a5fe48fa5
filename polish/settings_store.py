"""JSON-file persistence for user preferences."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from .models import Settings

logger = logging.getLogger(__name__)


class SettingsStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Settings:
        if not self.path.exists():
            return Settings()
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error("Error loading settings from %s: %s", self.path, exc)
            return Settings()
        if isinstance(data, dict):
            data = data.get("settings", data)
        if not isinstance(data, dict):
            logger.error("Settings file %s does not hold an object; using defaults", self.path)
            return Settings()
        return Settings.from_dict(data)

    def save(self, settings: Settings) -> bool:
        """Write the settings atomically; a failed write leaves the old file."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".config-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"settings": settings.to_dict()}, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
            return True
        except OSError as exc:
            logger.error("Error saving settings to %s: %s", self.path, exc)
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False
