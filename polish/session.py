"""Application session: owns settings, credentials, modes and document state."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import (
    API_KEY_PREFIX,
    CREDENTIAL_FILENAME,
    DATA_DIR,
    DRAFT_BACKUP_FILENAME,
    PROMPTS_PATH,
    REDIS_URL,
    SETTINGS_FILENAME,
)
from .cost import CostEstimator
from .credentials import CredentialStore
from .errors import ValidationError
from .history import VersionHistory
from .llm import CompletionClient
from .models import CustomMode, DictionaryEntry, Settings
from .prompt import ModeRegistry, PromptConfig, load_prompt_config
from .protect import validate_entry
from .settings_store import SettingsStore
from .storage import PersistentDraftStorage, RevisionWorkerPool

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], CompletionClient]


class PolishSession:
    """Everything one running instance of the tool needs.

    Created at application start and closed at exit. Settings changes are
    written through to the settings store immediately.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        credentials: CredentialStore,
        prompt_config: PromptConfig,
        storage: PersistentDraftStorage,
        worker_pool: Optional[RevisionWorkerPool] = None,
        client_factory: ClientFactory = CompletionClient,
        document_id: str = "default",
    ):
        self.settings_store = settings_store
        self.credentials = credentials
        self.prompt_config = prompt_config
        self.storage = storage
        self.worker_pool = worker_pool or RevisionWorkerPool()
        self.client_factory = client_factory
        self.document_id = document_id

        self.settings: Settings = settings_store.load()
        self.modes = ModeRegistry(prompt_config.modes, self.settings.custom_prompts)
        self.cost = CostEstimator(prompt_config.cost_estimates)
        self.history = VersionHistory()
        self.original_input = ""
        self.polished = ""
        self._api_key: Optional[str] = credentials.get()

    @classmethod
    def create(
        cls,
        data_dir: Path = DATA_DIR,
        redis_url: Optional[str] = REDIS_URL,
        prompts_path: Path = PROMPTS_PATH,
        passphrase: Optional[str] = None,
        **kwargs: Any,
    ) -> "PolishSession":
        data_dir = Path(data_dir)
        return cls(
            settings_store=SettingsStore(data_dir / SETTINGS_FILENAME),
            credentials=CredentialStore(data_dir / CREDENTIAL_FILENAME, passphrase=passphrase),
            prompt_config=load_prompt_config(prompts_path),
            storage=PersistentDraftStorage(
                prefix="polish",
                redis_url=redis_url,
                backup_path=data_dir / DRAFT_BACKUP_FILENAME,
            ),
            **kwargs,
        )

    def close(self) -> None:
        self.worker_pool.shutdown(wait=False)

    # Settings
    def _persist(self) -> bool:
        saved = self.settings_store.save(self.settings)
        if not saved:
            logger.warning("Settings change kept in memory only; saving failed")
        return saved

    def update_settings(self, **changes: Any) -> bool:
        known = Settings.__dataclass_fields__
        unknown = [key for key in changes if key not in known]
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            setattr(self.settings, key, value)
        if "custom_prompts" in changes:
            self.modes.set_custom(self.settings.custom_prompts)
        return self._persist()

    def record_usage(self, cost: float) -> bool:
        self.settings.total_polishes += 1
        self.settings.total_spent += cost
        return self._persist()

    def reset_stats(self) -> bool:
        self.settings.total_polishes = 0
        self.settings.total_spent = 0.0
        return self._persist()

    # Dictionary
    def dictionary(self) -> List[DictionaryEntry]:
        return self.settings.dictionary_entries()

    def add_term(self, term: str, replacement: Optional[str] = None) -> DictionaryEntry:
        cleaned = validate_entry(term, self.dictionary())
        if replacement is not None and not replacement.strip():
            replacement = None
        entry = DictionaryEntry(term=cleaned, replacement=replacement)
        self.settings.dictionary.append({"term": entry.term, "replacement": entry.replacement})
        self._persist()
        return entry

    def remove_term(self, term: str) -> bool:
        remaining = [item for item in self.settings.dictionary if item["term"] != term]
        if len(remaining) == len(self.settings.dictionary):
            return False
        self.settings.dictionary = remaining
        self._persist()
        return True

    # Custom modes
    def save_custom_mode(self, data: Dict[str, Any]) -> CustomMode:
        mode_id = str(data.get("id") or "").strip()
        if not mode_id:
            raise ValidationError("Custom mode needs an id")
        if not (data.get("system_instruction") or "").strip():
            raise ValidationError("Custom mode needs instructions")
        if self.modes.is_builtin(mode_id):
            raise ValidationError(f"Mode id is reserved: {mode_id}")
        mode = CustomMode.from_dict({**data, "id": mode_id})

        prompts = [item for item in self.settings.custom_prompts if item.get("id") != mode_id]
        stored = mode.to_dict()
        stored.pop("custom", None)
        existing_index = next(
            (index for index, item in enumerate(self.settings.custom_prompts) if item.get("id") == mode_id),
            None,
        )
        if existing_index is None:
            prompts.append(stored)
        else:
            prompts.insert(existing_index, stored)
        self.update_settings(custom_prompts=prompts)
        return mode

    def delete_custom_mode(self, mode_id: str) -> bool:
        prompts = [item for item in self.settings.custom_prompts if item.get("id") != mode_id]
        if len(prompts) == len(self.settings.custom_prompts):
            return False
        if self.settings.selected_mode == mode_id:
            self.settings.selected_mode = Settings().selected_mode
        self.update_settings(custom_prompts=prompts)
        return True

    # API key
    def get_api_key(self) -> Optional[str]:
        return self._api_key

    def has_api_key(self) -> bool:
        return bool(self._api_key and self._api_key.startswith(API_KEY_PREFIX))

    def set_api_key(self, key: str) -> bool:
        key = (key or "").strip()
        if not key:
            raise ValidationError("Please enter an API key")
        if not key.startswith(API_KEY_PREFIX):
            raise ValidationError(f"Invalid API key format (should start with {API_KEY_PREFIX})")
        self._api_key = key
        return self.credentials.set(key)

    def delete_api_key(self) -> bool:
        self._api_key = None
        return self.credentials.delete()

    def completion_client(self, api_key: Optional[str] = None) -> CompletionClient:
        key = api_key or self._api_key
        if not key:
            raise ValidationError("No API key configured")
        return self.client_factory(key)

    # Document
    def is_current_document(self, text: str) -> bool:
        """True when `text` is the input or output the history was built from."""
        return bool(text) and text in (self.original_input, self.polished)

    def new_document(self, text: str = "") -> None:
        self.history.clear()
        self.original_input = text
        self.polished = ""

    def accept_changes(self) -> str:
        """Make the polished text the new input."""
        if not self.polished:
            raise ValidationError("No polished text to accept")
        self.original_input = self.polished
        self.polished = ""
        return self.original_input
