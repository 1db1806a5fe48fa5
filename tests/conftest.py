"""Shared fixtures for polish tests."""

from typing import Callable, List, Optional, Union

import pytest

from polish.credentials import CredentialStore
from polish.prompt import load_prompt_config
from polish.session import PolishSession
from polish.settings_store import SettingsStore
from polish.storage import PersistentDraftStorage

Reply = Union[str, Exception, Callable[[str], str]]


class FakeCompletionClient:
    """Scripted stand-in for CompletionClient.

    Each call pops the next reply: a string is returned, an exception is
    raised, a callable gets the user text. With no replies left the user text
    is echoed back.
    """

    def __init__(self, replies: Optional[List[Reply]] = None):
        self.replies = list(replies or [])
        self.calls = []

    def complete(self, system_prompt, user_text, model, temperature, stream=False, on_delta=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_text": user_text,
                "model": model,
                "temperature": temperature,
                "stream": stream,
            }
        )
        reply = self.replies.pop(0) if self.replies else user_text
        if isinstance(reply, Exception):
            raise reply
        text = reply(user_text) if callable(reply) else reply
        if stream and on_delta:
            accumulated = ""
            for word in text.split(" "):
                accumulated += word if not accumulated else " " + word
                on_delta(accumulated)
        return text.strip()

    def check_key(self):
        return True


@pytest.fixture
def fake_client():
    return FakeCompletionClient()


@pytest.fixture
def polish_session(tmp_path, fake_client):
    polish_session = PolishSession(
        settings_store=SettingsStore(tmp_path / "config.json"),
        credentials=CredentialStore(tmp_path / "secure_key.dat", passphrase="test-passphrase"),
        prompt_config=load_prompt_config(),
        storage=PersistentDraftStorage(redis_url=None, backup_path=tmp_path / "draft_backup.json"),
        client_factory=lambda api_key: fake_client,
    )
    polish_session.set_api_key("sk-test-key")
    yield polish_session
    polish_session.close()
