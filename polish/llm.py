"""Completion client for the polish module: plain and streamed chat completions."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import httpx
import openai
from openai import OpenAI

from .config import MAX_OUTPUT_TOKENS, OPENAI_BASE_URL, REQUEST_TIMEOUT
from .errors import CompletionError

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

DeltaCallback = Callable[[str], None]


def _server_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
    return None


def iter_sse_deltas(lines: Iterable[str]) -> Iterator[str]:
    """Decode text deltas from server-sent-event lines until the end sentinel.

    Frames that are not valid JSON or carry no delta content are skipped.
    """
    for raw_line in lines:
        if isinstance(raw_line, bytes):
            raw_line = raw_line.decode("utf-8", errors="replace")
        line = raw_line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        payload = line[len(SSE_DATA_PREFIX) :].strip()
        if payload == SSE_DONE:
            return
        try:
            frame = json.loads(payload)
        except ValueError:
            logger.debug("Skipping malformed stream frame: %r", payload[:80])
            continue
        if not isinstance(frame, dict):
            continue
        if frame.get("error"):
            raise CompletionError(_server_message(frame))
        choices = frame.get("choices") or []
        if not choices:
            continue
        delta = (choices[0].get("delta") or {}).get("content")
        if delta:
            yield delta


class CompletionClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        client: Optional[OpenAI] = None,
    ):
        self.max_tokens = max_tokens
        self._client = client or OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    @staticmethod
    def _messages(system_prompt: str, user_text: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        model: str,
        temperature: float,
        stream: bool = False,
        on_delta: Optional[DeltaCallback] = None,
    ) -> str:
        if not stream:
            return self._complete_once(system_prompt, user_text, model, temperature)

        accumulated = ""
        for delta in self.stream_deltas(system_prompt, user_text, model, temperature):
            accumulated += delta
            if on_delta:
                on_delta(accumulated)
        if not accumulated.strip():
            raise CompletionError("Model returned an empty response")
        return accumulated.strip()

    def _complete_once(self, system_prompt: str, user_text: str, model: str, temperature: float) -> str:
        try:
            response = self._client.chat.completions.create(
                model=model,
                messages=self._messages(system_prompt, user_text),
                temperature=temperature,
                max_tokens=self.max_tokens,
                stream=False,
            )
        except openai.APIStatusError as exc:
            raise CompletionError(_server_message(exc.body), exc.status_code) from exc
        except openai.APIError as exc:
            raise CompletionError(str(exc) or None) from exc

        if not response.choices:
            raise CompletionError("Model returned no choices")
        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise CompletionError("Model returned an empty response")
        return content

    def stream_deltas(
        self,
        system_prompt: str,
        user_text: str,
        model: str,
        temperature: float,
    ) -> Iterator[str]:
        """Lazily yield text deltas of a streamed completion."""
        try:
            with self._client.chat.completions.with_streaming_response.create(
                model=model,
                messages=self._messages(system_prompt, user_text),
                temperature=temperature,
                max_tokens=self.max_tokens,
                stream=True,
            ) as response:
                yield from iter_sse_deltas(response.iter_lines())
        except openai.APIStatusError as exc:
            raise CompletionError(_server_message(exc.body), exc.status_code) from exc
        except openai.APIError as exc:
            raise CompletionError(str(exc) or None) from exc
        except httpx.HTTPError as exc:
            raise CompletionError(f"Stream interrupted: {exc}") from exc

    def check_key(self) -> bool:
        try:
            self._client.models.list()
        except openai.AuthenticationError:
            return False
        except openai.APIStatusError as exc:
            raise CompletionError(_server_message(exc.body), exc.status_code) from exc
        except openai.APIError as exc:
            raise CompletionError(str(exc) or None) from exc
        return True
