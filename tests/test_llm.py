"""Completion client tests with the OpenAI SDK mocked out."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from polish.errors import CompletionError
from polish.llm import CompletionClient, iter_sse_deltas

API_URL = "https://api.openai.com/v1/chat/completions"


def _frame(content=None, **extra):
    delta = {"content": content} if content is not None else {}
    payload = {"choices": [{"index": 0, "delta": delta}], **extra}
    return "data: " + json.dumps(payload)


def _status_error(status_code: int, body):
    response = httpx.Response(status_code, request=httpx.Request("POST", API_URL))
    return openai.APIStatusError("Error", response=response, body=body)


def _streaming_client(lines):
    openai_client = MagicMock()
    response = MagicMock()
    response.iter_lines.return_value = iter(lines)
    context = MagicMock()
    context.__enter__.return_value = response
    openai_client.chat.completions.with_streaming_response.create.return_value = context
    return openai_client


class TestIterSseDeltas:
    """Server-sent-event decoding."""

    def test_yields_deltas_until_done(self) -> None:
        # Given
        lines = [_frame("Hel"), "", _frame("lo"), "data: [DONE]", _frame("ignored")]

        # When
        deltas = list(iter_sse_deltas(lines))

        # Then
        assert deltas == ["Hel", "lo"]

    def test_skips_malformed_and_empty_frames(self) -> None:
        """Bad JSON, role-only deltas and comments are not fatal."""
        # Given
        lines = [
            ": keep-alive",
            "data: {not json",
            'data: {"choices": []}',
            _frame(None),
            _frame("ok"),
            "data: [DONE]",
        ]

        # Then
        assert list(iter_sse_deltas(lines)) == ["ok"]

    def test_error_frame_raises_with_server_message(self) -> None:
        lines = ['data: {"error": {"message": "Rate limit reached"}}']
        with pytest.raises(CompletionError, match="Rate limit reached"):
            list(iter_sse_deltas(lines))


class TestCompleteNonStreaming:
    def test_returns_trimmed_message_content(self) -> None:
        # Given
        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="  Polished text.\n"))]
        )
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When
        result = client.complete("system", "draft", "gpt-4o-mini", 0.3, stream=False)

        # Then
        assert result == "Polished text."
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 4000
        assert kwargs["stream"] is False
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "draft"},
        ]

    @pytest.mark.parametrize("content", [None, "", "  \n "])
    def test_empty_content_is_a_completion_error(self, content) -> None:
        """An empty reply is retried rather than recorded as a revision."""
        # Given
        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When / Then
        with pytest.raises(CompletionError, match="empty response"):
            client.complete("system", "draft", "gpt-4o-mini", 0.3)

    def test_status_error_carries_server_message(self) -> None:
        # Given
        openai_client = MagicMock()
        openai_client.chat.completions.create.side_effect = _status_error(
            401, {"message": "Incorrect API key provided", "type": "invalid_request_error"}
        )
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When / Then
        with pytest.raises(CompletionError, match="Incorrect API key provided") as excinfo:
            client.complete("system", "draft", "gpt-4o-mini", 0.3)
        assert excinfo.value.status_code == 401

    def test_status_error_without_message_uses_generic_marker(self) -> None:
        # Given
        openai_client = MagicMock()
        openai_client.chat.completions.create.side_effect = _status_error(500, None)
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When / Then
        with pytest.raises(CompletionError, match="API request failed"):
            client.complete("system", "draft", "gpt-4o-mini", 0.3)

    def test_connection_error_is_completion_error(self) -> None:
        openai_client = MagicMock()
        openai_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", API_URL)
        )
        client = CompletionClient(api_key="sk-test", client=openai_client)

        with pytest.raises(CompletionError):
            client.complete("system", "draft", "gpt-4o-mini", 0.3)


class TestCompleteStreaming:
    def test_accumulates_deltas_and_reports_progress(self) -> None:
        # Given
        openai_client = _streaming_client([_frame(" The "), _frame("result"), _frame(". "), "data: [DONE]"])
        client = CompletionClient(api_key="sk-test", client=openai_client)
        seen = []

        # When
        result = client.complete("system", "draft", "gpt-4o", 0.2, stream=True, on_delta=seen.append)

        # Then
        assert result == "The result."
        assert seen == [" The ", " The result", " The result. "]
        kwargs = openai_client.chat.completions.with_streaming_response.create.call_args.kwargs
        assert kwargs["stream"] is True

    def test_stream_without_content_is_a_completion_error(self) -> None:
        openai_client = _streaming_client([_frame(None), "data: [DONE]"])
        client = CompletionClient(api_key="sk-test", client=openai_client)

        with pytest.raises(CompletionError, match="empty response"):
            client.complete("system", "draft", "gpt-4o", 0.2, stream=True)

    def test_stream_deltas_is_lazy(self) -> None:
        """Nothing is requested until the consumer pulls."""
        # Given
        openai_client = _streaming_client([_frame("a"), _frame("b"), "data: [DONE]"])
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When
        deltas = client.stream_deltas("system", "draft", "gpt-4o", 0.2)

        # Then
        openai_client.chat.completions.with_streaming_response.create.assert_not_called()
        assert next(deltas) == "a"
        assert list(deltas) == ["b"]

    def test_stream_status_error_raises(self) -> None:
        # Given
        openai_client = MagicMock()
        openai_client.chat.completions.with_streaming_response.create.side_effect = _status_error(
            429, {"message": "Too many requests"}
        )
        client = CompletionClient(api_key="sk-test", client=openai_client)

        # When / Then
        with pytest.raises(CompletionError, match="Too many requests"):
            client.complete("system", "draft", "gpt-4o", 0.2, stream=True)


class TestCheckKey:
    def test_invalid_key_returns_false(self) -> None:
        openai_client = MagicMock()
        response = httpx.Response(401, request=httpx.Request("GET", "https://api.openai.com/v1/models"))
        openai_client.models.list.side_effect = openai.AuthenticationError(
            "Unauthorized", response=response, body=None
        )
        client = CompletionClient(api_key="sk-bad", client=openai_client)

        assert client.check_key() is False

    def test_valid_key_returns_true(self) -> None:
        openai_client = MagicMock()
        client = CompletionClient(api_key="sk-good", client=openai_client)

        assert client.check_key() is True
