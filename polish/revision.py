"""Document revision pipeline: protect, chunk, complete, restore, record."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from .chunker import PARAGRAPH_SEPARATOR, split_for_model
from .config import CHUNK_CFG, DEFAULT_DIALECT
from .errors import ValidationError
from .llm import CompletionClient, DeltaCallback
from .models import Mode, RevisionRequest, RevisionResult
from .prompt import PromptContext, build_system_prompt
from .protect import protect, restore
from .retry import RetryController
from .session import PolishSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
AttemptCallback = Callable[[int, int], None]


class RevisionService:
    def __init__(
        self,
        session: PolishSession,
        sleep: Callable[[float], None] = time.sleep,
        max_chunk_tokens: int = CHUNK_CFG.max_tokens,
    ):
        self.session = session
        self.sleep = sleep
        self.max_chunk_tokens = max_chunk_tokens

    def build_request(
        self,
        text: str,
        mode_id: Optional[str] = None,
        dialect: Optional[str] = None,
        model: Optional[str] = None,
        latex_protect: Optional[bool] = None,
        stream: Optional[bool] = None,
    ) -> RevisionRequest:
        settings = self.session.settings
        return RevisionRequest(
            source_text=(text or "").strip(),
            mode_id=mode_id or settings.selected_mode,
            dialect=dialect or settings.selected_dialect or DEFAULT_DIALECT,
            model=model or settings.selected_model,
            latex_protect=settings.latex_protect if latex_protect is None else latex_protect,
            stream=settings.stream if stream is None else stream,
        )

    def validate(self, request: RevisionRequest) -> Mode:
        if not request.source_text.strip():
            raise ValidationError("Please enter some text to polish")
        mode = self.session.modes.get(request.mode_id)
        if mode is None:
            raise ValidationError(f"Unknown mode: {request.mode_id}")
        if not self.session.has_api_key():
            raise ValidationError("No API key configured")
        return mode

    def revise(
        self,
        request: RevisionRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_delta: Optional[DeltaCallback] = None,
        on_attempt: Optional[AttemptCallback] = None,
    ) -> RevisionResult:
        mode = self.validate(request)
        client = self.session.completion_client()

        if not self.session.is_current_document(request.source_text):
            self.session.new_document(request.source_text)
        self.session.original_input = request.source_text
        self.session.polished = ""
        self.session.storage.save_draft_backup(
            {
                "text": request.source_text,
                "mode": request.mode_id,
                "model": request.model,
                "dialect": request.dialect,
            }
        )

        def _on_retry(attempt: int, max_attempts: int, error: Exception) -> None:
            if on_progress:
                on_progress(f"Attempt {attempt} of {max_attempts}: retrying after error: {error}")
            if on_attempt:
                on_attempt(attempt, max_attempts)

        controller = RetryController(sleep=self.sleep, on_retry=_on_retry)
        polished = controller.run(
            lambda: self._revise_once(client, request, mode, on_progress, on_delta)
        )

        cost = self.session.cost.estimate(request.source_text, polished, request.model)
        self.session.polished = polished
        self.session.history.push(polished, request.source_text)
        self.session.record_usage(cost)
        return RevisionResult(
            polished_text=polished,
            cost=cost,
            timestamp=datetime.now().isoformat(timespec="seconds"),
        )

    def _revise_once(
        self,
        client: CompletionClient,
        request: RevisionRequest,
        mode: Mode,
        on_progress: Optional[ProgressCallback],
        on_delta: Optional[DeltaCallback],
    ) -> str:
        protected, token_map = protect(request.source_text, self.session.dictionary())
        context = PromptContext(
            dialect=request.dialect,
            mode=mode,
            latex_protect=request.latex_protect,
            has_protected_terms=bool(token_map),
        )
        system_prompt = build_system_prompt(self.session.prompt_config, context)

        chunks = split_for_model(protected, self.max_chunk_tokens)
        polished_chunks = []
        for number, chunk in enumerate(chunks, start=1):
            if on_progress:
                if len(chunks) > 1:
                    on_progress(f"Polishing section {number} of {len(chunks)}...")
                else:
                    on_progress("Polishing text...")
            logger.debug("Sending chunk %d/%d (%d chars)", number, len(chunks), len(chunk))

            def _on_chunk_delta(accumulated: str) -> None:
                if on_delta:
                    partial = PARAGRAPH_SEPARATOR.join(polished_chunks + [accumulated])
                    on_delta(restore(partial, token_map))

            polished_chunks.append(
                client.complete(
                    system_prompt,
                    chunk,
                    request.model,
                    mode.temperature,
                    stream=request.stream,
                    on_delta=_on_chunk_delta,
                )
            )

        return restore(PARAGRAPH_SEPARATOR.join(polished_chunks), token_map)
