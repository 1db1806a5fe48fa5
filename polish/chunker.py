"""Paragraph-level chunking for long documents."""

from __future__ import annotations

import math
import re
from typing import List

from .config import CHUNK_CFG, CHARS_PER_TOKEN

PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t\r\f\v]*\n\s*")
PARAGRAPH_SEPARATOR = "\n\n"


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    return math.ceil(len(text) / chars_per_token)


def split_paragraphs(text: str) -> List[str]:
    return [part for part in PARAGRAPH_SPLIT_RE.split(text) if part.strip()]


def chunk_text(text: str, max_tokens: int = CHUNK_CFG.max_tokens) -> List[str]:
    chunks: List[str] = []
    buffer: List[str] = []

    for paragraph in split_paragraphs(text):
        if not buffer:
            buffer.append(paragraph)
            continue

        projected = PARAGRAPH_SEPARATOR.join(buffer + [paragraph])
        if estimate_tokens(projected) > max_tokens:
            chunks.append(PARAGRAPH_SEPARATOR.join(buffer))
            buffer = [paragraph]
        else:
            buffer.append(paragraph)

    if buffer:
        chunks.append(PARAGRAPH_SEPARATOR.join(buffer))

    return chunks


def split_for_model(text: str, max_tokens: int = CHUNK_CFG.max_tokens) -> List[str]:
    """Return the text as one unit when it fits the budget, else its chunks."""
    if estimate_tokens(text) <= max_tokens:
        return [text]
    return chunk_text(text, max_tokens)
