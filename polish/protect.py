"""Dictionary term protection: swap user terms for opaque tokens and back."""

from __future__ import annotations

import re
from typing import Dict, List, Sequence, Tuple

from .errors import ValidationError
from .models import DictionaryEntry, TokenMapping

TOKEN_TEMPLATE = "⟦PROTECTED_{index}⟧"
TOKEN_RE = re.compile("⟦PROTECTED_\\d+⟧")

TokenMap = Dict[str, TokenMapping]


def make_token(index: int) -> str:
    return TOKEN_TEMPLATE.format(index=index)


def _substitute_outside_tokens(text: str, pattern: re.Pattern, token: str, matches: List[str]) -> str:
    def _replace(match: re.Match) -> str:
        matches.append(match.group(0))
        return token

    pieces: List[str] = []
    position = 0
    for existing in TOKEN_RE.finditer(text):
        pieces.append(pattern.sub(_replace, text[position : existing.start()]))
        pieces.append(existing.group(0))
        position = existing.end()
    pieces.append(pattern.sub(_replace, text[position:]))
    return "".join(pieces)


def protect(text: str, dictionary: Sequence[DictionaryEntry]) -> Tuple[str, TokenMap]:
    """Replace every dictionary term with its token.

    Entries run in dictionary order over the output of the previous entry, so
    an earlier entry keeps the spans it claimed. Matching is case-insensitive;
    the literal matches are kept per token in encounter order.
    """
    token_map: TokenMap = {}
    protected = text
    for index, entry in enumerate(dictionary):
        if not entry.term:
            continue
        token = make_token(index)
        pattern = re.compile(re.escape(entry.term), re.IGNORECASE)
        matches: List[str] = []
        protected = _substitute_outside_tokens(protected, pattern, token, matches)
        if matches:
            token_map[token] = TokenMapping(token=token, entry=entry, matches=matches)
    return protected, token_map


def _token_order(token: str) -> int:
    return int(token[len("⟦PROTECTED_") : -1])


def restore(text: str, token_map: TokenMap) -> str:
    """Put the protected terms back into model output.

    A replacement wins when the entry defines one. Otherwise the k-th token
    occurrence gets the k-th recorded match, and the bare term once the
    recorded matches run out.
    """
    restored = text
    for token in sorted(token_map, key=_token_order):
        mapping = token_map[token]
        counter = {"seen": 0}

        def _replace(_match: re.Match, mapping: TokenMapping = mapping) -> str:
            seen = counter["seen"]
            counter["seen"] += 1
            if mapping.entry.replacement is not None:
                return mapping.entry.replacement
            if seen < len(mapping.matches):
                return mapping.matches[seen]
            return mapping.entry.term

        restored = re.sub(re.escape(token), _replace, restored)
    return restored


def validate_entry(term: str, existing: Sequence[DictionaryEntry]) -> str:
    cleaned = (term or "").strip()
    if not cleaned:
        raise ValidationError("Dictionary term cannot be empty")
    if any(entry.term == cleaned for entry in existing):
        raise ValidationError(f"Dictionary term already exists: {cleaned}")
    return cleaned
