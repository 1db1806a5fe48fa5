"""Token-level diff between original and polished text, rendered as markup."""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Iterable, List, Sequence

from markupsafe import Markup, escape

from .models import DiffOp, DiffTag

TOKEN_RE = re.compile(r"\w+\s*|[^\w\s]\s*|\s+")
BLANK_LINE_END_RE = re.compile(r"\n\r?\n$")
BLANK_LINE_START_RE = re.compile(r"^\r?\n\r?\n")

REMOVED_TEMPLATE = Markup('<span class="diff-removed">{}</span>')
ADDED_TEMPLATE = Markup('<span class="diff-added">{}</span>')


def tokenize(text: str) -> List[str]:
    return TOKEN_RE.findall(text)


def _common_prefix_tokens(original: Sequence[str], revised: Sequence[str]) -> int:
    size = 0
    limit = min(len(original), len(revised))
    while size < limit and original[size] == revised[size]:
        size += 1
    return size


def _common_suffix_tokens(original: Sequence[str], revised: Sequence[str], floor: int) -> int:
    size = 0
    limit = min(len(original), len(revised)) - floor
    while size < limit and original[-1 - size] == revised[-1 - size]:
        size += 1
    return size


def _opcodes_to_ops(original: Sequence[str], revised: Sequence[str]) -> List[DiffOp]:
    """Align token lists; the shared head and tail never enter the matcher.

    SequenceMatcher treats tokens above 1% frequency as junk once the
    input reaches 200 tokens.
    """
    prefix = _common_prefix_tokens(original, revised)
    suffix = _common_suffix_tokens(original, revised, prefix)
    original_middle = original[prefix : len(original) - suffix]
    revised_middle = revised[prefix : len(revised) - suffix]

    ops: List[DiffOp] = []
    if prefix:
        ops.append(DiffOp(DiffTag.EQUAL, "".join(original[:prefix])))

    matcher = SequenceMatcher(None, original_middle, revised_middle)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(DiffOp(DiffTag.EQUAL, "".join(original_middle[i1:i2])))
            continue
        if tag in ("delete", "replace"):
            ops.append(DiffOp(DiffTag.DELETE, "".join(original_middle[i1:i2])))
        if tag in ("insert", "replace"):
            ops.append(DiffOp(DiffTag.INSERT, "".join(revised_middle[j1:j2])))

    if suffix:
        ops.append(DiffOp(DiffTag.EQUAL, "".join(original[len(original) - suffix :])))
    return ops


def _merge(ops: Iterable[DiffOp]) -> List[DiffOp]:
    """Collapse each changed region into one DELETE then one INSERT."""
    merged: List[DiffOp] = []
    deleted: List[str] = []
    inserted: List[str] = []

    def _flush() -> None:
        if deleted:
            merged.append(DiffOp(DiffTag.DELETE, "".join(deleted)))
        if inserted:
            merged.append(DiffOp(DiffTag.INSERT, "".join(inserted)))
        deleted.clear()
        inserted.clear()

    for op in ops:
        if not op.text:
            continue
        if op.tag == DiffTag.DELETE:
            deleted.append(op.text)
        elif op.tag == DiffTag.INSERT:
            inserted.append(op.text)
        else:
            _flush()
            if merged and merged[-1].tag == DiffTag.EQUAL:
                merged[-1] = DiffOp(DiffTag.EQUAL, merged[-1].text + op.text)
            else:
                merged.append(op)
    _flush()
    return merged


def _edit_size(ops: Sequence[DiffOp]) -> int:
    deleted = sum(len(op.text) for op in ops if op.tag == DiffTag.DELETE)
    inserted = sum(len(op.text) for op in ops if op.tag == DiffTag.INSERT)
    return max(deleted, inserted)


def _neighbour_edits(ops: Sequence[DiffOp], index: int, step: int) -> List[DiffOp]:
    edits: List[DiffOp] = []
    position = index + step
    while 0 <= position < len(ops) and ops[position].tag != DiffTag.EQUAL:
        edits.append(ops[position])
        position += step
    return edits


def _fold_small_equalities(ops: List[DiffOp]) -> List[DiffOp]:
    """Absorb equal runs no longer than the edits on both sides of them.

    After a fold only the equality just before the merged region can become
    foldable, so the scan steps back to it instead of starting over.
    """
    ops = list(ops)
    index = 0
    while index < len(ops):
        op = ops[index]
        if op.tag != DiffTag.EQUAL:
            index += 1
            continue
        before = _neighbour_edits(ops, index, -1)
        after = _neighbour_edits(ops, index, 1)
        if (
            before
            and after
            and len(op.text) <= _edit_size(before)
            and len(op.text) <= _edit_size(after)
        ):
            start = index - len(before)
            end = index + len(after) + 1
            folded = [DiffOp(DiffTag.DELETE, op.text), DiffOp(DiffTag.INSERT, op.text)]
            ops[start:end] = _merge(list(reversed(before)) + folded + after)
            index = max(start - 1, 0)
            continue
        index += 1
    return ops


def _boundary_score(one: str, two: str) -> int:
    if not one or not two:
        return 6
    char1, char2 = one[-1], two[0]
    non_alnum1 = not char1.isalnum()
    non_alnum2 = not char2.isalnum()
    space1 = non_alnum1 and char1.isspace()
    space2 = non_alnum2 and char2.isspace()
    line_break1 = space1 and char1 in "\r\n"
    line_break2 = space2 and char2 in "\r\n"
    blank1 = line_break1 and BLANK_LINE_END_RE.search(one) is not None
    blank2 = line_break2 and BLANK_LINE_START_RE.match(two) is not None

    if blank1 or blank2:
        return 5
    if line_break1 or line_break2:
        return 4
    if non_alnum1 and not space1 and space2:
        return 3
    if space1 or space2:
        return 2
    if non_alnum1 or non_alnum2:
        return 1
    return 0


def _common_suffix(first: str, second: str) -> int:
    size = 0
    limit = min(len(first), len(second))
    while size < limit and first[-1 - size] == second[-1 - size]:
        size += 1
    return size


def _shift_to_boundaries(ops: List[DiffOp]) -> List[DiffOp]:
    """Slide single edits between equal runs onto the nicest word boundary."""
    ops = list(ops)
    for index in range(1, len(ops) - 1):
        previous, edit, following = ops[index - 1], ops[index], ops[index + 1]
        if previous.tag != DiffTag.EQUAL or following.tag != DiffTag.EQUAL or edit.tag == DiffTag.EQUAL:
            continue

        equality1, text, equality2 = previous.text, edit.text, following.text
        offset = _common_suffix(equality1, text)
        if offset:
            common = text[-offset:]
            equality1 = equality1[:-offset]
            text = common + text[:-offset]
            equality2 = common + equality2

        best = (equality1, text, equality2)
        best_score = _boundary_score(equality1, text) + _boundary_score(text, equality2)
        while text and equality2 and text[0] == equality2[0]:
            equality1 += text[0]
            text = text[1:] + equality2[0]
            equality2 = equality2[1:]
            score = _boundary_score(equality1, text) + _boundary_score(text, equality2)
            if score >= best_score:
                best_score = score
                best = (equality1, text, equality2)

        ops[index - 1] = DiffOp(DiffTag.EQUAL, best[0])
        ops[index] = DiffOp(edit.tag, best[1])
        ops[index + 1] = DiffOp(DiffTag.EQUAL, best[2])
    return _merge(ops)


def diff(original: str, revised: str) -> List[DiffOp]:
    ops = _merge(_opcodes_to_ops(tokenize(original), tokenize(revised)))
    ops = _fold_small_equalities(ops)
    return _shift_to_boundaries(ops)


def word_presence_ops(reference: str, revised: str) -> List[DiffOp]:
    """Mark words of `revised` missing from `reference` as inserted.

    No alignment is attempted; only use this when the real original text is
    not available.
    """
    known = {token.strip() for token in tokenize(reference)}
    ops = [
        DiffOp(DiffTag.INSERT if token.strip() and token.strip() not in known else DiffTag.EQUAL, token)
        for token in tokenize(revised)
    ]
    return _merge(ops)


def original_text(ops: Iterable[DiffOp]) -> str:
    return "".join(op.text for op in ops if op.tag != DiffTag.INSERT)


def revised_text(ops: Iterable[DiffOp]) -> str:
    return "".join(op.text for op in ops if op.tag != DiffTag.DELETE)


def render(ops: Iterable[DiffOp]) -> Markup:
    parts: List[Markup] = []
    for op in ops:
        if op.tag == DiffTag.DELETE:
            parts.append(REMOVED_TEMPLATE.format(op.text))
        elif op.tag == DiffTag.INSERT:
            parts.append(ADDED_TEMPLATE.format(op.text))
        else:
            parts.append(escape(op.text))
    return Markup("").join(parts)


def word_count(text: str) -> int:
    return len(text.split())


def improvement_percent(original: str, polished: str) -> int:
    """Share of word positions that changed, capped at 100."""
    original_words = original.split()
    polished_words = polished.split()
    if not original_words:
        return 0
    changed = sum(
        1
        for position in range(max(len(original_words), len(polished_words)))
        if position >= len(original_words)
        or position >= len(polished_words)
        or original_words[position] != polished_words[position]
    )
    return min(round(changed / len(original_words) * 100), 100)
