"""Tokenizer — swaps detected values for opaque, never-repeating tokens.

Design goals:
  - Unique: every substitution gets a fresh token, even for a value seen before
  - Email first: addresses are replaced before any health term is considered,
    so a health term overlapping an address is never tokenized twice
  - Token-safe: text inside a token issued earlier in the same call is
    treated as consumed and never matched again
"""

from __future__ import annotations
import re
import uuid
from typing import Iterable

from .types import (
    Classification, Detection, PendingClassification, PiiType, TokenizedText,
)


# Token format: {EMAIL_TOKEN_<hex>} — 128 random bits per token
_TOKEN_FMT = "{{{type}_TOKEN_{uid}}}"
TOKEN_PATTERN = re.compile(r"\{(?:EMAIL|HEALTH)_TOKEN_[0-9a-f]{32}\}")


def new_token(tag: PiiType) -> str:
    """Generate a fresh placeholder for a value of the given type."""
    return _TOKEN_FMT.format(type=tag.name, uid=uuid.uuid4().hex)


def tokenize(text: str, detections: Iterable[Detection]) -> TokenizedText:
    """Replace each detected value in text with its own token.

    Emails are processed before health terms, each group in the order given.
    Every detection replaces the first occurrence of its value that has not
    already been consumed; a detection whose value is no longer present is
    skipped without issuing a token.
    """
    detections = list(detections)
    result = text
    issued: set[str] = set()
    pending: list[PendingClassification] = []

    for tag in (PiiType.EMAIL, PiiType.HEALTH):
        for d in detections:
            if d.type is not tag or not d.original_value:
                continue
            span = _find_unconsumed(result, d.original_value, issued)
            if span is None:
                continue
            token = new_token(tag)
            result = result[:span[0]] + token + result[span[1]:]
            issued.add(token)
            pending.append(PendingClassification(
                tag=tag, token=token, original_value=d.original_value,
            ))

    return TokenizedText(text=result, classifications=pending)


def _find_unconsumed(text: str, value: str, issued: set[str]) -> tuple[int, int] | None:
    """First case-insensitive occurrence of value lying outside issued tokens."""
    consumed = [
        (m.start(), m.end())
        for m in TOKEN_PATTERN.finditer(text)
        if m.group() in issued
    ]
    for m in re.finditer(re.escape(value), text, re.IGNORECASE):
        if not any(m.start() < e and m.end() > s for s, e in consumed):
            return m.start(), m.end()
    return None


def rehydrate(
    text: str,
    classifications: Iterable[PendingClassification | Classification],
) -> str:
    """Put original values back in place of their tokens."""
    result = text
    for c in classifications:
        result = result.replace(c.token, c.original_value)
    return result
