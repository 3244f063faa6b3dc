"""Pattern layer — deterministic regex scan for email addresses.

Runs before the health classifier and costs next to nothing.  The pattern
is deliberately permissive: anything shaped like an address is flagged,
deliverable or not.
"""

from __future__ import annotations
import re

from .types import Detection, PiiType, TOOLTIPS

# Compiled once, shared read-only across threads
EMAIL_PATTERN: re.Pattern = re.compile(
    r"[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}",
    re.IGNORECASE | re.ASCII,
)


def find_emails(text: str | None) -> list[Detection]:
    """Return every email in text, leftmost first and non-overlapping."""
    if not text:
        return []
    return [
        Detection(
            type=PiiType.EMAIL,
            original_value=m.group(),
            start=m.start(),
            end=m.end(),
            tooltip=TOOLTIPS[PiiType.EMAIL],
        )
        for m in EMAIL_PATTERN.finditer(text)
    ]
