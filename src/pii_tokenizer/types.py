"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PiiType(str, Enum):
    """Kinds of sensitive data the engine knows about."""
    EMAIL = "Email"
    HEALTH = "Health"


TOOLTIPS: dict[PiiType, str] = {
    PiiType.EMAIL: "PII - Email Address",
    PiiType.HEALTH: "PHI - Health Data",
}


@dataclass(frozen=True, slots=True)
class Detection:
    """A located span of sensitive text, offsets into the original input."""
    type: PiiType
    original_value: str
    start: int
    end: int               # exclusive
    tooltip: str

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "originalValue": self.original_value,
            "startIndex": self.start,
            "endIndex": self.end,
            "tooltip": self.tooltip,
        }


@dataclass(frozen=True, slots=True)
class PendingClassification:
    """A substitution made by the tokenizer, not yet persisted."""
    tag: PiiType
    token: str
    original_value: str


@dataclass(slots=True)
class TokenizedText:
    """Result of tokenizing a piece of text."""
    text: str                                                   # text with tokens
    classifications: list[PendingClassification] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Classification:
    """A persisted substitution, owned by one submission."""
    id: int
    token: str
    original_value: str
    tag: PiiType
    submission_id: int


@dataclass(slots=True)
class Submission:
    id: int
    tokenized_text: str
    submitted_at: datetime
    classifications: list[Classification] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Stats:
    total_emails: int
    total_health: int

    def to_dict(self) -> dict:
        return {
            "totalPiiEmails": self.total_emails,
            "totalPiiHealthData": self.total_health,
        }
