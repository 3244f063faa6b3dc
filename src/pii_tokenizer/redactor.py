"""Redactor — the main API.  Layered: email regex first, then the health classifier.

Usage:
    from pii_tokenizer import Redactor, SqliteStore

    store = SqliteStore("tokenizer.db")
    redactor = Redactor()        # reusable, thread-safe

    redactor.detect("Email me at john@acme.com")
    # [Detection(type=<PiiType.EMAIL>, original_value='john@acme.com', ...)]

    submission = redactor.submit("Email me at john@acme.com", store)
    print(submission.tokenized_text)  # "Email me at {EMAIL_TOKEN_3f2a...}"

Health detection needs classifier credentials, either configured once as
the default or passed per call (per-call credentials win).
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from .classifier import (
    ClassifierCredentials, HealthClassifier,
    DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT,
)
from .patterns import find_emails
from .store import SqliteStore
from .tokenizer import tokenize
from .types import Detection, PiiType, Submission, TokenizedText

logger = logging.getLogger(__name__)


@dataclass
class RedactorConfig:
    """Configuration for the Redactor."""
    default_credentials: ClassifierCredentials | None = None
    health_enabled: bool = True        # False = email regex only, even with credentials
    timeout: float = DEFAULT_TIMEOUT   # bounded wait on the classifier, seconds
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    # Builds a classifier from credentials (None = HealthClassifier)
    classifier_factory: Callable[[ClassifierCredentials], HealthClassifier] | None = None


class Redactor:
    """Detects and tokenizes emails and health terms.

    Layer 1: Email regex (deterministic, always on)
    Layer 2: Health classifier (remote, optional, best-effort)
    """

    def __init__(self, config: RedactorConfig | None = None) -> None:
        self.config = config or RedactorConfig()
        self._default_classifier: HealthClassifier | None = None
        if self.config.default_credentials is not None:
            self._default_classifier = self._build_classifier(self.config.default_credentials)

    def detect(
        self,
        text: str,
        credentials: ClassifierCredentials | None = None,
    ) -> list[Detection]:
        """Find sensitive spans in text.  Never raises, never persists."""
        emails = find_emails(text)

        health: list[Detection] = []
        classifier = self.classifier_for(credentials)
        if classifier is not None:
            try:
                health = classifier.classify(text)
            except Exception as e:
                logger.warning(f"Health classification skipped: {e}")

        return aggregate(emails, health)

    def tokenize(
        self,
        text: str,
        credentials: ClassifierCredentials | None = None,
    ) -> TokenizedText:
        """Detect and substitute, without recording anything."""
        return tokenize(text, self.detect(text, credentials))

    def submit(
        self,
        text: str,
        store: SqliteStore,
        credentials: ClassifierCredentials | None = None,
    ) -> Submission:
        """Tokenize text and record the result.

        Raises StoreError when the submission cannot be saved.
        """
        result = self.tokenize(text, credentials)
        submission = store.save_submission(result.text, result.classifications)
        logger.info(
            f"Submission {submission.id}: "
            f"{sum(c.tag is PiiType.EMAIL for c in submission.classifications)} email(s), "
            f"{sum(c.tag is PiiType.HEALTH for c in submission.classifications)} health term(s)"
        )
        return submission

    def classifier_for(
        self,
        credentials: ClassifierCredentials | None,
    ) -> HealthClassifier | None:
        """Pick the classifier for one call: per-call, default, or none."""
        if not self.config.health_enabled:
            return None
        if credentials is not None:
            return self._build_classifier(credentials)
        return self._default_classifier

    def _build_classifier(self, credentials: ClassifierCredentials) -> HealthClassifier:
        if self.config.classifier_factory is not None:
            return self.config.classifier_factory(credentials)
        return HealthClassifier(
            credentials,
            timeout=self.config.timeout,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )


def aggregate(
    emails: Iterable[Detection],
    health: Iterable[Detection],
) -> list[Detection]:
    """Merge both layers by start offset, emails first on ties.

    Overlaps are kept: the tokenizer decides what is actually replaced.
    """
    merged = [*emails, *health]
    return sorted(merged, key=lambda d: (d.start, d.type is not PiiType.EMAIL))
