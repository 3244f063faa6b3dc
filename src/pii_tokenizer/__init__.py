"""PII Tokenizer — email and health-term tokenization with an audit trail."""

from .types import (
    PiiType, Detection, PendingClassification, TokenizedText,
    Classification, Submission, Stats,
)
from .patterns import find_emails
from .classifier import ClassifierCredentials, HealthClassifier, locate_terms
from .tokenizer import tokenize, new_token, rehydrate
from .redactor import Redactor, RedactorConfig, aggregate
from .store import SqliteStore, StoreError
from .config import create_redactor, create_store, load_config, load_from_yaml

__all__ = [
    "PiiType", "Detection", "PendingClassification", "TokenizedText",
    "Classification", "Submission", "Stats",
    "find_emails",
    "ClassifierCredentials", "HealthClassifier", "locate_terms",
    "tokenize", "new_token", "rehydrate",
    "Redactor", "RedactorConfig", "aggregate",
    "SqliteStore", "StoreError",
    "create_redactor", "create_store", "load_config", "load_from_yaml",
]
__version__ = "0.1.0"
