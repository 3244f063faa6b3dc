"""Classifier layer — health terms via an Azure OpenAI chat deployment.

The model only returns terms, never offsets, so each term is re-located in
the original text with a literal case-insensitive search.  Everything
downstream therefore sees exact spans, same as the regex layer produces.

The classifier is best-effort: any transport, status or parsing problem is
logged and turns into "no health detections", never an exception.

Usage:
    creds = ClassifierCredentials("https://my.openai.azure.com", "key")
    classifier = HealthClassifier(creds)
    classifier.classify("Patient has diabetes")   # [Detection(...)]
"""

from __future__ import annotations
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import httpx

from .types import Detection, PiiType, TOOLTIPS

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENT = "gpt-35-turbo"
DEFAULT_API_VERSION = "2024-02-15-preview"
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_TOKENS = 200
DEFAULT_TEMPERATURE = 0.1

SYSTEM_PROMPT = """You are a medical data classifier. Analyze the given text and identify any specific mentions of health conditions, diseases, symptoms, or medical information that could be considered personally identifiable health information (PHI).

Return a JSON response with this structure:
{
  "detections": [
    {
      "term": "string - the exact health/medical term found in the text"
    }
  ]
}

Only include the actual health/medical terms found. Return an empty array if no health data is found."""

USER_PROMPT = 'Find health/medical information in this text: "{text}"'


@dataclass(frozen=True, slots=True)
class ClassifierCredentials:
    """Where and how to reach the classification deployment."""
    endpoint: str
    api_key: str
    deployment: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ClassifierCredentials | None":
        """Build from a request body fragment; None when incomplete."""
        if not isinstance(data, Mapping):
            return None
        endpoint = data.get("endpoint")
        api_key = data.get("apiKey", data.get("api_key"))
        deployment = data.get("deployment")
        if not isinstance(endpoint, str) or not endpoint.strip():
            return None
        if not isinstance(api_key, str) or not api_key.strip():
            return None
        if not isinstance(deployment, str) or not deployment.strip():
            deployment = None
        return cls(endpoint=endpoint.strip(), api_key=api_key.strip(), deployment=deployment)


class HealthClassifier:
    """Finds health/medical terms using a remote chat-completions model."""

    def __init__(
        self,
        credentials: ClassifierCredentials,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        api_version: str = DEFAULT_API_VERSION,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = credentials.endpoint.rstrip("/")
        self.api_key = credentials.api_key
        self.deployment = credentials.deployment or DEFAULT_DEPLOYMENT
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.api_version = api_version
        self._client = client

    @property
    def url(self) -> str:
        return f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions"

    def classify(self, text: str) -> list[Detection]:
        """Return one Health detection per located occurrence of each term."""
        if not text or not text.strip():
            return []
        terms = self.request_terms(text)
        return locate_terms(text, terms)

    def request_terms(self, text: str) -> list[str]:
        """Ask the model for health terms.  Returns [] on any failure."""
        try:
            content = self._post(self.build_request(text))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Health classifier request failed: {e}")
            return []

        try:
            terms = parse_terms(json.loads(content))
        except (ValueError, KeyError, TypeError, IndexError) as e:
            logger.warning(f"Health classifier returned an unusable response: {e}")
            logger.debug(f"Raw classifier response: {content[:500].decode('utf-8', 'replace')}")
            return []

        logger.debug(f"Health classifier returned {len(terms)} term(s)")
        return terms

    def build_request(self, text: str) -> dict[str, Any]:
        return {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": USER_PROMPT.format(text=text)},
            ],
            "model": self.deployment,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def _post(self, body: dict[str, Any]) -> bytes:
        """POST the request and return the body, all within self.timeout.

        httpx applies its timeout to each connect/read/write step, so a
        server trickling bytes could stall forever.  The body is streamed
        and the overall deadline checked between chunks; the wait is
        bounded by the deadline plus at most one read timeout.
        """
        deadline = time.monotonic() + self.timeout
        client = self._client if self._client is not None else httpx.Client()
        try:
            with client.stream(
                "POST",
                self.url,
                params={"api-version": self.api_version},
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
                json=body,
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                chunks: list[bytes] = []
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise httpx.ReadTimeout(
                            f"no complete response within {self.timeout}s",
                            request=response.request,
                        )
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        f"no complete response within {self.timeout}s",
                        request=response.request,
                    )
                return b"".join(chunks)
        finally:
            if self._client is None:
                client.close()


def _field(obj: Mapping[str, Any], name: str) -> Any:
    """Case-insensitive key lookup; raises KeyError when absent."""
    if not isinstance(obj, Mapping):
        raise TypeError(f"expected an object holding {name!r}")
    if name in obj:
        return obj[name]
    for key, value in obj.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    raise KeyError(name)


def parse_terms(payload: Any) -> list[str]:
    """Pull the term list out of a chat-completions response body.

    Raises on structural problems; skips individual malformed entries.
    """
    if not isinstance(payload, Mapping):
        raise TypeError("response body is not an object")
    choices = _field(payload, "choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("response has no choices")
    content = _field(_field(choices[0], "message"), "content")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("response message has no content")

    analysis = json.loads(content)
    if not isinstance(analysis, Mapping):
        raise TypeError("message content is not a JSON object")
    detections = _field(analysis, "detections")
    if not isinstance(detections, list):
        raise TypeError("detections is not a list")

    terms: list[str] = []
    seen: set[str] = set()
    for item in detections:
        if not isinstance(item, Mapping):
            continue
        try:
            term = _field(item, "term")
        except KeyError:
            continue
        if not isinstance(term, str) or not term.strip():
            continue
        if term.lower() in seen:
            continue
        seen.add(term.lower())
        terms.append(term)
    return terms


def locate_terms(text: str, terms: Iterable[str]) -> list[Detection]:
    """Find every case-insensitive literal occurrence of each term."""
    found: list[Detection] = []
    for term in terms:
        if not term or not term.strip():
            continue
        for m in re.finditer(re.escape(term), text, re.IGNORECASE):
            found.append(Detection(
                type=PiiType.HEALTH,
                original_value=m.group(),   # casing as written in the text
                start=m.start(),
                end=m.end(),
                tooltip=TOOLTIPS[PiiType.HEALTH],
            ))
    return sorted(found, key=lambda d: d.start)
