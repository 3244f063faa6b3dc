"""Tests for the health classifier — request shaping, parsing, failure handling."""

import json
import sys, os
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import httpx
import pytest

from pii_tokenizer import ClassifierCredentials, HealthClassifier, PiiType, locate_terms
from pii_tokenizer.classifier import parse_terms


CREDS = ClassifierCredentials("https://example.openai.azure.com/", "secret-key", "gpt-4o-mini")


def _chat(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _classifier(handler, creds=CREDS, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HealthClassifier(creds, client=client, **kwargs)


# ── Credentials ──────────────────────────────────────────────────────

def test_credentials_from_request_body():
    creds = ClassifierCredentials.from_dict(
        {"endpoint": "https://x.openai.azure.com", "apiKey": "k", "deployment": "d"}
    )
    assert creds == ClassifierCredentials("https://x.openai.azure.com", "k", "d")


def test_credentials_snake_case_and_blank_deployment():
    creds = ClassifierCredentials.from_dict({"endpoint": "https://x", "api_key": "k", "deployment": " "})
    assert creds == ClassifierCredentials("https://x", "k", None)


@pytest.mark.parametrize("data", [
    None,
    "not a dict",
    {},
    {"endpoint": "https://x"},
    {"apiKey": "k"},
    {"endpoint": "  ", "apiKey": "k"},
])
def test_incomplete_credentials_are_none(data):
    assert ClassifierCredentials.from_dict(data) is None


# ── Request shaping ──────────────────────────────────────────────────

def test_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_chat('{"detections": []}'))

    assert _classifier(handler).classify("Patient has asthma") == []

    url = seen["url"]
    assert url.path == "/openai/deployments/gpt-4o-mini/chat/completions"
    assert url.params["api-version"] == "2024-02-15-preview"
    assert seen["headers"]["api-key"] == "secret-key"

    body = seen["body"]
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 200
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert "Patient has asthma" in body["messages"][1]["content"]
    assert '"detections"' in body["messages"][0]["content"]


def test_default_deployment():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json=_chat('{"detections": []}'))

    _classifier(handler, ClassifierCredentials("https://x.openai.azure.com", "k")).classify("hi")
    assert seen["path"] == "/openai/deployments/gpt-35-turbo/chat/completions"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_text_makes_no_call(text):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_chat('{"detections": []}'))

    assert _classifier(handler).classify(text) == []
    assert calls == []


# ── Locating terms ───────────────────────────────────────────────────

def test_classify_locates_every_occurrence():
    def handler(request):
        return httpx.Response(200, json=_chat(json.dumps(
            {"detections": [{"term": "diabetes"}, {"term": "hypertension"}]}
        )))

    text = "Diabetes and hypertension; diabetes runs in the family."
    detections = _classifier(handler).classify(text)
    assert [(d.original_value, d.start) for d in detections] == [
        ("Diabetes", 0),
        ("hypertension", 13),
        ("diabetes", 27),
    ]
    for d in detections:
        assert d.type is PiiType.HEALTH
        assert d.tooltip == "PHI - Health Data"
        assert text[d.start:d.end] == d.original_value


def test_locate_terms_is_literal():
    text = "Took 2.5mg (daily) of meds; 2x5mg is wrong"
    detections = locate_terms(text, ["2.5mg (daily)"])
    assert [d.original_value for d in detections] == ["2.5mg (daily)"]


def test_term_not_in_text_is_dropped():
    assert locate_terms("Feeling fine", ["cancer"]) == []


def test_blank_terms_skipped():
    assert locate_terms("abc", ["", "  "]) == []


# ── Response parsing ─────────────────────────────────────────────────

def test_parse_terms_skips_malformed_entries():
    payload = _chat(json.dumps({"detections": [
        {"term": "flu"},
        {"term": ""},
        {"term": None},
        {"other": "x"},
        "loose string",
        {"Term": "Cough"},
        {"term": "FLU"},
    ]}))
    assert parse_terms(payload) == ["flu", "Cough"]


def test_parse_terms_case_insensitive_keys():
    payload = {"Choices": [{"Message": {"Content": '{"Detections": [{"Term": "gout"}]}'}}]}
    assert parse_terms(payload) == ["gout"]


@pytest.mark.parametrize("payload", [
    [],
    {},
    {"choices": []},
    {"choices": ["nope"]},
    {"choices": [{"message": {}}]},
    {"choices": [{"message": {"content": ""}}]},
    _chat("not json"),
    _chat("[1, 2]"),
    _chat('{"detections": "flu"}'),
    _chat('{"nothing": []}'),
])
def test_parse_terms_rejects_bad_structure(payload):
    with pytest.raises((ValueError, KeyError, TypeError, IndexError)):
        parse_terms(payload)


# ── Failure handling ─────────────────────────────────────────────────

def test_http_error_status_yields_nothing():
    def handler(request):
        return httpx.Response(401, json={"error": "bad key"})

    assert _classifier(handler).classify("I have a cold") == []


def test_transport_error_yields_nothing():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert _classifier(handler).classify("I have a cold") == []


def test_timeout_yields_nothing():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    assert _classifier(handler, timeout=0.01).classify("I have a cold") == []


def test_non_json_body_yields_nothing():
    def handler(request):
        return httpx.Response(200, text="<html>gateway error</html>")

    assert _classifier(handler).classify("I have a cold") == []


def test_malformed_content_yields_nothing():
    def handler(request):
        return httpx.Response(200, json=_chat("{'detections': [}"))

    assert _classifier(handler).classify("I have a cold") == []


def test_failure_is_logged(caplog):
    def handler(request):
        return httpx.Response(500, text="boom")

    with caplog.at_level("WARNING", logger="pii_tokenizer.classifier"):
        _classifier(handler).classify("I have a cold")
    assert any("request failed" in r.message for r in caplog.records)
    assert all("secret-key" not in r.getMessage() for r in caplog.records)


class _TricklingHandler(BaseHTTPRequestHandler):
    """Sends a 100-byte body one byte at a time, 0.2s apart."""

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", "100")
        self.end_headers()
        try:
            for _ in range(100):
                self.wfile.write(b" ")
                self.wfile.flush()
                time.sleep(0.2)
        except OSError:
            pass

    def log_message(self, *args):
        pass


def test_slow_body_is_cut_off_at_timeout():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TricklingHandler)
    server.daemon_threads = True
    threading.Thread(target=server.serve_forever, daemon=True).start()
    try:
        creds = ClassifierCredentials(f"http://127.0.0.1:{server.server_port}", "k")
        classifier = HealthClassifier(creds, timeout=1.0)
        started = time.monotonic()
        assert classifier.classify("I have a cold") == []
        assert time.monotonic() - started < 3.0
    finally:
        server.shutdown()
        server.server_close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
