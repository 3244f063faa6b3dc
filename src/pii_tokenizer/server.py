"""HTTP server for pii-tokenizer.

A small stdlib HTTP server (no web framework) exposing the engine as JSON.

Endpoints:
    POST /api/detect-pii  — Detect emails/health terms, nothing stored
    POST /api/submit      — Tokenize and record a submission
    GET  /api/stats       — Classification counts by tag
    GET  /health          — Health check

Body format for POST: {"text": "...", "azureOpenAI": {"endpoint", "apiKey", "deployment"}}
The "azureOpenAI" object is optional and overrides the server's default
classifier credentials for that one request.
"""

from __future__ import annotations
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .classifier import ClassifierCredentials
from .config import DEFAULT_HOST, DEFAULT_PORT
from .redactor import Redactor
from .store import SqliteStore, StoreError

logger = logging.getLogger(__name__)


class TokenizerServer(ThreadingHTTPServer):
    """HTTP server carrying the redactor and store its handlers use."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], redactor: Redactor, store: SqliteStore) -> None:
        super().__init__(address, TokenizerHandler)
        self.redactor = redactor
        self.store = store


class BadRequest(Exception):
    """The request body could not be understood."""


class TokenizerHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the tokenizer API."""

    server: TokenizerServer

    def _read_json(self) -> dict[str, Any]:
        try:
            length = int(self.headers.get("Content-Length", 0) or 0)
        except ValueError as e:
            raise BadRequest("invalid Content-Length") from e
        if length < 0:
            raise BadRequest("invalid Content-Length")
        try:
            body = self.rfile.read(length).decode("utf-8") if length else ""
        except UnicodeDecodeError as e:
            raise BadRequest(f"request body is not UTF-8: {e}") from e
        if not body:
            return {}
        try:
            data = json.loads(body)
        except ValueError as e:
            raise BadRequest(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise BadRequest("request body must be a JSON object")
        return data

    def _read_request(self) -> tuple[str, ClassifierCredentials | None]:
        body = self._read_json()
        text = body.get("text") or ""
        if not isinstance(text, str):
            raise BadRequest("text must be a string")
        credentials = ClassifierCredentials.from_dict(body.get("azureOpenAI"))
        return text, credentials

    def _respond(self, status: int, data: Any) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self._cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def _cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "*")

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - " + format, self.address_string(), *args)

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self._cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:
        try:
            if self.path == "/health":
                self._respond(200, {"status": "ok"})
            elif self.path == "/api/stats":
                self._respond(200, self.server.store.stats().to_dict())
            else:
                self._respond(404, {"error": "not found"})
        except StoreError as e:
            logger.error(f"Stats query failed: {e}")
            self._respond(500, {"error": str(e)})
        except Exception:
            logger.exception(f"Unhandled error serving GET {self.path}")
            self._respond(500, {"error": "internal error"})

    def do_POST(self) -> None:
        try:
            if self.path == "/api/detect-pii":
                text, credentials = self._read_request()
                detections = self.server.redactor.detect(text, credentials)
                self._respond(200, [d.to_dict() for d in detections])

            elif self.path == "/api/submit":
                text, credentials = self._read_request()
                submission = self.server.redactor.submit(text, self.server.store, credentials)
                self._respond(200, {"tokenizedText": submission.tokenized_text})

            else:
                self._respond(404, {"error": "not found"})

        except BadRequest as e:
            self._respond(400, {"error": str(e)})
        except StoreError as e:
            logger.error(f"Submission not recorded: {e}")
            self._respond(500, {"error": str(e)})
        except Exception:
            logger.exception(f"Unhandled error serving POST {self.path}")
            self._respond(500, {"error": "internal error"})


def create_server(
    redactor: Redactor,
    store: SqliteStore,
    *,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> TokenizerServer:
    """Bind a server without starting it (port 0 picks a free port)."""
    return TokenizerServer((host, port), redactor, store)


def serve(
    redactor: Redactor,
    store: SqliteStore,
    *,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Start the tokenizer HTTP server and block until interrupted."""
    server = create_server(redactor, store, host=host, port=port)
    logger.info(f"pii-tokenizer listening on http://{host}:{server.server_port}")
    logger.info(f"  store: {store.path}")
    logger.info(
        "  health classifier: "
        f"{'default configured' if redactor.classifier_for(None) else 'per-request only'}"
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        server.server_close()
        store.close()


if __name__ == "__main__":
    import sys
    from .cli import main
    main([*sys.argv[1:], "serve"])
