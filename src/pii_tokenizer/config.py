"""YAML/dict config loader for pii-tokenizer.

Supports loading from a YAML file or a plain dict (for embedding in a
larger service config).  Environment variables override file values.

Example YAML:

    pii_tokenizer:
      db_path: ~/.pii-tokenizer/tokenizer.db
      health:
        enabled: true
        endpoint: https://my-resource.openai.azure.com
        api_key: ...
        deployment: gpt-35-turbo
        timeout: 10
        max_tokens: 200
        temperature: 0.1
      server:
        host: 127.0.0.1
        port: 18792
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Mapping

from .classifier import (
    ClassifierCredentials,
    DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT,
)
from .redactor import Redactor, RedactorConfig
from .store import SqliteStore

DEFAULT_DB = str(Path.home() / ".pii-tokenizer" / "tokenizer.db")
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 18792

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(value: Any) -> bool:
    """Booleans, 0/1 and their usual spellings; quoted "false" is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE:
            return True
        if word in _FALSE:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


def load_config(
    data: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline) and apply env overrides."""
    data = dict(data or {})
    # Support nested under "pii_tokenizer" key or flat
    if "pii_tokenizer" in data:
        data = dict(data["pii_tokenizer"] or {})
    env = os.environ if environ is None else environ

    health = data.get("health") or {}
    server = data.get("server") or {}

    return {
        "db_path": env.get("PII_TOKENIZER_DB") or data.get("db_path", DEFAULT_DB),
        "health_enabled": _as_bool(health.get("enabled", True)),
        "endpoint": env.get("AZURE_OPENAI_ENDPOINT") or health.get("endpoint"),
        "api_key": env.get("AZURE_OPENAI_API_KEY") or health.get("api_key"),
        "deployment": env.get("AZURE_OPENAI_DEPLOYMENT") or health.get("deployment"),
        "timeout": float(health.get("timeout", DEFAULT_TIMEOUT)),
        "max_tokens": int(health.get("max_tokens", DEFAULT_MAX_TOKENS)),
        "temperature": float(health.get("temperature", DEFAULT_TEMPERATURE)),
        "host": server.get("host", DEFAULT_HOST),
        "port": int(env.get("PII_TOKENIZER_PORT") or server.get("port", DEFAULT_PORT)),
    }


def load_from_yaml(
    path: str | Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml  # optional dependency
    with open(path) as f:
        return load_config(yaml.safe_load(f), environ=environ)


def default_credentials(cfg: Mapping[str, Any]) -> ClassifierCredentials | None:
    """Credentials for the long-lived classifier, if the config has them."""
    return ClassifierCredentials.from_dict({
        "endpoint": cfg.get("endpoint"),
        "api_key": cfg.get("api_key"),
        "deployment": cfg.get("deployment"),
    })


def create_redactor(cfg: Mapping[str, Any]) -> Redactor:
    """Create a Redactor from a normalized config dict."""
    return Redactor(RedactorConfig(
        default_credentials=default_credentials(cfg),
        health_enabled=cfg["health_enabled"],
        timeout=cfg["timeout"],
        max_tokens=cfg["max_tokens"],
        temperature=cfg["temperature"],
    ))


def create_store(cfg: Mapping[str, Any]) -> SqliteStore:
    return SqliteStore(cfg["db_path"])
