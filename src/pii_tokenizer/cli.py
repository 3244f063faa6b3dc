"""CLI interface for pii-tokenizer.

Usage:
    # Detect (stdin: plain text, stdout: JSON array of detections)
    echo 'I am john@x.com' | python -m pii_tokenizer.cli detect

    # Tokenize and record (stdout: tokenized text + submission id)
    echo 'I am john@x.com' | python -m pii_tokenizer.cli submit

    # Counts by tag
    python -m pii_tokenizer.cli stats

    # Inspect recorded submissions
    python -m pii_tokenizer.cli submissions --limit 5
    python -m pii_tokenizer.cli show --id 3 --reveal

    # Run the HTTP server
    python -m pii_tokenizer.cli --port 18792 serve

Health detection is used when classifier credentials are available from
--endpoint/--api-key, the config file, or AZURE_OPENAI_* variables.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Any

from .config import create_redactor, create_store, load_config, load_from_yaml
from .redactor import Redactor
from .server import serve
from .store import StoreError
from .tokenizer import rehydrate
from .types import Submission


def _load(args: argparse.Namespace) -> dict[str, Any]:
    cfg = load_from_yaml(args.config) if args.config else load_config()
    if args.db:
        cfg["db_path"] = args.db
    if args.endpoint:
        cfg["endpoint"] = args.endpoint
    if args.api_key:
        cfg["api_key"] = args.api_key
    if args.deployment:
        cfg["deployment"] = args.deployment
    if args.no_health:
        cfg["health_enabled"] = False
    if args.host:
        cfg["host"] = args.host
    if args.port is not None:
        cfg["port"] = args.port
    return cfg


def _build_redactor(args: argparse.Namespace) -> Redactor:
    return create_redactor(_load(args))


def _dump(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def _submission_dict(submission: Submission, *, reveal: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": submission.id,
        "tokenizedText": submission.tokenized_text,
        "submittedAt": submission.submitted_at.isoformat(),
    }
    if submission.classifications:
        out["classifications"] = [
            {
                "tag": c.tag.value,
                "token": c.token,
                **({"originalValue": c.original_value} if reveal else {}),
            }
            for c in submission.classifications
        ]
    if reveal:
        out["originalText"] = rehydrate(submission.tokenized_text, submission.classifications)
    return out


def cmd_detect(args: argparse.Namespace) -> None:
    """Detect emails and health terms in text on stdin."""
    redactor = _build_redactor(args)
    text = sys.stdin.read()
    _dump([d.to_dict() for d in redactor.detect(text)])


def cmd_submit(args: argparse.Namespace) -> None:
    """Tokenize text on stdin and record the submission."""
    cfg = _load(args)
    redactor = create_redactor(cfg)
    store = create_store(cfg)
    try:
        submission = redactor.submit(sys.stdin.read(), store)
    finally:
        store.close()
    _dump({
        "tokenizedText": submission.tokenized_text,
        "submissionId": submission.id,
        "classifications": len(submission.classifications),
    })


def cmd_stats(args: argparse.Namespace) -> None:
    """Print classification counts by tag."""
    store = create_store(_load(args))
    try:
        _dump(store.stats().to_dict())
    finally:
        store.close()


def cmd_submissions(args: argparse.Namespace) -> None:
    """List recent submissions."""
    store = create_store(_load(args))
    try:
        _dump([_submission_dict(s) for s in store.list_submissions(args.limit)])
    finally:
        store.close()


def cmd_show(args: argparse.Namespace) -> None:
    """Show one submission with its classifications."""
    store = create_store(_load(args))
    try:
        submission = store.get_submission(args.id)
    finally:
        store.close()
    if submission is None:
        sys.stderr.write(f"No submission with id {args.id}\n")
        sys.exit(1)
    _dump(_submission_dict(submission, reveal=args.reveal))


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP server."""
    cfg = _load(args)
    serve(create_redactor(cfg), create_store(cfg), host=cfg["host"], port=cfg["port"])


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="pii_tokenizer",
        description="Email and health-term tokenization with an audit trail",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--db", default=None, help="SQLite store path")
    parser.add_argument("--endpoint", default=None, help="Azure OpenAI endpoint")
    parser.add_argument("--api-key", default=None, help="Azure OpenAI API key")
    parser.add_argument("--deployment", default=None, help="Azure OpenAI deployment")
    parser.add_argument("--no-health", action="store_true", help="Email regex only")
    parser.add_argument("--host", default=None, help="Server bind address")
    parser.add_argument("--port", type=int, default=None, help="Server port")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("detect", help="Detect sensitive spans (text on stdin)")
    sub.add_parser("submit", help="Tokenize and record (text on stdin)")
    sub.add_parser("stats", help="Classification counts")
    p_list = sub.add_parser("submissions", help="List recent submissions")
    p_list.add_argument("--limit", type=int, default=20)
    p_show = sub.add_parser("show", help="Show one submission")
    p_show.add_argument("--id", type=int, required=True)
    p_show.add_argument("--reveal", action="store_true", help="Include original values")
    sub.add_parser("serve", help="Run the HTTP server")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "detect": cmd_detect,
        "submit": cmd_submit,
        "stats": cmd_stats,
        "submissions": cmd_submissions,
        "show": cmd_show,
        "serve": cmd_serve,
    }
    try:
        cmds[args.command](args)
    except StoreError as e:
        sys.stderr.write(f"Error: {e}\n")
        sys.exit(2)


if __name__ == "__main__":
    main()
