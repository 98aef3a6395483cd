"""Command line interface for Trivium."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from trivium.config import Config, get_config
from trivium.consensus import FailureReason
from trivium.errors import ConfigError, VaultCorruptionError
from trivium.metrics import MetricsStore
from trivium.models.manifest import HardwareManifest
from trivium.pipeline import TriviumPipeline
from trivium.session import Session
from trivium.privacy.patterns import PatternSet

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_VETOED = 2
EXIT_THRESHOLD_NOT_MET = 3


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _setup_logging(config: Config, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def cmd_ask(args: argparse.Namespace, config: Config) -> int:
    overrides: dict[str, Any] = {}
    if args.threshold is not None:
        overrides["threshold"] = args.threshold
    if args.max_rounds is not None:
        overrides["max_rounds"] = args.max_rounds
    if args.strategy:
        overrides["strategy"] = args.strategy
    with TriviumPipeline(config) as pipeline:
        result = pipeline.run(args.query, overrides=overrides or None)

    if args.json:
        _print(result.to_dict(show_redactions=args.show_redactions))
    else:
        if result.passed:
            print(result.answer)
            print()
        print(f"[trivium] {result.consensus.message}")
        print(f"[trivium] score={result.score:.4f} rounds={result.consensus.round_count}")
        if args.show_redactions and result.redactions:
            print("[trivium] redactions:")
            for item in result.redactions:
                print(f"  {item.token} ({item.category}) <- {item.original}")
        if result.unresolved_tokens:
            print(f"[trivium] warning: unresolved tokens {', '.join(result.unresolved_tokens)}", file=sys.stderr)

    if result.passed:
        return EXIT_OK
    if result.consensus.reason is FailureReason.VETO:
        return EXIT_VETOED
    return EXIT_THRESHOLD_NOT_MET


def cmd_redact(args: argparse.Namespace, config: Config) -> int:
    with Session(PatternSet.from_config(config.privacy)) as session:
        result = session.redact(args.text)
        if args.json:
            _print({
                "text": result.text,
                "count": result.count,
                "categories": result.by_category(),
                "redactions": [{"token": r.token, "category": r.category} for r in result.redactions],
            })
        else:
            print(result.text)
            for item in result.redactions:
                print(f"  {item.token} ({item.category})", file=sys.stderr)
    return EXIT_OK


def cmd_manifest(args: argparse.Namespace, config: Config) -> int:
    manifest = HardwareManifest.load(Path(args.path))
    if args.json:
        _print({
            "name": manifest.name,
            "ok": True,
            "total_download_size": manifest.total_download_size(),
            "models": {role: handle.model_id for role, handle in manifest.resolve_handles().items()},
        })
    else:
        print(manifest.summary())
    return EXIT_OK


def cmd_config(args: argparse.Namespace, config: Config) -> int:
    _print(config.raw)
    return EXIT_OK


def cmd_metrics(args: argparse.Namespace, config: Config) -> int:
    _print(MetricsStore.from_data_dir(config.data_dir).summary())
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trivium")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command")

    ask = sub.add_parser("ask", help="Run one query through redaction and consensus")
    ask.add_argument("query")
    ask.add_argument("--json", action="store_true")
    ask.add_argument("--show-redactions", action="store_true")
    ask.add_argument("--threshold", type=float)
    ask.add_argument("--max-rounds", type=int)
    ask.add_argument("--strategy", choices=["parallel", "sequential"])

    redact = sub.add_parser("redact", help="Preview redaction without running agents")
    redact.add_argument("text")
    redact.add_argument("--json", action="store_true")

    manifest = sub.add_parser("manifest", help="Validate and summarise a hardware manifest")
    manifest.add_argument("path")
    manifest.add_argument("--json", action="store_true")

    sub.add_parser("config", help="Print the merged configuration")
    sub.add_parser("metrics", help="Print the query metrics summary")
    return parser


COMMANDS = {
    "ask": cmd_ask,
    "redact": cmd_redact,
    "manifest": cmd_manifest,
    "config": cmd_config,
    "metrics": cmd_metrics,
}


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        raise SystemExit(EXIT_FATAL)
    try:
        config = get_config()
        _setup_logging(config, args.verbose)
        code = handler(args, config)
    except (ConfigError, VaultCorruptionError) as exc:
        print(f"[trivium] fatal: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_FATAL)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
