"""Command-line administration for the number store."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import settings
from .errors import StorageError
from .logging_utils import logger
from .numbers import import_text
from .store import NumberRecord, NumberStore


def _open_store(args: argparse.Namespace) -> NumberStore:
    url = f"sqlite:///{Path(args.db).expanduser()}" if args.db else settings.get_sqlite_url()
    return NumberStore.open(url)


def _format_row(row: NumberRecord) -> str:
    mark = "x" if row.called else " "
    return f"[{mark}] {row.id:>5}  {row.number}"


def _handle_import(args: argparse.Namespace) -> int:
    if args.source == "-":
        text = sys.stdin.read()
    else:
        try:
            text = Path(args.source).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Cannot read %s: %s", args.source, exc)
            return 1

    store = _open_store(args)
    try:
        summary = import_text(
            store,
            text,
            region=args.region or settings.get_default_region(),
            ninth_digit=settings.ninth_digit_heuristic_enabled() and not args.no_ninth_digit,
        )
    finally:
        store.close()

    print(
        f"Added {summary.inserted} valid numbers "
        f"({summary.valid} valid, {summary.duplicates} already stored, {summary.candidates} candidates)."
    )
    return 0


def _handle_list(args: argparse.Namespace) -> int:
    store = _open_store(args)
    try:
        rows = store.list_all()
    finally:
        store.close()

    if not rows:
        print("Number store is empty.")
        return 0
    for row in rows:
        print(_format_row(row))
    return 0


def _handle_stats(args: argparse.Namespace) -> int:
    store = _open_store(args)
    try:
        stats = store.stats()
    finally:
        store.close()

    print(f"Total: {stats.total}  Called: {stats.called}  Remaining: {stats.remaining}")
    return 0


def _handle_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to restart the rotation without --yes.", file=sys.stderr)
        return 2

    store = _open_store(args)
    try:
        changed = store.reset_all()
    finally:
        store.close()

    print(f"Rotation restarted; {changed} numbers marked as not called.")
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    import uvicorn

    if args.db:
        os.environ["SQLITE_PATH"] = str(Path(args.db).expanduser())
        settings.refresh_config_cache()
    uvicorn.run("autocall.main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the Autocall number queue")
    parser.add_argument("--db", help="Path to the SQLite store (defaults to SQLITE_PATH)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Extract numbers from a text file and store them")
    import_parser.add_argument("source", help="Text file to read, or '-' for stdin")
    import_parser.add_argument("--region", help="ISO region for numbers without a country code")
    import_parser.add_argument(
        "--no-ninth-digit",
        action="store_true",
        help="Do not insert the Brazilian mobile ninth digit.",
    )
    import_parser.set_defaults(func=_handle_import)

    list_parser = subparsers.add_parser("list", help="Show stored numbers and their status")
    list_parser.set_defaults(func=_handle_list)

    stats_parser = subparsers.add_parser("stats", help="Show total/called/remaining counts")
    stats_parser.set_defaults(func=_handle_stats)

    reset_parser = subparsers.add_parser("reset", help="Restart the rotation (mark every number uncalled)")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the rotation restart.")
    reset_parser.set_defaults(func=_handle_reset)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_handle_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except StorageError as exc:
        logger.error("Number store failure: %s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
