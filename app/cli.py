"""CLI entrypoints for operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence

from app.core.sessions import get_session_store
from app.db.session import dispose_engine, get_session_factory


async def _run_sweep_expired_sessions() -> int:
    """Deactivate sessions whose expiry has passed."""
    session_store = get_session_store()
    session_factory = get_session_factory()
    try:
        async with session_factory() as db_session:
            swept = await session_store.sweep_expired(db_session)
    finally:
        await dispose_engine()

    print(json.dumps({"swept_sessions": swept}))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser(
        "sweep-expired-sessions",
        help="Mark expired device sessions inactive.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "sweep-expired-sessions":
        return asyncio.run(_run_sweep_expired_sessions())
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
