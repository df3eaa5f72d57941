from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import Counter
from signal import SIGINT, SIGTERM, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from skinsync.app import build_app, list_snapshots, replay_journal, run_sync
from skinsync.config import configure_logging
from skinsync.domain.model import LifecycleState

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import FrameType
    from typing import Any

    from skinsync.app import SkinSyncApp

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep CS2 items in sync across marketplaces")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Poll Steam and the marketplaces")
    sync.add_argument(
        "--once",
        action="store_true",
        help="Run a single polling round, drain the action queue and exit",
    )

    subparsers.add_parser("replay", help="Rebuild the ledger from the journal and summarise it")

    show = subparsers.add_parser("show", help="List persisted item snapshots")
    show.add_argument(
        "--state",
        type=str,
        help="Only items in this lifecycle state",
    )
    show.add_argument(
        "--flagged",
        action="store_true",
        help="Only items with an unresolved conflict",
    )

    return parser.parse_args(list(argv))


def _parse_state(value: str | None) -> LifecycleState | None:
    if value is None:
        return None
    try:
        return LifecycleState(value.strip().lower())
    except ValueError as exc:
        choices = ", ".join(state.value for state in LifecycleState)
        raise ValueError(f"Unknown state {value!r} (choose from {choices})") from exc


async def _serve(app: SkinSyncApp, *, once: bool) -> None:
    if not once:
        loop = asyncio.get_running_loop()
        for signum in (SIGINT, SIGTERM):
            loop.add_signal_handler(signum, app.service.stop)
    result = await run_sync(app, once=once)
    if result is not None and result.failed_sources:
        raise RuntimeError(f"Polling failed for {', '.join(result.failed_sources)}")


def _format_snapshot(row: Mapping[str, Any]) -> str:
    flag = " !" if row["flagged"] else ""
    market = row["market"] or "-"
    price = row["listing_price"] or "-"
    return f"{row['item_key']:<48} {row['state']:<28} {market:<10} {price!s:>10}{flag}"


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.debug else logging.INFO)
    try:
        state = _parse_state(parsed_args.state) if parsed_args.command == "show" else None
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "sync":
            asyncio.run(_serve(build_app(), once=parsed_args.once))
        elif parsed_args.command == "replay":
            ledger = replay_journal()
            records = ledger.records()
            flagged = sum(1 for record in records if record.flagged)
            log.info("Ledger rebuilt: items=%s, flagged=%s", len(records), flagged)
            for name, count in sorted(Counter(str(r.state) for r in records).items()):
                log.info("  %s: %s", name, count)
        elif parsed_args.command == "show":
            rows = list_snapshots(
                state=state.value if state is not None else None,
                flagged=True if parsed_args.flagged else None,
            )
            for row in rows:
                print(_format_snapshot(row))  # noqa: T201
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()
