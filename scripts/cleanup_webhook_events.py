#!/usr/bin/env python3
"""
Prune the processed-webhook-event ledger.

Stripe stops redelivering an event after a few days, so ledger rows older
than the retention window no longer protect anything.

Example:
  python scripts/cleanup_webhook_events.py --retention-days 90
"""

from __future__ import annotations

import argparse
import asyncio

from tradiepay.modules.billing.domain.billing.webhook_events import cleanup_old_events
from tradiepay.shared.core.config import get_settings
from tradiepay.shared.core.logging import setup_logging
from tradiepay.shared.db.session import dispose_db_runtime, get_session_maker


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete old processed webhook events.")
    parser.add_argument(
        "--retention-days",
        dest="retention_days",
        type=int,
        default=get_settings().WEBHOOK_EVENT_RETENTION_DAYS,
        help="Keep events processed within this many days",
    )
    return parser.parse_args()


async def main(retention_days: int) -> int:
    try:
        async with get_session_maker()() as session:
            return await cleanup_old_events(session, retention_days=retention_days)
    finally:
        await dispose_db_runtime()


if __name__ == "__main__":
    setup_logging()
    args = _parse_args()
    deleted = asyncio.run(main(args.retention_days))
    print(f"Deleted {deleted} webhook events older than {args.retention_days} days.")
