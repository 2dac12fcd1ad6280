#!/usr/bin/env python3
"""
Cron entry point: remind workers to write today's daily report.

Safe to run repeatedly for the same date: recipients already logged for
the work date are skipped.

Usage:
    python scripts/send_daily_report_reminders.py --site SITE_ID [--site SITE_ID ...]
    python scripts/send_daily_report_reminders.py --role worker --date 2024-03-21
"""
import argparse
import asyncio
import json
import sys
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sitenotify.config import settings  # noqa: E402
from sitenotify.infra.db_async import close_pool, init_pool  # noqa: E402
from sitenotify.infra.factory import get_notification_helpers  # noqa: E402
from sitenotify.infra.logging_config import setup_logging  # noqa: E402


def _today_kst() -> date:
    return datetime.now(ZoneInfo("Asia/Seoul")).date()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--site", action="append", dest="site_ids", default=[], help="Target site ID (repeatable)")
    parser.add_argument("--role", action="append", dest="roles", default=[], help="Target role (repeatable)")
    parser.add_argument("--user", action="append", dest="user_ids", default=[], help="Target user ID (repeatable)")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Work date (default: today, KST)")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    work_date = args.date or _today_kst()

    await init_pool()
    try:
        helpers = get_notification_helpers()
        result = await helpers.send_daily_report_reminder(
            work_date,
            user_ids=args.user_ids,
            site_ids=args.site_ids,
            roles=args.roles,
        )
    finally:
        await close_pool()

    summary = result.to_dict() if result else {"total": 0}
    print(json.dumps({"work_date": work_date.isoformat(), **summary}))
    return 0


def main():
    args = parse_args()
    if not (args.site_ids or args.roles or args.user_ids):
        print("At least one of --site, --role or --user is required", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level, use_json=settings.log_json)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
