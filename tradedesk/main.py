from __future__ import annotations

import argparse
import sys
from datetime import date
from typing import List, Optional

from tradedesk.data import database
from tradedesk.services import invoice_service, notification_service
from tradedesk.utils.logger import get_logger

logger = get_logger("main")


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tradedesk",
        description="Prepare the TradeDesk database and run the daily invoice sweep.",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run the sweep as of this day (YYYY-MM-DD); defaults to today.",
    )
    parser.add_argument(
        "--skip-reminders",
        action="store_true",
        help="Only flag overdue invoices; do not queue payment reminders.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    today = args.date or date.today()

    database.initialize()
    logger.info("Database ready at %s", database.get_database_path())

    overdue = invoice_service.mark_overdue_invoices(today)
    reminders = 0
    if not args.skip_reminders:
        reminders = invoice_service.send_payment_reminders(today)

    notification_service.flush()
    notification_service.get_dispatcher().shutdown()
    logger.info("Sweep for %s: %s newly overdue, %s reminder(s) queued", today.isoformat(), len(overdue), reminders)
    return 0


if __name__ == "__main__":
    sys.exit(main())
