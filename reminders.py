"""Case reminder sweep.

Sends every pending reminder falling due within the next hour and records the
outcome on the reminder. Run once from cron, or keep it running:

    python reminders.py            # single sweep
    python reminders.py 30         # sweep every 30 minutes
"""

import logging
import sys
import time
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

import config
import notifier as templates
from database import db as database
from models import Case, Reminder, User, utcnow
from notifier import get_notifier

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)


def check_and_send_reminders(db: Session, notifier, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    reminders = (
        db.query(Reminder)
        .filter(Reminder.status == "pending", Reminder.due_date >= now, Reminder.due_date <= now + WINDOW)
        .order_by(Reminder.due_date)
        .all()
    )
    logger.info("Found %d pending reminders to process", len(reminders))

    sent = failed = skipped = 0
    for reminder in reminders:
        case = db.get(Case, reminder.case_id)
        user = db.get(User, reminder.assigned_to)
        if case is None or user is None or not user.email:
            logger.warning("Missing data for reminder %s (case: %s, user: %s)",
                           reminder.id, case is not None, user is not None)
            skipped += 1
            continue

        subject, html = templates.case_reminder_email(user.name, case.title, case.case_id, case.client_name,
                                                      reminder.due_date, reminder.message)
        if notifier.send(user.email, subject, html):
            reminder.status = "sent"
            reminder.sent_at = utcnow()
            sent += 1
        else:
            reminder.status = "failed"
            reminder.failed_at = utcnow()
            reminder.error_message = "Email delivery failed"
            failed += 1
        db.commit()

    return {"sent": sent, "failed": failed, "skipped": skipped}


def run(interval_minutes: Optional[int] = None) -> None:
    notifier = get_notifier()
    while True:
        session = database.session()
        try:
            result = check_and_send_reminders(session, notifier)
            logger.info("Reminder sweep finished: %s", result)
        finally:
            session.close()
        if not interval_minutes:
            return
        time.sleep(interval_minutes * 60)


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run(int(sys.argv[1]) if len(sys.argv) > 1 else None)
