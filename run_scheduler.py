"""
Follow-up scheduler entrypoint (reminders, expired follow-ups, never-contacted,
New Member follow-up stages).

Operator notes:
- Run exactly one scheduler process per database.
- Interval and notification backend come from SCHEDULER_INTERVAL_S / NOTIFY_WEBHOOK_URL.
- If this file crashes, the error should be immediately obvious to the operator.
"""

import logging
import sys

from zoweh.config import settings
from zoweh.database import init_db
from zoweh.services.sweeps import run_forever


def main() -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    try:
        init_db()
        run_forever()
    except KeyboardInterrupt:
        logging.info("Scheduler stopped.")
    except Exception:
        logging.exception("Scheduler failed.")
        print("\n❌ Follow-up scheduler failed.")
        print("   See error above. Most common causes:")
        print("   - Database path/URL invalid (DATABASE_URL or DB_PATH)")
        print("   - NOTIFY_WEBHOOK_URL unreachable or misconfigured\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
