#!/usr/bin/env python3
"""
Mark hosted checkouts that never came back from the payment page as failed.

Run from cron, e.g. every 15 minutes:
    python scripts/expire_stale_payments.py --older-than-minutes 60
"""
import argparse
import sys
import os
from datetime import timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.billing.payments import expire_stale_pending_payments


def main():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=settings.HOSTED_SESSION_TTL_MINUTES,
        help="Pending payments older than this are expired (default: HOSTED_SESSION_TTL_MINUTES)",
    )
    args = parser.parse_args()

    db: Session = SessionLocal()
    try:
        expired = expire_stale_pending_payments(db, older_than=timedelta(minutes=args.older_than_minutes))
        print(f"Expired {expired} stale pending payment(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
