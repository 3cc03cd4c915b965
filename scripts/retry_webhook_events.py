#!/usr/bin/env python3
"""
Replay stored Paystack webhook events that failed to process.
Events are processed oldest first; already-processed events are skipped by the
reconciler, so the script is safe to run repeatedly.

Usage: python scripts/retry_webhook_events.py [--limit 100] [--event-type charge.success]
"""
import argparse
import os
import sys

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.services.paystack import PaystackClient
from app.services.webhook_reconciler import retry_unprocessed_events


def main():
    parser = argparse.ArgumentParser(description="Replay unprocessed Paystack webhook events")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--event-type", default=None)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        print("=" * 60)
        print("Retry Paystack Webhook Events")
        print("=" * 60)
        succeeded, failed = retry_unprocessed_events(
            db, provider=PaystackClient(), limit=args.limit, event_type=args.event_type
        )
        print(f"Processed: {succeeded}")
        print(f"Still failing: {failed}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
