#!/usr/bin/env python3
"""Seed script to create or update the standard subscription plans"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.db.session import SessionLocal
from app.services.plan_catalog import upsert_plans, STANDARD_PLANS


def seed_plans():
    db: Session = SessionLocal()
    try:
        created, updated = upsert_plans(db, STANDARD_PLANS)
        print(f"Plans created: {created}, updated: {updated}")
        for plan in STANDARD_PLANS:
            print(f"  {plan['name']:<12} {plan['monthly_price'] // 100:>8,} / month")
    except Exception as e:
        db.rollback()
        print(f"Error seeding plans: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_plans()
