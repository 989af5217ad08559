#!/usr/bin/env python3
"""Create or update the default subscription plans (Free, Starter, Professional, Enterprise)."""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.db.session import SessionLocal
from app.services.billing.plans import seed_plans


def main():
    db: Session = SessionLocal()
    try:
        plans = seed_plans(db)
        print(f"Seeded {len(plans)} subscription plans:")
        for plan in plans:
            print(f"  {plan.name:<14} ${plan.price_monthly / 100:>7.2f}/mo  ${plan.price_yearly / 100:>8.2f}/yr  ({plan.id})")
    except Exception as e:
        print(f"Error seeding plans: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
