#!/usr/bin/env python3
"""
Put every organization that has no subscription row on the free plan.
Organizations created before billing was switched on never went through
provisioning, so they have nothing to show on the billing page.
"""
import os
import sys

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.core.errors import ConflictError
from app.models.organization import Organization
from app.models.subscription import Subscription
from app.services.billing.subscriptions import create_free_subscription

db = SessionLocal()

print("=" * 60)
print("Fix Missing Subscriptions")
print("=" * 60)
print()

try:
    orgs_without_subscription = (
        db.query(Organization)
        .outerjoin(Subscription, Subscription.org_id == Organization.id)
        .filter(Subscription.id.is_(None))
        .all()
    )
    print(f"Found {len(orgs_without_subscription)} organizations without a subscription")

    created_count = 0
    for org in orgs_without_subscription:
        try:
            create_free_subscription(db, org.id)
            created_count += 1
            print(f"  ✓ {org.name} ({org.id})")
        except ConflictError:
            # Created concurrently by provisioning
            db.rollback()
            print(f"  - {org.name} ({org.id}) already has one")

    print()
    print(f"Created {created_count} free subscriptions")
finally:
    db.close()
