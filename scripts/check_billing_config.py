#!/usr/bin/env python3
"""
Print the billing configuration this process would run with.
Secrets are masked; use it to debug "Payment system configuration error" responses.
"""
import os
import sys

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.errors import PaymentError
from app.services.billing.providers import get_payment_gateway


def _mask(value):
    if not value:
        return "(not set)"
    return "***" + value[-4:] if len(value) > 4 else "***"


print("=" * 60)
print("Billing Configuration Check")
print("=" * 60)
print(f"  ENVIRONMENT: {settings.ENVIRONMENT}")
print(f"  FEATURE_BILLING_ENABLED: {settings.FEATURE_BILLING_ENABLED}")
print(f"  PAYMENT_GATEWAY: {settings.PAYMENT_GATEWAY}")
print(f"  FRONTEND_URL: {settings.FRONTEND_URL}")
print()
print("Elavon Converge:")
print(f"  ELAVON_MERCHANT_ID: {settings.ELAVON_MERCHANT_ID or '(not set)'}")
print(f"  ELAVON_USER_ID: {settings.ELAVON_USER_ID or '(not set)'}")
print(f"  ELAVON_PIN: {_mask(settings.ELAVON_PIN)}")
print(f"  ELAVON_API_URL: {settings.ELAVON_API_URL}")
print(f"  ELAVON_HOSTED_URL: {settings.ELAVON_HOSTED_URL}")
print(f"  ELAVON_STRICT_INVOICE_MATCH: {settings.ELAVON_STRICT_INVOICE_MATCH}")
print(f"  ELAVON_STRICT_CARD_MATCH: {settings.ELAVON_STRICT_CARD_MATCH}")
print(f"  Webhook IP prefixes: {', '.join(settings.get_webhook_ip_prefixes())}")
print()

if not settings.FEATURE_BILLING_ENABLED:
    print("⚠️  Billing is disabled: every /payments route answers 503")

try:
    gateway = get_payment_gateway()
    credentials = getattr(gateway, "credentials", "")
    print(f"✓ Gateway ready: {gateway.__class__.__name__} ({credentials!r})")
except PaymentError as e:
    print(f"✗ Gateway not usable: {e.message}")
    print("   Set ELAVON_MERCHANT_ID, ELAVON_USER_ID and ELAVON_PIN")
    sys.exit(1)
