"""HTTP surface under /payments"""
from urllib.parse import parse_qs, urlencode, urlparse
import uuid

import pytest

from app.core.config import settings
from app.core.security import create_checkout_token
from app.models.audit_log import AuditAction, AuditLog
from app.models.payment import Payment, PaymentStatus
from app.models.payment_event import PaymentEvent
from app.models.payment_method import PaymentMethod
from app.services.billing.payment_methods import save_payment_token
from app.services.billing.subscriptions import get_organization_subscription

CONVERGE_IP = {"X-Forwarded-For": "198.241.162.10"}


def _audit_actions(db, org_id):
    return [row.action for row in db.query(AuditLog).filter(AuditLog.org_id == org_id).all()]


def _cards(db, org, customer, count=2):
    numbers = ["41**********1111", "55**********4444", "37*********0005"]
    methods = [save_payment_token(db, org.id, f"tok-{i}", numbers[i], "12/27") for i in range(count)]
    db.commit()
    return methods


# -- guards -------------------------------------------------------------------

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requires_bearer_token(client, org):
    response = client.get("/payments/plans")
    assert response.status_code in (401, 403)


def test_rejects_invalid_token(client, org):
    response = client.get("/payments/plans", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_billing_disabled(client, org, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "FEATURE_BILLING_ENABLED", False)

    response = client.get("/payments/plans", headers=auth_headers(org))
    assert response.status_code == 503
    assert response.json()["code"] == "SERVICE_UNAVAILABLE"


def test_member_cannot_start_checkout(client, org, plans, auth_headers):
    response = client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "monthly"},
        headers=auth_headers(org, role="member"),
    )
    assert response.status_code == 403
    assert response.json() == {"detail": "Admin access required", "code": "AUTHORIZATION_ERROR"}


# -- plans and checkout -------------------------------------------------------

def test_list_plans(client, org, auth_headers):
    response = client.get("/payments/plans", headers=auth_headers(org, role="viewer"))

    assert response.status_code == 200
    plans = response.json()["plans"]
    assert [p["type"] for p in plans] == ["free", "starter", "professional", "enterprise"]
    assert plans[1]["price_monthly"] == 2900
    assert plans[3]["max_seats"] == -1


def test_create_checkout_session(client, db, org, plans, auth_headers):
    response = client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "monthly"},
        headers=auth_headers(org),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["session_token"].startswith("INV-")
    query = parse_qs(urlparse(body["hosted_page_url"]).query)
    assert query["ssl_amount"] == ["29.00"]
    assert query["ssl_email"] == ["ada@acme.test"]
    receipt_url = urlparse(query["ssl_receipt_link_url"][0])
    assert receipt_url._replace(query="").geturl() == "http://testserver/payments/callback"
    assert list(parse_qs(receipt_url.query)) == ["checkout_token"]

    payment = db.query(Payment).filter(Payment.org_id == org.id).one()
    assert payment.status == PaymentStatus.PENDING.value
    assert AuditAction.CHECKOUT_SESSION_CREATED in _audit_actions(db, org.id)


def test_checkout_for_free_plan_is_payment_error(client, org, plans, auth_headers):
    response = client.post(
        "/payments/session",
        json={"plan_id": str(plans["free"].id), "billing_interval": "monthly"},
        headers=auth_headers(org),
    )
    assert response.status_code == 402
    assert response.json()["detail"] == "Free plan does not require payment"


def test_checkout_validates_interval(client, org, plans, auth_headers):
    response = client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "weekly"},
        headers=auth_headers(org),
    )
    assert response.status_code == 422


def test_callback_success_activates_plan_and_redirects(client, db, org, plans, auth_headers):
    headers = auth_headers(org)
    session = client.post(
        "/payments/session",
        json={"plan_id": str(plans["professional"].id), "billing_interval": "yearly"},
        headers=headers,
    ).json()

    response = client.get(
        "/payments/callback",
        params={
            "ssl_result": "0",
            "ssl_txn_id": "T1",
            "ssl_approval_code": "A1",
            "ssl_invoice_number": session["session_token"],
        },
        headers=headers,
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{settings.FRONTEND_URL}/app/billing?success=true"
    subscription = get_organization_subscription(db, org.id)
    assert subscription.plan_id == plans["professional"].id
    assert subscription.billing_interval == "yearly"
    assert AuditAction.SUBSCRIPTION_CREATED in _audit_actions(db, org.id)


def test_callback_decline_redirects_with_user_message(client, db, org, plans, auth_headers):
    headers = auth_headers(org)
    client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "monthly"},
        headers=headers,
    )

    response = client.get(
        "/payments/callback",
        params={"ssl_result": "1", "errorCode": "4002", "errorMessage": "DECLINED CVV2"},
        headers=headers,
        follow_redirects=False,
    )

    assert response.status_code == 302
    error = parse_qs(urlparse(response.headers["location"]).query)["error"][0]
    assert error == "Your card was declined. Please try a different payment method."
    assert get_organization_subscription(db, org.id).plan_id == plans["free"].id


def test_callback_without_session_redirects_to_sign_in(client, org):
    response = client.get("/payments/callback", params={"ssl_result": "0"}, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].endswith("/auth/signin?callbackUrl=/app/billing")


def test_callback_from_browser_redirect_uses_checkout_token(client, db, org, plans, auth_headers):
    session = client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "monthly"},
        headers=auth_headers(org),
    ).json()
    receipt_url = parse_qs(urlparse(session["hosted_page_url"]).query)["ssl_receipt_link_url"][0]

    # Converge appends its result fields to the receipt link; the browser sends no Authorization header
    response = client.get(
        receipt_url + "&" + urlencode({
            "ssl_result": "0",
            "ssl_txn_id": "T1",
            "ssl_approval_code": "A1",
            "ssl_invoice_number": session["session_token"],
        }),
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{settings.FRONTEND_URL}/app/billing?success=true"
    payment = db.query(Payment).filter(Payment.org_id == org.id).one()
    assert payment.status == PaymentStatus.COMPLETED.value
    assert get_organization_subscription(db, org.id).plan_id == plans["starter"].id

    callback_event = db.query(PaymentEvent).filter(PaymentEvent.event_type == "callback_received").one()
    assert "checkout_token" not in callback_event.raw_payload
    audit = db.query(AuditLog).filter(AuditLog.action == AuditAction.SUBSCRIPTION_CREATED).one()
    assert audit.user_id is not None


def test_callback_with_forged_checkout_token_redirects_to_sign_in(client, db, org, plans, auth_headers):
    client.post(
        "/payments/session",
        json={"plan_id": str(plans["starter"].id), "billing_interval": "monthly"},
        headers=auth_headers(org),
    )

    response = client.get(
        "/payments/callback",
        params={"checkout_token": "not-a-token", "ssl_result": "0", "ssl_txn_id": "T1"},
        follow_redirects=False,
    )

    assert response.headers["location"].endswith("/auth/signin?callbackUrl=/app/billing")
    assert db.query(Payment).one().status == PaymentStatus.PENDING.value


def test_plain_session_token_is_not_a_checkout_token(client, org, auth_headers):
    bearer = auth_headers(org)["Authorization"].split(" ", 1)[1]

    response = client.get(
        "/payments/callback",
        params={"checkout_token": bearer, "ssl_result": "0"},
        follow_redirects=False,
    )
    assert response.headers["location"].endswith("/auth/signin?callbackUrl=/app/billing")


def test_checkout_token_is_not_a_bearer_token(client, org):
    token = create_checkout_token(user_id="u-1", org_id=str(org.id), email="ada@acme.test", role="owner")

    response = client.get("/payments/plans", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_callback_when_billing_disabled(client, org, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "FEATURE_BILLING_ENABLED", False)

    response = client.get("/payments/callback", headers=auth_headers(org), follow_redirects=False)
    assert response.headers["location"].endswith("/app/billing?error=billing_disabled")


# -- webhook ------------------------------------------------------------------

def test_webhook_completes_processing_payment(client, db, org, make_payment):
    payment = make_payment(org.id, status=PaymentStatus.PROCESSING.value, gateway_transaction_id="T5")

    response = client.post(
        "/payments/webhook",
        data={"ssl_txn_id": "T5", "ssl_result": "0", "ssl_amount": "29.00"},
        headers=CONVERGE_IP,
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED.value
    assert AuditAction.PAYMENT_COMPLETED in _audit_actions(db, org.id)


def test_webhook_unknown_transaction_is_acknowledged(client, db):
    response = client.post(
        "/payments/webhook",
        data={"ssl_txn_id": "UNKNOWN", "ssl_result": "0"},
        headers=CONVERGE_IP,
    )
    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_webhook_rejects_foreign_ip(client, org, make_payment):
    make_payment(org.id, status=PaymentStatus.PROCESSING.value, gateway_transaction_id="T5")

    response = client.post(
        "/payments/webhook",
        data={"ssl_txn_id": "T5", "ssl_result": "0"},
        headers={"X-Forwarded-For": "203.0.113.9"},
    )
    assert response.status_code == 403


def test_webhook_rejects_incomplete_payload(client):
    response = client.post("/payments/webhook", data={"ssl_result": "0"}, headers=CONVERGE_IP)
    assert response.status_code == 400


def test_webhook_when_billing_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "FEATURE_BILLING_ENABLED", False)
    response = client.post("/payments/webhook", data={"ssl_txn_id": "T5", "ssl_result": "0"}, headers=CONVERGE_IP)
    assert response.status_code == 503


# -- subscription -------------------------------------------------------------

def test_get_subscription(client, org, auth_headers):
    response = client.get("/payments/subscription", headers=auth_headers(org, role="member"))

    assert response.status_code == 200
    subscription = response.json()["subscription"]
    assert subscription["status"] == "active"
    assert subscription["plan"]["type"] == "free"
    assert subscription["effective_cancellation_at"] is None


def test_get_subscription_none(client, bare_org, auth_headers):
    response = client.get("/payments/subscription", headers=auth_headers(bare_org))
    assert response.json() == {"subscription": None}


def test_select_free_plan(client, db, bare_org, plans, auth_headers):
    response = client.post(
        "/payments/subscription",
        json={"plan_id": str(plans["free"].id)},
        headers=auth_headers(bare_org),
    )

    assert response.status_code == 201
    assert response.json()["subscription"]["plan_id"] == str(plans["free"].id)
    assert AuditAction.SUBSCRIPTION_CREATED in _audit_actions(db, bare_org.id)


def test_select_free_plan_twice_conflicts(client, org, plans, auth_headers):
    response = client.post(
        "/payments/subscription",
        json={"plan_id": str(plans["free"].id)},
        headers=auth_headers(org),
    )
    assert response.status_code == 409


def test_select_paid_plan_without_payment_is_rejected(client, bare_org, plans, auth_headers):
    response = client.post(
        "/payments/subscription",
        json={"plan_id": str(plans["starter"].id)},
        headers=auth_headers(bare_org),
    )
    assert response.status_code == 400


def test_cancel_at_period_end(client, db, org, plans, auth_headers):
    from app.services.billing.subscriptions import activate_subscription
    activate_subscription(db, org.id, plans["starter"].id, "monthly")

    response = client.patch("/payments/subscription", json={"cancel": True}, headers=auth_headers(org))

    assert response.status_code == 200
    subscription = response.json()["subscription"]
    assert subscription["cancel_at_period_end"] is True
    assert subscription["plan_id"] == str(plans["starter"].id)
    assert subscription["effective_cancellation_at"] == subscription["current_period_end"]
    assert AuditAction.SUBSCRIPTION_CANCELED in _audit_actions(db, org.id)


def test_cancel_immediately(client, db, org, plans, auth_headers):
    from app.services.billing.subscriptions import activate_subscription
    activate_subscription(db, org.id, plans["starter"].id, "monthly")

    response = client.patch(
        "/payments/subscription",
        json={"cancel": True, "cancel_immediately": True},
        headers=auth_headers(org),
    )

    subscription = response.json()["subscription"]
    assert subscription["status"] == "canceled"
    assert subscription["plan"]["type"] == "free"


def test_flag_cancel_at_period_end(client, db, org, auth_headers):
    response = client.patch("/payments/subscription", json={"cancel_at_period_end": True}, headers=auth_headers(org))

    assert response.json()["subscription"]["cancel_at_period_end"] is True
    assert AuditAction.SUBSCRIPTION_UPDATED in _audit_actions(db, org.id)


def test_plan_upgrade_via_patch_is_rejected(client, org, plans, auth_headers):
    response = client.patch(
        "/payments/subscription",
        json={"plan_id": str(plans["enterprise"].id)},
        headers=auth_headers(org),
    )
    assert response.status_code == 400
    assert "POST /payments/session" in response.json()["detail"]


# -- history ------------------------------------------------------------------

def test_history(client, org, make_payment, auth_headers):
    for _ in range(3):
        make_payment(org.id)
    make_payment(org.id, status=PaymentStatus.FAILED.value)

    response = client.get("/payments/history", params={"limit": 2}, headers=auth_headers(org, role="member"))
    body = response.json()
    assert response.status_code == 200
    assert len(body["payments"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}

    failed = client.get("/payments/history", params={"status": "failed"}, headers=auth_headers(org)).json()
    assert failed["pagination"]["total"] == 1


def test_history_rejects_bad_paging(client, org, auth_headers):
    assert client.get("/payments/history", params={"limit": 500}, headers=auth_headers(org)).status_code == 422
    assert client.get("/payments/history", params={"page": 0}, headers=auth_headers(org)).status_code == 422


# -- payment methods ----------------------------------------------------------

def test_list_methods_hides_token(client, db, org, customer, auth_headers):
    _cards(db, org, customer)

    response = client.get("/payments/methods", headers=auth_headers(org, role="member"))

    methods = response.json()["methods"]
    assert [m["card_last4"] for m in methods] == ["1111", "4444"]
    assert [m["is_default"] for m in methods] == [True, False]
    assert all("gateway_token" not in m for m in methods)
    assert "tok-0" not in response.text


def test_set_default_method(client, db, org, customer, auth_headers):
    first, second = _cards(db, org, customer)

    response = client.patch(f"/payments/methods/{second.id}", json={"is_default": True}, headers=auth_headers(org))

    assert response.status_code == 200
    assert response.json()["method"]["is_default"] is True
    db.refresh(first)
    assert first.is_default is False
    assert AuditAction.PAYMENT_METHOD_UPDATED in _audit_actions(db, org.id)


def test_delete_method(client, db, org, customer, auth_headers):
    first, second = _cards(db, org, customer)

    response = client.delete(f"/payments/methods/{first.id}", headers=auth_headers(org))

    assert response.status_code == 200
    assert response.json() == {"success": True}
    remaining = db.query(PaymentMethod).filter(PaymentMethod.org_id == org.id).all()
    assert [m.id for m in remaining] == [second.id]
    assert remaining[0].is_default is True
    assert AuditAction.PAYMENT_METHOD_REMOVED in _audit_actions(db, org.id)


def test_method_of_other_org_is_not_found(client, db, org, customer, plans, auth_headers):
    from app.services.billing.subscriptions import provision_organization
    (method,) = _cards(db, org, customer, count=1)
    other = provision_organization(db, "Other Org")

    response = client.delete(f"/payments/methods/{method.id}", headers=auth_headers(other))
    assert response.status_code == 404


# -- refunds ------------------------------------------------------------------

def test_refund_requires_owner(client, org, make_payment, auth_headers):
    payment = make_payment(org.id)
    response = client.post("/payments/refund", json={"payment_id": str(payment.id)}, headers=auth_headers(org))
    assert response.status_code == 403


def test_partial_refund(client, db, org, make_payment, auth_headers):
    payment = make_payment(org.id, amount=2900)

    response = client.post(
        "/payments/refund",
        json={"payment_id": str(payment.id), "amount": 1000, "reason": "Duplicate seat"},
        headers=auth_headers(org, role="owner"),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "refund_amount": 1000}
    db.refresh(payment)
    assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
    audit = db.query(AuditLog).filter(AuditLog.action == AuditAction.PAYMENT_REFUNDED).one()
    assert audit.details == {"refund_amount": 1000, "reason": "Duplicate seat"}


def test_refund_declined(client, converge, org, make_payment, auth_headers):
    payment = make_payment(org.id)
    converge.reply("ssl_result=1\nerrorCode=4001")

    response = client.post(
        "/payments/refund",
        json={"payment_id": str(payment.id)},
        headers=auth_headers(org, role="owner"),
    )

    assert response.status_code == 400
    assert response.json() == {
        "detail": "This transaction is not allowed. Please contact support.",
        "code": "REFUND_FAILED",
    }


def test_refund_of_pending_payment(client, org, make_payment, auth_headers):
    payment = make_payment(org.id, status=PaymentStatus.PENDING.value)

    response = client.post(
        "/payments/refund",
        json={"payment_id": str(payment.id)},
        headers=auth_headers(org, role="owner"),
    )
    assert response.status_code == 402
    assert response.json()["detail"] == "Only completed payments can be refunded"


@pytest.mark.parametrize("body", [{"amount": 0}, {"amount": -5}, {"reason": "x" * 501}])
def test_refund_request_validation(client, org, auth_headers, body):
    response = client.post(
        "/payments/refund",
        json={"payment_id": str(uuid.uuid4()), **body},
        headers=auth_headers(org, role="owner"),
    )
    assert response.status_code == 422


def test_refund_unknown_payment(client, org, auth_headers):
    response = client.post(
        "/payments/refund",
        json={"payment_id": str(uuid.uuid4())},
        headers=auth_headers(org, role="owner"),
    )
    assert response.status_code == 404
    assert response.json() == {"detail": "Payment not found", "code": "NOT_FOUND"}
