"""
The full collaboration lifecycle through the HTTP API: proposal, approval,
upfront payment confirmed by webhook, milestones, publishing and bonus.
"""

from decimal import Decimal

import pytest

from database.models import User, UserType

from conftest import auth_headers, payment_signature, webhook_body, webhook_signature

LIVE_URL = "https://www.instagram.com/reel/Cx1AbC2dEf3/"


@pytest.fixture
def submitted(client, campaign, influencer):
    response = client.post(
        "/api/proposals",
        json={
            "campaign_id": campaign.id,
            "proposal_text": "Three reels and a story across two weeks",
            "proposed_compensation": 10000,
        },
        headers=auth_headers(influencer),
    )
    assert response.status_code == 201, response.text
    return response.json()["proposal"]["id"]


@pytest.fixture
def paid_upfront(client, submitted, brand):
    """Approve the proposal and settle the upfront payment via webhook; returns the proposal id."""
    headers = auth_headers(brand)
    assert client.post(f"/api/proposals/{submitted}/approve", headers=headers).status_code == 200

    payment = client.post(f"/api/proposals/{submitted}/payments/upfront", headers=headers).json()["payment"]
    order = client.post(f"/api/payments/{payment['id']}/order", headers=headers).json()["payment"]

    body = webhook_body("payment.captured", "pay_e2e_upfront", order["gateway_order_id"], 590000)
    response = client.post(
        "/api/webhooks/razorpay",
        content=body,
        headers={"X-Razorpay-Signature": webhook_signature(body), "Content-Type": "application/json"},
    )
    assert response.json()["result"] == "completed"
    return submitted


def test_full_lifecycle(client, submitted, brand, influencer):
    brand_headers = auth_headers(brand)
    creator_headers = auth_headers(influencer)

    approved = client.post(f"/api/proposals/{submitted}/approve", json={"feedback": "Welcome aboard"},
                           headers=brand_headers)
    assert approved.status_code == 200
    assert approved.json()["proposal"]["status"] == "approved"
    assert approved.json()["transactionId"].startswith("tx_")

    created = client.post(f"/api/proposals/{submitted}/payments/upfront", headers=brand_headers).json()
    assert created["created"] is True
    payment = created["payment"]
    assert Decimal(payment["amount"]) == Decimal("5900.00")
    assert payment["status"] == "created"

    repeat = client.post(f"/api/proposals/{submitted}/payments/upfront", headers=brand_headers).json()
    assert repeat["created"] is False
    assert repeat["payment"]["id"] == payment["id"]

    order = client.post(f"/api/payments/{payment['id']}/order", headers=brand_headers)
    assert order.status_code == 200
    assert order.json()["payment"]["status"] == "processing"
    order_id = order.json()["payment"]["gateway_order_id"]

    body = webhook_body("payment.captured", "pay_e2e_1", order_id, 590000)
    hook = client.post("/api/webhooks/razorpay", content=body,
                       headers={"X-Razorpay-Signature": webhook_signature(body)})
    assert hook.status_code == 200
    assert hook.json() == {
        "success": True, "event": "payment.captured", "result": "completed", "transactionId": "webhook-pay_e2e_1",
    }

    proposal = client.get(f"/api/proposals/{submitted}", headers=brand_headers).json()
    assert proposal["payment_status"] == "work_in_progress"

    listing = client.get(f"/api/proposals/{submitted}/milestones", headers=creator_headers).json()
    milestones = listing["milestones"]
    assert [m["order"] for m in milestones] == [1, 2, 3, 4, 5]

    for milestone in milestones[:4]:
        response = client.post(f"/api/milestones/{milestone['id']}/complete", headers=creator_headers)
        assert response.status_code == 200, response.text

    publishing = client.post(
        f"/api/milestones/{milestones[4]['id']}/complete",
        json={"liveUrl": LIVE_URL},
        headers=creator_headers,
    )
    assert publishing.status_code == 200, publishing.text
    result = publishing.json()
    assert result["progress"] == 100
    assert result["milestone"]["status"] == "completed"
    assert result["integrationStatus"]["bonus_payment"] == "created"
    assert Decimal(result["bonusPayment"]["amount"]) == Decimal("1180.00")

    proposal = client.get(f"/api/proposals/{submitted}", headers=creator_headers).json()
    assert proposal["progress_percentage"] == 100


def test_content_approval_releases_completion_payment(client, paid_upfront, brand, influencer):
    brand_headers = auth_headers(brand)
    creator_headers = auth_headers(influencer)

    submitted = client.post(
        f"/api/proposals/{paid_upfront}/content",
        json={"title": "Monsoon reel", "platform": "instagram", "content_type": "reel",
              "content_url": "https://cdn.example.com/drafts/reel.mp4"},
        headers=creator_headers,
    )
    assert submitted.status_code == 201, submitted.text
    assert submitted.json()["payment_status"] == "deliverables_submitted"
    content_id = submitted.json()["content"]["id"]

    reviewed = client.post(f"/api/content/{content_id}/review", json={"action": "approve"}, headers=brand_headers)
    assert reviewed.status_code == 200, reviewed.text
    assert reviewed.json()["payment_status"] == "completion_payment_pending"
    completion = reviewed.json()["completionPayment"]
    assert completion["payment_type"] == "completion"
    assert Decimal(completion["amount"]) == Decimal("5900.00")

    order_id = client.post(f"/api/payments/{completion['id']}/order",
                           headers=brand_headers).json()["payment"]["gateway_order_id"]
    confirmed = client.post(
        f"/api/payments/{completion['id']}/confirm",
        json={"gateway_payment_id": "pay_e2e_done", "gateway_order_id": order_id,
              "signature": payment_signature(order_id, "pay_e2e_done")},
        headers=brand_headers,
    )
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["payment"]["status"] == "completed"

    proposal = client.get(f"/api/proposals/{paid_upfront}", headers=brand_headers).json()
    assert proposal["payment_status"] == "paid"
    assert proposal["completed_at"] is not None


def test_content_rejection_requests_revision(client, paid_upfront, brand, influencer):
    content_id = client.post(
        f"/api/proposals/{paid_upfront}/content",
        json={"title": "First cut", "platform": "instagram", "content_type": "reel"},
        headers=auth_headers(influencer),
    ).json()["content"]["id"]

    missing_feedback = client.post(f"/api/content/{content_id}/review", json={"action": "reject"},
                                   headers=auth_headers(brand))
    assert missing_feedback.status_code == 400
    assert missing_feedback.json()["code"] == "VALIDATION_ERROR"

    rejected = client.post(f"/api/content/{content_id}/review",
                           json={"action": "reject", "feedback": "Show the product earlier"},
                           headers=auth_headers(brand))
    assert rejected.status_code == 200
    assert rejected.json()["payment_status"] == "work_in_progress"
    assert rejected.json()["content"]["status"] == "rejected"


def test_workflow_errors_use_the_error_envelope(client, submitted, brand):
    headers = auth_headers(brand)
    client.post(f"/api/proposals/{submitted}/approve", headers=headers)

    response = client.post(f"/api/proposals/{submitted}/approve", headers=headers)

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "INVALID_STATE_TRANSITION"
    assert body["transactionId"].startswith("tx_")


def test_tampered_webhook_is_rejected(client, paid_upfront):
    body = webhook_body("payment.captured", "pay_forged", "order_forged", 100)

    response = client.post("/api/webhooks/razorpay", content=body, headers={"X-Signature": "0" * 64})

    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"
    assert response.json()["error"] == "Invalid signature"


def test_unconfigured_bonus_still_returns_a_transaction_id(client, db, campaign, paid_upfront, brand):
    campaign.payment_structure = {"upfront": 50, "completion": 50, "bonus": 0}
    db.commit()

    response = client.post(f"/api/proposals/{paid_upfront}/payments/bonus", headers=auth_headers(brand))

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is False
    assert body["payment"] is None
    assert body["transactionId"].startswith("tx_")


def test_creator_sees_net_payouts_only(client, paid_upfront, influencer, brand):
    creator_view = client.get(f"/api/proposals/{paid_upfront}/payments", headers=auth_headers(influencer)).json()
    brand_view = client.get(f"/api/proposals/{paid_upfront}/payments", headers=auth_headers(brand)).json()

    assert Decimal(creator_view[0]["net_amount"]) == Decimal("5605.00")
    assert "amount" not in creator_view[0]
    assert "gateway_order_id" not in creator_view[0]
    assert Decimal(brand_view[0]["amount"]) == Decimal("5900.00")
    assert brand_view[0]["gateway_payment_id"] == "pay_e2e_upfront"


def test_other_brands_cannot_see_the_proposal(client, db, submitted):
    rival = User(email="rival@example.com", name="Rival", user_type=UserType.BRAND)
    db.add(rival)
    db.commit()

    assert client.get(f"/api/proposals/{submitted}", headers=auth_headers(rival)).status_code == 404
    assert client.post(f"/api/proposals/{submitted}/approve", headers=auth_headers(rival)).status_code == 404


def test_creators_cannot_approve(client, submitted, influencer):
    response = client.post(f"/api/proposals/{submitted}/approve", headers=auth_headers(influencer))

    assert response.status_code == 403


def test_requests_without_token_are_refused(client, submitted):
    assert client.get(f"/api/proposals/{submitted}").status_code in (401, 403)


def test_audit_trail_endpoints(client, paid_upfront, brand, admin, influencer):
    trail = client.get(f"/api/proposals/{paid_upfront}/audit", headers=auth_headers(brand))
    assert trail.status_code == 200
    actions = [e["action"] for e in trail.json()]
    assert {"proposal_submitted", "proposal_approved", "payment_created", "payment_completed"} <= set(actions)

    traced = client.get("/api/audit/webhook-pay_e2e_upfront", headers=auth_headers(admin))
    assert traced.status_code == 200
    assert all(e["correlation_id"] == "webhook-pay_e2e_upfront" for e in traced.json())

    assert client.get("/api/audit/tx_unknown", headers=auth_headers(admin)).status_code == 404
    assert client.get(f"/api/proposals/{paid_upfront}/audit", headers=auth_headers(influencer)).status_code == 403


def test_milestone_reset_is_admin_only(client, paid_upfront, influencer):
    milestone_id = client.get(f"/api/proposals/{paid_upfront}/milestones",
                              headers=auth_headers(influencer)).json()["milestones"][0]["id"]

    assert client.post(f"/api/milestones/{milestone_id}/reset", headers=auth_headers(influencer)).status_code == 403


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
