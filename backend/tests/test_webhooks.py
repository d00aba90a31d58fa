import json

import pytest
import stripe

from errors import InvalidArgument, NotConfigured
from payments.webhooks import StripeWebhookProcessor
from schemas.entities import MEMBERSHIPS, PAYMENTS, TargetKind


@pytest.fixture
def fake_construct_event(monkeypatch):
    """Accept signature "valid" and parse the JSON payload"""
    def construct_event(payload, sig_header, secret):
        if sig_header != "valid":
            raise stripe.SignatureVerificationError("bad signature", sig_header)
        return json.loads(payload)

    monkeypatch.setattr(stripe.Webhook, "construct_event", construct_event)


def _event(event_type, obj):
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


@pytest.mark.asyncio
async def test_missing_secret_is_not_configured(workflow):
    processor = StripeWebhookProcessor(workflow, webhook_secret="")

    with pytest.raises(NotConfigured):
        await processor.process(b"{}", "valid")


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(workflow, fake_construct_event):
    processor = StripeWebhookProcessor(workflow, webhook_secret="whsec_test")

    with pytest.raises(InvalidArgument):
        await processor.process(_event("payment_intent.succeeded", {"id": "pi_1"}), "forged")


@pytest.mark.asyncio
async def test_intent_succeeded_confirms_payment(store, seed, workflow, gateway, fake_construct_event):
    member = await seed.user()
    club = await seed.club(fee=20)
    intent = await workflow.create_payment_intent(member, TargetKind.CLUB, club.id)
    gateway.settle(intent.reference)
    processor = StripeWebhookProcessor(workflow, webhook_secret="whsec_test")

    result = await processor.process(
        _event("payment_intent.succeeded", {
            "id": intent.reference,
            "metadata": gateway.intents[intent.reference]["metadata"],
        }),
        "valid",
    )

    assert result == {"handled": True, "outcome": "confirmed"}
    client_confirm = await workflow.confirm_payment(member, TargetKind.CLUB, club.id, intent.reference)
    assert client_confirm.outcome == "already_confirmed"
    assert await store.collection(PAYMENTS).count_documents({}) == 1
    assert await store.collection(MEMBERSHIPS).count_documents({}) == 1


@pytest.mark.asyncio
async def test_foreign_and_unknown_events_are_acknowledged(workflow, fake_construct_event):
    processor = StripeWebhookProcessor(workflow, webhook_secret="whsec_test")

    foreign = await processor.process(
        _event("payment_intent.succeeded", {"id": "pi_elsewhere", "metadata": {}}), "valid"
    )
    unknown = await processor.process(_event("customer.created", {"id": "cus_1"}), "valid")

    assert foreign == {"handled": False, "reason": "metadata_missing"}
    assert unknown == {"handled": False, "event_type": "customer.created"}


@pytest.mark.asyncio
async def test_webhook_endpoint_confirms_checkout(api_client, store, seed, workflow, gateway, fake_construct_event):
    member = await seed.user()
    club = await seed.club()
    event = await seed.event(club, fee=8)
    checkout = await workflow.create_checkout_session(member, TargetKind.EVENT, event.id)
    gateway.pay_session(checkout.session_id)

    response = await api_client.post(
        "/api/stripe/webhook",
        content=_event("checkout.session.completed", {
            "id": checkout.session_id,
            "metadata": gateway.sessions[checkout.session_id]["metadata"],
        }),
        headers={"stripe-signature": "valid"},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": True, "outcome": "confirmed"}
    registration = await store.collection("event_registrations").find_one({"event_id": event.id})
    assert registration["amount_paid"] == 800


@pytest.mark.asyncio
async def test_webhook_endpoint_rejects_bad_signature(api_client, fake_construct_event):
    response = await api_client.post(
        "/api/stripe/webhook",
        content=_event("checkout.session.completed", {"id": "cs_1"}),
        headers={"stripe-signature": "forged"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_argument"
