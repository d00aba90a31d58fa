import pytest

from schemas.entities import (
    AUDIT_EVENTS,
    EVENT_REGISTRATIONS,
    MEMBERSHIPS,
    PAYMENTS,
    Membership,
    Payment,
    TargetKind,
)
from tasks.reconciliation import reconcile_payments


async def _orphan_payment(store, user_email, kind, club_id, event_id=None, reference="pi_orphan"):
    payment = Payment(
        user_email=user_email,
        type=kind,
        club_id=club_id,
        event_id=event_id,
        amount=1500,
        currency="usd",
        gateway_reference=reference,
    )
    payment.id = await store.collection(PAYMENTS).insert_one(payment.to_document())
    return payment


@pytest.mark.asyncio
async def test_orphan_payments_get_their_access(store, seed):
    member = await seed.user()
    club = await seed.club(fee=15)
    event = await seed.event(club, fee=15)
    club_payment = await _orphan_payment(store, member.email, TargetKind.CLUB, club.id)
    event_payment = await _orphan_payment(store, member.email, TargetKind.EVENT, club.id,
                                          event_id=event.id, reference="pi_orphan_event")

    result = await reconcile_payments(store)

    assert result == {"scanned": 2, "repaired": 2, "failed": 0}
    membership = await store.collection(MEMBERSHIPS).find_one({"user_email": member.email})
    assert membership["payment_id"] == club_payment.id
    assert membership["expires_at"] is not None
    registration = await store.collection(EVENT_REGISTRATIONS).find_one({"event_id": event.id})
    assert registration["payment_id"] == event_payment.id
    assert registration["amount_paid"] == 1500
    assert await store.collection(AUDIT_EVENTS).count_documents({"event_type": "reconcile.repaired"}) == 2


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(store, seed, workflow, gateway):
    member = await seed.user()
    club = await seed.club(fee=10)
    intent = await workflow.create_payment_intent(member, TargetKind.CLUB, club.id)
    gateway.settle(intent.reference)
    await workflow.confirm_payment(member, TargetKind.CLUB, club.id, intent.reference)

    first = await reconcile_payments(store)
    second = await reconcile_payments(store)

    assert first == {"scanned": 1, "repaired": 0, "failed": 0}
    assert second == first
    assert await store.collection(MEMBERSHIPS).count_documents({}) == 1


@pytest.mark.asyncio
async def test_payment_for_deleted_club_is_counted_as_failed(store, seed):
    member = await seed.user()
    await _orphan_payment(store, member.email, TargetKind.CLUB, "0b8f8f62-4e3c-4ad6-9d5b-0f0a5d1b2c3d")

    result = await reconcile_payments(store)

    assert result == {"scanned": 1, "repaired": 0, "failed": 1}


@pytest.mark.asyncio
async def test_orphan_outside_first_page_is_repaired(store, seed):
    club = await seed.club(fee=15)
    orphan_owner = await seed.user("orphan@example.com")
    orphan = await _orphan_payment(store, orphan_owner.email, TargetKind.CLUB, club.id, reference="pi_old")

    for n in range(3):
        member = await seed.user(f"member{n}@example.com")
        paid = await _orphan_payment(store, member.email, TargetKind.CLUB, club.id, reference=f"pi_ok_{n}")
        await store.collection(MEMBERSHIPS).insert_one(
            Membership(user_email=member.email, club_id=club.id, payment_id=paid.id).to_document()
        )

    result = await reconcile_payments(store, limit=1)

    assert result == {"scanned": 4, "repaired": 1, "failed": 0}
    membership = await store.collection(MEMBERSHIPS).find_one({"user_email": orphan_owner.email})
    assert membership["payment_id"] == orphan.id
    assert await reconcile_payments(store, limit=3) == {"scanned": 4, "repaired": 0, "failed": 0}
