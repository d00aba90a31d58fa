import pytest

from schemas.entities import MEMBERSHIPS, PAYMENTS


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] == "memory"
    assert "X-Request-Id" in response.headers
    assert "X-Response-Time-Ms" in response.headers


@pytest.mark.asyncio
async def test_join_requires_session(api_client, seed):
    club = await seed.club()

    response = await api_client.post(f"/api/clubs/{club.id}/join")

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


@pytest.mark.asyncio
async def test_free_join_with_cookie_is_idempotent(api_client, seed, store, auth):
    member = await seed.user()
    club = await seed.club()
    token = auth(member.email)["Authorization"].split(" ", 1)[1]
    api_client.cookies.set("token", token)

    first = await api_client.post(f"/api/clubs/{club.id}/join")
    second = await api_client.post(f"/api/clubs/{club.id}/join")

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["already"] is False
    assert second.status_code == 200
    assert second.json()["already"] is True
    assert set(first.json()) == set(second.json())
    assert await store.collection(MEMBERSHIPS).count_documents({}) == 1


@pytest.mark.asyncio
async def test_paid_join_over_http(api_client, seed, store, gateway, auth):
    member = await seed.user()
    club = await seed.club(fee=25)
    headers = auth(member.email)

    free = await api_client.post(f"/api/clubs/{club.id}/join", headers=headers)
    assert free.status_code == 409
    assert free.json()["error"] == "invalid_state"

    intent = await api_client.post(f"/api/clubs/{club.id}/create-payment-intent", headers=headers)
    assert intent.status_code == 200
    assert intent.json()["amount"] == 2500
    reference = intent.json()["reference"]

    pending = await api_client.post(
        f"/api/clubs/{club.id}/join/confirm", json={"payment_intent_id": reference}, headers=headers
    )
    assert pending.status_code == 402
    assert pending.json()["error"] == "payment_not_completed"

    gateway.settle(reference)
    confirmed = await api_client.post(
        f"/api/clubs/{club.id}/join/confirm", json={"payment_intent_id": reference}, headers=headers
    )
    replay = await api_client.post(
        f"/api/clubs/{club.id}/join/confirm", json={"payment_intent_id": reference}, headers=headers
    )

    assert confirmed.status_code == 200
    assert confirmed.json()["outcome"] == "confirmed"
    assert confirmed.json()["payment"]["amount"] == 2500
    assert replay.json()["outcome"] == "already_confirmed"
    assert replay.json()["already"] is True
    assert await store.collection(PAYMENTS).count_documents({}) == 1

    memberships = await api_client.get("/api/member/memberships", headers=headers)
    assert memberships.status_code == 200
    assert memberships.json()[0]["club"]["name"] == club.name

    payments = await api_client.get("/api/member/payments", headers=headers)
    assert [p["gateway_reference"] for p in payments.json()] == [reference]


@pytest.mark.asyncio
async def test_confirm_without_reference_is_bad_request(api_client, seed, auth):
    member = await seed.user()
    club = await seed.club(fee=5)

    response = await api_client.post(
        f"/api/clubs/{club.id}/join/confirm", json={}, headers=auth(member.email)
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_argument"


@pytest.mark.asyncio
async def test_malformed_and_unknown_ids(api_client, seed, auth):
    member = await seed.user()
    headers = auth(member.email)

    malformed = await api_client.post("/api/events/xyz/register", headers=headers)
    unknown = await api_client.post(
        "/api/events/1d6b6d8e-5b0c-4b8e-8a51-3e7a1c2b4f60/register", headers=headers
    )

    assert malformed.status_code == 400
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "not_found", "detail": "event not found"}


@pytest.mark.asyncio
async def test_full_event_over_http(api_client, seed, auth):
    club = await seed.club()
    event = await seed.event(club, max_attendees=1)
    first = await seed.user("first@example.com")
    second = await seed.user("second@example.com")

    ok = await api_client.post(f"/api/events/{event.id}/register", headers=auth(first.email))
    full = await api_client.post(f"/api/events/{event.id}/register", headers=auth(second.email))

    assert ok.status_code == 200
    assert full.status_code == 409
    assert full.json()["error"] == "full"

    registrations = await api_client.get("/api/member/registrations", headers=auth(first.email))
    assert registrations.json()[0]["event"]["title"] == event.title


@pytest.mark.asyncio
async def test_event_checkout_over_http(api_client, seed, gateway, auth):
    member = await seed.user()
    club = await seed.club()
    event = await seed.event(club, fee=9.99)
    headers = auth(member.email)

    checkout = await api_client.post(f"/api/events/{event.id}/create-checkout-session", headers=headers)
    assert checkout.status_code == 200
    session_id = checkout.json()["session_id"]
    assert checkout.json()["session_url"].endswith(session_id)

    gateway.pay_session(session_id)
    success = await api_client.post(
        f"/api/events/{event.id}/checkout-success", json={"session_id": session_id}, headers=headers
    )

    assert success.status_code == 200
    assert success.json()["record"]["amount_paid"] == 999
