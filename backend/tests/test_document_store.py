import pytest

from database import _where
from errors import DuplicateKeyError, InvalidArgument
from schemas.entities import CLUBS, MEMBERSHIPS, PAYMENTS, USERS
from storage.document_store import ASCENDING, DESCENDING


@pytest.mark.asyncio
async def test_insert_find_update_delete(store):
    clubs = store.collection(CLUBS)
    club_id = await clubs.insert_one({"name": "Chess", "membership_fee": 0})

    doc = await clubs.find_one({"id": club_id})
    assert doc == {"id": club_id, "name": "Chess", "membership_fee": 0}

    assert await clubs.update_one({"id": club_id}, {"membership_fee": 5})
    assert (await clubs.find_one({"id": club_id}))["membership_fee"] == 5
    assert not await clubs.update_one({"id": "missing"}, {"membership_fee": 1})

    assert await clubs.delete_one({"id": club_id})
    assert await clubs.find_one({"id": club_id}) is None


@pytest.mark.asyncio
async def test_returned_documents_are_copies(store):
    clubs = store.collection(CLUBS)
    club_id = await clubs.insert_one({"name": "Chess", "tags": ["a"]})

    doc = await clubs.find_one({"id": club_id})
    doc["tags"].append("mutated")

    assert (await clubs.find_one({"id": club_id}))["tags"] == ["a"]


@pytest.mark.asyncio
async def test_unique_keys(store):
    users = store.collection(USERS)
    await users.insert_one({"email": "a@example.com"})
    with pytest.raises(DuplicateKeyError) as exc:
        await users.insert_one({"email": "a@example.com"})
    assert exc.value.collection == USERS

    memberships = store.collection(MEMBERSHIPS)
    await memberships.insert_one({"user_email": "a@example.com", "club_id": "c1"})
    await memberships.insert_one({"user_email": "a@example.com", "club_id": "c2"})
    with pytest.raises(DuplicateKeyError):
        await memberships.insert_one({"user_email": "a@example.com", "club_id": "c1"})


@pytest.mark.asyncio
async def test_filters_sort_and_limit(store):
    clubs = store.collection(CLUBS)
    for name, fee in (("Chess Club", 10), ("Book club", 0), ("Rowing", 25)):
        await clubs.insert_one({"name": name, "membership_fee": fee, "status": "approved"})

    found = await clubs.find({"name": {"$contains": "CLUB"}}, sort=[("membership_fee", DESCENDING)])
    assert [d["name"] for d in found] == ["Chess Club", "Book club"]

    cheapest = await clubs.find({}, sort=[("membership_fee", ASCENDING)], limit=2)
    assert [d["membership_fee"] for d in cheapest] == [0, 10]

    picked = await clubs.find({"name": {"$in": ["Rowing", "Nope"]}})
    assert [d["name"] for d in picked] == ["Rowing"]
    assert await clubs.count_documents({"status": "approved"}) == 3


@pytest.mark.asyncio
async def test_invalid_filters_are_rejected(store):
    clubs = store.collection(CLUBS)
    with pytest.raises(InvalidArgument):
        await clubs.find({"name; drop table": "x"})
    with pytest.raises(InvalidArgument):
        await clubs.find({"name": {"$where": "1"}})
    with pytest.raises(InvalidArgument):
        await clubs.find({}, sort=[("name", 0)])


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(store):
    payments = store.collection(PAYMENTS)
    memberships = store.collection(MEMBERSHIPS)
    await memberships.insert_one({"user_email": "a@example.com", "club_id": "c1"})

    with pytest.raises(DuplicateKeyError):
        async with store.transaction(lock_key="club:c1"):
            await payments.insert_one({"gateway_reference": "pi_1", "amount": 100})
            await memberships.insert_one({"user_email": "a@example.com", "club_id": "c1"})

    assert await payments.count_documents() == 0
    assert await memberships.count_documents() == 1


@pytest.mark.asyncio
async def test_transaction_commits(store):
    payments = store.collection(PAYMENTS)
    async with store.transaction():
        await payments.insert_one({"gateway_reference": "pi_1", "amount": 100})
        await payments.insert_one({"gateway_reference": "pi_2", "amount": 200})

    assert await payments.count_documents() == 2


@pytest.mark.asyncio
async def test_keyset_paging_by_id_visits_every_document(store):
    clubs = store.collection(CLUBS)
    ids = {await clubs.insert_one({"name": f"Club {n}"}) for n in range(5)}

    seen = []
    cursor = None
    while True:
        filter = {"id": {"$gt": cursor}} if cursor else {}
        page = await clubs.find(filter, sort=[("id", ASCENDING)], limit=2)
        seen.extend(d["id"] for d in page)
        if len(page) < 2:
            break
        cursor = page[-1]["id"]

    assert seen == sorted(ids)


def test_postgres_filters_compare_plain_text():
    params = []
    where = _where(
        {"user_email": {"$in": ["zoë@example.com"]}, "id": {"$gt": "abc"}, "status": "active"},
        params,
    )

    assert "(doc->>'user_email') COLLATE \"C\" = ANY($1::text[])" in where
    assert 'id COLLATE "C" > $2' in where
    assert "doc @> $3::jsonb" in where
    assert params == [["zoë@example.com"], "abc", {"status": "active"}]
