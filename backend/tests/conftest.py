import sys
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend modules are importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from api.server import create_app
from errors import InvalidArgument
from payments.gateway import (
    CheckoutHandle,
    IntentHandle,
    PaymentGateway,
    PaymentStatus,
    SessionStatus,
)
from schemas.entities import CLUBS, EVENTS, USERS, Club, ClubStatus, Event, Role, User, utcnow
from services.identity import Principal, issue_token
from services.workflow import JoinWorkflow
from storage.document_store import InMemoryDocumentStore

WEBHOOK_SECRET = "whsec_test"


# =============================================================================
# SCRIPTED GATEWAY
# =============================================================================

class FakePaymentGateway(PaymentGateway):
    """In-process gateway whose payment outcomes are set by the test"""

    def __init__(self):
        self.intents: Dict[str, dict] = {}
        self.sessions: Dict[str, dict] = {}
        self.status_calls = 0

    async def create_intent(self, amount, currency, metadata):
        reference = f"pi_test_{len(self.intents) + 1}"
        self.intents[reference] = {
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "state": "pending",
            "captured": 0,
        }
        return IntentHandle(reference=reference, client_secret=f"{reference}_secret")

    def settle(self, reference: str, state: str = "succeeded", captured: Optional[int] = None):
        intent = self.intents[reference]
        intent["state"] = state
        if captured is None:
            captured = intent["amount"] if state == "succeeded" else 0
        intent["captured"] = captured

    async def retrieve_status(self, reference):
        self.status_calls += 1
        intent = self.intents.get(reference)
        if intent is None:
            raise InvalidArgument(f"no such payment intent: {reference}")
        return PaymentStatus(
            state=intent["state"],
            captured_amount=intent["captured"],
            currency=intent["currency"],
            metadata=intent["metadata"],
        )

    async def create_checkout_session(self, line_item, currency, success_url, cancel_url,
                                      metadata, customer_email=None):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {
            "amount": line_item.amount,
            "currency": currency,
            "metadata": dict(metadata),
            "paid": False,
            "success_url": success_url,
            "customer_email": customer_email,
        }
        return CheckoutHandle(session_url=f"https://checkout.test/{session_id}", session_id=session_id)

    def pay_session(self, session_id: str):
        self.sessions[session_id]["paid"] = True

    async def retrieve_session(self, session_id):
        self.status_calls += 1
        session = self.sessions.get(session_id)
        if session is None:
            raise InvalidArgument(f"no such checkout session: {session_id}")
        return SessionStatus(
            payment_state="paid" if session["paid"] else "unpaid",
            captured_amount=session["amount"] if session["paid"] else 0,
            currency=session["currency"],
            payment_reference=f"pi_for_{session_id}" if session["paid"] else None,
            metadata=session["metadata"],
        )


# =============================================================================
# SEED DATA
# =============================================================================

class Seeder:
    def __init__(self, store):
        self.store = store

    async def user(self, email: str = "member@example.com", role: Role = Role.MEMBER) -> Principal:
        user = User(email=email, name=email.split("@")[0], role=role)
        await self.store.collection(USERS).insert_one(user.to_document())
        return Principal(email=user.email, role=role)

    async def club(self, fee: float = 0, status: ClubStatus = ClubStatus.APPROVED,
                   manager: str = "manager@example.com", name: str = "Chess Club",
                   category: str = "games") -> Club:
        club = Club(name=name, description=f"{name} description", category=category,
                    membership_fee=fee, status=status, manager_email=manager)
        club.id = await self.store.collection(CLUBS).insert_one(club.to_document())
        return club

    async def event(self, club: Club, fee: float = 0, max_attendees: Optional[int] = None,
                    title: str = "Open Night", days_ahead: int = 7) -> Event:
        event = Event(
            club_id=club.id,
            title=title,
            event_date=utcnow() + timedelta(days=days_ahead),
            is_paid=fee > 0,
            event_fee=fee,
            max_attendees=max_attendees,
            manager_email=club.manager_email,
        )
        event.id = await self.store.collection(EVENTS).insert_one(event.to_document())
        return event


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def workflow(store, gateway):
    return JoinWorkflow(store, gateway, currency="usd", frontend_url="http://app.test")


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def auth():
    def _headers(email: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(email)}"}
    return _headers


@pytest_asyncio.fixture
async def api_client(store, gateway):
    app = create_app(store=store, gateway=gateway, webhook_secret=WEBHOOK_SECRET)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
