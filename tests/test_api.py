from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from studiobook.auth.jwt import create_access_token
from studiobook.core.conversions import utcnow
from studiobook.db.postgresql import get_db
from studiobook.main import app
from studiobook.models import PlanPurchase, Ticket

from helpers import count_rows

CLIENT = 41

RESERVE = """
mutation Reserve($input: ReserveInput!) {
  reserve(input: $input) {
    success
    message
    code
    duplicated
    remainingClasses
    ticketToken
    booking { id status sessionId clientId ticketExpiresAt }
  }
}
"""

JOIN_WAITLIST = """
mutation Join($input: JoinWaitlistInput!) {
  joinWaitlist(input: $input) {
    success
    code
    waitlistCount
    entry { position clientId }
  }
}
"""

PURCHASE_PLAN = """
mutation Purchase($input: PurchasePlanInput!) {
  purchasePlan(input: $input) {
    success
    code
    planPurchase { id clientId remainingClasses }
  }
}
"""


def _headers(role: str, actor_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(actor_id), 'role': role})}"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_reserve_through_graphql(client, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT, classes=5)

    response = await client.post(
        "/graphql",
        json={"query": RESERVE, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT}}},
        headers=_headers("client", CLIENT),
    )

    body = response.json()
    assert "errors" not in body
    data = body["data"]["reserve"]
    assert data["success"] is True
    assert data["duplicated"] is False
    assert data["remainingClasses"] == 4
    assert data["booking"]["status"] == "CONFIRMED"
    assert data["booking"]["clientId"] == CLIENT
    assert len(data["ticketToken"]) == 10

    ticket = await client.get(f"/tickets/{data['ticketToken']}")
    assert ticket.status_code == 200
    assert ticket.json()["bookingId"] == data["booking"]["id"]


@pytest.mark.asyncio
async def test_reserve_reports_business_errors(client, factory):
    session = await factory.class_session()

    response = await client.post(
        "/graphql",
        json={"query": RESERVE, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT}}},
        headers=_headers("client", CLIENT),
    )

    data = response.json()["data"]["reserve"]
    assert data["success"] is False
    assert data["code"] == "NO_ACTIVE_PLAN"
    assert data["booking"] is None


@pytest.mark.asyncio
async def test_client_cannot_book_for_someone_else(client, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT + 1)

    response = await client.post(
        "/graphql",
        json={"query": RESERVE, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT + 1}}},
        headers=_headers("client", CLIENT),
    )

    data = response.json()["data"]["reserve"]
    assert data["success"] is False
    assert data["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_staff_can_book_for_client(client, factory):
    session = await factory.class_session()
    await factory.plan(CLIENT)

    response = await client.post(
        "/graphql",
        json={"query": RESERVE, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT}}},
        headers=_headers("staff", 900),
    )

    assert response.json()["data"]["reserve"]["success"] is True


@pytest.mark.asyncio
async def test_anonymous_requests_are_rejected(client, factory):
    session = await factory.class_session()

    response = await client.post(
        "/graphql",
        json={"query": RESERVE, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT}}},
    )

    body = response.json()
    assert body["data"] is None
    assert body["errors"][0]["message"] == "Authentication required."


@pytest.mark.asyncio
async def test_join_waitlist_through_graphql(client, factory):
    session = await factory.class_session(capacity=1)
    await factory.booking(session, 1)

    response = await client.post(
        "/graphql",
        json={"query": JOIN_WAITLIST, "variables": {"input": {"sessionId": session.id, "clientId": CLIENT}}},
        headers=_headers("client", CLIENT),
    )

    data = response.json()["data"]["joinWaitlist"]
    assert data["success"] is True
    assert data["waitlistCount"] == 1
    assert data["entry"] == {"position": 1, "clientId": CLIENT}


@pytest.mark.asyncio
async def test_ticket_endpoint_errors(client, factory, session_factory):
    session = await factory.class_session(starts_in=timedelta(hours=-8))
    booking = await factory.booking(session, CLIENT)
    async with session_factory() as db:
        db.add(Ticket(
            booking_id=booking.id,
            token="EXPJRED234",
            expires_at=utcnow() - timedelta(hours=2),
            issued_at=utcnow() - timedelta(days=1),
        ))
        await db.commit()

    missing = await client.get("/tickets/NOPE234567")
    assert missing.status_code == 404

    expired = await client.get("/tickets/expjred234")
    assert expired.status_code == 410


@pytest.mark.asyncio
async def test_clients_cannot_grant_themselves_plans(client, factory, session_factory):
    plan_type = await factory.plan_type(class_count=50)

    response = await client.post(
        "/graphql",
        json={"query": PURCHASE_PLAN, "variables": {"input": {"clientId": CLIENT, "planTypeId": plan_type.id}}},
        headers=_headers("client", CLIENT),
    )

    data = response.json()["data"]["purchasePlan"]
    assert data["success"] is False
    assert data["code"] == "FORBIDDEN"
    assert data["planPurchase"] is None
    assert await count_rows(session_factory, PlanPurchase) == 0


@pytest.mark.asyncio
async def test_staff_record_plan_for_client(client, factory, session_factory):
    plan_type = await factory.plan_type(class_count=8)

    response = await client.post(
        "/graphql",
        json={"query": PURCHASE_PLAN, "variables": {"input": {"clientId": CLIENT, "planTypeId": plan_type.id}}},
        headers=_headers("staff", 900),
    )

    data = response.json()["data"]["purchasePlan"]
    assert data["success"] is True
    assert data["planPurchase"]["clientId"] == CLIENT
    assert data["planPurchase"]["remainingClasses"] == 8
    assert await count_rows(session_factory, PlanPurchase, PlanPurchase.client_id == CLIENT) == 1
