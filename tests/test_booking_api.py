"""Tests for the booking and credit endpoints."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from callgate.db.enums import SuspensionKind, UserRole
from callgate.db.models import MonthlyCallLimit
from callgate.services import suspension_service


def _call_payload(organizer, counterparty, start, minutes=15):
    return {
        "organizer_id": str(organizer.id),
        "counterparty_id": str(counterparty.id),
        "start": start.isoformat(),
        "end": (start + timedelta(minutes=minutes)).isoformat(),
    }


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "env" in data
    assert "version" in data


# =============================================================================
# Eligibility
# =============================================================================


@pytest.mark.asyncio
async def test_eligibility_for_rep_with_connected_dm(client: AsyncClient, rep_with_connected_dm):
    rep, _ = rep_with_connected_dm

    response = await client.get(f"/booking/eligibility/{rep.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["can_book"] is True
    assert data["remaining_calls"] == 1
    assert data["reason"] is None


@pytest.mark.asyncio
async def test_eligibility_for_rep_without_dms(client: AsyncClient, make_user):
    rep = make_user(UserRole.SALES_REP)

    response = await client.get(f"/booking/eligibility/{rep.id}")

    data = response.json()
    assert data["can_book"] is False
    assert data["reason"] == "insufficient_allowance"
    assert "invite a Decision Maker" in data["message"]


@pytest.mark.asyncio
async def test_eligibility_unknown_user(client: AsyncClient):
    response = await client.get(f"/booking/eligibility/{uuid.uuid4()}")
    assert response.status_code == 404


# =============================================================================
# Slots
# =============================================================================


@pytest.mark.asyncio
async def test_day_slots_mark_existing_call(
    client: AsyncClient, rep_with_connected_dm, make_call, booking_day
):
    rep, dm = rep_with_connected_dm
    make_call(rep, dm, booking_day.replace(hour=10))

    response = await client.get(
        "/booking/slots",
        params={
            "organizer_id": str(rep.id),
            "counterparty_id": str(dm.id),
            "date": booking_day.date().isoformat(),
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["timezone"] == "UTC"
    assert len(data["slots"]) == 40
    ten = next(s for s in data["slots"] if s["start"].startswith(booking_day.date().isoformat() + "T10:00"))
    assert ten["is_available"] is False
    assert "organizer_internal" in ten["blocked_by"]


@pytest.mark.asyncio
async def test_day_slots_invalid_timezone(client: AsyncClient, rep_with_connected_dm, booking_day):
    rep, dm = rep_with_connected_dm

    response = await client.get(
        "/booking/slots",
        params={
            "organizer_id": str(rep.id),
            "counterparty_id": str(dm.id),
            "date": booking_day.date().isoformat(),
            "timezone": "Mars/Olympus_Mons",
        },
    )

    assert response.status_code == 422


# =============================================================================
# Booking
# =============================================================================


@pytest.mark.asyncio
async def test_book_call_consumes_allowance(
    client: AsyncClient, rep_with_connected_dm, booking_day
):
    rep, dm = rep_with_connected_dm

    response = await client.post(
        "/booking/calls", json=_call_payload(rep, dm, booking_day.replace(hour=10))
    )

    assert response.status_code == 201
    data = response.json()
    assert data["organizer_id"] == str(rep.id)
    assert data["status"] == "scheduled"
    assert data["remaining_calls"] == 0

    response = await client.post(
        "/booking/calls", json=_call_payload(rep, dm, booking_day.replace(hour=11))
    )

    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "insufficient_allowance"


@pytest.mark.asyncio
async def test_book_call_conflict(
    client: AsyncClient, make_user, make_call, booking_day
):
    organizer = make_user(UserRole.DECISION_MAKER)
    counterparty = make_user(UserRole.SALES_REP)
    other = make_user(UserRole.DECISION_MAKER)
    make_call(other, counterparty, booking_day.replace(hour=10))

    response = await client.post(
        "/booking/calls",
        json=_call_payload(organizer, counterparty, booking_day.replace(hour=10, minute=10)),
    )

    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "slot_conflict"

    # Nothing was charged for the refused booking
    response = await client.get(f"/booking/eligibility/{organizer.id}")
    assert response.json()["remaining_calls"] == 3


@pytest.mark.asyncio
async def test_book_call_suspended(
    client: AsyncClient, db, rep_with_connected_dm, booking_day
):
    rep, dm = rep_with_connected_dm
    suspension_service.apply_suspension(db, rep.id, SuspensionKind.MANUAL, "review", days=7)

    response = await client.post(
        "/booking/calls", json=_call_payload(rep, dm, booking_day.replace(hour=10))
    )

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["reason"] == "account_suspended"
    assert detail["message"].startswith("Your account has been suspended due to review.")


@pytest.mark.asyncio
async def test_book_call_rejects_reversed_interval(
    client: AsyncClient, rep_with_connected_dm, booking_day
):
    rep, dm = rep_with_connected_dm
    start = booking_day.replace(hour=10)

    response = await client.post(
        "/booking/calls",
        json={
            "organizer_id": str(rep.id),
            "counterparty_id": str(dm.id),
            "start": start.isoformat(),
            "end": (start - timedelta(minutes=15)).isoformat(),
        },
    )

    assert response.status_code == 422


# =============================================================================
# Credits
# =============================================================================


@pytest.mark.asyncio
async def test_monthly_limit_endpoint(client: AsyncClient, make_user):
    dm = make_user(UserRole.DECISION_MAKER)

    response = await client.get(f"/credits/{dm.id}/limit", params={"month": "2025-09"})

    assert response.status_code == 200
    data = response.json()
    assert data["month"] == "2025-09"
    assert data["user_role"] == "decision_maker"
    assert data["max_calls"] == 3
    assert data["remaining_calls"] == 3


@pytest.mark.asyncio
async def test_monthly_limit_uses_stored_role(client: AsyncClient, db, make_user):
    dm = make_user(UserRole.DECISION_MAKER)

    response = await client.get(
        f"/credits/{dm.id}/limit", params={"month": "2025-09", "role": "sales_rep"}
    )

    assert response.status_code == 200
    assert response.json()["user_role"] == "decision_maker"
    assert response.json()["max_calls"] == 3
    stored = db.query(MonthlyCallLimit).filter(MonthlyCallLimit.user_id == dm.id).one()
    assert stored.max_calls == 3


@pytest.mark.asyncio
async def test_monthly_limit_rejects_bad_month(client: AsyncClient, make_user):
    dm = make_user(UserRole.DECISION_MAKER)

    response = await client.get(f"/credits/{dm.id}/limit", params={"month": "Sept"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_award_and_list_credits(client: AsyncClient, rep_with_connected_dm):
    rep, dm = rep_with_connected_dm
    payload = {"rep_id": str(rep.id), "dm_id": str(dm.id)}

    response = await client.post("/credits/award", json=payload)
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["credit"]["source"] == "counterparty_onboarding"

    response = await client.post("/credits/award", json=payload)
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["reason"] in ("already_awarded", "counterparty_cap_reached")

    response = await client.get(f"/credits/{rep.id}/entries")
    assert response.status_code == 200
    data = response.json()
    assert data["total_credits"] == 1
    assert len(data["credits"]) == 1
