"""
tests/test_users.py
Tests for user profile management.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.lifecycle import BookingLifecycle
from shared.models.models import BookingStatus, Notification, User
from tests.conftest import auth_headers, make_booking


@pytest.mark.asyncio
async def test_get_user_profile(client: AsyncClient, user: User):
    response = await client.get("/users/me", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == user.email
    assert data["first_name"] == "Amira"
    assert data["preferred_language"] == "en"


@pytest.mark.asyncio
async def test_update_user_name(client: AsyncClient, user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(user),
        json={"first_name": "Amina", "phone": "+216 20 123 456"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["first_name"] == "Amina"
    assert data["last_name"] == "Ben Salah"
    assert data["phone"] == "+216 20 123 456"


@pytest.mark.asyncio
async def test_update_rejects_unsupported_language(client: AsyncClient, user: User):
    response = await client.put(
        "/users/me", headers=auth_headers(user), json={"preferred_language": "de"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_phone_rejected(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User
):
    other_user.phone = "+216 98 765 432"
    await db.commit()

    response = await client.put(
        "/users/me", headers=auth_headers(user), json={"phone": "+216 98 765 432"}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_language_change_applies_to_next_notification(
    client: AsyncClient, db: AsyncSession, lifecycle: BookingLifecycle, user: User, provider_user: User
):
    response = await client.put(
        "/users/me", headers=auth_headers(user), json={"preferred_language": "fr"}
    )
    assert response.json()["preferred_language"] == "fr"

    booking = await make_booking(db, user, provider_user, BookingStatus.PENDING)
    await lifecycle.accept(booking.id, provider_user)

    title = await db.scalar(select(Notification.title).where(Notification.user_id == user.id))
    assert title == "🎉 Réservation confirmée !"


@pytest.mark.asyncio
async def test_get_other_user(client: AsyncClient, user: User, provider_user: User):
    response = await client.get(f"/users/{provider_user.id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["first_name"] == "Sami"


@pytest.mark.asyncio
async def test_get_unknown_or_suspended_user(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User
):
    response = await client.get(f"/users/{uuid.uuid4()}", headers=auth_headers(user))
    assert response.status_code == 404

    other_user.is_active = False
    await db.commit()
    response = await client.get(f"/users/{other_user.id}", headers=auth_headers(user))
    assert response.status_code == 404
