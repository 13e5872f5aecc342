"""
tests/test_tasks.py
Celery tasks run eagerly against a throwaway SQLite file.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

import tasks.notification_tasks as notification_tasks
from config.database import Base
from shared.models.models import Language, Notification, NotificationType, RefreshToken, User, UserRole
from shared.utils.i18n import Translator
from tasks.maintenance_tasks import purge_stale_refresh_tokens
from tasks.notification_tasks import (
    DatabaseTask,
    build_email_html,
    send_notification_email,
    sync_database_url,
)


@pytest.fixture
def sync_session(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'tasks.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    monkeypatch.setattr(DatabaseTask, "_sessionmaker", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to_email, to_name, subject, html_body):
        sent.append({"to": to_email, "name": to_name, "subject": subject, "html": html_body})
        return True

    monkeypatch.setattr(notification_tasks, "_send_email", fake_send)
    return sent


def _seed_notification(factory, language=Language.AR, is_active=True) -> str:
    with factory() as db:
        user = User(
            email="nour@example.com",
            password_hash="x",
            first_name="Nour",
            last_name="Haddad",
            role=UserRole.CLIENT,
            preferred_language=language,
            is_active=is_active,
        )
        db.add(user)
        db.flush()
        notif = Notification(
            user_id=user.id,
            title="تم تأكيد الحجز",
            message="<b>Sami</b> confirmed",
            type=NotificationType.BOOKING_UPDATE,
        )
        db.add(notif)
        db.commit()
        return str(notif.id)


# ── Helpers ────────────────────────────────────────────────────────────────────

def test_sync_database_url():
    assert (
        sync_database_url("postgresql+asyncpg://u:p@db:5432/market")
        == "postgresql+psycopg2://u:p@db:5432/market"
    )
    assert sync_database_url("sqlite+aiosqlite:///./dev.db") == "sqlite:///./dev.db"


def test_build_email_html_escapes_and_sets_direction():
    body = build_email_html("Hi <there>", "a & b", Translator("ar"))
    assert 'dir="rtl"' in body
    assert "Hi &lt;there&gt;" in body
    assert "a &amp; b" in body

    body = build_email_html("Hello", "World", Translator("en"))
    assert 'dir="ltr"' in body
    assert "You received this email because" in body


def test_send_email_reports_failure(monkeypatch):
    def explode(params):
        raise RuntimeError("resend down")

    monkeypatch.setattr(notification_tasks.resend.Emails, "send", explode)
    assert notification_tasks._send_email("a@example.com", "A", "Subject", "<p>x</p>") is False


def test_send_email_success(monkeypatch):
    calls = []
    monkeypatch.setattr(notification_tasks.resend.Emails, "send", lambda params: calls.append(params))

    assert notification_tasks._send_email("a@example.com", "Amira", "Subject", "<p>x</p>") is True
    assert calls[0]["to"] == ["Amira <a@example.com>"]
    assert calls[0]["subject"] == "Subject"


# ── send_notification_email ────────────────────────────────────────────────────

def test_notification_email_sent_in_users_language(sync_session, sent_emails):
    notification_id = _seed_notification(sync_session)

    assert send_notification_email.apply(args=[notification_id]).get() is True
    assert len(sent_emails) == 1
    email = sent_emails[0]
    assert email["to"] == "nour@example.com"
    assert email["name"] == "Nour Haddad"
    assert email["subject"] == "تم تأكيد الحجز"
    assert 'dir="rtl"' in email["html"]
    assert "&lt;b&gt;Sami&lt;/b&gt;" in email["html"]


def test_notification_email_skips_inactive_user(sync_session, sent_emails):
    notification_id = _seed_notification(sync_session, is_active=False)

    assert send_notification_email.apply(args=[notification_id]).get() is False
    assert sent_emails == []


def test_notification_email_missing_row(sync_session, sent_emails):
    assert send_notification_email.apply(args=[str(uuid.uuid4())]).get() is False
    assert sent_emails == []


# ── Maintenance ────────────────────────────────────────────────────────────────

def test_purge_stale_refresh_tokens(sync_session):
    now = datetime.now(timezone.utc)
    with sync_session() as db:
        user_id = uuid.uuid4()
        db.add(User(id=user_id, email="t@example.com", password_hash="x", role=UserRole.CLIENT))
        db.add_all([
            RefreshToken(user_id=user_id, token_hash="expired", expires_at=now - timedelta(days=10),
                         created_at=now - timedelta(days=40)),
            RefreshToken(user_id=user_id, token_hash="revoked", expires_at=now + timedelta(days=20),
                         is_revoked=True, created_at=now - timedelta(days=10)),
            RefreshToken(user_id=user_id, token_hash="recently-revoked", expires_at=now + timedelta(days=20),
                         is_revoked=True, created_at=now - timedelta(days=1)),
            RefreshToken(user_id=user_id, token_hash="live", expires_at=now + timedelta(days=20),
                         created_at=now - timedelta(days=10)),
        ])
        db.commit()

    assert purge_stale_refresh_tokens.apply().get() == 2

    with sync_session() as db:
        remaining = set(db.scalars(select(RefreshToken.token_hash)))
    assert remaining == {"recently-revoked", "live"}
