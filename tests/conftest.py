from datetime import datetime, timedelta
from itertools import count

import pytest
from flask_jwt_extended import create_access_token

from library_system import create_app
from library_system.config import TestConfig
from library_system.extensions import db
from library_system.models.book import Book
from library_system.models.user import User
from library_system.services.mail_service import MailService
from library_system.services.sms_service import SmsService

START = datetime(2024, 3, 1, 10, 0, 0)
PASSWORD = "secret123"

_seq = count(1)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, when: datetime):
        self.current = when


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Every email / SMS the app tries to send, as (channel, recipient, subject, body)."""
    sent = []

    def fake_email(to_email, subject, body):
        sent.append(("email", to_email, subject, body))
        return True, None

    def fake_sms(to_phone, body):
        sent.append(("sms", to_phone, None, body))
        return True, None

    monkeypatch.setattr(MailService, "send_email", staticmethod(fake_email))
    monkeypatch.setattr(SmsService, "send_sms", staticmethod(fake_sms))
    return sent


def make_user(role="member", verified=True, **fields) -> User:
    n = next(_seq)
    user = User(
        first_name=fields.pop("first_name", f"User{n}"),
        last_name=fields.pop("last_name", "Tester"),
        email=fields.pop("email", f"user{n}@example.com"),
        phone=fields.pop("phone", f"+90555000{n:04d}"),
        role=role,
        membership_number=f"LIB2024{n:06d}",
        is_email_verified=verified,
        is_phone_verified=verified,
        created_at=START,
        **fields,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


def make_book(total=1, **fields) -> Book:
    n = next(_seq)
    book = Book(
        title=fields.pop("title", f"Book {n}"),
        author=fields.pop("author", "Some Author"),
        isbn=fields.pop("isbn", f"978{n:010d}"),
        publisher="Acme Press",
        publication_year=2001,
        genre=fields.pop("genre", "Fiction"),
        total_copies=total,
        available_copies=fields.pop("available", total),
        created_at=START,
        **fields,
    )
    db.session.add(book)
    db.session.commit()
    return book


def auth_headers(user: User) -> dict:
    token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(app):
    return make_user(role="admin", first_name="Ada")


@pytest.fixture
def member(app):
    return make_user(first_name="Mia")


@pytest.fixture
def other_member(app):
    return make_user(first_name="Otto")


@pytest.fixture
def book(app):
    return make_book(total=1, title="Dune")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def member_headers(member):
    return auth_headers(member)
