"""Pytest fixtures. Mongo is replaced by mongomock and Resend by FakeMailer."""

import re
from datetime import datetime

import mongomock
import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestingConfig

code_pattern = re.compile(r"\b(\d{6})\b")


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, to, subject, html_body, text_body=None):
        if self.fail_with:
            return False, self.fail_with
        self.sent.append(
            {"to": to, "subject": subject, "html": html_body, "text": text_body}
        )
        return True, None

    @property
    def last_code(self):
        match = code_pattern.search(self.sent[-1]["text"])
        return match.group(1)


@pytest.fixture
def database():
    return mongomock.MongoClient().kapee_test


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(database, mailer):
    return create_app(TestingConfig, database=database, mailer=mailer)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def account(database):
    document = {
        "name": "Alice",
        "email": "a@example.com",
        "role": "user",
        "email_verified": False,
        "created_at": datetime.utcnow(),
    }
    document["_id"] = database.users.insert_one(document).inserted_id
    return document


@pytest.fixture
def admin_headers(app, database):
    database.users.insert_one(
        {
            "name": "Admin",
            "email": TestingConfig.DEFAULT_ADMIN_EMAIL,
            "role": "admin",
            "email_verified": True,
            "created_at": datetime.utcnow(),
        }
    )
    with app.app_context():
        token = create_access_token(identity=TestingConfig.DEFAULT_ADMIN_EMAIL)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(app, account):
    with app.app_context():
        token = create_access_token(identity=account["email"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def product(database):
    document = {
        "name": "Wireless Headphones",
        "description": "Over-ear headphones with noise cancelling.",
        "price": 129.99,
        "quantity": 12,
        "category": "Electronics",
        "image": "https://cdn.example.com/headphones.png",
        "created_at": datetime.utcnow(),
    }
    document["_id"] = database.products.insert_one(document).inserted_id
    return document
