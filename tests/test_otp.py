"""OTP issuance, verification and resend."""

import logging
from datetime import datetime, timedelta

import pytest
from pymongo.errors import PyMongoError

import otp
from accounts import AccountDirectory
from otp import OtpService, OtpStore, generate_otp_code


@pytest.fixture
def fixed_codes(monkeypatch):
    codes = iter(["123456", "234567", "345678", "456789"])
    monkeypatch.setattr(otp, "generate_otp_code", lambda: next(codes))


def test_generate_otp_code_is_six_digits_in_range():
    for _ in range(500):
        code = generate_otp_code()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999


def test_create_unknown_email_returns_not_found(client, mailer):
    r = client.post("/api/otp/create", json={"email": "nobody@example.com"})
    assert r.status_code == 404
    assert r.json["error"] == "NotFound"
    assert mailer.sent == []


def test_create_rejects_malformed_email(client):
    r = client.post("/api/otp/create", json={"email": "not-an-email"})
    assert r.status_code == 400
    assert r.json["error"] == "ValidationFailed"


def test_create_sends_code_and_returns_expiry(client, account, mailer, database):
    before = datetime.utcnow()
    r = client.post("/api/otp/create", json={"email": "A@Example.com "})
    assert r.status_code == 200
    data = r.json
    assert data["success"] is True
    assert data["expires_in_seconds"] == 300
    assert data["user_id"] == str(account["_id"])

    expires_at = datetime.fromisoformat(data["expires_at"].rstrip("Z"))
    assert before + timedelta(minutes=5) - timedelta(seconds=5) <= expires_at
    assert expires_at <= datetime.utcnow() + timedelta(minutes=5)

    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "a@example.com"
    assert mailer.last_code not in data.values()

    record = database.otp_codes.find_one({"subject_id": str(account["_id"])})
    assert record is not None
    assert "code" not in record
    assert record["code_hash"] != mailer.last_code


def test_verify_scenario_wrong_then_right_then_replay(client, account, fixed_codes):
    r = client.post("/api/otp/create", json={"email": "a@example.com"})
    assert r.status_code == 200

    wrong = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "654321"}
    )
    assert wrong.status_code == 400
    assert wrong.json["error"] == "InvalidOrExpired"

    right = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "123456"}
    )
    assert right.status_code == 200
    assert right.json["verified"] is True
    assert right.json["user"]["email"] == "a@example.com"
    assert right.json["access_token"]

    replay = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "123456"}
    )
    assert replay.status_code == 400
    assert replay.json["error"] == "InvalidOrExpired"


def test_verify_marks_account_verified_and_clears_codes(
    client, account, database, fixed_codes
):
    client.post("/api/otp/create", json={"email": "a@example.com"})
    client.post("/api/otp/verify", json={"email": "a@example.com", "otp": "123456"})

    stored = database.users.find_one({"_id": account["_id"]})
    assert stored["email_verified"] is True
    assert isinstance(stored["verified_at"], datetime)
    assert database.otp_codes.count_documents({}) == 0


def test_expired_code_is_indistinguishable_from_wrong_code(
    client, account, database, fixed_codes
):
    client.post("/api/otp/create", json={"email": "a@example.com"})
    database.otp_codes.update_many(
        {}, {"$set": {"expires_at": datetime.utcnow() - timedelta(seconds=1)}}
    )

    expired = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "123456"}
    )
    wrong = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "999999"}
    )
    assert expired.status_code == wrong.status_code == 400
    assert expired.json == wrong.json


def test_new_issuance_invalidates_previous_code(client, account, database, fixed_codes):
    client.post("/api/otp/create", json={"email": "a@example.com"})
    client.post("/api/otp/create", json={"email": "a@example.com"})
    assert database.otp_codes.count_documents({}) == 1

    old = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "123456"}
    )
    assert old.status_code == 400

    new = client.post(
        "/api/otp/verify", json={"email": "a@example.com", "otp": "234567"}
    )
    assert new.status_code == 200


def test_verify_rejects_non_numeric_code(client, account):
    r = client.post("/api/otp/verify", json={"email": "a@example.com", "otp": "12ab56"})
    assert r.status_code == 400
    assert r.json["error"] == "ValidationFailed"


def test_verify_unknown_email_returns_not_found(client):
    r = client.post(
        "/api/otp/verify", json={"email": "ghost@example.com", "otp": "123456"}
    )
    assert r.status_code == 404


def test_delivery_failure_rolls_back_code(client, account, mailer, database):
    mailer.fail_with = "Resend API key is not configured."
    r = client.post("/api/otp/create", json={"email": "a@example.com"})
    assert r.status_code == 502
    assert r.json["error"] == "DeliveryFailed"
    assert database.otp_codes.count_documents({}) == 0

    # the subject is back to no code, so a retry goes through
    mailer.fail_with = None
    retry = client.post("/api/otp/resend", json={"email": "a@example.com"})
    assert retry.status_code == 200
    assert database.otp_codes.count_documents({}) == 1


def test_resend_within_cooldown_is_rate_limited(client, account, database, mailer):
    first = client.post("/api/otp/resend", json={"email": "a@example.com"})
    assert first.status_code == 200
    stored = database.otp_codes.find_one({})

    second = client.post("/api/otp/resend", json={"email": "a@example.com"})
    assert second.status_code == 429
    assert second.json["error"] == "RateLimited"
    assert second.json["retry_after_seconds"] >= 1

    assert database.otp_codes.count_documents({}) == 1
    unchanged = database.otp_codes.find_one({})
    assert unchanged["_id"] == stored["_id"]
    assert unchanged["code_hash"] == stored["code_hash"]
    assert len(mailer.sent) == 1


def test_resend_after_cooldown_issues_new_code(client, account, database, fixed_codes):
    client.post("/api/otp/create", json={"email": "a@example.com"})
    database.otp_codes.update_many(
        {}, {"$set": {"created_at": datetime.utcnow() - timedelta(seconds=61)}}
    )

    r = client.post("/api/otp/resend", json={"email": "a@example.com"})
    assert r.status_code == 200

    ok = client.post("/api/otp/verify", json={"email": "a@example.com", "otp": "234567"})
    assert ok.status_code == 200


def test_legacy_routes_are_aliases(client, account, fixed_codes):
    assert client.post(
        "/api/otp/generate-otp", json={"email": "a@example.com"}
    ).status_code == 200
    assert client.post(
        "/api/otp/verify-otp", json={"email": "a@example.com", "otp": "123456"}
    ).status_code == 200


class ExplodingMailer:
    def send(self, to, subject, html_body, text_body=None):
        raise RuntimeError("connection reset")


class StoreWithBrokenRollback(OtpStore):
    def delete_by_id(self, record_id):
        raise PyMongoError("primary stepped down")


def build_service(database, store=None, mailer=None):
    logger = logging.getLogger("tests.otp")
    accounts = AccountDirectory(database.users, "admin@example.com", hash_rounds=4)
    return OtpService(
        store or OtpStore(database.otp_codes, hash_rounds=4),
        accounts,
        mailer or ExplodingMailer(),
        logger,
        subject="Your code",
    )


def test_mailer_exception_is_translated_to_delivery_failed(database, account):
    service = build_service(database)
    result, error = service.create("a@example.com")
    assert result is None
    assert error.kind == "DeliveryFailed"
    assert error.status_code == 502
    assert database.otp_codes.count_documents({}) == 0


def test_failed_rollback_is_logged_without_changing_outcome(database, account, caplog):
    store = StoreWithBrokenRollback(database.otp_codes, hash_rounds=4)
    service = build_service(database, store=store)

    with caplog.at_level(logging.ERROR, logger="tests.otp"):
        result, error = service.create("a@example.com")

    assert result is None
    assert error.kind == "DeliveryFailed"
    assert "Unable to roll back OTP record" in caplog.text
