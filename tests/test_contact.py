"""Contact form submission and the admin inbox."""

import logging

from bson import ObjectId


def submit(client, **overrides):
    payload = {
        "name": "Jane Doe",
        "email": "Jane.Doe@Example.com",
        "phone": "+250 795 469 743",
        "message": "I have a question about your headphones.",
    }
    payload.update(overrides)
    return client.post("/api/contact", json=payload)


def test_submit_stores_message_and_sends_both_emails(client, mailer, database):
    r = submit(client)
    assert r.status_code == 201
    contact = r.json["contact"]
    assert contact["email"] == "jane.doe@example.com"
    assert contact["phone"] == "+250795469743"
    assert r.json["confirmation_sent"] is True

    stored = database.contacts.find_one({"_id": ObjectId(contact["id"])})
    assert stored["message"] == "I have a question about your headphones."

    recipients = [message["to"] for message in mailer.sent]
    assert recipients == ["support@example.com", "jane.doe@example.com"]


def test_user_content_is_escaped_in_emails(client, mailer):
    submit(client, name="<b>Jane</b>", message="<script>alert(1)</script> hello")
    for message in mailer.sent:
        assert "<script>" not in message["html"]
        assert "&lt;script&gt;" in message["html"]


def test_mail_failure_still_creates_message(client, mailer, database, caplog):
    mailer.fail_with = "Resend API key is not configured."
    with caplog.at_level(logging.ERROR):
        r = submit(client)

    assert r.status_code == 201
    assert r.json["confirmation_sent"] is False
    assert database.contacts.count_documents({}) == 1
    assert "Failed to send contact email" in caplog.text


def test_phone_is_optional(client):
    r = submit(client, phone="")
    assert r.status_code == 201
    assert r.json["contact"]["phone"] is None


def test_message_length_bounds(client, database):
    too_short = submit(client, message="Too short")
    assert too_short.status_code == 400
    assert too_short.json["error"] == "ValidationFailed"

    too_long = submit(client, message="x" * 1001)
    assert too_long.status_code == 400

    assert submit(client, message="x" * 1000).status_code == 201
    assert database.contacts.count_documents({}) == 1


def test_submit_rejects_bad_email_and_phone(client):
    assert submit(client, email="not-an-email").status_code == 400
    assert submit(client, phone="abc").status_code == 400
    assert submit(client, name="").status_code == 400


def test_admin_lists_and_searches_messages(client, admin_headers):
    submit(client, name="Jane", message="Where is my order number 42?")
    submit(client, name="Sam", email="sam@example.com", message="Do you ship abroad?")

    listed = client.get("/api/contact", headers=admin_headers)
    assert listed.status_code == 200
    assert [item["name"] for item in listed.json["contacts"]] == ["Sam", "Jane"]

    found = client.get("/api/contact?q=SHIP", headers=admin_headers)
    assert [item["name"] for item in found.json["contacts"]] == ["Sam"]

    literal = client.get("/api/contact?q=.*", headers=admin_headers)
    assert literal.json["contacts"] == []


def test_admin_reads_and_deletes_message(client, admin_headers, database):
    contact_id = submit(client).json["contact"]["id"]

    single = client.get(f"/api/contact/{contact_id}", headers=admin_headers)
    assert single.status_code == 200
    assert single.json["contact"]["id"] == contact_id

    deleted = client.delete(f"/api/contact/{contact_id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert database.contacts.count_documents({}) == 0

    again = client.delete(f"/api/contact/{contact_id}", headers=admin_headers)
    assert again.status_code == 404

    actions = [log["action"] for log in database.audit_logs.find()]
    assert "Deleted contact message" in actions


def test_missing_or_invalid_contact_id(client, admin_headers):
    assert client.get(f"/api/contact/{ObjectId()}", headers=admin_headers).status_code == 404
    assert client.get("/api/contact/nope", headers=admin_headers).status_code == 400


def test_inbox_requires_admin(client, user_headers):
    contact_id = submit(client).json["contact"]["id"]
    assert client.get("/api/contact").status_code == 401
    assert client.get("/api/contact", headers=user_headers).status_code == 403
    assert (
        client.delete(f"/api/contact/{contact_id}", headers=user_headers).status_code
        == 403
    )
