"""Contact messages left through the storefront form.

A message is stored first; the admin notification and the auto-reply are sent
afterwards and their failures are only logged.
"""

import re
from datetime import datetime
from typing import Dict, Optional

from pymongo import ASCENDING, DESCENDING

from catalog import normalize_object_id_value
from errors import NOT_FOUND, VALIDATION_FAILED, ServiceError
from mailer import (
    build_contact_notification_html,
    build_contact_reply_html,
    build_contact_reply_text,
)

CONTACT_REPLY_SUBJECT = "Thank you for contacting Kapee Shop - We'll be in touch soon!"
CONTACT_NOTIFICATION_SUBJECT = "New Contact Message Received"


def serialize_contact(contact_document) -> Dict[str, object]:
    created_at = contact_document.get("created_at")
    return {
        "id": str(contact_document.get("_id")),
        "name": contact_document.get("name", ""),
        "email": contact_document.get("email", ""),
        "phone": contact_document.get("phone"),
        "message": contact_document.get("message", ""),
        "created_at": f"{created_at.isoformat()}Z"
        if isinstance(created_at, datetime)
        else None,
    }


class ContactMessages:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("email", ASCENDING)])
        self.collection.create_index([("created_at", DESCENDING)])

    def insert(self, contact_document):
        return self.collection.insert_one(contact_document).inserted_id

    def find_by_id(self, contact_id):
        return self.collection.find_one({"_id": contact_id})

    def delete_by_id(self, contact_id):
        return self.collection.find_one_and_delete({"_id": contact_id})

    def find(self, search_term: Optional[str] = None):
        query: Dict[str, object] = {}
        if search_term:
            regex = re.compile(re.escape(search_term), re.IGNORECASE)
            query["$or"] = [{"name": regex}, {"email": regex}, {"message": regex}]
        return list(
            self.collection.find(query).sort(
                [("created_at", DESCENDING), ("_id", DESCENDING)]
            )
        )


class ContactService:
    def __init__(self, store: ContactMessages, mailer, logger, notification_email: str = ""):
        self.store = store
        self.mailer = mailer
        self.logger = logger
        self.notification_email = (notification_email or "").strip().lower()

    def _load(self, contact_id):
        object_id = normalize_object_id_value(contact_id)
        if not object_id:
            return None, ServiceError(VALIDATION_FAILED, "Invalid contact identifier.")

        contact_document = self.store.find_by_id(object_id)
        if not contact_document:
            return None, ServiceError(NOT_FOUND, "Contact message not found.")
        return contact_document, None

    def _send(self, recipient: str, subject: str, html_body: str, text_body=None) -> bool:
        try:
            sent, details = self.mailer.send(recipient, subject, html_body, text_body)
        except Exception as exc:
            sent, details = False, str(exc)

        if not sent:
            self.logger.error(
                "Failed to send contact email '%s' to %s: %s", subject, recipient, details
            )
        return sent

    def create(self, request):
        contact_document = {
            "name": request.name,
            "email": request.email,
            "phone": request.phone,
            "message": request.message,
            "created_at": datetime.utcnow(),
        }
        contact_document["_id"] = self.store.insert(contact_document)

        notified = False
        if self.notification_email:
            notified = self._send(
                self.notification_email,
                CONTACT_NOTIFICATION_SUBJECT,
                build_contact_notification_html(contact_document),
            )

        confirmed = self._send(
            request.email,
            CONTACT_REPLY_SUBJECT,
            build_contact_reply_html(contact_document, self.notification_email),
            build_contact_reply_text(request.name),
        )

        return {
            "contact": contact_document,
            "admin_notified": notified,
            "confirmation_sent": confirmed,
        }

    def list(self, search_term: Optional[str] = None):
        return self.store.find((search_term or "").strip() or None)

    def get(self, contact_id):
        return self._load(contact_id)

    def delete(self, contact_id):
        contact_document, error = self._load(contact_id)
        if error:
            return None, error

        deleted = self.store.delete_by_id(contact_document["_id"])
        if not deleted:
            return None, ServiceError(NOT_FOUND, "Contact message not found.")
        return deleted, None
