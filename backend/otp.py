"""One-time-password issuance and verification.

A subject (account) holds at most one pending code. Issuing deletes any prior
codes before inserting the new one; verifying consumes every code the subject
holds. The two steps of an issuance are separate Mongo calls, so two
concurrent issuances for one subject can briefly leave two codes behind. The
resend cooldown narrows that window but does not close it.
"""

import secrets
from datetime import datetime, timedelta

import bcrypt
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from accounts import serialize_account
from errors import (
    DELIVERY_FAILED,
    INVALID_OR_EXPIRED,
    NOT_FOUND,
    RATE_LIMITED,
    ServiceError,
)
from mailer import build_otp_email_html, build_otp_email_text

OTP_MIN_VALUE = 100000
OTP_MAX_VALUE = 999999


def generate_otp_code() -> str:
    return str(OTP_MIN_VALUE + secrets.randbelow(OTP_MAX_VALUE - OTP_MIN_VALUE + 1))


class OtpStore:
    def __init__(self, collection, hash_rounds: int = 12):
        self.collection = collection
        self.hash_rounds = hash_rounds

    def ensure_indexes(self):
        # Mongo's TTL monitor removes codes once expires_at has passed.
        self.collection.create_index("expires_at", expireAfterSeconds=0)
        self.collection.create_index([("subject_id", ASCENDING)])
        self.collection.create_index([("created_at", DESCENDING)])

    def delete_all_for_subject(self, subject_id: str) -> int:
        return self.collection.delete_many({"subject_id": subject_id}).deleted_count

    def insert(self, subject_id: str, code: str, created_at: datetime, expires_at: datetime):
        code_hash = bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(self.hash_rounds))
        result = self.collection.insert_one(
            {
                "subject_id": subject_id,
                "code_hash": code_hash,
                "created_at": created_at,
                "expires_at": expires_at,
            }
        )
        return result.inserted_id

    def delete_by_id(self, record_id):
        self.collection.delete_one({"_id": record_id})

    def find_active(self, subject_id: str, code: str, now: datetime):
        candidates = self.collection.find(
            {"subject_id": subject_id, "expires_at": {"$gt": now}}
        ).sort("created_at", DESCENDING)
        for record in candidates:
            stored_hash = record.get("code_hash")
            if stored_hash and bcrypt.checkpw(code.encode("utf-8"), stored_hash):
                return record
        return None

    def find_most_recent(self, subject_id: str):
        return self.collection.find_one(
            {"subject_id": subject_id}, sort=[("created_at", DESCENDING)]
        )


class OtpService:
    def __init__(
        self,
        store: OtpStore,
        accounts,
        mailer,
        logger,
        subject: str,
        expiration_minutes: int = 5,
        resend_cooldown_seconds: int = 60,
    ):
        self.store = store
        self.accounts = accounts
        self.mailer = mailer
        self.logger = logger
        self.subject = subject
        self.expiration_minutes = expiration_minutes
        self.resend_cooldown_seconds = resend_cooldown_seconds

    def _resolve_account(self, email: str):
        user = self.accounts.find_by_email(email)
        if not user:
            return None, ServiceError(
                NOT_FOUND, "User not found. Please register first."
            )
        return user, None

    def _deliver(self, user, otp: str):
        html_body = build_otp_email_html(
            otp,
            recipient_name=user.get("name", "") or "",
            recipient_email=user["email"],
            expiration_minutes=self.expiration_minutes,
        )
        text_body = build_otp_email_text(otp, self.expiration_minutes)
        try:
            return self.mailer.send(user["email"], self.subject, html_body, text_body)
        except Exception as exc:
            return False, str(exc)

    def _issue(self, user):
        subject_id = str(user["_id"])
        self.store.delete_all_for_subject(subject_id)

        otp = generate_otp_code()
        created_at = datetime.utcnow()
        expires_at = created_at + timedelta(minutes=self.expiration_minutes)
        record_id = self.store.insert(subject_id, otp, created_at, expires_at)

        sent, error_details = self._deliver(user, otp)
        if not sent:
            self.logger.error(
                "OTP dispatch failed for %s: %s",
                user["email"],
                error_details or "Unknown mailer error",
            )
            try:
                self.store.delete_by_id(record_id)
            except PyMongoError as exc:
                self.logger.error(
                    "Unable to roll back OTP record %s for %s: %s",
                    record_id,
                    user["email"],
                    exc,
                )
            return None, ServiceError(
                DELIVERY_FAILED,
                "Failed to send OTP email. Please try again.",
                {"details": error_details or "Failed to deliver verification email."},
            )

        self.logger.info("OTP issued for %s, expires at %s", user["email"], expires_at)
        return {
            "user_id": subject_id,
            "email": user["email"],
            "expires_at": expires_at,
            "expires_in_seconds": self.expiration_minutes * 60,
        }, None

    def create(self, email: str):
        user, error = self._resolve_account(email)
        if error:
            return None, error
        return self._issue(user)

    def resend(self, email: str):
        user, error = self._resolve_account(email)
        if error:
            return None, error

        latest = self.store.find_most_recent(str(user["_id"]))
        if latest and isinstance(latest.get("created_at"), datetime):
            elapsed = (datetime.utcnow() - latest["created_at"]).total_seconds()
            if elapsed < self.resend_cooldown_seconds:
                retry_after = max(1, int(self.resend_cooldown_seconds - elapsed))
                return None, ServiceError(
                    RATE_LIMITED,
                    "Please wait 1 minute before requesting a new OTP.",
                    {"retry_after_seconds": retry_after},
                )

        return self._issue(user)

    def verify(self, email: str, otp: str):
        user, error = self._resolve_account(email)
        if error:
            return None, error

        subject_id = str(user["_id"])
        record = self.store.find_active(subject_id, otp, datetime.utcnow())
        if not record:
            return None, ServiceError(INVALID_OR_EXPIRED, "Invalid or expired OTP.")

        self.store.delete_all_for_subject(subject_id)
        verified_at = self.accounts.mark_verified(user["_id"])
        self.logger.info("OTP verified for %s", user["email"])

        verified_user = dict(user, email_verified=True, verified_at=verified_at)
        return {
            "user": serialize_account(verified_user),
            "verified_at": verified_at,
        }, None
