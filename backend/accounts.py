from datetime import datetime
from typing import Dict, Optional

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError

from errors import CONFLICT, INVALID_CREDENTIALS, ServiceError
from schemas import normalize_email

ALLOWED_USER_ROLES = {"admin", "user"}


def serialize_account(user_document) -> Dict[str, object]:
    if not user_document:
        return {}
    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": user_document.get("role", "user") or "user",
        "email_verified": bool(user_document.get("email_verified")),
    }


class AccountDirectory:
    def __init__(self, collection, default_admin_email: str, hash_rounds: int = 12):
        self.collection = collection
        self.default_admin_email = normalize_email(default_admin_email)
        self.hash_rounds = hash_rounds

    def ensure_indexes(self):
        self.collection.create_index("email", unique=True)

    def get_role(self, user_document) -> str:
        if not user_document:
            return "user"

        email = normalize_email(user_document.get("email"))
        if email == self.default_admin_email:
            return "admin"

        role = str(user_document.get("role", "user") or "").strip().lower()
        return role if role in ALLOWED_USER_ROLES else "user"

    def find_by_email(self, email: Optional[str]):
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.collection.find_one({"email": normalized})

    def find_by_id(self, user_id):
        try:
            object_id = ObjectId(str(user_id))
        except (InvalidId, TypeError):
            return None
        return self.collection.find_one({"_id": object_id})

    def register(self, name: str, email: str, password: str):
        normalized_email = normalize_email(email)
        if self.find_by_email(normalized_email):
            return None, ServiceError(
                CONFLICT, "An account with this email already exists."
            )

        hashed_pw = bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(self.hash_rounds)
        )
        assigned_role = (
            "admin" if normalized_email == self.default_admin_email else "user"
        )
        user_document = {
            "name": name,
            "email": normalized_email,
            "password": hashed_pw,
            "role": assigned_role,
            "email_verified": False,
            "created_at": datetime.utcnow(),
        }

        try:
            insert_result = self.collection.insert_one(user_document)
        except DuplicateKeyError:
            return None, ServiceError(
                CONFLICT, "An account with this email already exists."
            )

        user_document["_id"] = insert_result.inserted_id
        return user_document, None

    def authenticate(self, email: str, password: str):
        user = self.find_by_email(email)
        stored_hash = user.get("password") if user else None
        if not stored_hash or not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
            return None, ServiceError(
                INVALID_CREDENTIALS, "Invalid email or password."
            )

        self.collection.update_one(
            {"_id": user["_id"]},
            {"$set": {"last_login_at": datetime.utcnow()}},
        )
        return user, None

    def mark_verified(self, user_id) -> datetime:
        verified_at = datetime.utcnow()
        self.collection.update_one(
            {"_id": user_id},
            {"$set": {"email_verified": True, "verified_at": verified_at}},
        )
        return verified_at
