from datetime import datetime
from typing import Dict, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from schemas import normalize_email


def sanitize_metadata(metadata: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    sanitized: Dict[str, str] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        sanitized[str(key)] = str(value)
    return sanitized


class AuditLog:
    def __init__(self, collection, logger):
        self.collection = collection
        self.logger = logger

    def ensure_indexes(self):
        self.collection.create_index([("created_at", DESCENDING)])
        self.collection.create_index([("user_email", ASCENDING), ("action", ASCENDING)])

    def record(self, actor_email: Optional[str], action: str, metadata: Optional[Dict] = None):
        if not action:
            return
        try:
            self.collection.insert_one(
                {
                    "user_email": normalize_email(actor_email) or None,
                    "action": action,
                    "metadata": sanitize_metadata(metadata),
                    "created_at": datetime.utcnow(),
                }
            )
        except PyMongoError as exc:
            self.logger.warning("Unable to record audit log: %s", exc)
