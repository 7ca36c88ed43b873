"""Best-selling curation.

Entries are denormalized copies of catalog products, one per product. Image
values go through :func:`validate_image`; promotion swaps an unusable image for
the catalog one, while updates refuse it outright.
"""

import enum
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlparse

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from catalog import normalize_object_id_value, safe_float
from errors import CONFLICT, NOT_FOUND, VALIDATION_FAILED, ServiceError
from schemas import MAX_SALES_COUNT

RELATIVE_PATH_PREFIXES = ("/src/assets/", "./", "../")
LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
CURATED_FIELDS = ("name", "description", "price", "category", "image")


class ImageCheck(enum.Enum):
    VALID = "valid"
    INVALID_SUBSTITUTE = "invalid-substitute"
    INVALID_REJECT = "invalid-reject"


def validate_image(value: Optional[str]) -> ImageCheck:
    candidate = str(value or "").strip()
    if candidate.startswith(RELATIVE_PATH_PREFIXES):
        return ImageCheck.INVALID_REJECT
    if candidate.startswith("data:image/"):
        return ImageCheck.VALID

    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return ImageCheck.INVALID_REJECT

    hostname = parsed.hostname.lower()
    if hostname in LOOPBACK_HOSTS or hostname.startswith("127."):
        return ImageCheck.INVALID_SUBSTITUTE

    return ImageCheck.VALID


def serialize_entry(entry_document) -> Dict[str, object]:
    if not entry_document:
        return {}

    created_at = entry_document.get("created_at")
    updated_at = entry_document.get("updated_at")
    return {
        "id": str(entry_document.get("_id")),
        "product_id": str(entry_document.get("product_id")),
        "name": entry_document.get("name", ""),
        "description": entry_document.get("description", ""),
        "price": round(safe_float(entry_document.get("price")), 2),
        "category": entry_document.get("category", ""),
        "image": entry_document.get("image", "") or "",
        "sales_count": int(entry_document.get("sales_count", 0) or 0),
        "discount": entry_document.get("discount"),
        "label": entry_document.get("label"),
        "featured": bool(entry_document.get("featured", True)),
        "created_at": created_at.isoformat()
        if isinstance(created_at, datetime)
        else None,
        "updated_at": updated_at.isoformat()
        if isinstance(updated_at, datetime)
        else None,
    }


def summarize_entry(entry_document) -> Dict[str, object]:
    return {
        "id": str(entry_document.get("_id")),
        "name": entry_document.get("name", ""),
        "sales_count": int(entry_document.get("sales_count", 0) or 0),
        "featured": bool(entry_document.get("featured", True)),
    }


def clamp_limit(value, default: int, maximum: int) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    if limit < 1:
        return default
    return min(limit, maximum)


class BestSellingStore:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index("product_id", unique=True)
        self.collection.create_index([("sales_count", DESCENDING)])
        self.collection.create_index([("featured", ASCENDING)])
        self.collection.create_index([("category", ASCENDING)])

    def find_by_id(self, entry_id):
        return self.collection.find_one({"_id": entry_id})

    def find_by_product(self, product_id):
        return self.collection.find_one({"product_id": product_id})

    def insert(self, entry_document):
        return self.collection.insert_one(entry_document).inserted_id

    def update_by_id(self, entry_id, fields: Dict[str, object]):
        return self.collection.find_one_and_update(
            {"_id": entry_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def increment_sales_count(self, entry_id, delta: int):
        query: Dict[str, object] = {"_id": entry_id}
        if delta < 0:
            query["sales_count"] = {"$gte": -delta}
        elif delta > 0:
            query["sales_count"] = {"$lte": MAX_SALES_COUNT - delta}
        return self.collection.find_one_and_update(
            query,
            {"$inc": {"sales_count": delta}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def delete_by_id(self, entry_id):
        return self.collection.find_one_and_delete({"_id": entry_id})

    def find(self, query: Dict[str, object], limit: int):
        return list(
            self.collection.find(query)
            .sort([("sales_count", DESCENDING), ("created_at", DESCENDING)])
            .limit(limit)
        )


class BestSellingService:
    def __init__(
        self,
        store: BestSellingStore,
        catalog,
        logger,
        default_limit: int = 10,
        max_limit: int = 100,
        featured_default_limit: int = 8,
        featured_max_limit: int = 50,
    ):
        self.store = store
        self.catalog = catalog
        self.logger = logger
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.featured_default_limit = featured_default_limit
        self.featured_max_limit = featured_max_limit

    def _load_entry(self, entry_id):
        object_id = normalize_object_id_value(entry_id)
        if not object_id:
            return None, ServiceError(
                VALIDATION_FAILED, "Invalid best selling identifier."
            )
        return object_id, None

    def _resolve_promoted_image(self, requested: Optional[str], product) -> str:
        catalog_image = product.get("image", "") or ""
        if not requested:
            return catalog_image

        verdict = validate_image(requested)
        if verdict is ImageCheck.VALID:
            return requested

        if verdict is ImageCheck.INVALID_SUBSTITUTE:
            self.logger.warning(
                "Loopback image URL %s for product %s replaced with catalog image",
                requested,
                product.get("_id"),
            )
        else:
            self.logger.warning(
                "Relative image path %s for product %s replaced with catalog image",
                requested,
                product.get("_id"),
            )
        return catalog_image

    def promote(self, request):
        product, error = self.catalog.find_by_id(request.product_id)
        if error:
            return None, error

        existing = self.store.find_by_product(product["_id"])
        if existing:
            return None, ServiceError(
                CONFLICT,
                "Product already exists in best selling collection.",
                {"existing_entry": summarize_entry(existing)},
            )

        timestamp = datetime.utcnow()
        entry_document = {
            "product_id": product["_id"],
            "name": request.name or product.get("name", ""),
            "description": request.description or product.get("description", ""),
            "price": request.price
            if request.price is not None
            else safe_float(product.get("price")),
            "category": request.category or product.get("category", ""),
            "image": self._resolve_promoted_image(request.image, product),
            "sales_count": request.sales_count,
            "featured": True if request.featured is None else request.featured,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        if request.discount is not None:
            entry_document["discount"] = request.discount
        if request.label is not None:
            entry_document["label"] = request.label

        try:
            entry_document["_id"] = self.store.insert(entry_document)
        except DuplicateKeyError:
            existing = self.store.find_by_product(product["_id"]) or {}
            return None, ServiceError(
                CONFLICT,
                "Product already exists in best selling collection.",
                {"existing_entry": summarize_entry(existing)},
            )

        self.logger.info(
            "Best selling entry created for product %s", entry_document["name"]
        )
        return entry_document, None

    def adjust_sales(self, entry_id, delta: int):
        object_id, error = self._load_entry(entry_id)
        if error:
            return None, error

        updated = self.store.increment_sales_count(object_id, delta)
        if updated:
            return updated, None

        if not self.store.find_by_id(object_id):
            return None, ServiceError(NOT_FOUND, "Best selling product not found.")
        return None, ServiceError(
            VALIDATION_FAILED,
            f"Sales count must stay between 0 and {MAX_SALES_COUNT}.",
        )

    def update(self, entry_id, request):
        object_id, error = self._load_entry(entry_id)
        if error:
            return None, error

        fields = {
            key: value
            for key, value in request.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not fields:
            return None, ServiceError(VALIDATION_FAILED, "No fields to update.")

        if "image" in fields:
            verdict = validate_image(fields["image"])
            if verdict is ImageCheck.INVALID_REJECT:
                return None, ServiceError(
                    VALIDATION_FAILED,
                    "Invalid image URL. Upload the image instead of using a relative path.",
                )
            if verdict is ImageCheck.INVALID_SUBSTITUTE:
                return None, ServiceError(
                    VALIDATION_FAILED,
                    "Invalid image URL. Loopback addresses are not reachable from other environments.",
                )

        fields["updated_at"] = datetime.utcnow()
        updated = self.store.update_by_id(object_id, fields)
        if not updated:
            return None, ServiceError(NOT_FOUND, "Best selling product not found.")

        return updated, None

    def remove(self, entry_id):
        object_id, error = self._load_entry(entry_id)
        if error:
            return None, error

        deleted = self.store.delete_by_id(object_id)
        if not deleted:
            return None, ServiceError(NOT_FOUND, "Best selling product not found.")
        return deleted, None

    def list(self, limit=None, category: Optional[str] = None, featured=None):
        query: Dict[str, object] = {}
        if category and category != "all":
            query["category"] = category
        if featured is not None:
            query["featured"] = str(featured).strip().lower() == "true"

        return self.store.find(
            query, clamp_limit(limit, self.default_limit, self.max_limit)
        )

    def featured(self, limit=None):
        return self.store.find(
            {"featured": True},
            clamp_limit(limit, self.featured_default_limit, self.featured_max_limit),
        )
