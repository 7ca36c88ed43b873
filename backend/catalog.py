from datetime import datetime
from typing import Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from errors import NOT_FOUND, VALIDATION_FAILED, ServiceError


def safe_float(value, default=0.0):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_object_id_value(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value or "").strip())
    except (InvalidId, TypeError):
        return None


def serialize_product(product_document) -> Dict[str, object]:
    created_at = product_document.get("created_at")
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", ""),
        "price": round(safe_float(product_document.get("price")), 2),
        "quantity": int(product_document.get("quantity", 0) or 0),
        "category": product_document.get("category", ""),
        "image": product_document.get("image", "") or "",
        "created_at": created_at.isoformat()
        if isinstance(created_at, datetime)
        else None,
    }


class ProductCatalog:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("category", ASCENDING)])
        self.collection.create_index([("created_at", DESCENDING)])

    def find_by_id(self, product_id):
        object_id = normalize_object_id_value(product_id)
        if not object_id:
            return None, ServiceError(VALIDATION_FAILED, "Invalid product identifier.")

        product_document = self.collection.find_one({"_id": object_id})
        if not product_document:
            return None, ServiceError(NOT_FOUND, "Product not found.")

        return product_document, None

    def list(self, category: Optional[str] = None):
        query = {}
        if category and category != "all":
            query["category"] = category
        return list(self.collection.find(query).sort("created_at", DESCENDING))

    def create(self, fields, creator_email: str):
        product_document = {
            "name": fields.name.strip(),
            "description": fields.description.strip(),
            "price": round(fields.price, 2),
            "quantity": fields.quantity,
            "category": fields.category,
            "image": fields.image.strip(),
            "created_at": datetime.utcnow(),
            "created_by": creator_email,
        }
        result = self.collection.insert_one(product_document)
        product_document["_id"] = result.inserted_id
        return product_document

    def update(self, product_id, fields, editor_email: str):
        product_document, error = self.find_by_id(product_id)
        if error:
            return None, error

        changes = fields.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return None, ServiceError(VALIDATION_FAILED, "No fields to update.")
        if "price" in changes:
            changes["price"] = round(changes["price"], 2)
        if "image" in changes:
            changes["image"] = changes["image"].strip()

        changes["updated_at"] = datetime.utcnow()
        changes["updated_by"] = editor_email
        updated = self.collection.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            return None, ServiceError(NOT_FOUND, "Product not found.")
        return updated, None

    def delete(self, product_id):
        object_id = normalize_object_id_value(product_id)
        if not object_id:
            return None, ServiceError(VALIDATION_FAILED, "Invalid product identifier.")

        product_document = self.collection.find_one_and_delete({"_id": object_id})
        if not product_document:
            return None, ServiceError(NOT_FOUND, "Product not found.")
        return product_document, None
