"""
Request schemas

Every JSON body is parsed into one of these pydantic models before it reaches a
service, so malformed input surfaces uniformly as ``ValidationFailed``.
"""

import re
from typing import Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
)

from errors import VALIDATION_FAILED, ServiceError

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PRODUCT_CATEGORIES = (
    "Electronics",
    "Clothing",
    "Books",
    "Home",
    "Sports",
    "Beauty",
    "Toys",
    "Other",
)
BEST_SELLING_LABELS = (
    "Best Seller",
    "Featured",
    "New Arrival",
    "Limited Edition",
    "Trending",
)
OTP_CODE_LENGTH = 6
MAX_SALES_COUNT = 1_000_000_000
MAX_SALES_ADJUSTMENT = 1_000_000
MAX_PRODUCT_QUANTITY = 1_000_000
CONTACT_MESSAGE_MIN_LENGTH = 10
CONTACT_MESSAGE_MAX_LENGTH = 1000
phone_regex = re.compile(r"^[+]?[1-9]\d{0,15}$")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def _blank_to_none(value):
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return value


class EmailRequest(BaseModel):
    email: str

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value):
        normalized = normalize_email(value)
        if not email_regex.match(normalized):
            raise ValueError("Please provide a valid email address.")
        return normalized


class VerifyOtpRequest(EmailRequest):
    otp: str

    @field_validator("otp", mode="before")
    @classmethod
    def validate_otp(cls, value):
        candidate = str(value if value is not None else "").strip()
        if not (candidate.isdigit() and len(candidate) == OTP_CODE_LENGTH):
            raise ValueError(
                f"The verification code must be {OTP_CODE_LENGTH} digits."
            )
        return candidate


class RegisterRequest(EmailRequest):
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=6)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return str(value or "").strip()


class LoginRequest(EmailRequest):
    password: str = Field(min_length=1)


class ProductCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    price: float = Field(ge=0)
    quantity: StrictInt = Field(default=0, ge=0, le=MAX_PRODUCT_QUANTITY)
    category: str = "Electronics"
    image: str = ""

    @field_validator("category")
    @classmethod
    def validate_category(cls, value):
        if value not in PRODUCT_CATEGORIES:
            raise ValueError("Category must be a valid category.")
        return value


class ProductUpdateRequest(BaseModel):
    """Partial product update; omitted fields keep their stored value."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[StrictInt] = Field(
        default=None, ge=0, le=MAX_PRODUCT_QUANTITY
    )
    category: Optional[str] = None
    image: Optional[str] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("category")
    @classmethod
    def validate_category(cls, value):
        if value is not None and value not in PRODUCT_CATEGORIES:
            raise ValueError("Category must be a valid category.")
        return value


class BestSellingFields(BaseModel):
    """Curated fields shared by promotion and update payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, alias="productname", max_length=100)
    description: Optional[str] = Field(
        default=None, alias="productdescrib", max_length=500
    )
    price: Optional[float] = Field(default=None, alias="productprice", ge=0)
    category: Optional[str] = None
    image: Optional[str] = None
    discount: Optional[float] = Field(default=None, ge=0, le=100)
    label: Optional[str] = None
    featured: Optional[bool] = None

    @field_validator("name", "description", "category", "image", mode="before")
    @classmethod
    def blank_strings_are_absent(cls, value):
        return _blank_to_none(value)

    @field_validator("label", mode="before")
    @classmethod
    def validate_label(cls, value):
        value = _blank_to_none(value)
        if value is not None and value not in BEST_SELLING_LABELS:
            raise ValueError(
                "Label must be one of: " + ", ".join(BEST_SELLING_LABELS) + "."
            )
        return value


class PromoteRequest(BestSellingFields):
    product_id: str = Field(alias="productId", min_length=1)
    sales_count: StrictInt = Field(
        default=0, alias="salesCount", ge=0, le=MAX_SALES_COUNT
    )

    @field_validator("product_id", mode="before")
    @classmethod
    def strip_product_id(cls, value):
        return str(value or "").strip()


class BestSellingUpdateRequest(BestSellingFields):
    sales_count: Optional[StrictInt] = Field(
        default=None, alias="salesCount", ge=0, le=MAX_SALES_COUNT
    )


class SalesAdjustRequest(BaseModel):
    increment: StrictInt = Field(
        default=1, ge=-MAX_SALES_ADJUSTMENT, le=MAX_SALES_ADJUSTMENT
    )


class ContactRequest(EmailRequest):
    name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = None
    message: str = Field(
        min_length=CONTACT_MESSAGE_MIN_LENGTH, max_length=CONTACT_MESSAGE_MAX_LENGTH
    )

    @field_validator("name", "message", mode="before")
    @classmethod
    def strip_text(cls, value):
        return str(value or "").strip()

    @field_validator("phone", mode="before")
    @classmethod
    def validate_phone(cls, value):
        value = _blank_to_none(value)
        if value is None:
            return None
        candidate = str(value).replace(" ", "").replace("-", "")
        if not phone_regex.match(candidate):
            raise ValueError("Please enter a valid phone number.")
        return candidate


def summarize_validation_error(exc: ValidationError) -> List[str]:
    messages: List[str] = []
    for issue in exc.errors():
        location = ".".join(str(part) for part in issue.get("loc", ()))
        message = str(issue.get("msg", "Invalid value."))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return messages


def parse_payload(
    schema: Type[SchemaT], payload: Optional[Dict]
) -> Tuple[Optional[SchemaT], Optional[ServiceError]]:
    if not isinstance(payload, dict):
        return None, ServiceError(
            VALIDATION_FAILED, "Request body must be a JSON object."
        )

    try:
        return schema.model_validate(payload), None
    except ValidationError as exc:
        details = summarize_validation_error(exc)
        return None, ServiceError(
            VALIDATION_FAILED,
            details[0] if len(details) == 1 else "Validation failed.",
            {"details": details},
        )
