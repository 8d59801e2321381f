"""
Listing payload validation and sanitization.

ListingPayload is the validated shape of a create/update request. The
generic attribute bag never carries "condition": it is a first-class field,
so the key is dropped at this boundary.
"""
import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from app.core.exceptions import ValidationException
from app.core.validation import PhoneNumberValidator, TextSanitizer
from app.db.models.marketplace_item import ItemCondition, PriceType

TITLE_MIN, TITLE_MAX = 5, 200
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 5000
PRICE_MIN, PRICE_MAX = 1, 100_000_000
IMAGES_MIN, IMAGES_MAX = 1, 10
ATTRIBUTES_MAX = 30
ATTRIBUTE_KEY_MAX = 50
ATTRIBUTE_VALUE_MAX = 200

# fields that must never be duplicated inside attributes
RESERVED_ATTRIBUTE_KEYS = frozenset({"condition"})


class ListingType(str, Enum):
    OFFERED = "offered"
    WANTED = "wanted"


def _invalid(message: str) -> PydanticCustomError:
    return PydanticCustomError("listing_invalid", message)


class ListingPayload(BaseModel):
    """Create/update request body"""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str
    description: str
    price: float
    price_type: PriceType = PriceType.FIXED
    category: str
    condition: Optional[ItemCondition] = None
    location: str
    area_id: Optional[int] = None
    seller_phone: str
    seller_whatsapp: Optional[str] = None
    images: list[str]
    attributes: dict[str, Any] = {}
    listing_type: ListingType = ListingType.OFFERED

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if len(v) < TITLE_MIN:
            raise _invalid(f"Title must be at least {TITLE_MIN} characters")
        if len(v) > TITLE_MAX:
            raise _invalid(f"Title cannot exceed {TITLE_MAX} characters")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if len(v) < DESCRIPTION_MIN:
            raise _invalid(f"Description must be at least {DESCRIPTION_MIN} characters")
        if len(v) > DESCRIPTION_MAX:
            raise _invalid(f"Description cannot exceed {DESCRIPTION_MAX} characters")
        return v

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: float) -> float:
        if not math.isfinite(v) or v < PRICE_MIN:
            raise _invalid("Price must be greater than 0")
        if v > PRICE_MAX:
            raise _invalid(f"Price cannot exceed {PRICE_MAX:,}")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if not v:
            raise _invalid("Choose a category")
        return v

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        if not v:
            raise _invalid("Choose a location")
        return v

    @field_validator("seller_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not PhoneNumberValidator.validate(v):
            raise _invalid("Invalid phone number")
        return v

    @field_validator("seller_whatsapp", mode="before")
    @classmethod
    def validate_whatsapp(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if not isinstance(v, str) or not PhoneNumberValidator.validate(v):
            raise _invalid("Invalid WhatsApp number")
        return v

    @field_validator("images")
    @classmethod
    def validate_images(cls, v: list[str]) -> list[str]:
        if len(v) < IMAGES_MIN:
            raise _invalid("Add at least one image")
        if len(v) > IMAGES_MAX:
            raise _invalid(f"A listing can have at most {IMAGES_MAX} images")
        if any(not url for url in v):
            raise _invalid("Image URLs cannot be empty")
        return v

    @field_validator("attributes", mode="before")
    @classmethod
    def validate_attributes(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise _invalid("Attributes must be an object")
        if len(v) > ATTRIBUTES_MAX:
            raise _invalid(f"A listing can have at most {ATTRIBUTES_MAX} attributes")
        cleaned = {}
        for key, value in v.items():
            if not isinstance(key, str) or not key or len(key) > ATTRIBUTE_KEY_MAX:
                raise _invalid("Invalid attribute name")
            if key in RESERVED_ATTRIBUTE_KEYS:
                continue
            if isinstance(value, str) and len(value) > ATTRIBUTE_VALUE_MAX:
                raise _invalid(f"Attribute '{key}' is too long")
            cleaned[key] = value
        return cleaned


def first_error_message(exc: ValidationError) -> tuple[str, Optional[str]]:
    """(message, field) of the first violation"""
    errors = exc.errors()
    if not errors:
        return "Invalid data", None
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    if first.get("type") == "listing_invalid":
        return first["msg"], field
    if first.get("type") == "missing":
        return f"{field} is required", field
    return f"{field}: {first['msg']}" if field else first["msg"], field


def validate_listing_payload(raw: dict[str, Any]) -> ListingPayload:
    """Parse the raw body; raises ValidationException with the first violation"""
    if not isinstance(raw, dict):
        raise ValidationException("Invalid data")
    try:
        return ListingPayload.model_validate(raw)
    except ValidationError as e:
        message, field = first_error_message(e)
        raise ValidationException(message, field=field) from e


def sanitize_listing_payload(payload: ListingPayload) -> dict[str, Any]:
    """
    Repository-ready content fields: markup stripped from free text, phones in
    E.164, WhatsApp defaulted to the phone, listing_type merged into attributes.
    """
    phone = PhoneNumberValidator.normalize(payload.seller_phone)
    whatsapp = PhoneNumberValidator.normalize(payload.seller_whatsapp) if payload.seller_whatsapp else phone

    attributes = TextSanitizer.sanitize_attributes({
        **payload.attributes,
        "listing_type": payload.listing_type.value,
    })
    for key in RESERVED_ATTRIBUTE_KEYS:
        attributes.pop(key, None)

    fields = {
        "title": TextSanitizer.sanitize(payload.title),
        "description": TextSanitizer.sanitize(payload.description),
        "price": payload.price,
        "price_type": payload.price_type,
        "category": TextSanitizer.sanitize(payload.category),
        "condition": payload.condition,
        "location": TextSanitizer.sanitize(payload.location),
        "area_id": payload.area_id,
        "seller_phone": phone,
        "seller_whatsapp": whatsapp,
        "images": TextSanitizer.sanitize_image_urls(payload.images, max_images=IMAGES_MAX),
        "attributes": attributes,
    }

    for name in ("title", "description", "category", "location"):
        if not fields[name]:
            raise ValidationException(f"{name} is empty after removing markup", field=name)
    return fields
