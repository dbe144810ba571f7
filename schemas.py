"""
Database Schemas for the Alien Black Market

Pydantic models for the documents written straight from request data,
plus the address and payment shapes used at checkout.

- User -> "user"
- Alien -> "alien"

Carts and orders live in models.py. API payloads use camelCase names
(inStock, zipCode, ...); documents are stored with snake_case field names.
Both spellings are accepted on input.
"""

import json
import math
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

RARITIES = ("Common", "Rare", "Epic", "Legendary")
Rarity = Literal["Common", "Rare", "Epic", "Legendary"]

IMAGE_URL_RE = re.compile(r"^https?://.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
IMAGE_PATH_RE = re.compile(r"^/uploads/.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/([0-9]{2})$")


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def validate_image(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not (IMAGE_URL_RE.match(value) or IMAGE_PATH_RE.match(value)):
        raise ValueError("Image must be a valid URL or local path ending with jpg, jpeg, png, gif, or webp")
    return value


def validate_price(value: Optional[float]) -> Optional[float]:
    if value is not None and not math.isfinite(value):
        raise ValueError("Price must be a valid positive number")
    return value


def split_abilities(value):
    """Accept a list, a JSON array string or a comma separated string."""
    if value is None or isinstance(value, list):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                return json.loads(text)
            except ValueError:
                pass
        return [part.strip() for part in text.split(",") if part.strip()]
    return value


class ProfileAddress(ApiModel):
    street: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, alias="zipCode", max_length=20)
    country: Optional[str] = Field(None, max_length=50)


class User(ApiModel):
    """Users collection schema"""
    email: EmailStr = Field(..., description="Email address (stored lower-case)")
    password_hash: str = Field(..., description="BCrypt password hash")
    first_name: Optional[str] = Field(None, alias="firstName", max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=50)
    is_admin: bool = Field(False, alias="isAdmin", description="Admin privileges")
    wishlist: List[str] = Field(default_factory=list, description="Alien ids, no duplicates")
    shipping_address: Optional[ProfileAddress] = Field(None, alias="shippingAddress")

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class Alien(ApiModel):
    """Aliens (catalog products) collection schema"""
    name: str = Field(..., min_length=1, max_length=100)
    faction: str = Field(..., min_length=1, max_length=50)
    planet: str = Field(..., min_length=1, max_length=50)
    rarity: Rarity
    price: float = Field(..., ge=0, description="Price in dollars")
    image: str = Field(..., description="Image URL or /uploads path")
    backstory: Optional[str] = Field(None, max_length=2000)
    abilities: List[str] = Field(default_factory=list)
    clothing_style: Optional[str] = Field(None, alias="clothingStyle", max_length=100)
    featured: bool = Field(False)
    in_stock: bool = Field(True, alias="inStock")

    @field_validator("image")
    @classmethod
    def check_image(cls, value):
        return validate_image(value)

    @field_validator("price")
    @classmethod
    def check_price(cls, value):
        return validate_price(value)

    @field_validator("abilities", mode="before")
    @classmethod
    def parse_abilities(cls, value):
        return split_abilities(value)

    @field_validator("abilities")
    @classmethod
    def ability_length(cls, value: List[str]) -> List[str]:
        cleaned = [a.strip() for a in value if a and a.strip()]
        for ability in cleaned:
            if len(ability) > 100:
                raise ValueError("Each ability cannot exceed 100 characters")
        return cleaned


class AlienUpdate(ApiModel):
    """Partial update of an alien; only provided fields are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    faction: Optional[str] = Field(None, min_length=1, max_length=50)
    planet: Optional[str] = Field(None, min_length=1, max_length=50)
    rarity: Optional[Rarity] = None
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    backstory: Optional[str] = Field(None, max_length=2000)
    abilities: Optional[List[str]] = None
    clothing_style: Optional[str] = Field(None, alias="clothingStyle", max_length=100)
    featured: Optional[bool] = None
    in_stock: Optional[bool] = Field(None, alias="inStock")

    @field_validator("image")
    @classmethod
    def check_image(cls, value):
        return validate_image(value)

    @field_validator("price")
    @classmethod
    def check_price(cls, value):
        return validate_price(value)

    @field_validator("abilities", mode="before")
    @classmethod
    def parse_abilities(cls, value):
        return split_abilities(value)


class ShippingAddress(ApiModel):
    street: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    state: str = Field(..., min_length=1, max_length=50)
    zip_code: str = Field(..., alias="zipCode", min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=50)


class PaymentMethod(ApiModel):
    card_number: str = Field(..., alias="cardNumber")
    expiry_date: str = Field(..., alias="expiryDate")
    cvv: str = Field(...)
    cardholder_name: str = Field(..., alias="cardholderName", min_length=1)

    @field_validator("card_number")
    @classmethod
    def card_length(cls, value: str) -> str:
        digits = re.sub(r"\s", "", value)
        if not 13 <= len(digits) <= 19:
            raise ValueError("Card number must be between 13 and 19 digits")
        return value

    @field_validator("expiry_date")
    @classmethod
    def expiry_format(cls, value: str) -> str:
        if not EXPIRY_RE.match(value):
            raise ValueError("Expiry date must be in MM/YY format")
        return value

    @field_validator("cvv")
    @classmethod
    def cvv_format(cls, value: str) -> str:
        if not re.fullmatch(r"\d{3,4}", value):
            raise ValueError("CVV must be 3 or 4 digits")
        return value


# Response envelope


def ok(data=None, message: Optional[str] = None) -> dict:
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body
