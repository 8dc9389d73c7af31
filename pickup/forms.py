"""Validated request bodies built from modal form input."""

from __future__ import annotations

from typing import Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pickup.errors import FormError

FormT = TypeVar("FormT", bound=BaseModel)


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class JoinForm(_Form):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=4, max_length=100)
    nickname: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    age: int = Field(..., ge=1, le=150)
    road_address: str = ""
    address_detail: str = ""


class MenuForm(_Form):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = ""
    price: int = Field(..., ge=0)
    description: str = ""
    image_url: str = ""

    def to_payload(self, *, is_available: bool = True, is_hidden: bool = False) -> dict[str, object]:
        return {
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "description": self.description,
            "imageUrl": self.image_url,
            "isAvailable": is_available,
            "isHidden": is_hidden,
        }


class OptionForm(_Form):
    name: str = Field(..., min_length=1, max_length=100)
    detail: str = ""
    price: int = Field(..., ge=0)


class ReviewForm(_Form):
    rating: int = Field(..., ge=1, le=5)
    content: str = Field("", max_length=500)

    @field_validator("rating", mode="before")
    @classmethod
    def blank_rating(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            raise ValueError("Choose a rating from 1 to 5")
        return value


_FIELD_LABELS = {
    "image_url": "image URL",
    "road_address": "road address",
    "address_detail": "address detail",
}


def parse_form(model: Type[FormT], values: Mapping[str, str]) -> FormT:
    """Validate raw modal values, reporting the first problem as a ``FormError``."""
    try:
        return model.model_validate(dict(values))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else ""
        label = _FIELD_LABELS.get(field, field)
        message = first.get("msg", "is invalid")
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        raise FormError(f"{label}: {message}" if label else message) from exc
