"""Pydantic models that validate user-supplied command input.

WHY: Slash command text is free-form. Validating it once, with field
level messages, keeps the BookClub service free of ad hoc string checks.

RULES:
- Book name and author are required and stripped
- Links, when given, must be http(s) URLs
- Ratings are integers from 1 to 10
- Pydantic errors are re-raised as chapters ValidationError
"""

from __future__ import annotations

from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, Field, HttpUrl, field_validator

from chapters.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class SuggestionInput(BaseModel):
    book_name: str = Field(min_length=1, description="Book title.")
    author: str = Field(min_length=1, description="Book author.")
    link: Optional[HttpUrl] = Field(default=None, description="Goodreads, publisher page, etc.")
    notes: Optional[str] = Field(default=None, description="Why this book is worth reading.")

    @field_validator("book_name", "author", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("link", "notes", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class RatingInput(BaseModel):
    rating: int = Field(ge=1, le=10, description="Score from 1 to 10.")
    recommend: bool = Field(description="Would the member recommend the book?")


_FIELD_LABELS = {
    "book_name": "Book title",
    "author": "Author",
    "link": "Link",
    "notes": "Notes",
    "rating": "Rating",
    "recommend": "Recommendation",
}


def validate_input(model: Type[ModelT], **data: Any) -> ModelT:
    """Build ``model`` from ``data`` or raise a readable ValidationError."""
    try:
        return model(**data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else ""
        label = _FIELD_LABELS.get(field, field or "Input")
        raise ValidationError("{}: {}".format(label, first["msg"])) from exc
