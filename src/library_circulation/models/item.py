"""
Item model for the Library Circulation service.

An item is a catalog entry with one or more lendable copies. Copies are not
tracked individually: ``available_copies`` is the aggregate count still on
the shelf, and ``total_copies - available_copies`` are out on loan or hold.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Item(BaseModel):
    """A catalog item and its copy counts."""

    id: str = Field(
        ...,
        description="Unique identifier for the item",
        pattern=r"^item_[a-zA-Z0-9_]{3,}$",
        examples=["item_gatsby01", "item_mockingbird"],
    )

    title: str = Field(
        ...,
        min_length=1,
        max_length=500,
        examples=["The Great Gatsby"],
    )

    author: str | None = Field(None, max_length=200)

    total_copies: int = Field(
        ...,
        description="Total number of copies owned by the library",
        ge=0,
    )

    available_copies: int = Field(
        ...,
        description="Number of copies currently on the shelf",
        ge=0,
    )

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_copies(self) -> "Item":
        """Ensure available copies doesn't exceed total copies."""
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    @property
    def copies_out(self) -> int:
        """Copies currently out on loan or held for a patron."""
        return self.total_copies - self.available_copies

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "item_gatsby01",
                "title": "The Great Gatsby",
                "author": "F. Scott Fitzgerald",
                "total_copies": 3,
                "available_copies": 2,
            }
        }
    )
