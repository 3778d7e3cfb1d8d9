"""
Patron model for the Library Circulation service.

Identity and credentials live outside this service; the loan engine only
needs to know whether a patron exists and is active.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Patron(BaseModel):
    """A registered library patron."""

    id: str = Field(
        ...,
        description="Unique identifier for the patron",
        pattern=r"^patron_[a-zA-Z0-9_]{3,}$",
        examples=["patron_smith001", "patron_doe_jane"],
    )

    name: str = Field(..., min_length=1, max_length=200)

    email: str | None = Field(None, max_length=255)

    active: bool = Field(
        default=True,
        description="Inactive patrons cannot borrow",
    )

    created_at: datetime | None = None
    updated_at: datetime | None = None
