"""
Item inventory repository for the Library Circulation service.

Owns each item's ``total_copies`` / ``available_copies`` pair:

1. **Availability**: ``get_available`` reads the current shelf count
2. **Taking a copy**: ``reserve_copy`` is a single conditional UPDATE that
   only decrements while copies remain, so two requests can never both
   take the last copy even across processes
3. **Giving a copy back**: ``release_copy`` increments, never past the total
4. **Resizing**: ``resize`` changes the total while keeping every copy that
   is out on loan accounted for
5. **Catalog metadata**: title/author edits that never touch the counts
"""

import logging
import math
import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.orm.util import identity_key

from ..errors import InventoryShrinkBelowLoans, NotFoundError
from ..models.item import Item as ItemModel
from .repository import BaseRepository
from .schema import Item as ItemDB
from .session import safe_query

logger = logging.getLogger(__name__)


class ItemCreateSchema(BaseModel):
    """Schema for adding an item to the catalog."""

    id: str | None = None
    title: str = Field(..., min_length=1, max_length=500)
    author: str | None = None
    total_copies: int = Field(default=1, ge=0)


class ItemMetadataUpdateSchema(BaseModel):
    """Descriptive fields only; copy counts change through ``resize``."""

    title: str | None = Field(None, min_length=1, max_length=500)
    author: str | None = None


class ItemRepository(BaseRepository[ItemDB, ItemCreateSchema, ItemModel]):
    """Repository for items and their copy counts."""

    @property
    def model_class(self):
        return ItemDB

    @property
    def response_schema(self):
        return ItemModel

    def create(self, data: ItemCreateSchema) -> ItemModel:
        """Add an item with every copy on the shelf."""
        item = ItemDB(
            id=data.id or f"item_{uuid.uuid4().hex[:12]}",
            title=data.title,
            author=data.author,
            total_copies=data.total_copies,
            available_copies=data.total_copies,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        self._add(item)
        logger.info("Item %s added with %d copies", item.id, item.total_copies)
        return self._to_response_model(item)

    def get(self, item_id: str) -> ItemModel:
        """Get an item or raise NotFoundError."""
        return self._to_response_model(self._require_row(item_id))

    def item_exists(self, item_id: str) -> bool:
        return self.exists(item_id)

    def get_available(self, item_id: str) -> int:
        """Current number of copies on the shelf."""
        available = safe_query(
            self.session,
            lambda s: s.execute(
                select(ItemDB.available_copies).where(ItemDB.id == item_id)
            ).scalar_one_or_none(),
            "Failed to read available copies",
        )
        if available is None:
            raise NotFoundError(f"Item {item_id} not found")
        return available

    def reserve_copy(self, item_id: str) -> bool:
        """
        Take one copy off the shelf.

        The decrement and the "> 0" check are one statement, so the database
        serializes competing requests for the last copy.

        Returns:
            True if a copy was taken, False if none were left. False is a
            normal outcome, not an error.
        """
        stmt = (
            update(ItemDB)
            .where(ItemDB.id == item_id, ItemDB.available_copies > 0)
            .values(available_copies=ItemDB.available_copies - 1, updated_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        result = safe_query(
            self.session, lambda s: s.execute(stmt), "Failed to reserve a copy"
        )
        taken = result.rowcount == 1
        if taken:
            self._expire(item_id)
        return taken

    def release_copy(self, item_id: str) -> bool:
        """
        Put one copy back on the shelf, never exceeding ``total_copies``.

        Returns:
            False when the count was already at the total. That means the
            ledger and the inventory disagree, so it is logged loudly.
        """
        stmt = (
            update(ItemDB)
            .where(ItemDB.id == item_id, ItemDB.available_copies < ItemDB.total_copies)
            .values(available_copies=ItemDB.available_copies + 1, updated_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        result = safe_query(
            self.session, lambda s: s.execute(stmt), "Failed to release a copy"
        )
        released = result.rowcount == 1
        if released:
            self._expire(item_id)
        else:
            logger.error("Release of item %s ignored: all copies already on the shelf", item_id)
        return released

    def resize(self, item_id: str, new_total: int) -> ItemModel:
        """
        Change the number of copies the library owns.

        Growing adds the new copies to the shelf. Shrinking rescales the
        shelf count proportionally (floor), clamped so that copies out on
        loan stay counted: ``available + out == total`` must still hold.

        Raises:
            NotFoundError: Unknown item
            InventoryShrinkBelowLoans: ``new_total`` is below the copies out
        """
        if new_total < 0:
            raise ValueError("Total copies cannot be negative")

        item = self._require_row(item_id)
        out = item.total_copies - item.available_copies

        if new_total < out:
            raise InventoryShrinkBelowLoans(
                f"Item {item_id} has {out} copies out; cannot reduce total to {new_total}"
            )

        if new_total >= item.total_copies:
            available = item.available_copies + (new_total - item.total_copies)
        else:
            ratio = item.available_copies / item.total_copies if item.total_copies else 0
            available = math.floor(new_total * ratio)
            available = max(0, min(available, new_total - out))

        logger.info(
            "Resizing item %s: total %d -> %d, available %d -> %d",
            item_id,
            item.total_copies,
            new_total,
            item.available_copies,
            available,
        )
        item.total_copies = new_total
        item.available_copies = available
        item.updated_at = datetime.now()
        safe_query(self.session, lambda s: s.flush(), "Failed to resize item")
        return self._to_response_model(item)

    def update_metadata(self, item_id: str, data: ItemMetadataUpdateSchema) -> ItemModel:
        """Edit descriptive fields. Copy counts are left untouched."""
        item = self._require_row(item_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(item, field, value)
        item.updated_at = datetime.now()
        safe_query(self.session, lambda s: s.flush(), "Failed to update item")
        return self._to_response_model(item)

    def _expire(self, item_id: str) -> None:
        """Drop a cached ORM copy of the item after a bulk UPDATE."""
        cached = self.session.identity_map.get(identity_key(ItemDB, item_id))
        if cached is not None:
            self.session.expire(cached)
