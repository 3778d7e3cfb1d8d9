"""
Patron registry repository for the Library Circulation service.

The loan engine needs exactly one fact about a patron: whether they exist
and are active. Registration and activation are here for the request layer
and for seeding; identity and credentials live elsewhere.
"""

import logging
import re
import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..models.patron import Patron as PatronModel
from .repository import BaseRepository
from .schema import Patron as PatronDB
from .session import safe_query

logger = logging.getLogger(__name__)


class PatronCreateSchema(BaseModel):
    """Schema for registering a patron."""

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = None
    active: bool = True


class PatronRepository(BaseRepository[PatronDB, PatronCreateSchema, PatronModel]):
    """Repository for patron records."""

    @property
    def model_class(self):
        return PatronDB

    @property
    def response_schema(self):
        return PatronModel

    def create(self, data: PatronCreateSchema) -> PatronModel:
        """Register a patron, generating an ID from the name if none is given."""
        patron = PatronDB(
            id=data.id or self._generate_patron_id(data.name),
            name=data.name,
            email=data.email,
            active=data.active,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        self._add(patron)
        logger.info("Patron %s registered (active=%s)", patron.id, patron.active)
        return self._to_response_model(patron)

    def get(self, patron_id: str) -> PatronModel:
        """Get a patron or raise NotFoundError."""
        return self._to_response_model(self._require_row(patron_id))

    def is_active_patron(self, patron_id: str) -> bool:
        """True only for a patron that exists and is active."""
        active = safe_query(
            self.session,
            lambda s: s.execute(
                select(PatronDB.active).where(PatronDB.id == patron_id)
            ).scalar_one_or_none(),
            "Failed to read patron status",
        )
        return bool(active)

    def set_active(self, patron_id: str, active: bool) -> PatronModel:
        """Activate or deactivate a patron."""
        patron = self._require_row(patron_id)
        patron.active = active
        patron.updated_at = datetime.now()
        safe_query(self.session, lambda s: s.flush(), "Failed to update patron")
        logger.info("Patron %s active=%s", patron_id, active)
        return self._to_response_model(patron)

    def _generate_patron_id(self, name: str) -> str:
        """Generate a readable unique patron ID such as ``patron_smith_1a2b3c``."""
        slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")[:20] or "member"
        return f"patron_{slug}_{uuid.uuid4().hex[:6]}"
