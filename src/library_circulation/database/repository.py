"""
Repository pattern implementation for the Library Circulation service.

Repositories are the only code that builds SQL. They never commit: the loan
engine opens one ``session_scope`` per operation, calls several repositories
inside it, and the scope commits or rolls back the whole unit. That is what
keeps "loan row created" and "copy count decremented" atomic.

Methods return Pydantic models, so nothing outside this package holds a live
ORM object.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..errors import DuplicateError, NotFoundError
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def validate_params(self) -> None:
        if self.page < 1:
            raise ValueError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("Page size must be between 1 and 100")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BaseRepository(ABC, Generic[ModelType, CreateSchemaType, ResponseSchemaType]):
    """
    Abstract base repository providing common read and create operations.

    No generic delete: ledger rows are only removed
    through the engine's administrative path.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database model to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_row(self, id: str) -> ModelType | None:
        query = select(self.model_class).where(self.model_class.id == str(id))
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def _require_row(self, id: str) -> ModelType:
        db_obj = self._get_row(id)
        if db_obj is None:
            raise NotFoundError(f"{self.model_class.__name__} {id} not found")
        return db_obj

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_row(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def _paginate(
        self,
        query,
        pagination: PaginationParams | None,
        convert: Callable[[ModelType], ResponseSchemaType] | None = None,
    ) -> PaginatedResponse:
        """Run ``query`` one page at a time, converting rows with ``convert``."""
        convert = convert or self._to_response_model
        pagination = pagination or PaginationParams()
        pagination.validate_params()

        count_query = select(func.count()).select_from(query.subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to count total for pagination",
            )
            or 0
        )

        page_query = query.offset(pagination.offset).limit(pagination.page_size)
        results = safe_query(
            self.session,
            lambda s: s.execute(page_query).scalars().all(),
            "Failed to get paginated results",
        )

        return PaginatedResponse(
            items=[convert(item) for item in results],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )

    def _add(self, db_obj: ModelType) -> ModelType:
        """Stage a new row and flush it so constraint violations surface now."""
        if self._get_row(db_obj.id) is not None:
            raise DuplicateError(f"{self.model_class.__name__} {db_obj.id} already exists")
        self.session.add(db_obj)
        safe_query(self.session, lambda s: s.flush(), f"Failed to create {self.model_class.__name__}")
        return db_obj

    def exists(self, id: str) -> bool:
        """Check if entity exists by ID."""
        query = (
            select(func.count()).select_from(self.model_class).where(self.model_class.id == str(id))
        )
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check existence"
        )
        return count > 0
