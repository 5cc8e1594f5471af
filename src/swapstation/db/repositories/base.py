"""Base repository class."""

from typing import Generic, TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from swapstation.db.base import Base
from swapstation.utils.exceptions import NotFoundError

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Base repository with common lookup and insert operations."""

    model: type[ModelT]
    resource_name: str = "Record"

    def __init__(self, session: Session) -> None:
        """Initialize repository with a session.

        Args:
            session: SQLAlchemy session.
        """
        self.session = session

    def get_by_id(self, id: int) -> ModelT | None:
        """Get a record by its primary key.

        Args:
            id: Primary key value.

        Returns:
            Model instance or None if not found.
        """
        return self.session.get(self.model, id)

    def require(self, id: int) -> ModelT:
        """Get a record by its primary key or raise.

        Args:
            id: Primary key value.

        Returns:
            Model instance.

        Raises:
            NotFoundError: If no record has this key.
        """
        instance = self.get_by_id(id)
        if instance is None:
            raise NotFoundError(self.resource_name, id)
        return instance

    def get_all(self) -> list[ModelT]:
        """Get all records.

        Returns:
            List of all model instances.
        """
        stmt = select(self.model)
        return list(self.session.scalars(stmt).all())

    def add(self, instance: ModelT) -> ModelT:
        """Add a new record.

        Args:
            instance: Model instance to add.

        Returns:
            The added instance.
        """
        self.session.add(instance)
        self.session.flush()
        return instance

    def add_all(self, instances: list[ModelT]) -> list[ModelT]:
        """Add multiple records.

        Args:
            instances: List of model instances to add.

        Returns:
            The added instances.
        """
        self.session.add_all(instances)
        self.session.flush()
        return instances

    def conditional_update(self, id: int, *criteria, **values) -> bool:
        """Update one row only while it still matches ``criteria``.

        The row is reloaded into the session after a successful update.

        Args:
            id: Primary key value.
            *criteria: Extra WHERE conditions the row must still satisfy.
            **values: Columns to set.

        Returns:
            True if the row matched and was updated.
        """
        stmt = (
            update(self.model)
            .where(self.model.id == id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        self.session.get(self.model, id, populate_existing=True)
        return True
