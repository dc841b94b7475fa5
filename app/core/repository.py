"""Base repository pattern implementation.

This module provides a generic repository pattern that can be used
as a base for domain-specific repositories.
"""

from typing import Generic, TypeVar, cast
from uuid import UUID

from sqlalchemy.orm import Session

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """Generic repository with lookup by id and commit of pending changes.

    Domain-specific repositories inherit from this class and add their own
    queries. There is no ``delete``: records managed through
    repositories are append/update only.

    Example:
        ```python
        class CertificateRepository(BaseRepository[Certificate]):
            def __init__(self, db: Session):
                super().__init__(db, Certificate)

            def find_by_code(self, code: str) -> Certificate | None:
                return (
                    self.db.query(self.model)
                    .filter(self.model.verification_code == code)
                    .first()
                )
        ```
    """

    def __init__(self, db: Session, model: type[ModelType]):
        """Initialize repository with database session and model class.

        Args:
            db: SQLAlchemy session.
            model: The model class this repository operates on.
        """
        self.db = db
        self.model = model

    def get_by_id(self, entity_id: UUID) -> ModelType | None:
        """Get a single entity by ID.

        Args:
            entity_id: The UUID of the entity.

        Returns:
            The entity if found, None otherwise.
        """
        result = self.db.query(self.model).filter(self.model.id == entity_id).first()  # type: ignore[attr-defined]
        return cast(ModelType | None, result)

    def save(self, instance: ModelType) -> ModelType:
        """Commit pending changes on an already attached entity."""
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        return instance
