"""
Base Repository - Abstract repository pattern implementation.

Repositories share the caller's session and never commit on their own.
"""
from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Optional, Type
from sqlalchemy.orm import Session

from app.models import Base

T = TypeVar('T', bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository for one SQLAlchemy model.

    Type Parameters:
        T: The SQLAlchemy model type this repository manages
    """

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    def get_by_id(self, entity_id: int) -> Optional[T]:
        """Row by primary key, or None."""
        return self.session.get(self.model_class, entity_id)

    def count(self, **criteria) -> int:
        """Count rows matching field-value criteria."""
        query = self.session.query(self.model_class)
        for field, value in criteria.items():
            query = query.filter(getattr(self.model_class, field) == value)
        return query.count()

    @abstractmethod
    def exists(self, **criteria) -> bool:
        """
        Check if an entity matching the criteria exists.

        Args:
            **criteria: Field-value pairs to match
        """
        pass
