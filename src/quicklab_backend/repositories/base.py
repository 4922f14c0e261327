"""
Shared plumbing for the course store repositories.

Repositories wrap an explicit SQLAlchemy session. Every write commits on its
own; integrity violations roll the session back and surface as
``DuplicateError``.
"""

from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

T = TypeVar('T')


class RepositoryError(Exception):
    """Root of the course store errors."""
    pass


class NotFoundError(RepositoryError):
    """No row matches the requested key."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateError(RepositoryError):
    """A write collided with a unique constraint."""

    def __init__(self, entity_type: str, criteria: Dict[str, Any]):
        super().__init__(f"{entity_type} already exists with criteria: {criteria}")
        self.entity_type = entity_type
        self.criteria = criteria


class InsufficientSelectorError(RepositoryError):
    """Raised when a lookup does not carry a usable addressing form."""

    def __init__(self, entity_type: str, criteria: Dict[str, Any]):
        super().__init__(f"Not enough data to address a {entity_type}: {criteria}")
        self.entity_type = entity_type
        self.criteria = criteria


class CorruptStoreError(RepositoryError):
    """Raised when a lookup that must be unique matches several rows."""

    def __init__(self, entity_type: str, criteria: Dict[str, Any], matches: int):
        super().__init__(f"Corrupt store: {matches} {entity_type} rows match {criteria}")
        self.entity_type = entity_type
        self.criteria = criteria
        self.matches = matches


class SubtreeInsertError(RepositoryError):
    """Aggregates the failures of a recursive insert."""

    def __init__(self, path: str, errors: List[Exception]):
        details = "; ".join(str(e) for e in errors)
        super().__init__(f"Inserting children of '{path}' failed ({len(errors)}): {details}")
        self.path = path
        self.errors = errors


class GroupSelector(BaseModel):
    """
    Addresses a single group.

    Usable forms, in lookup precedence:
        ``id``; ``parent_group_id`` + ``name``; ``path`` + ``name``;
        ``subtype="course"`` + ``name``.
    """
    id: Optional[int] = None
    name: Optional[str] = None
    path: Optional[str] = None
    parent_group_id: Optional[int] = None
    subtype: Optional[str] = None

    def forms(self) -> List[str]:
        forms = []
        if self.id is not None:
            forms.append("id")
        if self.name and self.parent_group_id is not None:
            forms.append("parent_group_id")
        if self.name and self.path:
            forms.append("path")
        if self.name and self.subtype == "course" and not self.path and self.parent_group_id is None:
            forms.append("course")
        return forms

    def criteria(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class BaseRepository(ABC, Generic[T]):
    """Session-bound access to one mapped class."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model

    def get_by_id_optional(self, entity_id: Any) -> Optional[T]:
        return self.db.get(self.model, entity_id)

    def create(self, entity: T) -> T:
        """
        Insert ``entity`` and return it refreshed from the database.

        Raises:
            DuplicateError: If entity violates unique constraints
            RepositoryError: If database operation fails
        """
        self.db.add(entity)
        self.save(self._extract_entity_dict(entity))
        self.db.refresh(entity)
        return entity

    def save(self, criteria: Optional[Dict[str, Any]] = None) -> None:
        """
        Commit pending changes, translating database errors.

        Args:
            criteria: Reported in the ``DuplicateError`` on integrity violations
        """
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateError(self.model.__name__, criteria or {})
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError(f"Failed to write {self.model.__name__}: {str(e)}")

    def remove(self, entity: T) -> None:
        try:
            self.db.delete(entity)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError(f"Failed to delete {self.model.__name__}: {str(e)}")

    def _extract_entity_dict(self, entity: T) -> Dict[str, Any]:
        mapper = inspect(entity).mapper
        return {
            column.key: getattr(entity, column.key)
            for column in mapper.column_attrs
            if getattr(entity, column.key) is not None
        }
