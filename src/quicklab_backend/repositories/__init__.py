"""
Repository layer for direct database access.
"""

from .base import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
    InsufficientSelectorError,
    CorruptStoreError,
    SubtreeInsertError,
    GroupSelector,
)
from .course_tree import CourseTreeRepository, selector_for_path
from .course_settings import CourseSettingsRepository

__all__ = [
    'BaseRepository',
    'RepositoryError',
    'NotFoundError',
    'DuplicateError',
    'InsufficientSelectorError',
    'CorruptStoreError',
    'SubtreeInsertError',
    'GroupSelector',
    'CourseTreeRepository',
    'CourseSettingsRepository',
    'selector_for_path',
]
