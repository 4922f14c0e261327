"""
Pytest configuration and fixtures for all tests.
"""

from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quicklab_backend.model import Base
from quicklab_backend.repositories.course_settings import CourseSettingsRepository
from quicklab_backend.repositories.course_tree import CourseTreeRepository
from quicklab_backend.tests.fixtures import FakeGitLabPlatform


@pytest.fixture(scope="function")
def engine():
    """SQLite in-memory engine shared by every session of a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db(engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tree_repository(test_db) -> CourseTreeRepository:
    return CourseTreeRepository(test_db)


@pytest.fixture
def settings_repository(test_db) -> CourseSettingsRepository:
    return CourseSettingsRepository(test_db)


@pytest.fixture
def platform() -> FakeGitLabPlatform:
    return FakeGitLabPlatform()
