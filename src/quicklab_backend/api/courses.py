import logging
from typing import List
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from quicklab_backend.api.exceptions import (
    BadGatewayException,
    BadRequestException,
    repository_error_to_http_exception,
)
from quicklab_backend.database import get_db
from quicklab_backend.generator.gitlab_provisioner import RetryPolicy, provision
from quicklab_backend.gitlab_utils import GitLabPlatform, PlatformError
from quicklab_backend.interface.courses import AvailableTAs, CourseListEntry, EditionCreate, SubmitResult
from quicklab_backend.interface.project_settings import ProjectSettings
from quicklab_backend.interface.transactions import TransactionLog
from quicklab_backend.interface.tree import GroupNode
from quicklab_backend.repositories.base import RepositoryError
from quicklab_backend.repositories.course_settings import CourseSettingsRepository
from quicklab_backend.repositories.course_tree import CourseTreeRepository
from quicklab_backend.services.transaction_log import TransactionReplayer
from quicklab_backend.settings import settings

course_router = APIRouter()
logger = logging.getLogger(__name__)

def get_gitlab_platform() -> GitLabPlatform:
    return GitLabPlatform.from_settings(settings)

@course_router.get("", response_model=List[CourseListEntry])
def list_courses(db: Session = Depends(get_db)):
    return CourseTreeRepository(db).get_course_list()

@course_router.post("", response_model=CourseListEntry, status_code=status.HTTP_201_CREATED)
def create_course(course: GroupNode, db: Session = Depends(get_db)):

    if not course.is_course:
        raise BadRequestException(detail="The root of a course tree must have subtype course")

    try:
        CourseTreeRepository(db).add_course(course)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

    return CourseListEntry(id=course.id, name=course.name, editions=[c.id for c in course.children if isinstance(c, GroupNode)])

@course_router.get("/teaching-assistants", response_model=List[str])
def search_teaching_assistants(search: str = "", db: Session = Depends(get_db)):
    return CourseSettingsRepository(db).search_tas(search)

@course_router.post("/{course}/editions", response_model=GroupNode, status_code=status.HTTP_201_CREATED)
def create_edition(course: str, payload: EditionCreate, db: Session = Depends(get_db)):
    repository = CourseTreeRepository(db)
    try:
        repository.add_edition(course, payload.edition)
        return repository.get_course_tree(course, payload.edition.id)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

@course_router.get("/{course}/editions/{edition}", response_model=GroupNode)
def get_course_tree(course: str, edition: str, db: Session = Depends(get_db)):
    try:
        return CourseTreeRepository(db).get_course_tree(course, edition)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

@course_router.post("/{course}/editions/{edition}/transactions", response_model=GroupNode)
def apply_transactions(course: str, edition: str, payload: TransactionLog, db: Session = Depends(get_db)):

    result = TransactionReplayer(CourseTreeRepository(db)).replay(payload, course, edition)

    if not result.success:
        logger.error(f"Applying transactions to {course}/{edition} failed after {result.applied}: {result.error}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": result.error,
                "result": result.tree.model_dump(mode="json") if result.tree is not None else None,
            })

    return result.tree

@course_router.post("/{course}/editions/{edition}/submit", response_model=SubmitResult)
async def submit_course(course: str, edition: str, db: Session = Depends(get_db), platform: GitLabPlatform = Depends(get_gitlab_platform)):

    try:
        tree = CourseTreeRepository(db).get_course_tree(course, edition)
        project_settings = CourseSettingsRepository(db).get_project_settings(course, edition)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

    try:
        url = await provision(tree, platform, project_settings, RetryPolicy.from_settings(settings))
    except PlatformError as e:
        logger.error(f"Provisioning {course}/{edition} failed: {e}")
        raise BadGatewayException(detail=str(e))

    return SubmitResult(url=url)

@course_router.get("/{course}/editions/{edition}/project-settings", response_model=ProjectSettings)
def get_project_settings(course: str, edition: str, db: Session = Depends(get_db)):
    try:
        return CourseSettingsRepository(db).get_project_settings(course, edition) or ProjectSettings()
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

@course_router.put("/{course}/editions/{edition}/project-settings", response_model=ProjectSettings)
def put_project_settings(course: str, edition: str, payload: ProjectSettings, db: Session = Depends(get_db)):
    try:
        return CourseSettingsRepository(db).put_project_settings(course, edition, payload)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

@course_router.get("/{course}/editions/{edition}/tas", response_model=AvailableTAs)
def get_available_tas(course: str, edition: str, db: Session = Depends(get_db)):
    try:
        return CourseSettingsRepository(db).get_available_tas(course, edition)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)

@course_router.put("/{course}/editions/{edition}/tas", response_model=AvailableTAs)
def put_available_tas(course: str, edition: str, payload: AvailableTAs, db: Session = Depends(get_db)):
    try:
        return CourseSettingsRepository(db).set_available_tas(course, edition, payload.tas, payload.head_tas)
    except RepositoryError as e:
        raise repository_error_to_http_exception(e)
