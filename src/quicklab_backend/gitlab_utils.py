"""
Thin synchronous wrapper around python-gitlab.

Every call returns plain ids and translates ``GitlabError`` into the platform
errors below, so callers can decide between create, reuse and retry without
looking at HTTP status codes.
"""

import functools
import logging
from typing import Any, Dict, Optional

import requests
from gitlab import Gitlab
from gitlab.exceptions import GitlabError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = (502, 503, 504)


class PlatformError(Exception):
    """Base exception for hosting platform failures."""

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ResourceNotFoundError(PlatformError):
    pass


class ConflictError(PlatformError):
    pass


class TransientUnavailableError(PlatformError):
    pass


class PermissionDeniedError(PlatformError):
    pass


def translate_error(error: GitlabError, operation: str) -> PlatformError:
    code = error.response_code
    message = f"[{operation}] {code}: {error.error_message}"

    if code == 404:
        return ResourceNotFoundError(message, operation, code)
    if code == 409 or (code == 400 and "has already been taken" in str(error.error_message)):
        return ConflictError(message, operation, code)
    if code in (401, 403):
        return PermissionDeniedError(message, operation, code)
    if code in TRANSIENT_STATUS_CODES:
        return TransientUnavailableError(message, operation, code)
    return PlatformError(message, operation, code)


def platform_call(operation: str):
    """Translate python-gitlab and connection errors raised by ``operation``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except GitlabError as e:
                raise translate_error(e, operation) from e
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                raise TransientUnavailableError(f"[{operation}] {e}", operation) from e
        return wrapper

    return decorator


class GitLabPlatform:
    """
    Hosting platform adapter for GitLab.

    Groups and projects are addressed by their full path when looked up and
    by id everywhere else.
    """

    def __init__(self, gitlab: Gitlab, password_reset_mail: bool = True):
        self.gitlab = gitlab
        self.password_reset_mail = password_reset_mail

    @classmethod
    def from_settings(cls, settings) -> "GitLabPlatform":
        gitlab = Gitlab(url=settings.GITLAB_URL, private_token=settings.GITLAB_TOKEN, keep_base_url=True)
        return cls(gitlab, password_reset_mail=settings.GITLAB_PASSWORD_RESET_MAIL)

    @property
    def url(self) -> str:
        return self.gitlab.url.rstrip("/")

    # Groups

    @platform_call("get_group")
    def get_group(self, full_path: str) -> int:
        return self.gitlab.groups.get(full_path).id

    @platform_call("create_group")
    def create_group(self, name: str, path: str, parent_id: Optional[int] = None) -> int:
        payload = {
            "name": name,
            "path": path,
            "visibility": "private",
        }
        if parent_id is not None:
            payload["parent_id"] = parent_id

        group = self.gitlab.groups.create(payload)
        logger.info(f"Created GitLab group: {group.full_path}")
        return group.id

    @platform_call("delete_group")
    def delete_group(self, group_id: int) -> None:
        self.gitlab.groups.delete(group_id)

    # Projects

    @platform_call("get_project")
    def get_project(self, full_path: str) -> int:
        return self.gitlab.projects.get(full_path).id

    def _project_payload(self, name: str, namespace_id: int) -> Dict[str, Any]:
        return {
            "name": name,
            "path": name,
            "namespace_id": namespace_id,
            "visibility": "private",
        }

    @platform_call("create_project")
    def create_project(self, name: str, namespace_id: int) -> int:
        project = self.gitlab.projects.create(self._project_payload(name, namespace_id))
        logger.info(f"Created project: {project.path_with_namespace}")
        return project.id

    @platform_call("import_project_from_url")
    def import_project_from_url(self, name: str, namespace_id: int, import_url: str) -> int:
        project = self.gitlab.projects.create({
            **self._project_payload(name, namespace_id),
            "import_url": import_url,
        })
        logger.info(f"Imported project {project.path_with_namespace} from {import_url}")
        return project.id

    @platform_call("import_project_from_file")
    def import_project_from_file(self, name: str, namespace: str, file_path: str) -> int:
        with open(file_path, "rb") as archive:
            output = self.gitlab.projects.import_project(archive, path=name, name=name, namespace=namespace)
        logger.info(f"Imported project {namespace}/{name} from {file_path}")
        return output["id"]

    @platform_call("fork_project")
    def fork_project(self, source: str, name: str, namespace_id: int) -> int:
        source_id = self.gitlab.projects.get(source).id
        output = self.gitlab.http_post(
            path=f"/projects/{source_id}/fork",
            post_data={
                "path": name,
                "name": name,
                "namespace_id": namespace_id,
            })
        logger.info(f"Forked {source} into namespace {namespace_id} as {name}")
        return output["id"]

    @platform_call("add_push_rules")
    def add_push_rules(self, project_id: int, rules: Dict[str, Any]) -> None:
        project = self.gitlab.projects.get(project_id, lazy=True)
        project.pushrules.create(rules)

    @platform_call("delete_project")
    def delete_project(self, project_id: int) -> None:
        self.gitlab.projects.delete(project_id)

    # Users

    @platform_call("get_user_by_username")
    def get_user_by_username(self, username: str) -> int:
        users = self.gitlab.users.list(username=username)
        if not users:
            raise ResourceNotFoundError(f"No user with username {username}", "get_user_by_username", 404)
        return users[0].id

    @platform_call("get_user_by_email")
    def get_user_by_email(self, email: str) -> int:
        for user in self.gitlab.users.list(search=email, iterator=True):
            if email.lower() in (str(getattr(user, attr, "")).lower() for attr in ("email", "public_email")):
                return user.id
        raise ResourceNotFoundError(f"No user with email {email}", "get_user_by_email", 404)

    @platform_call("create_user")
    def create_user(self, name: str, username: str, email: str) -> int:
        payload = {
            "name": name,
            "username": username,
            "email": email,
            "skip_confirmation": True,
        }
        if self.password_reset_mail:
            payload["reset_password"] = True
        else:
            payload["force_random_password"] = True

        user = self.gitlab.users.create(payload)
        logger.info(f"Created GitLab user: {user.username}")
        return user.id

    @platform_call("delete_user")
    def delete_user(self, user_id: int) -> None:
        self.gitlab.users.delete(user_id)

    # Members

    @platform_call("add_group_member")
    def add_group_member(self, group_id: int, user_id: int, access_level: int) -> None:
        group = self.gitlab.groups.get(group_id, lazy=True)
        group.members.create({"user_id": user_id, "access_level": access_level})
        logger.info(f"Added user {user_id} to group {group_id} with access level {access_level}")

    @platform_call("add_project_member")
    def add_project_member(self, project_id: int, user_id: int, access_level: int) -> None:
        project = self.gitlab.projects.get(project_id, lazy=True)
        project.members.create({"user_id": user_id, "access_level": access_level})
        logger.info(f"Added user {user_id} to project {project_id} with access level {access_level}")

    @platform_call("remove_group_member")
    def remove_group_member(self, group_id: int, user_id: int) -> None:
        self.gitlab.groups.get(group_id, lazy=True).members.delete(user_id)

    @platform_call("remove_project_member")
    def remove_project_member(self, project_id: int, user_id: int) -> None:
        self.gitlab.projects.get(project_id, lazy=True).members.delete(user_id)
