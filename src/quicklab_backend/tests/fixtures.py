"""
Test fixtures for the test suite.

Provides sample course trees and an in-memory stand-in for the GitLab
platform adapter.
"""

import itertools
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from quicklab_backend.gitlab_utils import ConflictError, PermissionDeniedError, ResourceNotFoundError
from quicklab_backend.interface.tree import (
    GroupNode,
    ProjectNode,
    UserNode,
    UserRights,
    course,
    edition,
)


def make_user(username: str, name: Optional[str] = None, subtype: str = "student", **kwargs) -> UserNode:
    return UserNode(
        id=username,
        name=name or username.capitalize(),
        username=username,
        email=kwargs.pop("email", f"{username}@example.com"),
        subtype=subtype,
        **kwargs,
    )


def make_group(id: str, *children, subtype: str = "group") -> GroupNode:
    return GroupNode(id=id, subtype=subtype, children=tuple(children))


def cs101_tree() -> GroupNode:
    """CS101/2024 with group g1 holding the teaching assistant alice."""
    return course("CS101", "Computer Science 101", [
        edition("2024", [
            make_group("g1", make_user("alice", "Alice", subtype="ta")),
        ]),
    ])


def full_course_tree() -> GroupNode:
    return course("CS101", "Computer Science 101", [
        edition("2024", [
            make_group(
                "group 1",
                ProjectNode(id="project a"),
                make_user("bob", "Bob"),
                make_user("carol", "Carol"),
            ),
            make_group(
                "group 2",
                make_group("sub", make_user("dave", "Dave")),
                ProjectNode(id="project b", repo="https://example.com/template.git"),
            ),
            make_user(
                "erin",
                "Erin",
                subtype="head_ta",
                rights=UserRights(edit=True, share=True, work=True),
            ),
        ]),
    ])


class FakeGitLabPlatform:
    """In-memory platform with the ``GitLabPlatform`` interface.

    ``failures`` maps a method name to exceptions raised by its next calls.
    """

    def __init__(self, url: str = "https://gitlab.example.com"):
        self.url = url
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.groups: Dict[str, int] = {}
        self.projects: Dict[str, int] = {}
        self.users: Dict[str, dict] = {}
        self.members: Dict[tuple, int] = {}
        self.push_rules: Dict[int, dict] = {}
        self.imports: Dict[int, tuple] = {}
        self.created: List[tuple] = []
        self.deleted: List[tuple] = []
        self.calls: Dict[str, int] = defaultdict(int)
        self.failures: Dict[str, List[Exception]] = defaultdict(list)
        # lookups of these paths are rejected
        self.denied_paths = set()

    def _enter(self, method: str):
        self.calls[method] += 1
        if self.failures[method]:
            raise self.failures[method].pop(0)

    def _path_of(self, namespace_id: int) -> str:
        for path, group_id in self.groups.items():
            if group_id == namespace_id:
                return path
        raise ResourceNotFoundError(f"No namespace {namespace_id}", "namespace", 404)

    def get_group(self, full_path: str) -> int:
        with self._lock:
            self._enter("get_group")
            if full_path in self.denied_paths:
                raise PermissionDeniedError(f"Access to {full_path} denied", "get_group", 403)
            if full_path not in self.groups:
                raise ResourceNotFoundError(f"No group {full_path}", "get_group", 404)
            return self.groups[full_path]

    def create_group(self, name: str, path: str, parent_id: Optional[int] = None) -> int:
        with self._lock:
            self._enter("create_group")
            full_path = f"{self._path_of(parent_id)}/{path}" if parent_id is not None else path
            if full_path in self.groups:
                raise ConflictError(f"{full_path} has already been taken", "create_group", 400)
            self.groups[full_path] = next(self._ids)
            self.created.append(("group", full_path))
            return self.groups[full_path]

    def get_project(self, full_path: str) -> int:
        with self._lock:
            self._enter("get_project")
            if full_path not in self.projects:
                raise ResourceNotFoundError(f"No project {full_path}", "get_project", 404)
            return self.projects[full_path]

    def _new_project(self, name: str, namespace_id: int, source: Optional[tuple] = None) -> int:
        full_path = f"{self._path_of(namespace_id)}/{name}"
        if full_path in self.projects:
            raise ConflictError(f"{full_path} has already been taken", "create_project", 400)
        project_id = next(self._ids)
        self.projects[full_path] = project_id
        self.created.append(("project", full_path))
        if source is not None:
            self.imports[project_id] = source
        return project_id

    def create_project(self, name: str, namespace_id: int) -> int:
        with self._lock:
            self._enter("create_project")
            return self._new_project(name, namespace_id)

    def import_project_from_url(self, name: str, namespace_id: int, import_url: str) -> int:
        with self._lock:
            self._enter("import_project_from_url")
            return self._new_project(name, namespace_id, ("url", import_url))

    def import_project_from_file(self, name: str, namespace: str, file_path: str) -> int:
        with self._lock:
            self._enter("import_project_from_file")
            return self._new_project(name, self.groups[namespace], ("file", file_path))

    def fork_project(self, source: str, name: str, namespace_id: int) -> int:
        with self._lock:
            self._enter("fork_project")
            return self._new_project(name, namespace_id, ("fork", source))

    def add_push_rules(self, project_id: int, rules: dict) -> None:
        with self._lock:
            self._enter("add_push_rules")
            self.push_rules[project_id] = rules

    def get_user_by_username(self, username: str) -> int:
        with self._lock:
            self._enter("get_user_by_username")
            if username not in self.users:
                raise ResourceNotFoundError(f"No user {username}", "get_user_by_username", 404)
            return self.users[username]["id"]

    def get_user_by_email(self, email: str) -> int:
        with self._lock:
            self._enter("get_user_by_email")
            for user in self.users.values():
                if user["email"] == email:
                    return user["id"]
            raise ResourceNotFoundError(f"No user {email}", "get_user_by_email", 404)

    def create_user(self, name: str, username: str, email: str) -> int:
        with self._lock:
            self._enter("create_user")
            if username in self.users:
                raise ConflictError(f"Username {username} has already been taken", "create_user", 409)
            self.users[username] = {"id": next(self._ids), "name": name, "email": email}
            self.created.append(("user", username))
            return self.users[username]["id"]

    def _add_member(self, kind: str, resource_id: int, user_id: int, access_level: int) -> None:
        key = (kind, resource_id, user_id)
        if key in self.members:
            raise ConflictError("Member already exists", f"add_{kind}_member", 409)
        self.members[key] = access_level

    def add_group_member(self, group_id: int, user_id: int, access_level: int) -> None:
        with self._lock:
            self._enter("add_group_member")
            self._add_member("group", group_id, user_id, access_level)

    def add_project_member(self, project_id: int, user_id: int, access_level: int) -> None:
        with self._lock:
            self._enter("add_project_member")
            self._add_member("project", project_id, user_id, access_level)

    def _remove_member(self, kind: str, resource_id: int, user_id: int) -> None:
        if self.members.pop((kind, resource_id, user_id), None) is None:
            raise ResourceNotFoundError("404 Not found", f"remove_{kind}_member", 404)

    def remove_group_member(self, group_id: int, user_id: int) -> None:
        with self._lock:
            self._enter("remove_group_member")
            self._remove_member("group", group_id, user_id)

    def remove_project_member(self, project_id: int, user_id: int) -> None:
        with self._lock:
            self._enter("remove_project_member")
            self._remove_member("project", project_id, user_id)

    def _delete(self, resources: Dict[str, int], kind: str, resource_id: int) -> None:
        for path, known_id in list(resources.items()):
            if known_id == resource_id:
                del resources[path]
                self.deleted.append((kind, path))
                return
        raise ResourceNotFoundError(f"No {kind} {resource_id}", f"delete_{kind}", 404)

    def delete_group(self, group_id: int) -> None:
        with self._lock:
            self._enter("delete_group")
            self._delete(self.groups, "group", group_id)

    def delete_project(self, project_id: int) -> None:
        with self._lock:
            self._enter("delete_project")
            self._delete(self.projects, "project", project_id)

    def delete_user(self, user_id: int) -> None:
        with self._lock:
            self._enter("delete_user")
            self._delete({username: user["id"] for username, user in self.users.items()}, "user", user_id)
            self.users = {username: user for username, user in self.users.items() if user["id"] != user_id}

    def member_level(self, kind: str, full_path: str, username: str) -> Optional[int]:
        resource_id = (self.groups if kind == "group" else self.projects)[full_path]
        return self.members.get((kind, resource_id, self.users[username]["id"]))


async def no_sleep(delay: float) -> None:
    return None
