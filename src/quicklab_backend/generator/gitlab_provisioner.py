"""
Provisions a course tree on GitLab.

The walk is depth first, every node is looked up on the platform and only
created when it is missing, so running it twice on the same tree creates
nothing the second time. Children are handled once their parent's id is
known; siblings run concurrently. Resources created before a failure are not
rolled back.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, NamedTuple, Optional, Tuple

from gitlab.const import AccessLevel
from pydantic import BaseModel, Field

from quicklab_backend.gitlab_utils import (
    ConflictError,
    GitLabPlatform,
    PlatformError,
    ResourceNotFoundError,
    TransientUnavailableError,
)
from quicklab_backend.interface.project_settings import ProjectImportType, ProjectSettings
from quicklab_backend.interface.tree import GroupNode, ProjectNode, UserNode, UserSubtype

logger = logging.getLogger(__name__)

ACCESS_LEVELS = {
    UserSubtype.student.value: AccessLevel.DEVELOPER,
    UserSubtype.ta.value: AccessLevel.MAINTAINER,
    UserSubtype.head_ta.value: AccessLevel.OWNER,
}
DEFAULT_ACCESS_LEVEL = AccessLevel.REPORTER
# Owner is not a valid project role
MAX_PROJECT_ACCESS_LEVEL = AccessLevel.MAINTAINER


class RetryPolicy(BaseModel):
    initial_interval: float = Field(2.0, ge=0)
    backoff_coefficient: float = Field(2.0, ge=1)
    maximum_interval: float = Field(60.0, ge=0)
    maximum_attempts: int = Field(5, ge=1)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            initial_interval=settings.PROVISION_INITIAL_INTERVAL,
            backoff_coefficient=settings.PROVISION_BACKOFF_COEFFICIENT,
            maximum_interval=settings.PROVISION_MAXIMUM_INTERVAL,
            maximum_attempts=settings.PROVISION_MAX_ATTEMPTS,
        )

    def delay(self, attempt: int) -> float:
        """Wait before retrying after the given (1 based) failed attempt."""
        return min(self.initial_interval * self.backoff_coefficient ** (attempt - 1), self.maximum_interval)


class RetriesExhaustedError(PlatformError):

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        super().__init__(f"{operation} still unavailable after {attempts} attempts: {last_error}", operation)
        self.attempts = attempts
        self.last_error = last_error


class Namespace(NamedTuple):
    kind: str
    id: int
    full_path: str


def access_level_for(subtype: str, project: bool = False) -> int:
    level = ACCESS_LEVELS.get(subtype, DEFAULT_ACCESS_LEVEL)
    if project:
        level = min(level, MAX_PROJECT_ACCESS_LEVEL)
    return int(level)


def platform_name(name: str) -> str:
    return name.replace(" ", "_")


def platform_username(username: str) -> str:
    return username.replace("#", "").replace("@", "")


def is_url(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(("http://", "https://"))


class GitLabProvisioner:

    def __init__(
        self,
        platform: GitLabPlatform,
        project_settings: Optional[ProjectSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.platform = platform
        self.project_settings = project_settings or ProjectSettings()
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def _with_retry(self, operation: str, step: Callable[[], Awaitable]):
        attempt = 0
        while True:
            attempt += 1
            try:
                return await step()
            except TransientUnavailableError as e:
                if attempt >= self.retry_policy.maximum_attempts:
                    logger.error(f"Giving up on {operation} after {attempt} attempts")
                    raise RetriesExhaustedError(operation, attempt, e) from e
                delay = self.retry_policy.delay(attempt)
                logger.debug(f"{operation} unavailable ({e}), retrying in {delay}s")
                await self.sleep(delay)

    async def _ensure(self, operation: str, lookup: Callable, create: Callable) -> Tuple[int, bool]:
        """Look a resource up and create it when missing.

        Returns:
            The resource id and whether it was created
        """

        async def step():
            try:
                resource_id = await self._call(lookup)
                logger.debug(f"Reusing {operation} ({resource_id})")
                return resource_id, False
            except ResourceNotFoundError:
                pass

            try:
                return await self._call(create), True
            except ConflictError:
                logger.debug(f"{operation} was created concurrently, looking it up again")
                return await self._call(lookup), False

        return await self._with_retry(operation, step)

    async def provision(self, tree: GroupNode) -> str:
        """
        Provision ``tree`` and return the URL of its edition.

        Raises:
            RetriesExhaustedError: If the platform stays unavailable
            PlatformError: On any other platform failure
        """
        logger.info(f"Provisioning {tree.id} on {self.platform.url}")
        root = await self._provision_group(tree, None)

        url = f"{self.platform.url}/{root.full_path}"
        if tree.edition is not None:
            url = f"{url}/{platform_name(tree.edition.id)}"
        logger.info(f"Provisioned {tree.id}: {url}")
        return url

    async def _gather(self, steps, where: str) -> None:
        results = await asyncio.gather(*steps, return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            for error in errors[1:]:
                logger.error(f"Work below {where} also failed: {error}")
            raise errors[0]

    async def _provision_children(self, children, parent: Namespace) -> None:
        await self._gather((self._provision_node(child, parent) for child in children), parent.full_path)

    async def _provision_node(self, node, parent: Namespace) -> None:
        if isinstance(node, GroupNode):
            await self._provision_group(node, parent)
        elif isinstance(node, ProjectNode):
            await self._provision_project(node, parent)
        elif isinstance(node, UserNode):
            await self._provision_user(node, parent)
        else:
            raise PlatformError(f"Cannot provision node of type {getattr(node, 'type', None)}")

    async def _provision_group(self, node: GroupNode, parent: Optional[Namespace]) -> Namespace:
        name = platform_name(node.id)
        full_path = f"{parent.full_path}/{name}" if parent else name

        group_id, _ = await self._ensure(
            f"group {full_path}",
            functools.partial(self.platform.get_group, full_path),
            functools.partial(self.platform.create_group, name, name, parent.id if parent else None),
        )
        namespace = Namespace("group", group_id, full_path)
        await self._provision_children(node.children, namespace)
        return namespace

    def _create_project(self, node: ProjectNode, name: str, parent: Namespace) -> int:
        if is_url(node.repo):
            return self.platform.import_project_from_url(name, parent.id, node.repo)

        project_settings = self.project_settings
        import_type = project_settings.import_type
        if import_type == ProjectImportType.url.value and project_settings.import_url:
            return self.platform.import_project_from_url(name, parent.id, project_settings.import_url)
        if import_type == ProjectImportType.file.value and project_settings.import_file:
            return self.platform.import_project_from_file(name, parent.full_path, project_settings.import_file)
        if import_type == ProjectImportType.fork.value and project_settings.import_url:
            return self.platform.fork_project(self._source_path(project_settings.import_url), name, parent.id)
        return self.platform.create_project(name, parent.id)

    def _source_path(self, source: str) -> str:
        if source.startswith(self.platform.url):
            source = source[len(self.platform.url):]
        source = source.strip("/")
        if source.endswith(".git"):
            source = source[:-len(".git")]
        return source

    async def _provision_project(self, node: ProjectNode, parent: Namespace) -> None:
        name = platform_name(node.id)
        full_path = f"{parent.full_path}/{name}"

        project_id, created = await self._ensure(
            f"project {full_path}",
            functools.partial(self.platform.get_project, full_path),
            functools.partial(self._create_project, node, name, parent),
        )
        if created:
            await self._attach_push_rules(project_id, full_path)

        await self._provision_children(node.children, Namespace("project", project_id, full_path))

    async def _attach_push_rules(self, project_id: int, full_path: str) -> None:
        try:
            await self._call(self.platform.add_push_rules, project_id, self.project_settings.push_rules())
        except PlatformError as e:
            logger.warning(f"Could not add push rules to {full_path}: {e}")

    def _find_user(self, username: str, email: str) -> int:
        try:
            return self.platform.get_user_by_username(username)
        except ResourceNotFoundError:
            return self.platform.get_user_by_email(email)

    async def _provision_user(self, node: UserNode, parent: Namespace) -> None:
        username = platform_username(node.username)

        user_id, _ = await self._ensure(
            f"user {username}",
            functools.partial(self._find_user, username, node.email),
            functools.partial(self.platform.create_user, node.name, username, node.email),
        )

        on_project = parent.kind == "project"
        level = access_level_for(node.subtype, project=on_project)
        add_member = self.platform.add_project_member if on_project else self.platform.add_group_member

        async def step():
            try:
                await self._call(add_member, parent.id, user_id, level)
            except ConflictError:
                logger.debug(f"{username} is already a member of {parent.full_path}")

        await self._with_retry(f"membership of {username} in {parent.full_path}", step)

    async def _lookup(self, operation: str, lookup: Callable) -> Optional[int]:
        async def step():
            try:
                return await self._call(lookup)
            except ResourceNotFoundError:
                return None

        return await self._with_retry(operation, step)

    async def _discard(self, operation: str, func: Callable, *args) -> None:
        async def step():
            try:
                await self._call(func, *args)
            except ResourceNotFoundError:
                logger.debug(f"{operation} is already gone")

        await self._with_retry(operation, step)

    async def revoke(self, tree: GroupNode) -> None:
        """
        Remove the memberships ``tree`` grants. Groups, projects and accounts
        are kept, resources that were never provisioned are skipped.
        """
        logger.info(f"Revoking access to {tree.id} on {self.platform.url}")
        await self._revoke_node(tree, None)

    async def _revoke_node(self, node, parent: Optional[Namespace]) -> None:
        if isinstance(node, UserNode):
            await self._revoke_user(node, parent)
            return

        name = platform_name(node.id)
        full_path = f"{parent.full_path}/{name}" if parent else name
        kind, lookup = ("group", self.platform.get_group) if isinstance(node, GroupNode) else ("project", self.platform.get_project)

        resource_id = await self._lookup(f"{kind} {full_path}", functools.partial(lookup, full_path))
        if resource_id is None:
            logger.debug(f"{kind} {full_path} was never provisioned")
            return

        namespace = Namespace(kind, resource_id, full_path)
        await self._gather((self._revoke_node(child, namespace) for child in node.children), full_path)

    async def _revoke_user(self, node: UserNode, parent: Namespace) -> None:
        username = platform_username(node.username)
        user_id = await self._lookup(f"user {username}", functools.partial(self._find_user, username, node.email))
        if user_id is None:
            return

        remove = self.platform.remove_project_member if parent.kind == "project" else self.platform.remove_group_member
        await self._discard(f"membership of {username} in {parent.full_path}", remove, parent.id, user_id)

    async def teardown(self, tree: GroupNode, delete_users: bool = False) -> None:
        """
        Delete the projects and groups below the root of ``tree``.

        The root group itself stays so other editions of the course survive.
        With ``delete_users`` the accounts of every user in the tree are
        deleted as well.
        """
        root = platform_name(tree.id)
        logger.info(f"Tearing down {tree.id} on {self.platform.url}")
        await self._gather((self._teardown_node(child, root) for child in tree.children), root)

        if delete_users:
            users = {platform_username(user.username): user.email for user in _users(tree)}
            await self._gather(
                (self._delete_user(username, email) for username, email in sorted(users.items())),
                root,
            )

    async def _teardown_node(self, node, parent_path: str) -> None:
        if isinstance(node, UserNode):
            return

        full_path = f"{parent_path}/{platform_name(node.id)}"
        await self._gather((self._teardown_node(child, full_path) for child in node.children), full_path)

        if isinstance(node, GroupNode):
            kind, lookup, delete = "group", self.platform.get_group, self.platform.delete_group
        else:
            kind, lookup, delete = "project", self.platform.get_project, self.platform.delete_project

        resource_id = await self._lookup(f"{kind} {full_path}", functools.partial(lookup, full_path))
        if resource_id is not None:
            await self._discard(f"{kind} {full_path}", delete, resource_id)
            logger.info(f"Deleted {kind} {full_path}")

    async def _delete_user(self, username: str, email: str) -> None:
        user_id = await self._lookup(f"user {username}", functools.partial(self._find_user, username, email))
        if user_id is not None:
            await self._discard(f"user {username}", self.platform.delete_user, user_id)
            logger.info(f"Deleted user {username}")


def _users(node):
    if isinstance(node, UserNode):
        yield node
    for child in getattr(node, "children", ()):
        yield from _users(child)


async def provision(
    tree: GroupNode,
    platform: GitLabPlatform,
    project_settings: Optional[ProjectSettings] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> str:
    return await GitLabProvisioner(platform, project_settings, retry_policy).provision(tree)


async def revoke(tree: GroupNode, platform: GitLabPlatform, retry_policy: Optional[RetryPolicy] = None) -> None:
    await GitLabProvisioner(platform, retry_policy=retry_policy).revoke(tree)


async def teardown(
    tree: GroupNode,
    platform: GitLabPlatform,
    delete_users: bool = False,
    retry_policy: Optional[RetryPolicy] = None,
) -> None:
    await GitLabProvisioner(platform, retry_policy=retry_policy).teardown(tree, delete_users)
