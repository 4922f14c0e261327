"""
Course tree repository for direct database access.

Groups are stored flat with a textual ``path`` (the full path of the parent)
and a ``parent_group_id``. Courses are the only groups without a path. Users
are shared between groups and linked through privileges, repositories belong
to exactly one group.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from quicklab_backend.interface.courses import CourseListEntry
from quicklab_backend.interface.tree import GroupNode, GroupSubtype, NodeType, UserSubtype
from quicklab_backend.model.course_tree import Group, Repository, User, UserPrivilege
from quicklab_backend.repositories.base import (
    BaseRepository,
    DuplicateError,
    GroupSelector,
    InsufficientSelectorError,
    CorruptStoreError,
    NotFoundError,
    RepositoryError,
    SubtreeInsertError,
)
from quicklab_backend.tree.convert import clean_username, to_client_format, to_server_format
from quicklab_backend.tree.paths import SEPARATOR, join_path, split_path, strip_marker

logger = logging.getLogger(__name__)

Selector = Union[GroupSelector, Dict[str, Any]]


def _selector(selector: Optional[Selector] = None, **criteria) -> GroupSelector:
    if isinstance(selector, GroupSelector):
        return selector.model_copy(update={k: v for k, v in criteria.items() if v is not None})
    data = dict(selector or {})
    data.update({k: v for k, v in criteria.items() if v is not None})
    return GroupSelector(**{k: data.get(k) for k in GroupSelector.model_fields})


def selector_for_path(full_path: str) -> GroupSelector:
    """
    Selector of the group at a full path.

    A single segment addresses a course, ``'CS101/2024'`` addresses the
    group named ``2024`` whose path is ``CS101``.
    """
    parent_path, name = split_path(full_path)
    if not name:
        raise InsufficientSelectorError("Group", {"path": full_path})
    if parent_path is None:
        return GroupSelector(name=name, subtype=GroupSubtype.course.value)
    return GroupSelector(name=name, path=parent_path)


class CourseTreeRepository(BaseRepository[Group]):
    """Repository for the persisted course tree."""

    def __init__(self, db: Session):
        super().__init__(db, Group)

    # Lookup

    def get_group(self, selector: Optional[Selector] = None, **criteria) -> Optional[Group]:
        """
        Get a single group.

        Args:
            selector: ``GroupSelector`` or dict, keyword criteria are merged in

        Returns:
            The group or None

        Raises:
            InsufficientSelectorError: If no addressing form is usable
            CorruptStoreError: If more than one group matches
        """
        selector = _selector(selector, **criteria)
        forms = selector.forms()
        if not forms:
            raise InsufficientSelectorError("Group", selector.criteria())

        if forms[0] == "id":
            group = self.get_by_id_optional(selector.id)
            return group

        query = self.db.query(Group).filter(Group.name == selector.name)
        if forms[0] == "parent_group_id":
            query = query.filter(Group.parent_group_id == selector.parent_group_id)
        elif forms[0] == "path":
            query = query.filter(Group.path == selector.path)
        else:
            query = query.filter(Group.parent_group_id.is_(None), Group.path.is_(None))

        groups = query.all()
        if len(groups) > 1:
            raise CorruptStoreError("Group", selector.criteria(), len(groups))
        return groups[0] if groups else None

    def _require_group(self, selector: GroupSelector) -> Group:
        group = self.get_group(selector)
        if group is None:
            raise NotFoundError("Group", selector.criteria())
        return group

    def _parent_group(self, path: Optional[str], parent_group_id: Optional[int]) -> Group:
        if parent_group_id is not None:
            return self._require_group(GroupSelector(id=parent_group_id))
        path = strip_marker(path)
        if not path:
            raise InsufficientSelectorError("Group", {"path": path, "parent_group_id": parent_group_id})
        return self._require_group(selector_for_path(path))

    def _single_form(self, selector: GroupSelector) -> GroupSelector:
        if len(selector.forms()) != 1:
            raise InsufficientSelectorError("Group", selector.criteria())
        return selector

    # Insert

    def insert_group(
        self,
        name: str,
        path: Optional[str] = None,
        parent_group_id: Optional[int] = None,
        subtype: str = GroupSubtype.group.value,
        description: Optional[str] = None,
    ) -> Group:
        """
        Insert a group that must not exist yet.

        Raises:
            DuplicateError: If the group already exists
        """
        selector = GroupSelector(name=name, path=path, parent_group_id=parent_group_id, subtype=subtype)
        if self.get_group(selector) is not None:
            raise DuplicateError("Group", selector.criteria())

        group = self.create(Group(
            name=name,
            path=path,
            parent_group_id=parent_group_id,
            subtype=subtype,
            description=description,
        ))
        logger.info(f"Inserted group {group.full_path} ({group.subtype})")
        return group

    def add_group(self, data: Dict[str, Any], parent_group_id: Optional[int] = None) -> Group:
        """
        Add a group in server format.

        Courses are inserted at the root. Any other group needs either the id
        of its parent or ``data['path']``, the full path of its parent.

        Raises:
            InsufficientSelectorError: If the parent cannot be addressed
            NotFoundError: If the parent does not exist
            DuplicateError: If the group already exists
        """
        subtype = data.get("subtype") or GroupSubtype.group.value

        if subtype == GroupSubtype.course.value:
            return self.insert_group(
                data["name"],
                subtype=subtype,
                description=data.get("description"),
            )

        parent = self._parent_group(data.get("path"), parent_group_id)
        return self.insert_group(
            data["name"],
            path=parent.full_path,
            parent_group_id=parent.id,
            subtype=subtype,
            description=data.get("description"),
        )

    def add_user(self, data: Dict[str, Any], parent_group_id: Optional[int] = None) -> None:
        """Register the user if needed and link it to the parent group.

        Both writes are insert-if-absent, adding a user twice is a no-op.
        """
        username = clean_username(data.get("username") or data.get("id"))
        parent = self._parent_group(data.get("path"), parent_group_id)

        if self.db.query(User).filter(User.gitlab_username == username).first() is None:
            self.db.add(User(
                name=data.get("name") or username,
                mail_address=data.get("email"),
                gitlab_username=username,
            ))

        if self.db.get(UserPrivilege, (parent.id, username)) is None:
            rights = data.get("rights") or {}
            self.db.add(UserPrivilege(
                group_id=parent.id,
                user_id=username,
                edit=rights.get("edit", False),
                share=rights.get("share", False),
                work=rights.get("work", True),
                subtype=data.get("subtype") or UserSubtype.student.value,
            ))

        self.save({"user": username, "group": parent.full_path})
        logger.debug(f"User {username} linked to {parent.full_path}")

    def add_repository(self, data: Dict[str, Any], parent_group_id: Optional[int] = None) -> None:
        name = data.get("name") or data.get("id")
        parent = self._parent_group(data.get("path"), parent_group_id)

        exists = self.db.query(Repository).filter(
            Repository.group_id == parent.id,
            Repository.name == name,
        ).first()
        if exists is not None:
            return

        self.db.add(Repository(name=name, group_id=parent.id, repo=data.get("repo") or "default"))
        self.save({"repository": name, "group": parent.full_path})
        logger.debug(f"Repository {name} added to {parent.full_path}")

    def _clear_group(self, group: Group) -> None:
        for child in [*group.subgroups, *group.privileges, *group.repositories]:
            self.db.delete(child)
        self.save({"group": group.full_path})

    def add_all_groups(self, tree: Dict[str, Any], parent_group_id: Optional[int] = None) -> Group:
        """
        Recursively insert a server format subtree.

        An existing course is kept and the incoming edition (its first group
        child) is inserted below it. Any other existing group is reset: its
        subgroups, privileges and repositories are deleted before the incoming
        children are inserted.

        Raises:
            SubtreeInsertError: With every child insert that failed
        """
        logger.info(f"Adding subtree {tree.get('name')} ({tree.get('subtype')})")

        existing = self.get_group(
            name=tree.get("name"),
            path=tree.get("path"),
            parent_group_id=parent_group_id,
            subtype=tree.get("subtype"),
        )

        if existing is not None and existing.subtype == GroupSubtype.course.value:
            edition = next((c for c in tree.get("children", []) if c.get("type") == NodeType.group.value), None)
            if edition is None:
                return existing
            return self.add_all_groups(edition, existing.id)

        if existing is None:
            group = self.add_group(tree, parent_group_id)
        else:
            group = existing
            self._clear_group(group)

        errors = []
        for child in tree.get("children", []):
            child_type = child.get("type")
            try:
                if child_type == NodeType.group.value:
                    self.add_all_groups(child, group.id)
                elif child_type == NodeType.user.value:
                    self.add_user(child, group.id)
                elif child_type == NodeType.project.value:
                    self.add_repository(child, group.id)
                else:
                    raise RepositoryError(f"Undefined type of child: {child_type}")
            except RepositoryError as e:
                logger.error(f"Failed to add {child_type} {child.get('name')} to {group.full_path}: {e}")
                errors.append(e)

        if errors:
            raise SubtreeInsertError(group.full_path, errors)
        return group

    # Read

    def _group_dict(self, group: Group) -> Dict[str, Any]:
        return {
            "type": NodeType.group.value,
            "id": group.id,
            "name": group.name,
            "path": group.path,
            "description": group.description,
            "subtype": group.subtype,
        }

    def _materialize(self, group: Group) -> Dict[str, Any]:
        projects = [
            {
                "type": NodeType.project.value,
                "subtype": "project",
                "id": repository.id,
                "name": repository.name,
                "repo": repository.repo,
            }
            for repository in group.repositories
        ]
        users = [
            {
                "type": NodeType.user.value,
                "id": privilege.user_id,
                "name": privilege.user.name if privilege.user else privilege.user_id,
                "username": privilege.user_id,
                "email": privilege.user.mail_address if privilege.user else None,
                "subtype": privilege.subtype,
                "rights": {"edit": privilege.edit, "share": privilege.share, "work": privilege.work},
            }
            for privilege in group.privileges
        ]
        return {
            **self._group_dict(group),
            "children": [*(self._materialize(sub) for sub in group.subgroups), *projects, *users],
        }

    def get_all_groups(self, selector: Selector, parent_group_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Materialize a subtree in server format.

        Raises:
            NotFoundError: If the group does not exist
        """
        return self._materialize(self._require_group(_selector(selector, parent_group_id=parent_group_id)))

    def get_course_tree(self, course: str, edition: str) -> GroupNode:
        """Course with a single edition, in client format."""
        course_group = self.get_group(name=course, subtype=GroupSubtype.course.value)
        if course_group is None:
            raise NotFoundError("Course", course)

        edition_group = self.get_group(name=edition, parent_group_id=course_group.id)
        if edition_group is None:
            raise NotFoundError("Edition", f"{course}/{edition}")

        return to_client_format({
            **self._group_dict(course_group),
            "children": [self._materialize(edition_group)],
        })

    def get_course_list(self) -> List[CourseListEntry]:
        courses = self.db.query(Group).filter(
            Group.parent_group_id.is_(None),
            Group.path.is_(None),
        ).order_by(Group.name).all()

        return [
            CourseListEntry(
                id=course.name,
                name=course.description,
                editions=[edition.name for edition in course.subgroups],
            )
            for course in courses
        ]

    # Course and edition creation

    def add_course(self, tree: GroupNode) -> Group:
        """
        Store a new course with its editions.

        Raises:
            DuplicateError: If a course with this name exists
        """
        if not tree.is_course:
            raise RepositoryError(f"Group {tree.id} is not a course")
        if self.get_group(name=tree.id, subtype=GroupSubtype.course.value) is not None:
            raise DuplicateError("Course", {"name": tree.id})

        course = self.add_group(to_server_format(tree))
        errors = []
        for edition in tree.children:
            try:
                self.add_all_groups(to_server_format(edition), course.id)
            except RepositoryError as e:
                errors.append(e)
        if errors:
            raise SubtreeInsertError(course.name, errors)
        return course

    def add_edition(self, course: str, edition: GroupNode) -> Group:
        course_group = self.get_group(name=course, subtype=GroupSubtype.course.value)
        if course_group is None:
            raise NotFoundError("Course", course)
        if self.get_group(name=edition.id, parent_group_id=course_group.id) is not None:
            raise DuplicateError("Group", {"name": edition.id, "path": course})

        return self.add_all_groups(to_server_format(edition), course_group.id)

    # Rename

    def rename_group(self, path: str, new_name: str) -> Group:
        """
        Rename the group at ``path`` and rewrite the paths of its descendants.

        Raises:
            NotFoundError: If the group does not exist
            DuplicateError: If a sibling already uses ``new_name``
        """
        full_path = strip_marker(path).strip(SEPARATOR)
        parent_path, old_name = split_path(full_path)
        group = self._require_group(selector_for_path(full_path))

        if old_name == new_name:
            return group

        taken = self.get_group(
            name=new_name,
            path=group.path,
            parent_group_id=group.parent_group_id,
            subtype=group.subtype,
        )
        if taken is not None:
            raise DuplicateError("Group", {"name": new_name, "path": group.path})

        new_full_path = join_path(parent_path, new_name)
        descendants = self.db.query(Group).filter(
            (Group.path == full_path)
            | Group.path.startswith(full_path + SEPARATOR, autoescape=True)
        ).all()
        for descendant in descendants:
            descendant.path = new_full_path + descendant.path[len(full_path):]

        group.name = new_name
        self.save({"name": new_name, "path": group.path})
        logger.info(f"Renamed group {full_path} to {new_full_path} ({len(descendants)} descendants)")
        return group

    def rename_repository(self, path: str, new_name: str) -> Repository:
        parent_path, old_name = split_path(path)
        parent = self._parent_group(parent_path, None)

        repositories = {r.name: r for r in parent.repositories}
        if old_name not in repositories:
            raise NotFoundError("Repository", strip_marker(path))
        if old_name == new_name:
            return repositories[old_name]
        if new_name in repositories:
            raise DuplicateError("Repository", {"name": new_name, "group": parent.full_path})

        repository = repositories[old_name]
        repository.name = new_name
        self.save({"name": new_name, "group": parent.full_path})
        logger.info(f"Renamed repository {old_name} to {new_name} in {parent.full_path}")
        return repository

    # Delete

    def delete_group(self, selector: Selector) -> None:
        """
        Delete a group with its subgroups, privileges and repositories.

        The selector must carry exactly one addressing form.
        """
        selector = self._single_form(_selector(selector))
        group = self._require_group(selector)
        self.remove(group)
        logger.info(f"Deleted group {group.full_path}")

    def delete_user(self, username: str, group_selector: Selector) -> None:
        """Remove the membership of a user, the user itself is kept."""
        group = self._require_group(self._single_form(_selector(group_selector)))

        privilege = self.db.get(UserPrivilege, (group.id, username))
        if privilege is None:
            raise NotFoundError("UserPrivilege", f"{username}@{group.full_path}")
        self.remove(privilege)
        logger.info(f"Removed user {username} from {group.full_path}")

    def delete_repository(self, name: str, group_selector: Selector) -> None:
        group = self._require_group(self._single_form(_selector(group_selector)))

        repository = self.db.query(Repository).filter(
            Repository.group_id == group.id,
            Repository.name == name,
        ).first()
        if repository is None:
            raise NotFoundError("Repository", f"{group.full_path}/{name}")
        self.remove(repository)
        logger.info(f"Deleted repository {name} from {group.full_path}")
