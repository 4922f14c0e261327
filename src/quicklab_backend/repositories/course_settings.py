"""
Per edition settings: project defaults and the teaching assistant registry.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from quicklab_backend.interface.courses import AvailableTAs
from quicklab_backend.interface.project_settings import ProjectSettings
from quicklab_backend.interface.tree import UserSubtype
from quicklab_backend.model.course_settings import AvailableTA, RepoSettings, TeachingAssistant
from quicklab_backend.model.course_tree import Group, UserPrivilege
from quicklab_backend.repositories.base import BaseRepository, GroupSelector, NotFoundError
from quicklab_backend.repositories.course_tree import CourseTreeRepository
from quicklab_backend.settings import settings
from quicklab_backend.tree.paths import SEPARATOR

logger = logging.getLogger(__name__)

# ProjectSettings field -> repo_settings column
SETTINGS_COLUMNS = {
    "import_type": "import_type",
    "import_url": "import_url",
    "import_file": "import_file",
    "allow_delete_tag": "delete_tags",
    "member_check": "commit_gitlab_user_only",
    "prevent_secrets": "reject_secrets",
    "commit_message_regex": "commit_regex",
    "branch_name_regex": "branch_regex",
    "author_email_regex": "mail_regex",
    "file_name_regex": "filename_regex",
    "max_file_size": "max_file_size",
}

TA = "ta"
HEAD_TA = "head"


class CourseSettingsRepository(BaseRepository[RepoSettings]):

    def __init__(self, db: Session):
        super().__init__(db, RepoSettings)
        self.tree = CourseTreeRepository(db)

    def _edition(self, course: str, edition: str) -> Group:
        group = self.tree.get_group(GroupSelector(name=edition, path=course))
        if group is None:
            raise NotFoundError("Edition", f"{course}/{edition}")
        return group

    # Project settings

    def get_project_settings(self, course: str, edition: str) -> Optional[ProjectSettings]:
        row = self.get_by_id_optional(self._edition(course, edition).id)
        if row is None:
            return None
        return ProjectSettings(**{field: getattr(row, column) for field, column in SETTINGS_COLUMNS.items()})

    def put_project_settings(self, course: str, edition: str, project_settings: ProjectSettings) -> ProjectSettings:
        """Store the project settings of an edition, replacing earlier ones."""
        group = self._edition(course, edition)
        row = self.get_by_id_optional(group.id)
        if row is None:
            row = RepoSettings(group_id=group.id)
            self.db.add(row)

        values = project_settings.model_dump()
        for field, column in SETTINGS_COLUMNS.items():
            setattr(row, column, values[field])

        self.save({"group_id": group.id})
        logger.info(f"Stored project settings of {course}/{edition}")
        return project_settings

    # Teaching assistants

    def _unlink_tas(self, group: Group, subtype: str, keep: Iterable[str]) -> None:
        keep = set(keep)
        links = self.db.query(AvailableTA).filter(
            AvailableTA.group_id == group.id,
            AvailableTA.subtype == subtype,
        ).all()

        edition_path = group.full_path
        for link in links:
            if link.ta_username in keep:
                continue
            self.db.delete(link)
            privileges = self.db.query(UserPrivilege).join(Group).filter(
                UserPrivilege.user_id == link.ta_username,
                (Group.id == group.id)
                | (Group.path == edition_path)
                | Group.path.startswith(edition_path + SEPARATOR, autoescape=True),
            ).all()
            for privilege in privileges:
                self.db.delete(privilege)
            logger.info(f"Unlinked {subtype} {link.ta_username} from {edition_path}")

    def _link_ta(self, username: str, group: Group, subtype: str) -> None:
        if self.db.get(TeachingAssistant, username) is None:
            self.db.add(TeachingAssistant(gitlab_username=username))
            self.db.flush()
        if self.db.get(AvailableTA, (username, group.id, subtype)) is None:
            self.db.add(AvailableTA(ta_username=username, group_id=group.id, subtype=subtype))

    def set_available_tas(self, course: str, edition: str, tas: List[str], head_tas: List[str]) -> AvailableTAs:
        """
        Replace the teaching assistants available in an edition.

        Assistants that are no longer listed lose their memberships in the
        edition. Head assistants are added to the edition group itself with
        all rights.
        """
        group = self._edition(course, edition)

        self._unlink_tas(group, TA, tas)
        self._unlink_tas(group, HEAD_TA, head_tas)
        for username in tas:
            self._link_ta(username, group, TA)
        for username in head_tas:
            self._link_ta(username, group, HEAD_TA)
        self.save({"group_id": group.id})

        for username in head_tas:
            self.tree.add_user({
                "name": username,
                "username": username,
                "email": f"{username}@{settings.TA_MAIL_DOMAIN}",
                "subtype": UserSubtype.head_ta.value,
                "rights": {"edit": True, "share": True, "work": True},
            }, group.id)

        return self.get_available_tas(course, edition)

    def get_available_tas(self, course: str, edition: str) -> AvailableTAs:
        group = self._edition(course, edition)
        links = self.db.query(AvailableTA).filter(AvailableTA.group_id == group.id).order_by(AvailableTA.ta_username).all()
        return AvailableTAs(
            tas=[link.ta_username for link in links if link.subtype == TA],
            head_tas=[link.ta_username for link in links if link.subtype == HEAD_TA],
        )

    def search_tas(self, fragment: str) -> List[str]:
        return [
            ta.gitlab_username for ta in self.db.query(TeachingAssistant).filter(
                TeachingAssistant.gitlab_username.contains(fragment, autoescape=True)
            ).order_by(TeachingAssistant.gitlab_username).all()
        ]
