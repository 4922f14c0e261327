"""
Tests for per edition project settings and the teaching assistant registry.
"""

import pytest

from quicklab_backend.interface.courses import AvailableTAs
from quicklab_backend.interface.project_settings import ProjectImportType, ProjectSettings
from quicklab_backend.model import AvailableTA, RepoSettings, TeachingAssistant, UserPrivilege
from quicklab_backend.repositories.base import NotFoundError
from quicklab_backend.settings import settings
from quicklab_backend.tests.fixtures import full_course_tree


@pytest.fixture
def repository(tree_repository, settings_repository):
    tree_repository.add_course(full_course_tree())
    return settings_repository


class TestProjectSettings:

    def test_unset_settings(self, repository):
        assert repository.get_project_settings("CS101", "2024") is None

    def test_put_and_get(self, repository):
        project_settings = ProjectSettings(
            import_type=ProjectImportType.fork,
            import_url="https://gitlab.example.com/templates/base.git",
            allow_delete_tag=True,
            commit_message_regex="^(feat|fix):",
            max_file_size=10,
        )
        repository.put_project_settings("CS101", "2024", project_settings)

        stored = repository.get_project_settings("CS101", "2024")
        assert stored == project_settings
        assert stored.import_type == "fork"

    def test_put_replaces(self, repository, test_db):
        repository.put_project_settings("CS101", "2024", ProjectSettings(max_file_size=10))
        repository.put_project_settings("CS101", "2024", ProjectSettings(prevent_secrets=False))

        assert test_db.query(RepoSettings).count() == 1
        stored = repository.get_project_settings("CS101", "2024")
        assert stored.max_file_size is None
        assert stored.prevent_secrets is False

    def test_missing_edition(self, repository):
        with pytest.raises(NotFoundError):
            repository.get_project_settings("CS101", "1999")

    def test_push_rules(self):
        rules = ProjectSettings(allow_delete_tag=True, max_file_size=5).push_rules()
        assert rules["deny_delete_tag"] is False
        assert rules["member_check"] is True
        assert rules["max_file_size"] == 5
        assert "max_file_size" not in ProjectSettings().push_rules()


class TestTeachingAssistants:

    def test_set_and_get(self, repository):
        result = repository.set_available_tas("CS101", "2024", ["tim", "ann"], ["hanna"])

        assert result == AvailableTAs(tas=["ann", "tim"], head_tas=["hanna"])
        assert repository.get_available_tas("CS101", "2024") == result

    def test_head_tas_join_the_edition(self, repository, tree_repository):
        repository.set_available_tas("CS101", "2024", [], ["hanna"])

        tree = tree_repository.get_course_tree("CS101", "2024")
        hanna = next(c for c in tree.edition.children if c.id == "hanna")
        assert hanna.subtype == "head_ta"
        assert hanna.email == f"hanna@{settings.TA_MAIL_DOMAIN}"
        assert hanna.rights.edit and hanna.rights.share and hanna.rights.work

    def test_removed_tas_lose_memberships(self, repository, tree_repository, test_db):
        repository.set_available_tas("CS101", "2024", ["tim"], [])
        tree_repository.add_user(
            {"username": "tim", "name": "Tim", "email": "tim@example.com", "subtype": "ta"},
            tree_repository.get_group(name="sub", path="CS101/2024/group 2").id,
        )
        assert test_db.query(UserPrivilege).filter(UserPrivilege.user_id == "tim").count() == 1

        result = repository.set_available_tas("CS101", "2024", [], [])

        assert result == AvailableTAs()
        assert test_db.query(UserPrivilege).filter(UserPrivilege.user_id == "tim").count() == 0
        assert test_db.query(AvailableTA).count() == 0
        assert test_db.query(TeachingAssistant).count() == 1

    def test_unlink_is_scoped_to_the_edition(self, repository, tree_repository, test_db):
        repository.set_available_tas("CS101", "2024", ["bob"], [])
        tree_repository.add_edition("CS101", full_course_tree().edition.model_copy(update={"id": "2025"}))

        repository.set_available_tas("CS101", "2024", [], [])

        remaining = test_db.query(UserPrivilege).filter(UserPrivilege.user_id == "bob").all()
        assert [p.group.full_path for p in remaining] == ["CS101/2025/group 1"]

    def test_same_user_as_ta_and_head_ta(self, repository):
        result = repository.set_available_tas("CS101", "2024", ["max"], ["max"])
        assert result == AvailableTAs(tas=["max"], head_tas=["max"])

    def test_search(self, repository):
        repository.set_available_tas("CS101", "2024", ["tim", "anna"], ["hanna"])
        assert repository.search_tas("ann") == ["anna", "hanna"]
        assert repository.search_tas("%") == []

    def test_missing_edition(self, repository):
        with pytest.raises(NotFoundError):
            repository.set_available_tas("CS101", "1999", ["tim"], [])
