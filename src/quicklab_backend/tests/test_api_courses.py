"""
Tests for the course endpoints with the database and platform overridden.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quicklab_backend.api.courses import course_router, get_gitlab_platform
from quicklab_backend.database import get_db
from quicklab_backend.interface.tree import GroupNode, edition
from quicklab_backend.tests.fixtures import full_course_tree, make_group, make_user


@pytest.fixture
def client(test_db, platform):
    app = FastAPI()
    app.include_router(course_router, prefix="/courses")

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gitlab_platform] = lambda: platform
    return TestClient(app)


@pytest.fixture
def stored_client(client):
    response = client.post("/courses", json=full_course_tree().model_dump(mode="json"))
    assert response.status_code == 201
    return client


class TestCourses:

    def test_create_and_list(self, stored_client):
        response = stored_client.get("/courses")
        assert response.status_code == 200
        assert response.json() == [{"id": "CS101", "name": "Computer Science 101", "editions": ["2024"]}]

    def test_create_duplicate(self, stored_client):
        response = stored_client.post("/courses", json=full_course_tree().model_dump(mode="json"))
        assert response.status_code == 409

    def test_create_requires_course_root(self, client):
        response = client.post("/courses", json=make_group("g").model_dump(mode="json"))
        assert response.status_code == 400

    def test_get_tree(self, stored_client):
        response = stored_client.get("/courses/CS101/editions/2024")
        assert response.status_code == 200
        assert GroupNode.model_validate(response.json()) == full_course_tree()

    def test_get_missing_tree(self, stored_client):
        assert stored_client.get("/courses/CS101/editions/1999").status_code == 404
        assert stored_client.get("/courses/CS999/editions/2024").status_code == 404

    def test_create_edition(self, stored_client):
        new_edition = edition("2025", [make_group("g", make_user("fred"))])
        response = stored_client.post("/courses/CS101/editions", json={"edition": new_edition.model_dump(mode="json")})

        assert response.status_code == 201
        assert GroupNode.model_validate(response.json()).edition == new_edition
        assert stored_client.get("/courses").json()[0]["editions"] == ["2024", "2025"]

    def test_create_edition_requires_edition_subtype(self, stored_client):
        response = stored_client.post("/courses/CS101/editions", json={"edition": make_group("g").model_dump(mode="json")})
        assert response.status_code == 422


class TestTransactions:

    def test_apply(self, stored_client):
        response = stored_client.post("/courses/CS101/editions/2024/transactions", json={"log": [
            {"type": "RENAME", "payload": {"path": "./CS101/2024/group 1", "name": "team 1", "type": "group"}},
        ]})

        assert response.status_code == 200
        tree = GroupNode.model_validate(response.json())
        assert [c.id for c in tree.edition.children] == ["group 2", "team 1", "erin"]

    def test_failure_returns_canonical_tree(self, stored_client):
        response = stored_client.post("/courses/CS101/editions/2024/transactions", json={"log": [
            {"type": "RENAME", "payload": {"path": "./CS101/2024/group 1", "name": "team 1", "type": "group"}},
            {"type": "MOVE", "payload": {}},
        ]})

        assert response.status_code == 400
        body = response.json()
        assert "MOVE" in body["error"]
        assert [c.id for c in GroupNode.model_validate(body["result"]).edition.children] == ["group 2", "team 1", "erin"]


class TestSubmit:

    def test_submit(self, stored_client, platform):
        response = stored_client.post("/courses/CS101/editions/2024/submit")

        assert response.status_code == 200
        assert response.json() == {"url": "https://gitlab.example.com/CS101/2024"}
        assert "CS101/2024/group_2/sub" in platform.groups

    def test_submit_platform_failure(self, stored_client, platform):
        platform.denied_paths.add("CS101")
        response = stored_client.post("/courses/CS101/editions/2024/submit")
        assert response.status_code == 502

    def test_submit_missing_edition(self, stored_client):
        assert stored_client.post("/courses/CS101/editions/1999/submit").status_code == 404


class TestSettings:

    def test_project_settings_default(self, stored_client):
        response = stored_client.get("/courses/CS101/editions/2024/project-settings")
        assert response.status_code == 200
        assert response.json()["import_type"] == "empty"

    def test_put_project_settings(self, stored_client):
        payload = {"import_type": "url", "import_url": "https://example.com/base.git", "max_file_size": 10}
        response = stored_client.put("/courses/CS101/editions/2024/project-settings", json=payload)
        assert response.status_code == 200

        stored = stored_client.get("/courses/CS101/editions/2024/project-settings").json()
        assert stored["import_type"] == "url"
        assert stored["import_url"] == "https://example.com/base.git"
        assert stored["max_file_size"] == 10

    def test_invalid_project_settings(self, stored_client):
        response = stored_client.put("/courses/CS101/editions/2024/project-settings", json={"import_type": "svn"})
        assert response.status_code == 422

    def test_teaching_assistants(self, stored_client):
        response = stored_client.put("/courses/CS101/editions/2024/tas", json={"tas": ["tim"], "head_tas": ["hanna"]})
        assert response.status_code == 200
        assert response.json() == {"tas": ["tim"], "head_tas": ["hanna"]}

        assert stored_client.get("/courses/CS101/editions/2024/tas").json() == {"tas": ["tim"], "head_tas": ["hanna"]}
        assert stored_client.get("/courses/teaching-assistants", params={"search": "im"}).json() == ["tim"]

    def test_teaching_assistants_missing_edition(self, stored_client):
        assert stored_client.get("/courses/CS101/editions/1999/tas").status_code == 404
