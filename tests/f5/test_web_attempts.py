"""Tests for the attempts gateway."""

import pytest

from chatgpa.db import attempts_repository
from chatgpa.db.notes_repository import insert_class
from chatgpa.db.quizzes_repository import insert_quiz

USER = "11111111-1111-4111-8111-111111111111"
OTHER_USER = "22222222-2222-4222-8222-222222222222"

URL = "/api/v1/attempts"

QUESTIONS = [
    {"id": "q1", "type": "mcq", "prompt": "Capital of France?", "options": ["Paris", "Rome", "Oslo"], "answer": "Paris"},
]


@pytest.fixture
def quiz(client):
    klass = insert_class(USER, "Geography")
    return insert_quiz(USER, QUESTIONS, class_id=klass.id, title="Capitals", subject="Geography")


def start(client, headers, quiz_id):
    return client.post(f"{URL}?action=start", json={"quiz_id": quiz_id}, headers=headers)


class TestStart:
    """Tests for the start action."""

    def test_creates_attempt(self, client, auth, quiz):
        response = start(client, auth, quiz.id)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "in_progress"
        assert data["resumed"] is False
        assert data["title"] == "Capitals"
        assert data["subject"] == "Geography"
        assert data["autosave_version"] == 0

    def test_second_start_resumes(self, client, auth, quiz):
        first = start(client, auth, quiz.id).json()["data"]
        second = start(client, auth, quiz.id).json()["data"]

        assert second["resumed"] is True
        assert second["attempt_id"] == first["attempt_id"]

    def test_default_title(self, client, auth):
        untitled = insert_quiz(USER, QUESTIONS)

        data = start(client, auth, untitled.id).json()["data"]

        assert data["title"].startswith("Quiz Attempt - ")
        assert data["subject"] == "General"

    def test_wrapped_payload(self, client, auth, quiz):
        response = client.post(URL, json={"action": "start", "data": {"quiz_id": quiz.id}}, headers=auth)
        assert response.status_code == 200

    def test_invalid_quiz_id(self, client, auth):
        response = start(client, auth, "not-a-uuid")
        assert response.status_code == 400
        assert response.json()["code"] == "SCHEMA_INVALID"

    def test_other_users_quiz_is_not_found(self, client, other_auth, quiz):
        response = start(client, other_auth, quiz.id)
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_other_users_quiz_forbidden_when_not_concealed(self, config, client, other_auth, quiz):
        config.security.conceal_forbidden = False
        response = start(client, other_auth, quiz.id)
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"


class TestAutosave:
    """Tests for the autosave action."""

    @pytest.fixture
    def attempt_id(self, client, auth, quiz):
        return start(client, auth, quiz.id).json()["data"]["attempt_id"]

    def test_bumps_version(self, client, auth, attempt_id):
        payload = {"attempt_id": attempt_id, "responses": {"q1": "Paris"}}

        client.post(f"{URL}?action=autosave", json=payload, headers=auth)
        response = client.post(f"{URL}?action=autosave", json=payload, headers=auth)

        data = response.json()["data"]
        assert data["ok"] is True
        assert data["autosave_version"] == 2
        assert attempts_repository.get_attempt(attempt_id).responses == {"q1": "Paris"}

    def test_other_user(self, client, other_auth, attempt_id):
        response = client.post(
            f"{URL}?action=autosave", json={"attempt_id": attempt_id, "responses": {}}, headers=other_auth
        )
        assert response.status_code == 404

    def test_submitted_attempt_refused(self, client, auth, attempt_id):
        attempts_repository.submit_attempt(attempt_id, {}, 0, [], None, None)

        response = client.post(
            f"{URL}?action=autosave", json={"attempt_id": attempt_id, "responses": {"q1": "x"}}, headers=auth
        )

        assert response.status_code == 404

    def test_payload_too_large(self, client, auth, attempt_id):
        payload = {"attempt_id": attempt_id, "responses": {"q1": "x" * 600 * 1024}}

        response = client.post(f"{URL}?action=autosave", json=payload, headers=auth)

        assert response.status_code == 413
        assert response.json()["message"] == "Autosave payload exceeds maximum size of 500KB"

    def test_non_string_answers(self, client, auth, attempt_id):
        response = client.post(
            f"{URL}?action=autosave", json={"attempt_id": attempt_id, "responses": {"q1": ["a"]}}, headers=auth
        )
        assert response.status_code == 400


class TestUpdateMeta:
    """Tests for the update_meta action."""

    @pytest.fixture
    def attempt_id(self, client, auth, quiz):
        return start(client, auth, quiz.id).json()["data"]["attempt_id"]

    def test_rename(self, client, auth, attempt_id):
        response = client.post(
            f"{URL}?action=update_meta", json={"attempt_id": attempt_id, "title": "  Midterm prep  "}, headers=auth
        )

        data = response.json()["data"]
        assert data["title"] == "Midterm prep"
        assert data["subject"] == "Geography"
        assert data["autosave_version"] == 1

    def test_needs_a_field(self, client, auth, attempt_id):
        response = client.post(f"{URL}?action=update_meta", json={"attempt_id": attempt_id}, headers=auth)

        assert response.status_code == 400
        assert response.json()["message"] == "At least one of title or subject must be provided"

    def test_title_too_long(self, client, auth, attempt_id):
        response = client.post(
            f"{URL}?action=update_meta", json={"attempt_id": attempt_id, "title": "x" * 101}, headers=auth
        )
        assert response.status_code == 400

    def test_other_user(self, client, other_auth, attempt_id):
        response = client.post(
            f"{URL}?action=update_meta", json={"attempt_id": attempt_id, "subject": "Math"}, headers=other_auth
        )
        assert response.status_code == 404
