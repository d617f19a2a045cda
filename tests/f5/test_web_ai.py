"""Tests for the AI gateway: quiz generation and grading."""

import pytest

from chatgpa.db import attempts_repository
from chatgpa.db.notes_repository import insert_class
from chatgpa.db.quizzes_repository import count_quizzes, get_quiz, insert_quiz
from chatgpa.llm.client import LLMConnectionError, LLMResponseError

USER = "11111111-1111-4111-8111-111111111111"
OTHER_USER = "22222222-2222-4222-8222-222222222222"

GENERATE_URL = "/api/v1/ai?action=generate_quiz"
GRADE_URL = "/api/v1/ai?action=grade"

NOTES = "Photosynthesis converts light energy into chemical energy inside chloroplasts."

GENERATED = {
    "questions": [
        {"id": "q1", "type": "mcq", "prompt": "Where?", "options": ["Chloroplast", "Nucleus", "Ribosome", "Golgi"], "answer": "Chloroplast"},
        {"id": "q2", "type": "short", "prompt": "What is converted?", "answer": "light energy"},
    ]
}

QUESTIONS = [
    {"id": "q1", "type": "mcq", "prompt": "Capital of France?", "options": ["Paris", "Rome", "Oslo"], "answer": "Paris"},
    {"id": "q2", "type": "short", "prompt": "Powerhouse of the cell?", "answer": "the mitochondria"},
]


class TestGenerateQuiz:
    """Tests for the generate_quiz action."""

    def test_creates_quiz(self, client, auth, llm):
        llm.chat_json.return_value = GENERATED

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["actual_question_count"] == 2
        assert data["config"]["question_type"] == "mcq"
        assert data["config"]["question_count"] == 8

        stored = get_quiz(data["quiz_id"])
        assert stored.user_id == USER
        assert stored.subject == "Biology"
        assert stored.title.endswith("(2Q)")
        assert llm.chat_json.call_args.kwargs["model"] == "gpt-4o-mini"

    def test_title_uses_class_name(self, client, auth, llm):
        llm.chat_json.return_value = GENERATED
        klass = insert_class(USER, "Bio 101")

        data = client.post(
            GENERATE_URL, json={"notes_text": NOTES, "class_id": klass.id}, headers=auth
        ).json()["data"]

        assert get_quiz(data["quiz_id"]).title.startswith("Bio 101 - ")

    def test_other_users_class(self, client, auth, llm):
        llm.chat_json.return_value = GENERATED
        klass = insert_class(OTHER_USER, "Bio 101")

        response = client.post(GENERATE_URL, json={"notes_text": NOTES, "class_id": klass.id}, headers=auth)

        assert response.status_code == 404

    def test_notes_too_short(self, client, auth):
        response = client.post(GENERATE_URL, json={"notes_text": "   too short   "}, headers=auth)

        assert response.status_code == 400
        assert response.json() == {
            "code": "SCHEMA_INVALID",
            "message": "Notes text must be at least 20 characters",
        }

    @pytest.mark.parametrize(
        "quiz_config",
        [
            {"question_count": 20},
            {"question_type": "hybrid", "question_count": 5, "question_counts": {"mcq": 1, "typing": 1}},
            {"difficulty": "impossible"},
        ],
    )
    def test_invalid_config(self, client, auth, quiz_config):
        response = client.post(GENERATE_URL, json={"notes_text": NOTES, "config": quiz_config}, headers=auth)

        assert response.status_code == 400
        assert response.json()["code"] == "CONFIG_INVALID"

    def test_no_provider(self, make_client, auth):
        with make_client(None) as no_llm:
            response = no_llm.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 500
        assert response.json() == {"code": "SERVER_ERROR", "message": "AI service configuration error"}

    def test_invalid_output_after_retry(self, client, auth, llm):
        llm.chat_json.side_effect = LLMResponseError("not json")

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 502
        assert response.json()["code"] == "MODEL_INVALID_OUTPUT"
        assert llm.chat_json.call_args.kwargs["max_retries"] == 1

    def test_provider_error(self, client, auth, llm):
        llm.chat_json.side_effect = LLMConnectionError("refused")

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 500
        assert response.json()["code"] == "OPENAI_ERROR"

    def test_schema_mismatch(self, client, auth, llm):
        llm.chat_json.return_value = {"questions": [{"id": "q1", "type": "mcq", "prompt": "?", "options": ["a", "b", "c"], "answer": "z"}]}

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.json()["code"] == "QUIZ_VALIDATION_FAILED"

    def test_free_tier_limit_reached(self, config, client, auth, llm):
        config.usage_limits.test_quiz_limit = 1
        insert_quiz(USER, QUESTIONS)

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 402
        assert response.json() == {
            "code": "USAGE_LIMIT_REACHED",
            "message": "You've reached the Free plan limit of 1 quizzes.",
        }
        llm.chat_json.assert_not_called()

    def test_live_mode_uses_free_limit(self, config, client, auth, llm):
        config.mode = "live"
        for _ in range(5):
            insert_quiz(USER, QUESTIONS)

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 402
        assert "limit of 5 quizzes" in response.json()["message"]

    def test_other_users_quizzes_not_counted(self, config, client, auth, llm):
        llm.chat_json.return_value = GENERATED
        config.usage_limits.test_quiz_limit = 1
        insert_quiz(OTHER_USER, QUESTIONS)

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 200

    def test_limits_disabled(self, config, client, auth, llm):
        llm.chat_json.return_value = GENERATED
        config.usage_limits.enabled = False
        config.usage_limits.test_quiz_limit = 1
        insert_quiz(USER, QUESTIONS)

        response = client.post(GENERATE_URL, json={"notes_text": NOTES}, headers=auth)

        assert response.status_code == 200
        assert count_quizzes(USER) == 2

    def test_get_not_allowed(self, client, auth):
        assert client.get(GENERATE_URL, headers=auth).status_code == 405


class TestGrade:
    """Tests for the grade action."""

    @pytest.fixture
    def quiz(self, client):
        return insert_quiz(USER, QUESTIONS, title="Cells", subject="Biology")

    def test_one_shot_by_quiz(self, client, auth, llm, quiz):
        response = client.post(
            GRADE_URL, json={"quiz_id": quiz.id, "responses": {"q1": "paris", "q2": "The mitochondria"}}, headers=auth
        )

        data = response.json()["data"]
        assert data["score"] == 100
        assert data["letter"] == "A"
        assert [b["id"] for b in data["breakdown"]] == ["q1", "q2"]
        llm.chat_json.assert_not_called()

        attempt = attempts_repository.get_attempt(data["attempt_id"])
        assert attempt.status == "submitted"
        assert attempt.score == 1.0
        assert attempt.grading_model == "deterministic"

    def test_submits_open_attempt(self, client, auth, quiz):
        attempt_id = client.post(
            "/api/v1/attempts?action=start", json={"quiz_id": quiz.id}, headers=auth
        ).json()["data"]["attempt_id"]

        data = client.post(
            GRADE_URL, json={"attempt_id": attempt_id, "responses": {"q1": "Rome"}}, headers=auth
        ).json()["data"]

        assert data["attempt_id"] == attempt_id
        assert data["score"] == 0
        assert data["letter"] == "F"
        stored = attempts_repository.get_attempt(attempt_id)
        assert stored.status == "submitted"
        assert stored.responses == {"q1": "Rome"}
        assert stored.duration_ms is not None

    def test_attempt_already_submitted(self, client, auth, quiz):
        attempt_id = client.post(
            "/api/v1/attempts?action=start", json={"quiz_id": quiz.id}, headers=auth
        ).json()["data"]["attempt_id"]
        client.post(GRADE_URL, json={"attempt_id": attempt_id, "responses": {}}, headers=auth)

        response = client.post(GRADE_URL, json={"attempt_id": attempt_id, "responses": {}}, headers=auth)

        assert response.status_code == 400
        assert response.json()["message"] == "Attempt already submitted"

    def test_unreferenced_short_uses_model(self, client, auth, llm):
        quiz = insert_quiz(USER, [{"id": "s1", "type": "short", "prompt": "Explain osmosis"}])
        llm.chat_json.return_value = {
            "results": [{"id": "s1", "correct": True, "feedback": "Clear", "improvement": "Add an example"}]
        }

        data = client.post(
            GRADE_URL, json={"quiz_id": quiz.id, "responses": {"s1": "Water crosses a membrane"}}, headers=auth
        ).json()["data"]

        assert data["score"] == 100
        assert data["breakdown"][0]["feedback"] == "Clear"
        assert attempts_repository.get_attempt(data["attempt_id"]).grading_model == "gpt-4o-mini"

    def test_needs_target(self, client, auth):
        response = client.post(GRADE_URL, json={"responses": {}}, headers=auth)

        assert response.status_code == 400
        assert response.json()["message"] == "Must provide either quiz_id or attempt_id"

    def test_empty_quiz(self, client, auth):
        quiz = insert_quiz(USER, [])
        response = client.post(GRADE_URL, json={"quiz_id": quiz.id, "responses": {}}, headers=auth)
        assert response.json()["code"] == "EMPTY_QUIZ"

    def test_other_users_quiz(self, client, other_auth, quiz):
        response = client.post(GRADE_URL, json={"quiz_id": quiz.id, "responses": {}}, headers=other_auth)
        assert response.status_code == 404
