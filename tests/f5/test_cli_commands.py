"""Tests for the chatgpa CLI."""

import json

import pytest
from typer.testing import CliRunner

from chatgpa.cli.commands import app
from chatgpa.db.tokens_repository import get_balance

runner = CliRunner()

USER = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def quiz_files(tmp_path):
    """A two-question quiz and matching responses on disk."""
    quiz = tmp_path / "quiz.json"
    quiz.write_text(
        json.dumps(
            {
                "questions": [
                    {"id": "q1", "type": "mcq", "prompt": "Capital of France?", "options": ["Paris", "Rome", "Oslo"], "answer": "Paris"},
                    {"id": "q2", "type": "short", "prompt": "Powerhouse of the cell?", "answer": "mitochondria"},
                ]
            }
        )
    )
    responses = tmp_path / "responses.json"
    responses.write_text(json.dumps({"q1": "paris", "q2": "ribosome"}))
    return quiz, responses


class TestInitDb:
    """Tests for init-db."""

    def test_creates_file(self, tmp_path):
        db_file = tmp_path / "nested" / "cli.db"

        result = runner.invoke(app, ["init-db", "--db", str(db_file)])

        assert result.exit_code == 0, result.output
        assert db_file.exists()
        assert "Database ready" in result.output


class TestGrantTokens:
    """Tests for grant-tokens."""

    def test_grant(self, tmp_path):
        result = runner.invoke(
            app, ["grant-tokens", USER, "--personal", "10", "--reserve", "5", "--db", str(tmp_path / "cli.db")]
        )

        assert result.exit_code == 0, result.output
        assert "Tokens granted" in result.output
        assert get_balance(USER).remaining == 15

    def test_negative_rejected(self, tmp_path):
        result = runner.invoke(app, ["grant-tokens", USER, "--personal=-1", "--db", str(tmp_path / "cli.db")])

        assert result.exit_code == 1
        assert "must not be negative" in result.output


class TestGrade:
    """Tests for offline grading."""

    def test_prints_breakdown(self, quiz_files):
        quiz, responses = quiz_files

        result = runner.invoke(app, ["grade", str(quiz), str(responses)])

        assert result.exit_code == 0, result.output
        assert "50%" in result.output
        assert "Correct: 1/2" in result.output
        assert "q1" in result.output

    def test_missing_quiz_file(self, tmp_path, quiz_files):
        _, responses = quiz_files
        result = runner.invoke(app, ["grade", str(tmp_path / "nope.json"), str(responses)])
        assert result.exit_code == 1
        assert "Quiz file not found" in result.output

    def test_invalid_json(self, tmp_path, quiz_files):
        quiz, _ = quiz_files
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")

        result = runner.invoke(app, ["grade", str(quiz), str(bad)])

        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_empty_quiz(self, tmp_path, quiz_files):
        _, responses = quiz_files
        empty = tmp_path / "empty.json"
        empty.write_text(json.dumps({"questions": []}))

        result = runner.invoke(app, ["grade", str(empty), str(responses)])

        assert result.exit_code == 1
        assert "no questions" in result.output
