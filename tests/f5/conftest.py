"""Fixtures for API tests: an app on a temp database with a mock LLM."""

from unittest.mock import MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient

from chatgpa.config.app_config import load_app_config
from chatgpa.web.api import create_app

SECRET = "test-secret"
USER = "11111111-1111-4111-8111-111111111111"
OTHER_USER = "22222222-2222-4222-8222-222222222222"


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Default config with a temp database, a JWT secret and an API key."""
    for var in (
        "CHATGPA_DB_PATH",
        "CHATGPA_JWT_SECRET",
        "APP_MODE",
        "ALLOWED_MODELS",
        "OPENAI_API_KEY_TEST",
        "ENABLE_USAGE_LIMITS",
        "FREE_QUIZ_LIMIT",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    config = load_app_config(config_file=tmp_path / "missing.yaml")
    config.db_path = tmp_path / "api.db"
    config.security.jwt_secret = SECRET
    return config


@pytest.fixture
def llm():
    """Mock LLM client handed out by the app."""
    return MagicMock()


@pytest.fixture
def make_client(config):
    """Build a TestClient whose LLM factory returns ``llm`` (None: no provider)."""

    def _make(llm=None):
        return TestClient(create_app(config, llm_factory=lambda: llm))

    return _make


@pytest.fixture
def client(make_client, llm):
    """Running app; the lifespan initializes the temp database."""
    with make_client(llm) as test_client:
        yield test_client


@pytest.fixture
def token_for():
    """Sign a bearer token for a user id."""

    def _token(user_id, secret=SECRET):
        return jwt.encode({"sub": user_id}, secret, algorithm="HS256")

    return _token


@pytest.fixture
def auth(token_for):
    """Authorization header for USER."""
    return {"Authorization": f"Bearer {token_for(USER)}"}


@pytest.fixture
def other_auth(token_for):
    """Authorization header for OTHER_USER."""
    return {"Authorization": f"Bearer {token_for(OTHER_USER)}"}
