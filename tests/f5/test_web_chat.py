"""Tests for the /api/chat proxy."""

import pytest

from chatgpa.config.app_config import ChatLimits
from chatgpa.db import tokens_repository
from chatgpa.llm.client import LLMConnectionError, LLMResponse, LLMTimeoutError
from chatgpa.web.errors import ChatError
from chatgpa.web.routes.chat import ANONYMOUS_USER_ID, estimate_tokens, validate_messages

USER = "11111111-1111-4111-8111-111111111111"

URL = "/api/chat"

HELLO = {"messages": [{"role": "user", "content": "Hello"}]}


def reply(content="Hi there!", **usage):
    return LLMResponse(content=content, model="gpt-4o", provider="openai", usage=usage)


@pytest.fixture
def llm(llm):
    llm.chat.return_value = reply(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    return llm


class TestValidateMessages:
    """Tests for validate_messages()."""

    limits = ChatLimits(max_messages=3, max_total_chars=20)

    @pytest.mark.parametrize(
        "body,detail",
        [
            ({}, "messages array required"),
            ({"messages": []}, "messages array required"),
            ([], "messages array required"),
            ({"messages": [{"role": "user", "content": "a"}] * 4}, "too many messages (max 3)"),
            ({"messages": [{"role": "user"}]}, "invalid message item"),
            ({"messages": ["hello"]}, "invalid message item"),
            ({"messages": [{"role": "robot", "content": "a"}]}, "invalid role"),
            ({"messages": [{"role": "user", "content": "x" * 21}]}, "messages too large (max 20 chars)"),
        ],
    )
    def test_rejects(self, body, detail):
        with pytest.raises(ChatError) as exc:
            validate_messages(body, self.limits)
        assert exc.value.status == 400
        assert exc.value.error == "invalid_body"
        assert exc.value.detail == detail

    def test_accepts(self):
        messages = validate_messages(
            {"messages": [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]}, self.limits
        )
        assert [m.role for m in messages] == ["system", "user"]


class TestEstimateTokens:
    """Tests for estimate_tokens()."""

    def test_reported_usage(self):
        assert estimate_tokens(reply(total_tokens=42), 1000) == (42, False)

    def test_fallback_four_chars_per_token(self):
        assert estimate_tokens(reply("x" * 10), 1000) == (3, True)

    def test_clamped(self):
        assert estimate_tokens(reply(total_tokens=5000), 1000) == (1000, False)


class TestChat:
    """Tests for the chat endpoint."""

    def test_reply(self, client, auth, llm):
        response = client.post(URL, json=HELLO, headers=auth)

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["mode"] == "test"
        assert body["model"] == "gpt-4o"
        assert body["reply"] == "Hi there!"
        assert body["usage"] == {"total_tokens": 15, "prompt_tokens": 10, "completion_tokens": 5}
        assert body["request_id"]
        assert body["timestamp"]

    def test_system_prompt_prepended(self, client, auth, llm):
        client.post(URL, json=HELLO, headers=auth)

        conversation = llm.chat.call_args.args[0]
        assert conversation[0].role == "system"
        assert conversation[0].content == "You are a helpful assistant."
        assert conversation[1].content == "Hello"
        assert llm.chat.call_args.kwargs["temperature"] == 0.7
        assert llm.chat.call_args.kwargs["timeout"] == 30

    def test_charges_tokens(self, client, auth):
        tokens_repository.grant_tokens(USER, personal=100)

        body = client.post(URL, json=HELLO, headers=auth).json()

        assert body["warnings"] == []
        assert tokens_repository.get_balance(USER).remaining == 85
        assert [u["source"] for u in tokens_repository.list_usage(USER)] == ["chat", "chat_message"]

    def test_no_balance_is_a_warning(self, client, auth):
        body = client.post(URL, json=HELLO, headers=auth).json()

        assert body["ok"] is True
        assert body["warnings"] == ["spend_tokens_failed"]
        assert [u["source"] for u in tokens_repository.list_usage(USER)] == ["chat_message"]

    def test_anonymous(self, client):
        client.post(URL, json=HELLO)
        assert len(tokens_repository.list_usage(ANONYMOUS_USER_ID)) == 1

    def test_user_id_from_body(self, client):
        client.post(URL, json={**HELLO, "user_id": USER})
        assert len(tokens_repository.list_usage(USER)) == 1

    def test_fallback_estimate(self, client, llm):
        llm.chat.return_value = reply("x" * 10)

        usage = client.post(URL, json=HELLO).json()["usage"]

        assert usage == {"total_tokens": 3, "used_fallback_estimate": True}

    def test_model_override(self, client, llm):
        body = client.post(URL, json={**HELLO, "model": "gpt-4o-mini"}).json()
        assert body["model"] == "gpt-4o-mini"
        assert llm.chat.call_args.kwargs["model"] == "gpt-4o-mini"

    def test_model_not_allowed(self, client):
        response = client.post(URL, json={**HELLO, "model": "gpt-3"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_model"
        assert body["detail"] == 'model "gpt-3" is not in ALLOWED_MODELS'
        assert body["request_id"]

    def test_allowed_models_from_config(self, config, client):
        config.llm.allowed_models = ["gpt-4o-mini"]
        assert client.post(URL, json=HELLO).status_code == 400

    def test_method_not_allowed(self, client):
        response = client.get(URL)
        assert response.status_code == 405
        assert response.json()["error"] == "method_not_allowed"

    def test_no_provider(self, make_client):
        with make_client(None) as no_llm:
            response = no_llm.post(URL, json=HELLO)

        assert response.status_code == 500
        assert response.json()["error"] == "server_config_missing"
        assert response.json()["detail"] == "TEST mode - missing: OPENAI_API_KEY_TEST"

    def test_invalid_json(self, client):
        response = client.post(URL, content="{nope", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["detail"] == "JSON parse failed"

    def test_invalid_body(self, client):
        response = client.post(URL, json={"messages": []})
        assert response.json()["error"] == "invalid_body"

    def test_timeout(self, client, llm):
        llm.chat.side_effect = LLMTimeoutError("slow")
        response = client.post(URL, json=HELLO)
        assert response.status_code == 504
        assert response.json()["error"] == "openai_timeout"

    def test_provider_error(self, client, llm):
        llm.chat.side_effect = LLMConnectionError("refused")
        response = client.post(URL, json=HELLO)
        assert response.status_code == 502
        assert response.json()["error"] == "openai_call_error"
        assert response.json()["detail"] == "refused"

    def test_empty_reply(self, client, llm):
        llm.chat.return_value = reply("")
        response = client.post(URL, json=HELLO)
        assert response.status_code == 502
        assert response.json()["error"] == "openai_empty_reply"
