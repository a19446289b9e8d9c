"""Integration tests for the chat, explain-step and learning-progress routes."""
import sys
sys.path.insert(0, 'backend')

import pytest
from services.auth import AuthConfigurationError, AuthContext, AuthVerificationError
from services.llm_client import LLMClientError, LLMError, LLMResponse


def save_message(client, content, chat_id=None, role="user", title=None):
    body = {"message": {"role": role, "content": content}}
    if chat_id:
        body["chat_id"] = chat_id
    if title:
        body["title"] = title
    return client.post("/api/chat", json=body)


class TestServiceEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_ping_success(self, client, app_services):
        response = client.get("/api/ping")

        assert response.status_code == 200
        assert response.json() == {"status": "success", "message": "Backend connection successful"}

    def test_ping_failure(self, client, app_services):
        app_services.llm_client.ping.side_effect = LLMClientError(LLMError(
            code="API_UNREACHABLE", message="Backend unreachable: connection refused"
        ))

        response = client.get("/api/ping")

        assert response.status_code == 500
        assert response.json()["status"] == "error"

    def test_protected(self, client):
        response = client.get("/api/protected")

        assert response.json() == {"protected": True, "user": {"id": "user-1", "email": "one@example.com"}}

    def test_services_not_initialized(self, client):
        from main import app
        app.state.services = None

        assert client.get("/api/ping").status_code == 503


class TestAuthentication:

    @pytest.fixture
    def anonymous_client(self, client):
        from main import app, get_current_user
        app.dependency_overrides.pop(get_current_user)
        return client

    def test_missing_token(self, anonymous_client, app_services):
        app_services.auth_verifier.verify.side_effect = AuthVerificationError("Missing bearer token")

        response = anonymous_client.get("/api/chat")

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "Not authenticated"

    def test_valid_token(self, anonymous_client, app_services):
        app_services.auth_verifier.verify.return_value = AuthContext(user_id="user-9", email="nine@example.com")

        response = anonymous_client.get("/api/protected", headers={"Authorization": "Bearer abc"})

        assert response.json()["user"]["id"] == "user-9"
        app_services.auth_verifier.verify.assert_called_once_with("Bearer abc")

    def test_auth_not_configured(self, anonymous_client, app_services):
        app_services.auth_verifier.verify.side_effect = AuthConfigurationError("JWKS URL is not configured")

        assert anonymous_client.get("/api/protected").status_code == 500


class TestChatRoutes:

    def test_create_chat(self, client):
        response = save_message(client, "What is recursion?", title="Recursion")

        assert response.status_code == 200
        chat = response.json()["chat"]
        assert chat["id"].startswith("conv_")
        assert chat["title"] == "Recursion"
        assert [(m["role"], m["content"]) for m in chat["messages"]] == [("user", "What is recursion?")]

    def test_append_to_chat(self, client):
        chat_id = save_message(client, "What is recursion?").json()["chat"]["id"]

        response = save_message(client, "A function calling itself.", chat_id=chat_id, role="assistant")

        messages = response.json()["chat"]["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "What is recursion?"),
            ("model", "A function calling itself."),
        ]

    def test_append_to_unknown_chat(self, client):
        response = save_message(client, "hello", chat_id="conv_000000000000")
        assert response.status_code == 404

    def test_append_with_malformed_id(self, client):
        response = save_message(client, "hello", chat_id="../etc")
        assert response.status_code == 400

    def test_empty_message_rejected(self, client):
        assert save_message(client, "  ").status_code == 400

    def test_list_chats(self, client):
        save_message(client, "first", title="First")
        save_message(client, "second", title="Second")

        chats = client.get("/api/chat").json()["chats"]

        assert {c["title"] for c in chats} == {"First", "Second"}
        assert all("messages" not in c for c in chats)

    def test_list_chats_store_failure(self, client, supabase_client):
        supabase_client.failing_tables.add("conversations")
        assert client.get("/api/chat").status_code == 500

    def test_get_chat(self, client):
        chat_id = save_message(client, "hello").json()["chat"]["id"]

        response = client.get(f"/api/chat/{chat_id}")

        assert response.status_code == 200
        assert response.json()["chat"]["messages"][0]["content"] == "hello"

    def test_get_chat_of_other_user(self, client, app_services):
        conversation = app_services.conversations.create_conversation("user-2")

        response = client.get(f"/api/chat/{conversation.conversation_id}")

        assert response.status_code == 404
        assert response.json()["detail"] == "Chat not found or unauthorized"

    def test_get_chat_malformed_id(self, client):
        response = client.get("/api/chat/not-an-id")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "Invalid chat ID format"

    def test_delete_chat(self, client):
        chat_id = save_message(client, "hello").json()["chat"]["id"]

        response = client.delete(f"/api/chat/{chat_id}")

        assert response.json()["success"] is True
        assert client.get(f"/api/chat/{chat_id}").status_code == 404

    def test_delete_unknown_chat(self, client):
        assert client.delete("/api/chat/conv_000000000000").status_code == 404


class TestExplainStep:

    def test_explain_step(self, client, app_services):
        app_services.llm_client.generate.return_value = LLMResponse(
            text="**Git** is a tool.\n- commit often",
            tokens_input=30,
            tokens_output=10,
            latency_ms=100,
            model_used="llama-3.3-70b-versatile"
        )

        response = client.post("/api/explain-step", json={
            "step_id": "step-1", "step_title": "Learn git", "step_type": "core"
        })

        assert response.status_code == 200
        explanation = response.json()["explanation"]
        assert "<strong>Git</strong>" in explanation
        assert "• commit often<br/>" in explanation

        kwargs = app_services.llm_client.generate.call_args.kwargs
        assert kwargs["max_tokens"] == 400
        assert "core concept" in kwargs["messages"][0].content

    def test_explain_step_requires_title(self, client, app_services):
        response = client.post("/api/explain-step", json={"step_id": "step-1"})

        assert response.status_code == 400
        app_services.llm_client.generate.assert_not_called()

    def test_explain_step_llm_error(self, client, app_services):
        app_services.llm_client.generate.side_effect = LLMClientError(LLMError(
            code="TIMEOUT_ERROR", message="Request timed out."
        ))

        response = client.post("/api/explain-step", json={"step_title": "Learn git"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"]["code"] == "TIMEOUT_ERROR"


class TestLearningProgressRoutes:

    @pytest.fixture
    def path_id(self, client):
        response = client.post("/api/learning-progress", json={
            "chat_id": "conv_0123456789ab",
            "title": "Python path",
            "steps": [{"id": "step-1", "title": "Basics"}, {"id": "step-2", "title": "Projects"}]
        })
        assert response.status_code == 200
        return response.json()["learning_path"]["id"]

    def test_save_path(self, client, path_id):
        path = client.get(f"/api/learning-progress/{path_id}").json()["learning_path"]

        assert path["chat_id"] == "conv_0123456789ab"
        assert path["total_steps"] == 2
        assert path["completed_steps"] == 0
        assert [s["step_id"] for s in path["steps"]] == ["step-1", "step-2"]

    def test_save_path_requires_title(self, client):
        response = client.post("/api/learning-progress", json={"chat_id": "conv_0123456789ab", "title": " ", "steps": []})
        assert response.status_code == 400

    def test_list_paths(self, client, path_id):
        paths = client.get("/api/learning-progress").json()["learning_paths"]
        assert [p["id"] for p in paths] == [path_id]

    def test_complete_steps(self, client, path_id):
        response = client.patch(f"/api/learning-progress/{path_id}", json={"step_id": "step-1", "completed": True})

        path = response.json()["learning_path"]
        assert path["completed_steps"] == 1
        assert path["is_completed"] is False
        assert path["steps"][0]["completed_at"] is not None

        response = client.patch(f"/api/learning-progress/{path_id}", json={"step_id": "step-2", "completed": True})
        assert response.json()["learning_path"]["is_completed"] is True

    def test_update_unknown_step(self, client, path_id):
        response = client.patch(f"/api/learning-progress/{path_id}", json={"step_id": "step-9", "completed": True})

        assert response.status_code == 404
        assert response.json()["detail"] == "Step not found in learning path"

    def test_update_requires_step_id(self, client, path_id):
        response = client.patch(f"/api/learning-progress/{path_id}", json={"completed": True})
        assert response.status_code == 400

    def test_update_unknown_path(self, client):
        response = client.patch("/api/learning-progress/lp_000000000000", json={"step_id": "step-1", "completed": True})
        assert response.status_code == 404

    def test_get_malformed_id(self, client):
        assert client.get("/api/learning-progress/conv_0123456789ab").status_code == 400

    def test_delete_path(self, client, path_id):
        response = client.delete(f"/api/learning-progress/{path_id}")

        assert response.json() == {"success": True, "message": "Learning path deleted successfully"}
        assert client.get(f"/api/learning-progress/{path_id}").status_code == 404
