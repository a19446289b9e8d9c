"""Unit tests for LLMClient."""
import sys
sys.path.insert(0, 'backend')

import pytest
from unittest.mock import Mock, patch
from models.conversation import Role
from services.context_window import ContextMessage
from services.llm_client import LLMClient, LLMResponse, LLMClientError
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError

MODEL = "llama-3.3-70b-versatile"


def mock_completion(text="Answer", prompt_tokens=100, completion_tokens=10):
    response = Mock()
    response.choices = [Mock(message=Mock(content=text))]
    response.usage = Mock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


@pytest.fixture
def mock_groq():
    """Patch the Groq class and return the client instance it produces."""
    with patch('services.llm_client.Groq') as mock_groq_class:
        mock_client = Mock()
        mock_groq_class.return_value = mock_client
        yield mock_client


class TestLLMClient:
    """Test suite for LLMClient class."""

    def test_initialization_with_api_key(self, mock_groq):
        """Test LLMClient initializes with provided API key."""
        client = LLMClient(api_key="test_key")
        assert client.api_key == "test_key"

    def test_initialization_without_api_key_raises_error(self):
        """Test LLMClient raises error when no API key provided."""
        with patch('services.llm_client.GROQ_API_KEY', None):
            with pytest.raises(ValueError, match="GROQ_API_KEY must be provided"):
                LLMClient()

    def test_generate_success(self, mock_groq):
        """Test successful response generation."""
        mock_groq.chat.completions.create.return_value = mock_completion(
            "Start with Python basics.", prompt_tokens=150, completion_tokens=12
        )

        client = LLMClient(api_key="test_key")
        response = client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "How do I learn Python?")])

        assert isinstance(response, LLMResponse)
        assert response.text == "Start with Python basics."
        assert response.tokens_input == 150
        assert response.tokens_output == 12
        assert response.model_used == MODEL
        assert isinstance(response.latency_ms, int)
        assert response.latency_ms >= 0

    def test_generate_sends_context_in_order_with_groq_roles(self, mock_groq):
        """Model turns are sent as assistant turns, oldest first."""
        mock_groq.chat.completions.create.return_value = mock_completion()
        messages = [
            ContextMessage(Role.USER, "What is git?"),
            ContextMessage(Role.MODEL, "A version control system."),
            ContextMessage(Role.USER, "How do I branch?"),
        ]

        LLMClient(api_key="test_key").generate(model=MODEL, messages=messages, max_tokens=256)

        kwargs = mock_groq.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == MODEL
        assert kwargs["max_tokens"] == 256
        assert kwargs["messages"] == [
            {"role": "user", "content": "What is git?"},
            {"role": "assistant", "content": "A version control system."},
            {"role": "user", "content": "How do I branch?"},
        ]

    def test_generate_accepts_plain_dicts(self, mock_groq):
        mock_groq.chat.completions.create.return_value = mock_completion()

        LLMClient(api_key="test_key").generate(model=MODEL, messages=[{"role": "model", "content": "Hi"}])

        sent = mock_groq.chat.completions.create.call_args.kwargs["messages"]
        assert sent == [{"role": "assistant", "content": "Hi"}]

    def test_generate_prepends_system_prompt(self, mock_groq):
        mock_groq.chat.completions.create.return_value = mock_completion()

        LLMClient(api_key="test_key").generate(
            model=MODEL,
            messages=[ContextMessage(Role.USER, "Hi")],
            system_prompt="Be brief."
        )

        sent = mock_groq.chat.completions.create.call_args.kwargs["messages"]
        assert sent[0] == {"role": "system", "content": "Be brief."}
        assert sent[1] == {"role": "user", "content": "Hi"}

    def test_generate_handles_empty_content(self, mock_groq):
        mock_groq.chat.completions.create.return_value = mock_completion(text=None)

        response = LLMClient(api_key="test_key").generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])
        assert response.text == ""

    def test_generate_handles_unexpected_error(self, mock_groq):
        """Test that unexpected errors are raised as structured errors."""
        mock_groq.chat.completions.create.side_effect = Exception("API Error")

        client = LLMClient(api_key="test_key")
        with pytest.raises(LLMClientError) as exc_info:
            client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])

        error = exc_info.value.error
        assert error.code == "UNKNOWN_ERROR"
        assert "Unexpected error" in error.message
        assert error.details["model"] == MODEL
        assert error.details["error_type"] == "Exception"

    def test_generate_handles_rate_limit_error(self, mock_groq):
        """Test that rate limit errors are handled with retry suggestion."""
        mock_groq.chat.completions.create.side_effect = RateLimitError(
            message="Rate limit exceeded",
            response=Mock(status_code=429),
            body=None
        )

        client = LLMClient(api_key="test_key")
        with pytest.raises(LLMClientError) as exc_info:
            client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])

        error = exc_info.value.error
        assert error.code == "RATE_LIMIT_ERROR"
        assert "Rate limit exceeded" in error.message
        assert error.details["retry_after"] == 60
        assert error.details["model"] == MODEL
        assert isinstance(error.details["latency_ms"], int)

    def test_generate_handles_authentication_error(self, mock_groq):
        """Test that authentication errors are handled properly."""
        mock_groq.chat.completions.create.side_effect = AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        )

        client = LLMClient(api_key="test_key")
        with pytest.raises(LLMClientError) as exc_info:
            client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])

        error = exc_info.value.error
        assert error.code == "AUTHENTICATION_ERROR"
        assert "Authentication failed" in error.message

    def test_generate_handles_timeout_error(self, mock_groq):
        """Test that timeout errors are handled properly."""
        mock_groq.chat.completions.create.side_effect = APITimeoutError(request=Mock())

        client = LLMClient(api_key="test_key")
        with pytest.raises(LLMClientError) as exc_info:
            client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])

        error = exc_info.value.error
        assert error.code == "TIMEOUT_ERROR"
        assert "timed out" in error.message

    def test_generate_handles_generic_api_error(self, mock_groq):
        """Test that generic API errors are handled properly."""
        mock_groq.chat.completions.create.side_effect = APIError(
            message="Service unavailable",
            request=Mock(),
            body=None
        )

        client = LLMClient(api_key="test_key")
        with pytest.raises(LLMClientError) as exc_info:
            client.generate(model=MODEL, messages=[ContextMessage(Role.USER, "Hi")])

        error = exc_info.value.error
        assert error.code == "API_ERROR"
        assert "Groq API error" in error.message

    def test_ping_success(self, mock_groq):
        assert LLMClient(api_key="test_key").ping() is True
        mock_groq.models.list.assert_called_once()

    def test_ping_failure(self, mock_groq):
        mock_groq.models.list.side_effect = Exception("connection refused")

        with pytest.raises(LLMClientError) as exc_info:
            LLMClient(api_key="test_key").ping()

        assert exc_info.value.error.code == "API_UNREACHABLE"
        assert "connection refused" in exc_info.value.error.message


class TestPromptBuilders:
    """Test suite for prompt builders."""

    def test_system_prompt_plain_chat(self):
        prompt = LLMClient.build_system_prompt()
        assert "tutor" in prompt
        assert "learning path" not in prompt

    def test_system_prompt_learning_path(self):
        prompt = LLMClient.build_system_prompt(generate_learning_path=True)
        assert "learning path" in prompt
        assert "Step N: Title" in prompt

    @pytest.mark.parametrize("step_type,phrase", [
        ("prerequisite", "prerequisite step"),
        ("core", "core concept"),
        ("practice", "practice/project step"),
        ("advanced", "advanced concept"),
    ])
    def test_explain_step_prompt_by_type(self, step_type, phrase):
        prompt = LLMClient.build_explain_step_prompt("Learn git", step_type)

        assert phrase in prompt
        assert '"Learn git"' in prompt

    def test_explain_step_prompt_default(self):
        prompt = LLMClient.build_explain_step_prompt("Learn git", None)
        assert prompt.startswith('Explain this learning step in detail: "Learn git"')
