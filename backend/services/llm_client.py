"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Sequence, Union
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY
from services.context_window import ContextMessage

logger = logging.getLogger(__name__)

# Groq speaks OpenAI-style roles
_GROQ_ROLES = {"user": "user", "model": "assistant"}


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class LLMClient:
    """Client for interfacing with Groq API for chat generation."""

    EXPLAIN_STEP_PROMPTS = {
        "prerequisite": (
            'Explain this prerequisite step in a learning journey: "{title}". '
            "Include why this foundational knowledge is important, how to acquire it, "
            "and 2-3 specific resources (like documentation, tutorials or books) that would help. "
            "Keep the explanation under 150 words and format with bullet points for key concepts."
        ),
        "core": (
            'Explain this core concept in depth: "{title}". '
            "Provide a clear explanation of what this involves, the key principles to understand, "
            "common challenges learners face, and practical ways to master it. "
            "Include 1-2 example resources that provide the best explanations of this concept. "
            "Keep the explanation under 150 words and highlight important terms."
        ),
        "practice": (
            'Explain this practice/project step: "{title}". '
            "Describe what skills this practice will develop, how to approach it step by step, "
            "common pitfalls to avoid, and how to know when you've mastered it. "
            "Suggest 1-2 specific project ideas that would help implement this knowledge. "
            "Keep the explanation under 150 words and be practical."
        ),
        "advanced": (
            'Explain this advanced concept: "{title}". '
            "Detail why this is considered advanced, what prerequisites are needed, "
            "how it builds on earlier knowledge, and the specific benefits of mastering it. "
            "Mention 1-2 real-world applications where this is essential. "
            "Keep the explanation under 150 words and highlight what makes this topic powerful."
        ),
    }

    DEFAULT_EXPLAIN_STEP_PROMPT = (
        'Explain this learning step in detail: "{title}". '
        "Include what it involves, why it's important, how to approach learning it, "
        "and 1-2 recommended resources. "
        "Keep the explanation under 150 words and be specific and practical."
    )

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.client = Groq(api_key=self.api_key)
        logger.info("LLMClient initialized successfully")

    def generate(
        self,
        model: str,
        messages: Sequence[Union[ContextMessage, Dict[str, str]]],
        max_tokens: int = 1024,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """
        Generate a reply to an ordered turn list using Groq API.

        Args:
            model: Groq model name
            messages: Context turns oldest first, the new user turn last
            max_tokens: Maximum tokens to generate
            system_prompt: Optional instruction placed before the turns

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        start_time = time.time()
        payload = self._to_groq_messages(messages, system_prompt)

        try:
            logger.debug(f"Generating response with model: {model}, messages={len(payload)}")

            response = self.client.chat.completions.create(
                model=model,
                messages=payload,
                max_tokens=max_tokens,
                temperature=0.7
            )

            latency_ms = int((time.time() - start_time) * 1000)
            text = response.choices[0].message.content or ""
            tokens_input = response.usage.prompt_tokens
            tokens_output = response.usage.completion_tokens

            logger.info(
                f"Generated response: model={model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=model
            )

        except RateLimitError as e:
            raise self._error(
                "RATE_LIMIT_ERROR", "Rate limit exceeded. Please try again in a few moments.",
                model, start_time, e, retry_after=60
            )
        except AuthenticationError as e:
            raise self._error(
                "AUTHENTICATION_ERROR", "Authentication failed. Please check your API key.",
                model, start_time, e
            )
        except APITimeoutError as e:
            raise self._error("TIMEOUT_ERROR", "Request timed out. Please try again.", model, start_time, e)
        except APIError as e:
            raise self._error("API_ERROR", f"Groq API error: {str(e)}", model, start_time, e)
        except Exception as e:
            raise self._error(
                "UNKNOWN_ERROR", f"Unexpected error during generation: {str(e)}",
                model, start_time, e, error_type=type(e).__name__
            )

    def ping(self) -> bool:
        """
        Check that the Groq API is reachable with the configured key.

        Raises:
            LLMClientError: If the API cannot be reached
        """
        start_time = time.time()
        try:
            self.client.models.list()
        except Exception as e:
            raise self._error("API_UNREACHABLE", f"Groq API unreachable: {str(e)}", None, start_time, e)

        logger.debug(f"Groq API reachable in {int((time.time() - start_time) * 1000)}ms")
        return True

    @staticmethod
    def build_system_prompt(generate_learning_path: bool = False) -> str:
        """
        Build the system instruction for a chat request.

        Args:
            generate_learning_path: Ask for a structured, step-by-step learning path

        Returns:
            System prompt string
        """
        prompt = (
            "You are a friendly tutor helping people learn new technologies. "
            "Answer clearly and concisely, use markdown, and include short code examples when they help."
        )
        if generate_learning_path:
            prompt += """

Respond with a structured learning path for the topic the user asks about:
- Organize it as numbered steps, each on its own line as "Step N: Title"
- Follow each step with a short description of what to learn and why
- Order the steps from prerequisites through core concepts and practice projects to advanced topics
- Suggest one or two resources per step where possible"""
        return prompt

    @classmethod
    def build_explain_step_prompt(cls, step_title: str, step_type: Optional[str] = None) -> str:
        """
        Build the prompt asking for an explanation of one learning step.

        Args:
            step_title: Title of the step
            step_type: prerequisite, core, practice or advanced; anything else gets a generic prompt

        Returns:
            Prompt string
        """
        template = cls.EXPLAIN_STEP_PROMPTS.get(step_type or "", cls.DEFAULT_EXPLAIN_STEP_PROMPT)
        return template.format(title=step_title)

    @staticmethod
    def _to_groq_messages(
        messages: Sequence[Union[ContextMessage, Dict[str, str]]],
        system_prompt: Optional[str]
    ) -> List[Dict[str, str]]:
        payload: List[Dict[str, str]] = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})

        for message in messages:
            entry = message.to_dict() if isinstance(message, ContextMessage) else message
            payload.append({
                "role": _GROQ_ROLES.get(entry["role"], "assistant"),
                "content": entry["content"]
            })
        return payload

    @staticmethod
    def _error(
        code: str,
        message: str,
        model: Optional[str],
        start_time: float,
        original: Exception,
        **extra: Any
    ) -> LLMClientError:
        latency_ms = int((time.time() - start_time) * 1000)
        details: Dict[str, Any] = dict(extra)
        details.update({
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(original)
        })
        error = LLMError(code=code, message=message, details=details)

        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, error={original}",
            exc_info=True,
            extra={"error_code": error.code, "error_details": error.details}
        )
        return LLMClientError(error)
