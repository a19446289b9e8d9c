"""Services for LearnPath Chat."""
from .token_estimator import estimate_token_count, content_to_text
from .context_window import ContextWindowBuilder, ContextConfig, ContextMessage, ContextWindow
from .step_extractor import StepExtractor
from .database import DatabaseHandle
from .conversation_manager import ConversationManager
from .learning_progress import LearningProgressManager, StepNotFoundError
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .auth import SupabaseAuthVerifier, AuthContext, AuthVerificationError, AuthConfigurationError

__all__ = ['estimate_token_count', 'content_to_text', 'ContextWindowBuilder', 'ContextConfig', 'ContextMessage', 'ContextWindow', 'StepExtractor', 'DatabaseHandle', 'ConversationManager', 'LearningProgressManager', 'StepNotFoundError', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'SupabaseAuthVerifier', 'AuthContext', 'AuthVerificationError', 'AuthConfigurationError']
