"""Data models for LearnPath Chat."""
from .conversation import Conversation, ConversationSummary, Role, Turn
from .learning import LearningProgress, LearningStep, ProgressStep, STEP_TYPES

__all__ = [
    "Conversation",
    "ConversationSummary",
    "Role",
    "Turn",
    "LearningProgress",
    "LearningStep",
    "ProgressStep",
    "STEP_TYPES",
]
