"""Learning path data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

STEP_TYPES = ("prerequisite", "core", "practice", "advanced")


@dataclass
class LearningStep:
    """A step extracted from generated text."""
    step_id: str  # Format: "step-{n}" or "auto-{n}"
    title: str
    description: str
    step_type: str  # One of STEP_TYPES


@dataclass
class ProgressStep:
    """Completion state of one step in a tracked learning path."""
    step_id: str
    title: str
    completed: bool = False
    completed_at: Optional[datetime] = None


@dataclass
class LearningProgress:
    """A learning path tracked for a conversation."""
    progress_id: str
    owner_id: str
    conversation_id: str
    title: str
    steps: List[ProgressStep] = field(default_factory=list)
    total_steps: int = 0
    completed_steps: int = 0
    is_completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
