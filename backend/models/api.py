"""API request and response models."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# Chat history

class MessageIn(BaseModel):
    """A message posted by the client for storage."""
    role: Literal["user", "model", "assistant"] = "user"
    content: str


class SaveChatRequest(BaseModel):
    """Append a message to a chat, or start a new chat when chat_id is absent."""
    chat_id: Optional[str] = None
    message: MessageIn
    title: Optional[str] = None


class MessageOut(BaseModel):
    role: str
    content: str
    timestamp: datetime


class ChatSummary(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime


class ChatDetail(BaseModel):
    id: str
    title: str
    messages: List[MessageOut]
    created_at: datetime
    updated_at: datetime


class ChatListResponse(BaseModel):
    chats: List[ChatSummary]


class ChatResponse(BaseModel):
    chat: ChatDetail


# Generation

class GenerateRequest(BaseModel):
    """Request body for a model reply."""
    message: str
    chat_id: Optional[str] = None
    generate_learning_path: bool = False


class LearningStepOut(BaseModel):
    id: str
    title: str
    description: str
    type: str


class TokenUsage(BaseModel):
    input: int
    output: int


class GenerateMetadata(BaseModel):
    model_used: str
    tokens: TokenUsage
    latency_ms: int
    context_turns: int
    context_cost: float
    context_tokens: int
    context_dropped: int


class GenerateResponse(BaseModel):
    answer: str
    role: str = "model"
    chat_id: Optional[str] = None
    is_learning_path: bool = False
    learning_steps: List[LearningStepOut] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    metadata: GenerateMetadata


class ExplainStepRequest(BaseModel):
    step_id: Optional[str] = None
    step_title: str = ""
    step_type: Optional[str] = None


class ExplainStepResponse(BaseModel):
    explanation: str


# Learning progress

class ProgressStepIn(BaseModel):
    id: str
    title: str


class SaveProgressRequest(BaseModel):
    chat_id: str
    title: str
    steps: List[ProgressStepIn]


class UpdateStepRequest(BaseModel):
    step_id: str = ""
    completed: bool


class ProgressStepOut(BaseModel):
    step_id: str
    title: str
    completed: bool
    completed_at: Optional[datetime] = None


class LearningProgressOut(BaseModel):
    id: str
    chat_id: str
    title: str
    steps: List[ProgressStepOut]
    total_steps: int
    completed_steps: int
    is_completed: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None


class LearningProgressResponse(BaseModel):
    learning_path: LearningProgressOut


class LearningProgressListResponse(BaseModel):
    learning_paths: List[LearningProgressOut]


class DeleteResponse(BaseModel):
    success: bool
    message: Optional[str] = None
