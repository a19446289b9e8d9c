"""Main entry point for LearnPath Chat API."""
import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import CHAT_MODEL, CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, MAX_OUTPUT_TOKENS, PORT
from logger import setup_logging
from models.api import (
    ChatDetail, ChatListResponse, ChatResponse, ChatSummary, DeleteResponse, ExplainStepRequest,
    ExplainStepResponse, GenerateMetadata, GenerateRequest, GenerateResponse, LearningProgressListResponse,
    LearningProgressOut, LearningProgressResponse, LearningStepOut, MessageOut, ProgressStepOut,
    SaveChatRequest, SaveProgressRequest, TokenUsage, UpdateStepRequest
)
from models.conversation import Conversation, Role, Turn
from models.learning import LearningProgress
from services.auth import AuthConfigurationError, AuthContext, AuthVerificationError
from services.container import AppServices, build_services
from services.context_window import ContextMessage
from services.formatting import format_explanation
from services.learning_progress import StepNotFoundError
from services.llm_client import LLMClient, LLMClientError

# Initialize logging
logger = logging.getLogger(__name__)

CHAT_ID_PATTERN = re.compile(r"^conv_[0-9a-f]{12}$")
PROGRESS_ID_PATTERN = re.compile(r"^lp_[0-9a-f]{12}$")
TITLE_LENGTH = 50
EXPLANATION_MAX_TOKENS = 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open services on startup and release them on shutdown."""
    if LOG_FORMAT == "json":
        setup_logging(LOG_LEVEL)

    services = build_services()
    app.state.services = services
    try:
        yield
    finally:
        services.close()
        app.state.services = None


# Initialize FastAPI app
app = FastAPI(
    title="LearnPath Chat",
    description="Authenticated tutoring chat with persisted history and learning path tracking",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> AppServices:
    """Resolve the services owned by the running application."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialized")
    return services


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    services: AppServices = Depends(get_services)
) -> AuthContext:
    """Authenticate the caller from the bearer token."""
    try:
        return services.auth_verifier.verify(authorization)
    except AuthVerificationError as e:
        raise HTTPException(status_code=401, detail={"error": "Not authenticated", "details": str(e)})
    except AuthConfigurationError as e:
        logger.error(f"Auth is not configured: {e}")
        raise HTTPException(status_code=500, detail="Authentication is not configured")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "LearnPath Chat API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "learnpath-chat",
        "version": "1.0.0"
    }


@app.get("/api/ping")
def ping_endpoint(services: AppServices = Depends(get_services)):
    """Check that the generation backend is reachable."""
    try:
        services.llm_client.ping()
    except LLMClientError as e:
        logger.error(f"Error connecting to generation backend: {e.error.message}")
        return JSONResponse(status_code=500, content={"status": "error", "message": e.error.message})

    return {"status": "success", "message": "Backend connection successful"}


@app.get("/api/protected")
def protected_endpoint(user: AuthContext = Depends(get_current_user)):
    """Return the authenticated user."""
    return {"protected": True, "user": {"id": user.user_id, "email": user.email}}


# Chat history

@app.get("/api/chat", response_model=ChatListResponse)
def list_chats_endpoint(
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> ChatListResponse:
    """List the caller's chats, most recent first."""
    try:
        summaries = services.conversations.list_conversations(user.user_id)
    except Exception as e:
        logger.error(f"Error fetching chats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch chats")

    logger.info(f"Returning {len(summaries)} chats for user {user.user_id}")
    return ChatListResponse(chats=[
        ChatSummary(id=s.conversation_id, title=s.title, created_at=s.created_at, updated_at=s.updated_at)
        for s in summaries
    ])


@app.post("/api/chat", response_model=ChatResponse)
def save_chat_endpoint(
    request: SaveChatRequest,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> ChatResponse:
    """Append a message to an existing chat, or start a new chat with it."""
    if not request.message.content.strip():
        raise HTTPException(status_code=400, detail="Message content cannot be empty")

    turn = Turn(
        role=Role.normalize(request.message.role),
        content=request.message.content,
        timestamp=datetime.now(timezone.utc)
    )

    try:
        if request.chat_id:
            _validate_id(request.chat_id, CHAT_ID_PATTERN, "chat")
            conversation = services.conversations.get_conversation(request.chat_id, user.user_id)
            if conversation is None:
                raise HTTPException(status_code=404, detail="Chat not found or unauthorized")

            services.conversations.add_turns(conversation.conversation_id, [turn], title=request.title)
            conversation = services.conversations.get_conversation(conversation.conversation_id, user.user_id)
        else:
            conversation = services.conversations.create_conversation(
                owner_id=user.user_id,
                owner_email=user.email,
                title=request.title,
                turns=[turn]
            )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error saving chat: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save chat")

    return ChatResponse(chat=_chat_detail(conversation))


@app.get("/api/chat/{chat_id}", response_model=ChatResponse)
def get_chat_endpoint(
    chat_id: str,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> ChatResponse:
    """Return one chat with all of its messages."""
    _validate_id(chat_id, CHAT_ID_PATTERN, "chat")

    try:
        conversation = services.conversations.get_conversation(chat_id, user.user_id)
    except Exception as e:
        logger.error(f"Error fetching chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch chat")

    if conversation is None:
        raise HTTPException(status_code=404, detail="Chat not found or unauthorized")
    return ChatResponse(chat=_chat_detail(conversation))


@app.delete("/api/chat/{chat_id}", response_model=DeleteResponse)
def delete_chat_endpoint(
    chat_id: str,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> DeleteResponse:
    """Delete one chat."""
    _validate_id(chat_id, CHAT_ID_PATTERN, "chat")

    try:
        deleted = services.conversations.delete_conversation(chat_id, user.user_id)
    except Exception as e:
        logger.error(f"Error deleting chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete chat")

    if not deleted:
        raise HTTPException(status_code=404, detail="Chat not found or unauthorized")
    return DeleteResponse(success=True)


# Generation

@app.post("/api/generate", response_model=GenerateResponse)
def generate_endpoint(
    request: GenerateRequest,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> GenerateResponse:
    """
    Generate the model's reply to a new user message.

    1. Load the chat history when chat_id names one of the caller's chats
    2. Build a bounded context window from the history and the new message
    3. Call the model
    4. Extract learning steps and questions from the answer
    5. Store the user message and the answer

    Args:
        request: GenerateRequest with the message and optional chat_id

    Returns:
        GenerateResponse with the answer, annotations and metadata

    Raises:
        HTTPException: For validation errors or API failures
    """
    start_time = time.time()

    try:
        # Step 1: Validate request
        if not request.message or not request.message.strip():
            raise HTTPException(status_code=400, detail="Missing chat message")

        logger.info(f"Processing message: {request.message[:100]}...")

        asked_at = datetime.now(timezone.utc)

        # Step 2: Load history; a store failure only costs us the context
        conversation: Optional[Conversation] = None
        history_unavailable = False
        if request.chat_id:
            try:
                conversation = services.conversations.get_conversation(request.chat_id, user.user_id)
            except Exception as e:
                history_unavailable = True
                logger.error(f"Error retrieving chat history for {request.chat_id}: {e}")

        # Step 3: Build context window
        window = services.context_builder.build_context(conversation, request.message)
        context_tokens = len(services.tokenizer.encode("\n".join(m.content for m in window.messages)))
        logger.info(
            f"Context window: {len(window.messages)} messages, "
            f"estimated_cost={window.total_cost:.1f}, tokens={context_tokens}, dropped={window.dropped_turns}"
        )

        # Step 4: Generate response
        llm_response = services.llm_client.generate(
            model=CHAT_MODEL,
            messages=window.messages,
            max_tokens=MAX_OUTPUT_TOKENS,
            system_prompt=LLMClient.build_system_prompt(request.generate_learning_path)
        )

        # Step 5: Derive structural annotations
        learning_steps = []
        if request.generate_learning_path:
            learning_steps = services.step_extractor.extract_steps(llm_response.text)
        questions = services.step_extractor.detect_questions(llm_response.text)

        # Step 6: Persist the exchange
        if history_unavailable:
            # Ownership of chat_id is unknown; don't split the chat or write into it blind
            logger.warning(f"Exchange not stored: chat {request.chat_id} could not be read")
            chat_id = request.chat_id
        else:
            chat_id = _store_exchange(
                services, user, conversation, request.message, llm_response.text, asked_at
            )

        total_latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Message processed successfully in {total_latency_ms}ms")

        return GenerateResponse(
            answer=llm_response.text,
            chat_id=chat_id,
            is_learning_path=request.generate_learning_path,
            learning_steps=[
                LearningStepOut(id=s.step_id, title=s.title, description=s.description, type=s.step_type)
                for s in learning_steps
            ],
            questions=questions,
            metadata=GenerateMetadata(
                model_used=llm_response.model_used,
                tokens=TokenUsage(input=llm_response.tokens_input, output=llm_response.tokens_output),
                latency_ms=total_latency_ms,
                context_turns=len(window.messages),
                context_cost=window.total_cost,
                context_tokens=context_tokens,
                context_dropped=window.dropped_turns
            )
        )

    except HTTPException:
        raise
    except LLMClientError as e:
        raise _llm_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error processing message: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process request")


@app.post("/api/explain-step", response_model=ExplainStepResponse)
def explain_step_endpoint(
    request: ExplainStepRequest,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> ExplainStepResponse:
    """Explain a single learning step, formatted as HTML."""
    if not request.step_title or not request.step_title.strip():
        raise HTTPException(status_code=400, detail="step_title field is required")

    prompt = LLMClient.build_explain_step_prompt(request.step_title, request.step_type)

    try:
        llm_response = services.llm_client.generate(
            model=CHAT_MODEL,
            messages=[ContextMessage(role=Role.USER, content=prompt)],
            max_tokens=EXPLANATION_MAX_TOKENS
        )
    except LLMClientError as e:
        raise _llm_http_error(e)

    logger.info(f"Explained step {request.step_id or request.step_title!r} for user {user.user_id}")
    return ExplainStepResponse(explanation=format_explanation(llm_response.text))


# Learning progress

@app.get("/api/learning-progress", response_model=LearningProgressListResponse)
def list_learning_paths_endpoint(
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> LearningProgressListResponse:
    """List the caller's learning paths."""
    try:
        paths = services.learning_progress.list_paths(user.user_id)
    except Exception as e:
        logger.error(f"Error fetching learning paths: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch learning paths")

    return LearningProgressListResponse(learning_paths=[_progress_out(p) for p in paths])


@app.post("/api/learning-progress", response_model=LearningProgressResponse)
def save_learning_path_endpoint(
    request: SaveProgressRequest,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> LearningProgressResponse:
    """Start tracking a learning path for a chat, resetting any existing progress."""
    if not request.chat_id.strip() or not request.title.strip():
        raise HTTPException(status_code=400, detail="Invalid request data")

    try:
        path = services.learning_progress.save_path(
            owner_id=user.user_id,
            conversation_id=request.chat_id,
            title=request.title,
            steps=[(step.id, step.title) for step in request.steps]
        )
    except Exception as e:
        logger.error(f"Error creating learning path: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create learning path")

    return LearningProgressResponse(learning_path=_progress_out(path))


@app.get("/api/learning-progress/{progress_id}", response_model=LearningProgressResponse)
def get_learning_path_endpoint(
    progress_id: str,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> LearningProgressResponse:
    """Return one learning path."""
    _validate_id(progress_id, PROGRESS_ID_PATTERN, "learning path")

    try:
        path = services.learning_progress.get_path(progress_id, user.user_id)
    except Exception as e:
        logger.error(f"Error fetching learning path {progress_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch learning path")

    if path is None:
        raise HTTPException(status_code=404, detail="Learning path not found")
    return LearningProgressResponse(learning_path=_progress_out(path))


@app.patch("/api/learning-progress/{progress_id}", response_model=LearningProgressResponse)
def update_learning_step_endpoint(
    progress_id: str,
    request: UpdateStepRequest,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> LearningProgressResponse:
    """Mark a step in a learning path as completed or not."""
    _validate_id(progress_id, PROGRESS_ID_PATTERN, "learning path")
    if not request.step_id:
        raise HTTPException(status_code=400, detail="Step ID is required")

    try:
        path = services.learning_progress.update_step(progress_id, user.user_id, request.step_id, request.completed)
    except StepNotFoundError:
        raise HTTPException(status_code=404, detail="Step not found in learning path")
    except Exception as e:
        logger.error(f"Error updating learning path {progress_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update learning path")

    if path is None:
        raise HTTPException(status_code=404, detail="Learning path not found")
    return LearningProgressResponse(learning_path=_progress_out(path))


@app.delete("/api/learning-progress/{progress_id}", response_model=DeleteResponse)
def delete_learning_path_endpoint(
    progress_id: str,
    user: AuthContext = Depends(get_current_user),
    services: AppServices = Depends(get_services)
) -> DeleteResponse:
    """Delete one learning path."""
    _validate_id(progress_id, PROGRESS_ID_PATTERN, "learning path")

    try:
        deleted = services.learning_progress.delete_path(progress_id, user.user_id)
    except Exception as e:
        logger.error(f"Error deleting learning path {progress_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete learning path")

    if not deleted:
        raise HTTPException(status_code=404, detail="Learning path not found or not authorized")
    return DeleteResponse(success=True, message="Learning path deleted successfully")


def _validate_id(value: str, pattern: re.Pattern, label: str) -> None:
    """Reject malformed IDs before they reach the store."""
    if not pattern.match(value or ""):
        logger.warning(f"Invalid {label} ID rejected: {value!r}")
        raise HTTPException(
            status_code=400,
            detail={"error": f"Invalid {label} ID format", "details": f"Expected to match {pattern.pattern}"}
        )


def _store_exchange(
    services: AppServices,
    user: AuthContext,
    conversation: Optional[Conversation],
    message: str,
    answer: str,
    asked_at: datetime
) -> Optional[str]:
    """
    Persist the user message and the model's answer.

    The answer has already been generated, so a store failure is logged and
    the reply is still returned.

    Args:
        asked_at: When the message arrived; the answer is stamped with the
            time it was stored, which the store keeps strictly later

    Returns:
        ID of the chat the exchange was stored in, or the existing chat's ID
        (None for a new chat) when storing failed
    """
    turns = [
        Turn(role=Role.USER, content=message, timestamp=asked_at),
        Turn(role=Role.MODEL, content=answer, timestamp=datetime.now(timezone.utc))
    ]

    try:
        if conversation is not None:
            services.conversations.add_turns(conversation.conversation_id, turns)
            return conversation.conversation_id

        created = services.conversations.create_conversation(
            owner_id=user.user_id,
            owner_email=user.email,
            title=message.strip()[:TITLE_LENGTH],
            turns=turns
        )
        return created.conversation_id
    except Exception as e:
        logger.error(f"Error storing chat exchange: {e}", exc_info=True)
        return conversation.conversation_id if conversation is not None else None


def _llm_http_error(e: LLMClientError) -> HTTPException:
    logger.error(f"LLM client error: {e.error.message}")
    return HTTPException(
        status_code=503,
        detail={
            "error": {
                "code": e.error.code,
                "message": e.error.message,
                "details": e.error.details
            }
        }
    )


def _chat_detail(conversation: Conversation) -> ChatDetail:
    return ChatDetail(
        id=conversation.conversation_id,
        title=conversation.title,
        messages=[
            MessageOut(role=turn.role.value, content=turn.content, timestamp=turn.timestamp)
            for turn in conversation.turns
        ],
        created_at=conversation.created_at,
        updated_at=conversation.updated_at
    )


def _progress_out(path: LearningProgress) -> LearningProgressOut:
    return LearningProgressOut(
        id=path.progress_id,
        chat_id=path.conversation_id,
        title=path.title,
        steps=[
            ProgressStepOut(
                step_id=step.step_id,
                title=step.title,
                completed=step.completed,
                completed_at=step.completed_at
            )
            for step in path.steps
        ],
        total_steps=path.total_steps,
        completed_steps=path.completed_steps,
        is_completed=path.is_completed,
        created_at=path.created_at,
        updated_at=path.updated_at,
        last_accessed_at=path.last_accessed_at
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting LearnPath Chat API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
