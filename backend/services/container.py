"""Application service wiring with explicit startup and teardown."""
import logging
from dataclasses import dataclass
from typing import Any

import tiktoken

from config import MAX_CONTEXT_COST, MAX_CONTEXT_TURNS, TOKENIZER_ENCODING
from services.auth import SupabaseAuthVerifier
from services.context_window import ContextConfig, ContextWindowBuilder
from services.conversation_manager import ConversationManager
from services.database import DatabaseHandle
from services.learning_progress import LearningProgressManager
from services.llm_client import LLMClient
from services.step_extractor import StepExtractor

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Every long-lived resource a request handler may use."""
    database: DatabaseHandle
    conversations: ConversationManager
    learning_progress: LearningProgressManager
    llm_client: LLMClient
    context_builder: ContextWindowBuilder
    step_extractor: StepExtractor
    auth_verifier: SupabaseAuthVerifier
    tokenizer: Any

    def close(self) -> None:
        self.database.close()
        logger.info("Services shut down")


def build_services() -> AppServices:
    """Open the database handle and construct all services."""
    logger.info("Initializing LearnPath Chat services...")

    database = DatabaseHandle()
    database.open()

    try:
        # Used only to report a real token count next to the heuristic estimate
        tokenizer = tiktoken.get_encoding(TOKENIZER_ENCODING)
        logger.info(f"Initialized tiktoken encoder ({TOKENIZER_ENCODING})")

        services = AppServices(
            database=database,
            conversations=ConversationManager(database),
            learning_progress=LearningProgressManager(database),
            llm_client=LLMClient(),
            context_builder=ContextWindowBuilder(
                ContextConfig(max_turns=MAX_CONTEXT_TURNS, max_cost=MAX_CONTEXT_COST)
            ),
            step_extractor=StepExtractor(),
            auth_verifier=SupabaseAuthVerifier(),
            tokenizer=tokenizer
        )
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        database.close()
        raise

    logger.info("All services initialized successfully")
    return services
