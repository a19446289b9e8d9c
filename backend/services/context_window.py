"""
Context window construction for bounded-size model requests.

Selects the most recent turns of a stored conversation, appends the new user
message, and trims from the oldest end until the estimated cost fits the
budget. The new user message is always kept, even when it alone is over
budget; rejecting an oversized request is the backend's job.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import MAX_CONTEXT_COST, MAX_CONTEXT_TURNS
from models.conversation import Conversation, Role
from services.token_estimator import content_to_text, estimate_token_count

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextMessage:
    """One entry of the turn list sent to the generation backend."""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ContextConfig:
    """
    Limits applied when assembling a context window.

    Attributes:
        max_turns: Most recent stored turns considered before trimming
        max_cost: Budget for the summed estimated cost of the window
    """
    max_turns: int = MAX_CONTEXT_TURNS
    max_cost: float = MAX_CONTEXT_COST


@dataclass
class ContextWindow:
    """Assembled context plus bookkeeping for logs and response metadata."""
    messages: List[ContextMessage] = field(default_factory=list)
    total_cost: float = 0.0
    dropped_turns: int = 0

    def to_payload(self) -> List[Dict[str, str]]:
        return [message.to_dict() for message in self.messages]


class ContextWindowBuilder:
    """
    Stateless builder for the ordered turn list handed to the model.

    Every method is a pure transformation of its inputs, so one instance can
    be shared across concurrent requests.
    """

    def __init__(self, config: Optional[ContextConfig] = None):
        self.config = config or ContextConfig()

    def window_history(
        self,
        conversation: Optional[Conversation],
        max_turns: Optional[int] = None
    ) -> List[ContextMessage]:
        """
        Return the most recent stored turns, oldest first.

        Args:
            conversation: Stored conversation, or None
            max_turns: Override for the configured turn limit

        Returns:
            Up to max_turns messages, without the new user turn
        """
        limit = self.config.max_turns if max_turns is None else max_turns
        if conversation is None or not conversation.turns or limit <= 0:
            return []

        return [
            ContextMessage(role=Role.normalize(turn.role), content=content_to_text(turn.content))
            for turn in conversation.turns[-limit:]
        ]

    def trim_to_budget(
        self,
        messages: List[ContextMessage],
        max_cost: Optional[float] = None
    ) -> List[ContextMessage]:
        """
        Drop the oldest messages until the estimated cost fits the budget.

        Scans once from newest to oldest. The newest message is always kept.
        Each older message is kept only while the running total stays within
        budget; the first one that would overflow ends the scan, so it and
        everything older are dropped even if a smaller, older message would
        still fit.

        Args:
            messages: Candidates oldest first, new user turn last
            max_cost: Override for the configured budget

        Returns:
            Kept messages in chronological order
        """
        return self._trim(messages, self.config.max_cost if max_cost is None else max_cost)[0]

    def build_context(self, conversation: Optional[Conversation], new_message: Any) -> ContextWindow:
        """
        Assemble the context window for a new user message.

        Args:
            conversation: Stored conversation, or None for a fresh chat
            new_message: The user's live message

        Returns:
            ContextWindow whose last message is the new user turn
        """
        new_turn = ContextMessage(role=Role.USER, content=content_to_text(new_message))

        if conversation is None or not conversation.turns:
            return ContextWindow(
                messages=[new_turn],
                total_cost=estimate_token_count(new_turn.content),
                dropped_turns=0
            )

        candidates = self.window_history(conversation)
        candidates.append(new_turn)
        kept, total_cost = self._trim(candidates, self.config.max_cost)

        window = ContextWindow(
            messages=kept,
            total_cost=total_cost,
            dropped_turns=len(candidates) - len(kept)
        )
        logger.debug(
            f"Built context for conversation {conversation.conversation_id}: "
            f"{len(kept)} messages, cost={total_cost:.1f}, dropped={window.dropped_turns}"
        )
        return window

    def _trim(self, messages: List[ContextMessage], max_cost: float):
        total_cost = 0.0
        kept: List[ContextMessage] = []
        newest = len(messages) - 1

        for index in range(newest, -1, -1):
            cost = estimate_token_count(messages[index].content)
            if index != newest and total_cost + cost > max_cost:
                break
            kept.append(messages[index])
            total_cost += cost

        kept.reverse()
        return kept, total_cost
