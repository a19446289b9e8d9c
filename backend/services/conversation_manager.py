"""Conversation manager for persisted chat history."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import CHAT_LIST_LIMIT
from models.conversation import Conversation, ConversationSummary, Role, Turn
from services.database import DatabaseHandle

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
UNTITLED = "Untitled Chat"


class ConversationManager:
    """Manages conversation storage and retrieval using Supabase PostgreSQL."""

    def __init__(self, database: DatabaseHandle):
        """
        Initialize the conversation manager.

        Args:
            database: Open database handle owned by the application
        """
        self.database = database
        logger.info("ConversationManager initialized with Supabase")

    @property
    def client(self):
        return self.database.client

    def create_conversation(
        self,
        owner_id: str,
        owner_email: str = "",
        title: Optional[str] = None,
        turns: Optional[List[Turn]] = None
    ) -> Conversation:
        """
        Create a new conversation, optionally seeded with its first turns.

        Args:
            owner_id: Identity of the user who owns the conversation
            owner_email: Email of the owner, for display
            title: Conversation title (defaults to "New Chat")
            turns: Initial turns to store

        Returns:
            The created Conversation
        """
        conversation_id = self._generate_conversation_id()
        created_at = datetime.now(timezone.utc)
        title = title or DEFAULT_TITLE

        try:
            self.client.table("conversations").insert({
                "conversation_id": conversation_id,
                "owner_id": owner_id,
                "owner_email": owner_email,
                "title": title,
                "created_at": created_at.isoformat(),
                "updated_at": created_at.isoformat()
            }).execute()

            logger.info(f"Created new conversation: {conversation_id}")
        except Exception as e:
            logger.error(f"Error creating conversation: {e}")
            raise

        conversation = Conversation(
            conversation_id=conversation_id,
            owner_id=owner_id,
            owner_email=owner_email,
            title=title,
            created_at=created_at,
            updated_at=created_at,
            turns=[]
        )
        if turns:
            try:
                conversation.turns = self.add_turns(conversation_id, turns)
            except Exception:
                # Don't leave an empty chat behind
                self._discard_conversation(conversation_id)
                raise
        return conversation

    def get_conversation(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        """
        Retrieve a conversation with its turns.

        Args:
            conversation_id: ID of the conversation
            owner_id: Identity of the caller; other users' conversations are invisible

        Returns:
            Conversation, or None if it does not exist for this owner
        """
        try:
            result = (
                self.client.table("conversations")
                .select("*")
                .eq("conversation_id", conversation_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error retrieving conversation {conversation_id}: {e}")
            raise

        if not result.data:
            logger.info(f"Conversation {conversation_id} not found for owner {owner_id}")
            return None

        conv_data = result.data[0]
        turns = self._get_turns(conversation_id)

        logger.info(f"Retrieved conversation: {conversation_id} with {len(turns)} turns")
        return Conversation(
            conversation_id=conv_data["conversation_id"],
            owner_id=conv_data["owner_id"],
            owner_email=conv_data.get("owner_email") or "",
            title=conv_data.get("title") or UNTITLED,
            created_at=self._parse_timestamp(conv_data["created_at"]),
            updated_at=self._parse_timestamp(conv_data.get("updated_at") or conv_data["created_at"]),
            turns=turns
        )

    def list_conversations(self, owner_id: str, limit: int = CHAT_LIST_LIMIT) -> List[ConversationSummary]:
        """
        List a user's conversations, most recently updated first.

        Args:
            owner_id: Identity of the caller
            limit: Maximum number of conversations returned

        Returns:
            Conversation summaries without turns
        """
        try:
            result = (
                self.client.table("conversations")
                .select("conversation_id, title, created_at, updated_at")
                .eq("owner_id", owner_id)
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error listing conversations for owner {owner_id}: {e}")
            raise

        summaries = [
            ConversationSummary(
                conversation_id=row["conversation_id"],
                title=row.get("title") or UNTITLED,
                created_at=self._parse_timestamp(row["created_at"]),
                updated_at=self._parse_timestamp(row.get("updated_at") or row["created_at"])
            )
            for row in (result.data or [])
        ]
        logger.debug(f"Listed {len(summaries)} conversations for owner {owner_id}")
        return summaries

    def add_turns(self, conversation_id: str, turns: List[Turn], title: Optional[str] = None) -> List[Turn]:
        """
        Append turns to a conversation's history.

        Turns are only ever appended; the conversation's updated_at is bumped
        and its title replaced when one is given. History is read back ordered
        by timestamp alone, so timestamps within a batch are made strictly
        increasing.

        Args:
            conversation_id: ID of the conversation
            turns: Turns to append, oldest first
            title: Optional new title

        Returns:
            The turns as stored
        """
        if not turns:
            return []

        stored = self._strictly_increasing(turns)

        try:
            self.client.table("turns").insert([
                {
                    "conversation_id": conversation_id,
                    "role": turn.role.value,
                    "content": turn.content,
                    "timestamp": turn.timestamp.isoformat()
                }
                for turn in stored
            ]).execute()

            update: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc).isoformat()}
            if title:
                update["title"] = title
            self.client.table("conversations").update(update).eq("conversation_id", conversation_id).execute()

            logger.info(f"Added {len(stored)} turn(s) to conversation {conversation_id}")
        except Exception as e:
            logger.error(f"Error adding turns to conversation {conversation_id}: {e}")
            raise

        return stored

    def delete_conversation(self, conversation_id: str, owner_id: str) -> bool:
        """
        Delete a conversation and its turns.

        Args:
            conversation_id: ID of the conversation
            owner_id: Identity of the caller

        Returns:
            True if a conversation was deleted, False if none matched
        """
        try:
            owned = (
                self.client.table("conversations")
                .select("conversation_id")
                .eq("conversation_id", conversation_id)
                .eq("owner_id", owner_id)
                .execute()
            )
            if not owned.data:
                return False

            # Turns before the chat row, so a failure leaves the chat readable
            self.client.table("turns").delete().eq("conversation_id", conversation_id).execute()
            (
                self.client.table("conversations")
                .delete()
                .eq("conversation_id", conversation_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error deleting conversation {conversation_id}: {e}")
            raise

        logger.info(f"Deleted conversation {conversation_id}")
        return True

    def _get_turns(self, conversation_id: str) -> List[Turn]:
        """
        Retrieve turns for a conversation.

        Args:
            conversation_id: ID of the conversation

        Returns:
            List of Turn objects ordered by timestamp
        """
        result = (
            self.client.table("turns")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("timestamp", desc=False)
            .execute()
        )

        return [
            Turn(
                role=Role.normalize(t["role"]),
                content=t["content"],
                timestamp=self._parse_timestamp(t["timestamp"])
            )
            for t in (result.data or [])
        ]

    def _discard_conversation(self, conversation_id: str) -> None:
        try:
            self.client.table("conversations").delete().eq("conversation_id", conversation_id).execute()
            self.client.table("turns").delete().eq("conversation_id", conversation_id).execute()
            logger.info(f"Discarded conversation {conversation_id} after failed first write")
        except Exception as e:
            logger.error(f"Error discarding conversation {conversation_id}: {e}")

    @staticmethod
    def _strictly_increasing(turns: List[Turn]) -> List[Turn]:
        """Normalize roles and nudge tied or out-of-order timestamps forward by 1µs."""
        stored: List[Turn] = []
        for turn in turns:
            timestamp = turn.timestamp
            if stored and timestamp <= stored[-1].timestamp:
                timestamp = stored[-1].timestamp + timedelta(microseconds=1)
            stored.append(Turn(role=Role.normalize(turn.role), content=turn.content, timestamp=timestamp))
        return stored

    def _generate_conversation_id(self) -> str:
        """
        Generate a unique conversation ID.

        Returns:
            Unique conversation ID string
        """
        return f"conv_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _parse_timestamp(timestamp_str: str) -> datetime:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return timestamps with varying microsecond precision,
        which Python's fromisoformat() can't always handle. This method
        normalizes the fractional part to six digits.

        Args:
            timestamp_str: Timestamp string from Supabase

        Returns:
            datetime object
        """
        timestamp_str = timestamp_str.replace("Z", "+00:00")

        # Format: 2026-02-21T02:08:26.18976+00:00
        if "." in timestamp_str:
            base, fraction = timestamp_str.split(".", 1)
            tz = ""
            for sign in ("+", "-"):
                if sign in fraction:
                    fraction, tz = fraction.split(sign, 1)
                    tz = sign + tz
                    break
            timestamp_str = f"{base}.{fraction[:6].ljust(6, '0')}{tz}"

        return datetime.fromisoformat(timestamp_str)
