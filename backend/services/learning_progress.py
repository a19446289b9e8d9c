"""Learning path progress tracking backed by Supabase."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models.learning import LearningProgress, ProgressStep
from services.conversation_manager import ConversationManager
from services.database import DatabaseHandle

logger = logging.getLogger(__name__)

TABLE = "learning_progress"


class StepNotFoundError(KeyError):
    """Raised when a step id is not part of the learning path."""


class LearningProgressManager:
    """Stores one learning path per (owner, conversation) and tracks step completion."""

    def __init__(self, database: DatabaseHandle):
        self.database = database
        logger.info("LearningProgressManager initialized with Supabase")

    @property
    def client(self):
        return self.database.client

    def list_paths(self, owner_id: str) -> List[LearningProgress]:
        """Return the user's learning paths, most recently updated first."""
        result = (
            self.client.table(TABLE)
            .select("*")
            .eq("owner_id", owner_id)
            .order("updated_at", desc=True)
            .execute()
        )
        return [self._from_row(row) for row in (result.data or [])]

    def save_path(
        self,
        owner_id: str,
        conversation_id: str,
        title: str,
        steps: List[Tuple[str, str]]
    ) -> LearningProgress:
        """
        Create a learning path for a conversation, or reset the existing one.

        Args:
            owner_id: Identity of the caller
            conversation_id: Conversation the path was generated in
            title: Display title
            steps: (step_id, title) pairs in order

        Returns:
            The stored LearningProgress with every step incomplete
        """
        now = datetime.now(timezone.utc).isoformat()
        values: Dict[str, Any] = {
            "title": title,
            "steps": [{"step_id": step_id, "title": step_title, "completed": False, "completed_at": None}
                      for step_id, step_title in steps],
            "total_steps": len(steps),
            "completed_steps": 0,
            "is_completed": False,
            "updated_at": now,
            "last_accessed_at": now
        }

        try:
            existing = (
                self.client.table(TABLE)
                .select("progress_id")
                .eq("owner_id", owner_id)
                .eq("conversation_id", conversation_id)
                .execute()
            )

            if existing.data:
                progress_id = existing.data[0]["progress_id"]
                result = self.client.table(TABLE).update(values).eq("progress_id", progress_id).execute()
                logger.info(f"Reset learning path {progress_id} for conversation {conversation_id}")
            else:
                progress_id = f"lp_{uuid.uuid4().hex[:12]}"
                result = self.client.table(TABLE).insert({
                    "progress_id": progress_id,
                    "owner_id": owner_id,
                    "conversation_id": conversation_id,
                    "created_at": now,
                    **values
                }).execute()
                logger.info(f"Created learning path {progress_id} for conversation {conversation_id}")
        except Exception as e:
            logger.error(f"Error saving learning path for conversation {conversation_id}: {e}")
            raise

        return self._from_row(result.data[0])

    def get_path(self, progress_id: str, owner_id: str) -> Optional[LearningProgress]:
        """Fetch a learning path and record that it was accessed."""
        row = self._get_row(progress_id, owner_id)
        if row is None:
            return None

        row["last_accessed_at"] = datetime.now(timezone.utc).isoformat()
        self.client.table(TABLE).update(
            {"last_accessed_at": row["last_accessed_at"]}
        ).eq("progress_id", progress_id).execute()
        return self._from_row(row)

    def update_step(self, progress_id: str, owner_id: str, step_id: str, completed: bool) -> Optional[LearningProgress]:
        """
        Mark one step complete or incomplete.

        Args:
            progress_id: ID of the learning path
            owner_id: Identity of the caller
            step_id: Step to update
            completed: New completion state

        Returns:
            Updated LearningProgress, or None if the path does not exist

        Raises:
            StepNotFoundError: If step_id is not in the path
        """
        row = self._get_row(progress_id, owner_id)
        if row is None:
            return None

        steps = [dict(step) for step in (row.get("steps") or [])]
        step = next((s for s in steps if s.get("step_id") == step_id), None)
        if step is None:
            raise StepNotFoundError(step_id)

        now = datetime.now(timezone.utc).isoformat()
        completed_steps = row.get("completed_steps") or 0
        was_completed = bool(step.get("completed"))

        if completed and not was_completed:
            step["completed_at"] = now
            completed_steps += 1
        elif not completed and was_completed:
            step["completed_at"] = None
            completed_steps -= 1
        step["completed"] = completed

        update = {
            "steps": steps,
            "completed_steps": completed_steps,
            "is_completed": completed_steps == row.get("total_steps", len(steps)),
            "updated_at": now,
            "last_accessed_at": now
        }
        try:
            self.client.table(TABLE).update(update).eq("progress_id", progress_id).execute()
        except Exception as e:
            logger.error(f"Error updating step {step_id} in learning path {progress_id}: {e}")
            raise

        logger.info(f"Step {step_id} in learning path {progress_id} set to completed={completed}")
        row.update(update)
        return self._from_row(row)

    def delete_path(self, progress_id: str, owner_id: str) -> bool:
        """Delete a learning path. Returns False if none matched."""
        result = (
            self.client.table(TABLE)
            .delete()
            .eq("progress_id", progress_id)
            .eq("owner_id", owner_id)
            .execute()
        )
        deleted = bool(result.data)
        if deleted:
            logger.info(f"Deleted learning path {progress_id}")
        return deleted

    def _get_row(self, progress_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table(TABLE)
            .select("*")
            .eq("progress_id", progress_id)
            .eq("owner_id", owner_id)
            .execute()
        )
        return dict(result.data[0]) if result.data else None

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> LearningProgress:
        parse = ConversationManager._parse_timestamp

        def optional_time(value):
            return parse(value) if value else None

        steps = [
            ProgressStep(
                step_id=s["step_id"],
                title=s["title"],
                completed=bool(s.get("completed")),
                completed_at=optional_time(s.get("completed_at"))
            )
            for s in (row.get("steps") or [])
        ]
        return LearningProgress(
            progress_id=row["progress_id"],
            owner_id=row["owner_id"],
            conversation_id=row["conversation_id"],
            title=row["title"],
            steps=steps,
            total_steps=row.get("total_steps", len(steps)),
            completed_steps=row.get("completed_steps", 0),
            is_completed=bool(row.get("is_completed")),
            created_at=optional_time(row.get("created_at")),
            updated_at=optional_time(row.get("updated_at")),
            last_accessed_at=optional_time(row.get("last_accessed_at"))
        )
