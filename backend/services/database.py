"""Supabase connection handle with an explicit open/close lifecycle."""
import logging
from typing import Optional

from supabase import Client, create_client

from config import SUPABASE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)


class DatabaseHandle:
    """
    Owns the Supabase client used by the stores.

    The application creates one handle at startup, opens it, passes it to the
    stores that need it, and closes it at shutdown. Accessing `client` before
    `open()` or after `close()` raises RuntimeError.
    """

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client: Optional[Client] = None):
        """
        Args:
            url: Supabase project URL (defaults to SUPABASE_URL)
            key: Supabase API key (defaults to SUPABASE_KEY)
            client: Pre-built client, used instead of connecting
        """
        self.url = url or SUPABASE_URL
        self.key = key or SUPABASE_KEY
        self._client: Optional[Client] = client

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Client:
        if self._client is None:
            raise RuntimeError("Database handle is not open")
        return self._client

    def open(self) -> Client:
        """Connect to Supabase if not already connected."""
        if self._client is not None:
            return self._client

        if not self.url or not self.key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

        try:
            self._client = create_client(self.url, self.key)
        except Exception as e:
            logger.error(f"Supabase connection error: {e}", exc_info=True)
            raise

        logger.info("Connected to Supabase")
        return self._client

    def close(self) -> None:
        """Release the client. Safe to call more than once."""
        if self._client is None:
            return

        self._client = None
        logger.info("Supabase connection closed")
