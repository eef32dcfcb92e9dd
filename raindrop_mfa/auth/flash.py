"""
One-shot flash messages for the MFA pages.

Messages are kept per user for a few minutes and removed when read.
"""
import json
import logging
from typing import Dict, List

from ..database.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

FLASH_TTL = 300


class FlashBag:
    """Flash messages of one user."""

    def __init__(self, store: KeyValueStore, user_id: str):
        self.store = store
        self.key = f"flash:{user_id}"

    def _load(self) -> List[Dict[str, str]]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            messages = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping unreadable flash messages at {self.key}")
            return []
        return messages if isinstance(messages, list) else []

    def add(self, level: str, message: str) -> None:
        messages = self._load()
        messages.append({"type": level, "message": message})
        self.store.set(self.key, json.dumps(messages), ttl=FLASH_TTL)

    def info(self, message: str) -> None:
        self.add("info", message)

    def warning(self, message: str) -> None:
        self.add("warning", message)

    def error(self, message: str) -> None:
        self.add("error", message)

    def pop_all(self) -> List[Dict[str, str]]:
        messages = self._load()
        if messages:
            self.store.delete(self.key)
        return messages


class FlashStore:
    """Factory for per-user FlashBags."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def for_user(self, user_id: str) -> FlashBag:
        return FlashBag(self.store, str(user_id))
