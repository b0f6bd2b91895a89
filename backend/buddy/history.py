"""Saved conversations, kept in a small JSON key-value file"""
from __future__ import annotations
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

HISTORY_KEY = "hey_buddy_history_v2"
PREVIEW_CHARS = 40


class SavedMessage(BaseModel):
    role: str
    text: str


class SavedStats(BaseModel):
    bond: int = 10
    level: int = 5
    mood: str = "NEUTRAL"


class SavedChat(BaseModel):
    id: str
    timestamp: int
    preview: str
    messages: List[SavedMessage] = Field(default_factory=list)
    stats: Optional[SavedStats] = None


def make_preview(messages: List[Dict[str, Any]]) -> str:
    for m in messages:
        if m.get("role") == "user" and m.get("text"):
            return m["text"][:PREVIEW_CHARS] + "..."
    return "New Talk"


class ConversationStore:
    """Ordered list of SavedChat under one key, newest first."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"History file {self.path} unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp, self.path)

    def list(self) -> List[SavedChat]:
        raw = self._read_all().get(HISTORY_KEY, [])
        chats = []
        for item in raw:
            try:
                chats.append(SavedChat.model_validate(item))
            except ValueError as e:
                logger.warning(f"Skipping malformed saved chat: {e}")
        return chats

    def get(self, chat_id: str) -> Optional[SavedChat]:
        for chat in self.list():
            if chat.id == chat_id:
                return chat
        return None

    def save(self, chat: SavedChat) -> List[SavedChat]:
        """Replace the entry with the same id in place, or prepend a new one."""
        chats = self.list()
        for i, existing in enumerate(chats):
            if existing.id == chat.id:
                chats[i] = chat
                break
        else:
            chats.insert(0, chat)
        self._store(chats)
        return chats

    def delete(self, chat_id: str) -> bool:
        chats = self.list()
        kept = [c for c in chats if c.id != chat_id]
        if len(kept) == len(chats):
            return False
        self._store(kept)
        return True

    def _store(self, chats: List[SavedChat]) -> None:
        data = self._read_all()
        data[HISTORY_KEY] = [c.model_dump() for c in chats]
        self._write_all(data)
