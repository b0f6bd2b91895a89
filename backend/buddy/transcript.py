"""Chat/transcript state: ordered turns plus relationship stats"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .history import ConversationStore, SavedChat, SavedStats, make_preview
from .metadata import Stats, extract_metadata

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text}


class Conversation:
    """Append-only turn log.

    Every change to the turn count or the stats is written through to the
    store once the conversation holds at least one turn.
    """

    def __init__(self, store: Optional[ConversationStore] = None):
        self.store = store
        self.id: Optional[str] = None
        self.turns: List[Turn] = []
        self.stats = Stats()

    def append_exchange(self, user_text: str, model_text: str) -> Tuple[Turn, Turn]:
        """Record a completed turn; the metadata block is stripped from the model text."""
        visible, stats = extract_metadata(model_text.strip(), self.stats)
        user_turn = Turn(Role.USER, user_text.strip())
        model_turn = Turn(Role.MODEL, visible)
        self.turns.extend((user_turn, model_turn))
        self.stats = stats
        self._changed()
        return user_turn, model_turn

    def append(self, turn: Turn) -> None:
        self.turns.append(turn)
        self._changed()

    def apply_model_reply(self, raw_reply: str) -> Turn:
        visible, self.stats = extract_metadata(raw_reply.strip(), self.stats)
        turn = Turn(Role.MODEL, visible)
        self.append(turn)
        return turn

    def reset(self) -> None:
        self.id = None
        self.turns = []
        self.stats = Stats()

    def load(self, chat: SavedChat) -> None:
        """Replace the current state with a saved chat; ValueError on an unknown role."""
        turns = [Turn(Role(m.role), m.text) for m in chat.messages]
        self.id = chat.id
        self.turns = turns
        self.stats = Stats.from_dict(chat.stats.model_dump() if chat.stats else None)

    def to_saved(self) -> SavedChat:
        messages = [t.as_dict() for t in self.turns]
        return SavedChat(
            id=self.id or str(int(time.time() * 1000)),
            timestamp=int(time.time() * 1000),
            preview=make_preview(messages),
            messages=messages,
            stats=SavedStats(**self.stats.as_dict()),
        )

    def snapshot(self) -> Dict[str, Any]:
        return {"id": self.id, "turns": [t.as_dict() for t in self.turns], "stats": self.stats.as_dict()}

    def _changed(self) -> None:
        if self.store is not None and self.turns:
            saved = self.to_saved()
            self.id = saved.id
            try:
                self.store.save(saved)
            except OSError as e:
                logger.error(f"Failed to persist conversation {saved.id}: {e}")
