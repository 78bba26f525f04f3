"""Bounded per-conversation turn history.

One JSON file per conversation under ``history_dir``::

    conv_<conversation_id>.json  ->  [{"user_text", "assistant_text", "timestamp"}, ...]

Only the last ``max_turns`` turns are kept.  Appends are a plain
read-modify-write without locking: fine for one writer per conversation,
racy for concurrent writers to the same id.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .context import DEFAULT_CONVERSATION_ID, sanitize_identifier

logger = logging.getLogger(__name__)

_PREFIX = "conv_"
_SUFFIX = ".json"


@dataclass
class ConversationTurn:
    user_text: str
    assistant_text: str
    timestamp: float = field(default_factory=time.time)


class ConversationHistory:
    """File-backed ring buffer of conversation turns."""

    def __init__(self, cache_dir: Optional[str] = None, max_turns: Optional[int] = None) -> None:
        cfg = load_config()
        self.cache_dir = Path(cache_dir or cfg.history_dir)
        self.max_turns = max(1, int(max_turns if max_turns is not None else cfg.history_max_turns))
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        safe = sanitize_identifier(conversation_id, DEFAULT_CONVERSATION_ID)
        return self.cache_dir / f"{_PREFIX}{safe}{_SUFFIX}"

    def _load(self, path: Path) -> List[ConversationTurn]:
        if not path.is_file():
            return []
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable history file %s, starting fresh: %s", path.name, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("History file %s is not a list, starting fresh", path.name)
            return []

        turns: List[ConversationTurn] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            turns.append(ConversationTurn(
                user_text=str(item.get("user_text", "")),
                assistant_text=str(item.get("assistant_text", "")),
                timestamp=float(item.get("timestamp") or 0.0),
            ))
        return turns

    def get_turns(self, conversation_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """Oldest-first turns, optionally only the last *limit*."""
        turns = self._load(self._path(conversation_id))
        if limit is not None and limit >= 0:
            turns = turns[-limit:] if limit else []
        return turns

    def append(self, conversation_id: str, user_text: str, assistant_text: str) -> ConversationTurn:
        path = self._path(conversation_id)
        turns = self._load(path)
        turn = ConversationTurn(user_text=user_text, assistant_text=assistant_text)
        turns.append(turn)
        turns = turns[-self.max_turns:]

        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump([asdict(t) for t in turns], fh, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
        return turn

    def clear(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if path.is_file():
            path.unlink()
            return True
        return False

    def conversation_ids(self) -> List[str]:
        return sorted(
            p.name[len(_PREFIX):-len(_SUFFIX)]
            for p in self.cache_dir.glob(f"{_PREFIX}*{_SUFFIX}")
        )
