"""Locally persisted "deleted by me" conversation ids.

Deleting a conversation only hides it for the caller; the server may still
hold the messages. The ids are kept in a JSON file keyed by signed-in user,
and a conversation is evicted (un-hidden) as soon as new activity arrives.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Set, Union

logger = logging.getLogger(__name__)


class DeletedConversations:
    def __init__(self, path: Union[str, Path], user_id: str) -> None:
        self._path = Path(path).expanduser()
        self._user_id = user_id
        self._ids: Set[str] = set(self._read_all().get(user_id, []))

    def _read_all(self) -> Dict[str, List[str]]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[Client] Ignoring unreadable suppression file {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        data = self._read_all()
        data[self._user_id] = sorted(self._ids)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)

    def add(self, conversation_id: str) -> None:
        if conversation_id not in self._ids:
            self._ids.add(conversation_id)
            self._save()

    def evict(self, conversation_id: str) -> bool:
        """Un-hide a conversation; returns True if it was hidden."""
        if conversation_id not in self._ids:
            return False
        self._ids.discard(conversation_id)
        self._save()
        logger.debug(f"[Client] Conversation {conversation_id} un-hidden by new activity")
        return True

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._ids

    def ids(self) -> Set[str]:
        return set(self._ids)
