"""JSON file persistence for conversation sessions.

One file per session, ``session_<id>.json``, written copy-on-write: the new
content goes to a temp file that is then renamed over the old one.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from castor.errors import SessionError
from castor.memory.session import ConversationMemory

if TYPE_CHECKING:
    import os

logger = logging.getLogger(__name__)

_PREFIX = "session_"
_SUFFIX = ".json"


class JSONSessionStore:
    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or ".." in session_id:
            raise SessionError(f"invalid session id: {session_id!r}")
        return self._dir / f"{_PREFIX}{session_id}{_SUFFIX}"

    def save(self, session: ConversationMemory) -> Path:
        """Persist *session* atomically via temp file rename."""
        path = self.path_for(session.session_id)
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(path)
        return path

    def load(self, session_id: str) -> ConversationMemory:
        path = self.path_for(session_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise SessionError(
                f"session '{session_id}' not found",
                hint="List stored sessions with MemoryManager.list_sessions().",
            ) from e
        except (OSError, json.JSONDecodeError) as e:
            raise SessionError(f"failed to read session '{session_id}': {e}") from e
        if not isinstance(data, dict):
            raise SessionError(f"session file for '{session_id}' is not a JSON object")
        return ConversationMemory.from_dict(data)

    def delete(self, session_id: str) -> bool:
        """Remove a stored session; returns False if it did not exist."""
        try:
            self.path_for(session_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def session_ids(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return sorted(
            p.name[len(_PREFIX) : -len(_SUFFIX)]
            for p in self._dir.glob(f"{_PREFIX}*{_SUFFIX}")
        )

    def load_all(self) -> list[ConversationMemory]:
        """Every readable session; unreadable files are skipped with a warning."""
        sessions = []
        for session_id in self.session_ids():
            try:
                sessions.append(self.load(session_id))
            except SessionError as e:
                logger.warning("Skipping unreadable session %s: %s", session_id, e)
        return sessions
