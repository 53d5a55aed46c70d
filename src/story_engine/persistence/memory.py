from __future__ import annotations

import copy
from typing import Any

from ..core.codec import session_from_dict, session_to_dict
from ..core.errors import StaleSessionError
from ..core.types import Session


class InMemorySessionStore:
    """Dict-backed store; ``get`` always hands out a fresh copy.

    Saves are versioned like the SQL store: a session loaded before another
    save landed is rejected with ``StaleSessionError``.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, int] = {}
        self.save_count = 0

    def get(self, session_id: str) -> Session | None:
        row = self._rows.get(session_id)
        if row is None:
            return None
        session = session_from_dict(copy.deepcopy(row))
        session.row_version = self._versions[session_id]
        return session

    def save(self, session: Session) -> None:
        current = self._versions.get(session.id, 0)
        if current != session.row_version:
            raise StaleSessionError(f"session_write_conflict:{session.id}")
        self._rows[session.id] = session_to_dict(session)
        self._versions[session.id] = current + 1
        session.row_version = current + 1
        self.save_count += 1

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._rows
