from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime
from typing import Callable

from .errors import CheckpointNotFoundError
from .types import Checkpoint, CheckpointInfo, Session, utcnow

logger = logging.getLogger(__name__)


class CheckpointManager:
    """Named snapshots of the story state a player can return to.

    A snapshot covers events, world state, characters and locations; dice
    history, summaries, chapter, tags, facts and stats are left alone on restore.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._clock = clock or utcnow
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    def create(self, session: Session, label: str | None = None) -> Checkpoint:
        label = (label or "").strip() or f"Checkpoint {len(session.checkpoints) + 1}"
        checkpoint = Checkpoint(
            id=self._id_factory(),
            label=label,
            created_at=self._clock(),
            events=copy.deepcopy(session.events),
            world_state=copy.deepcopy(session.world_state),
            characters=copy.deepcopy(session.characters),
            locations=copy.deepcopy(session.locations),
        )
        session.checkpoints.append(checkpoint)
        logger.info(
            "Created checkpoint %r for session %s at %s events",
            checkpoint.label,
            session.id,
            len(checkpoint.events),
        )
        return checkpoint

    def list(self, session: Session) -> list[CheckpointInfo]:
        return [
            CheckpointInfo(
                id=checkpoint.id,
                label=checkpoint.label,
                created_at=checkpoint.created_at,
                event_count=len(checkpoint.events),
            )
            for checkpoint in session.checkpoints
        ]

    def find(self, session: Session, selector: str | None = None) -> Checkpoint | None:
        """Resolve ``selector`` to a checkpoint.

        No selector picks the most recent one. Otherwise an exact id wins,
        then the newest checkpoint whose label contains the selector
        (case-insensitive). Raises ``CheckpointNotFoundError`` on a miss.
        """
        if not session.checkpoints:
            return None
        raw = (selector or "").strip()
        if not raw:
            return session.checkpoints[-1]

        for checkpoint in session.checkpoints:
            if checkpoint.id == raw:
                return checkpoint
        needle = raw.lower()
        for checkpoint in reversed(session.checkpoints):
            if needle in checkpoint.label.lower():
                return checkpoint
        raise CheckpointNotFoundError(raw, available=self._available(session))

    def restore(self, session: Session, selector: str | None = None) -> Checkpoint | None:
        checkpoint = self.find(session, selector)
        if checkpoint is None:
            return None
        session.events = copy.deepcopy(checkpoint.events)
        session.world_state = copy.deepcopy(checkpoint.world_state)
        session.characters = copy.deepcopy(checkpoint.characters)
        session.locations = copy.deepcopy(checkpoint.locations)
        session.stats.last_active_at = self._clock()
        logger.info(
            "Restored session %s to checkpoint %r (%s events)",
            session.id,
            checkpoint.label,
            len(session.events),
        )
        return checkpoint

    def delete(self, session: Session, selector: str) -> Checkpoint:
        raw = (selector or "").strip()
        if not raw or not session.checkpoints:
            raise CheckpointNotFoundError(raw, available=self._available(session))
        checkpoint = self.find(session, raw)
        session.checkpoints = [cp for cp in session.checkpoints if cp.id != checkpoint.id]
        logger.info("Deleted checkpoint %r from session %s", checkpoint.label, session.id)
        return checkpoint

    def _available(self, session: Session) -> list[dict]:
        return [
            {"id": info.id, "label": info.label, "event_count": info.event_count}
            for info in self.list(session)
        ]
