from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from .models import StoryCheckpoint, StoryEvent, StorySession, StorySummary


class SessionRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id: str) -> StorySession | None:
        return self.session.get(StorySession, session_id)

    def add(self, session_id: str, values: dict[str, object]) -> StorySession:
        row = StorySession(id=session_id, row_version=1, **values)
        self.session.add(row)
        self.session.flush()
        return row

    def cas_apply_update(
        self,
        session_id: str,
        expected_row_version: int,
        values: dict[str, object],
    ) -> bool:
        update_values = dict(values)
        update_values["row_version"] = StorySession.row_version + 1
        update_values["updated_at"] = datetime.now(timezone.utc).replace(tzinfo=None)
        stmt = (
            update(StorySession)
            .where(StorySession.id == session_id)
            .where(StorySession.row_version == expected_row_version)
            .values(**update_values)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1


class EventRepo:
    def __init__(self, session: Session):
        self.session = session

    def list_for_session(self, session_id: str) -> list[StoryEvent]:
        stmt = (
            select(StoryEvent)
            .where(StoryEvent.session_id == session_id)
            .order_by(StoryEvent.position.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def append(
        self,
        session_id: str,
        position: int,
        event_type: str,
        description: str,
        occurred_at: str | None,
        dice_json: str = "[]",
    ) -> StoryEvent:
        row = StoryEvent(
            session_id=session_id,
            position=position,
            type=event_type,
            description=description,
            occurred_at=occurred_at,
            dice_json=dice_json,
        )
        self.session.add(row)
        return row

    def delete_for_session(self, session_id: str) -> int:
        stmt = delete(StoryEvent).where(StoryEvent.session_id == session_id)
        count = self.session.execute(stmt).rowcount or 0
        self.session.flush()
        return count


class CheckpointRepo:
    def __init__(self, session: Session):
        self.session = session

    def list_for_session(self, session_id: str) -> list[StoryCheckpoint]:
        stmt = (
            select(StoryCheckpoint)
            .where(StoryCheckpoint.session_id == session_id)
            .order_by(StoryCheckpoint.position.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def replace_all(self, session_id: str, rows: list[dict[str, object]]) -> None:
        self.session.execute(delete(StoryCheckpoint).where(StoryCheckpoint.session_id == session_id))
        self.session.flush()
        for position, values in enumerate(rows):
            self.session.add(StoryCheckpoint(session_id=session_id, position=position, **values))


class SummaryRepo:
    def __init__(self, session: Session):
        self.session = session

    def list_for_session(self, session_id: str) -> list[StorySummary]:
        stmt = (
            select(StorySummary)
            .where(StorySummary.session_id == session_id)
            .order_by(StorySummary.position.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def replace_all(self, session_id: str, payloads: list[str]) -> None:
        self.session.execute(delete(StorySummary).where(StorySummary.session_id == session_id))
        self.session.flush()
        for position, payload in enumerate(payloads):
            self.session.add(StorySummary(session_id=session_id, position=position, payload_json=payload))
