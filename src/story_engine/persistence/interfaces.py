from __future__ import annotations

from typing import Protocol

from ..core.types import Session


class SessionStore(Protocol):
    def get(self, session_id: str) -> Session | None: ...
    def save(self, session: Session) -> None: ...


class SessionRepo(Protocol):
    def get(self, session_id: str): ...
    def add(self, session_id: str, values: dict[str, object]): ...
    def cas_apply_update(
        self,
        session_id: str,
        expected_row_version: int,
        values: dict[str, object],
    ) -> bool: ...


class EventRepo(Protocol):
    def list_for_session(self, session_id: str): ...
    def append(
        self,
        session_id: str,
        position: int,
        event_type: str,
        description: str,
        occurred_at: str | None,
        dice_json: str = "[]",
    ): ...
    def delete_for_session(self, session_id: str) -> int: ...


class CheckpointRepo(Protocol):
    def list_for_session(self, session_id: str): ...
    def replace_all(self, session_id: str, rows: list[dict[str, object]]) -> None: ...


class SummaryRepo(Protocol):
    def list_for_session(self, session_id: str): ...
    def replace_all(self, session_id: str, payloads: list[str]) -> None: ...


class UnitOfWork(Protocol):
    sessions: SessionRepo
    events: EventRepo
    checkpoints: CheckpointRepo
    summaries: SummaryRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
