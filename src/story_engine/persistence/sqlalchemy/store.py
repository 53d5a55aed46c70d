from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session as OrmSession, sessionmaker

from ...core.codec import (
    character_from_dict,
    character_to_dict,
    checkpoint_from_dict,
    checkpoint_to_dict,
    dice_from_dict,
    dice_to_dict,
    dump_json,
    dump_time,
    fact_from_dict,
    fact_to_dict,
    load_time,
    location_from_dict,
    location_to_dict,
    parse_json_dict,
    parse_json_list,
    stats_from_dict,
    stats_to_dict,
    summary_from_dict,
    summary_to_dict,
    tag_from_dict,
    tag_to_dict,
    world_from_dict,
    world_to_dict,
)
from ...core.errors import StaleSessionError
from ...core.types import Event, Session, SessionStatus, utcnow
from ..interfaces import UnitOfWork
from .uow import SQLAlchemyUnitOfWork

logger = logging.getLogger(__name__)


def _event_key(event_type: str, description: str, occurred_at: str | None) -> tuple[str, str, str | None]:
    return (event_type, description, occurred_at)


class SQLAlchemySessionStore:
    """Session store over the ``se_*`` tables.

    Each ``save`` writes the whole aggregate in one transaction. Events are
    appended when the stored rows are a prefix of the session's events and
    rewritten wholesale otherwise (after a checkpoint restore).
    """

    def __init__(
        self,
        session_factory: sessionmaker[OrmSession],
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self._uow_factory = uow_factory or (lambda: SQLAlchemyUnitOfWork(session_factory))

    def get(self, session_id: str) -> Session | None:
        with self._uow_factory() as uow:
            row = uow.sessions.get(session_id)
            if row is None:
                return None
            events = [
                Event(
                    type=event_row.type,
                    description=event_row.description,
                    timestamp=load_time(event_row.occurred_at, utcnow()),
                    dice_results=[dice_from_dict(item) for item in parse_json_list(event_row.dice_json)],
                )
                for event_row in uow.events.list_for_session(session_id)
            ]
            checkpoints = [
                checkpoint_from_dict(parse_json_dict(cp_row.snapshot_json))
                for cp_row in uow.checkpoints.list_for_session(session_id)
            ]
            summaries = [
                summary_from_dict(parse_json_dict(summary_row.payload_json))
                for summary_row in uow.summaries.list_for_session(session_id)
            ]
            try:
                status = SessionStatus(row.status)
            except ValueError:
                status = SessionStatus.SETUP
            return Session(
                id=row.id,
                title=row.title,
                genre=row.genre,
                description=row.description,
                premise=row.premise,
                setup_questions=row.setup_questions,
                status=status,
                world_state=world_from_dict(parse_json_dict(row.world_state_json)),
                events=events,
                dice_results=[dice_from_dict(item) for item in parse_json_list(row.dice_results_json)],
                characters=[character_from_dict(item) for item in parse_json_list(row.characters_json)],
                locations=[location_from_dict(item) for item in parse_json_list(row.locations_json)],
                checkpoints=checkpoints,
                summaries=summaries,
                current_chapter=row.current_chapter or 1,
                tags=[tag_from_dict(item) for item in parse_json_list(row.tags_json)],
                facts=[fact_from_dict(item) for item in parse_json_list(row.facts_json)],
                stats=stats_from_dict(parse_json_dict(row.stats_json)),
                created_at=load_time(row.story_created_at, utcnow()),
                row_version=row.row_version,
            )

    def save(self, session: Session) -> None:
        """Write the aggregate if nobody else saved since it was loaded.

        ``session.row_version`` must match the stored row; on success it is
        advanced to the new version so the same object can be saved again.
        """
        values = self._session_values(session)
        with self._uow_factory() as uow:
            row = uow.sessions.get(session.id)
            if row is None:
                uow.sessions.add(session.id, values)
                next_version = 1
            elif uow.sessions.cas_apply_update(session.id, session.row_version, values):
                next_version = session.row_version + 1
            else:
                uow.rollback()
                logger.info(
                    "Stale save for session %s (loaded version %s)", session.id, session.row_version
                )
                raise StaleSessionError(f"session_write_conflict:{session.id}")

            self._save_events(uow, session)
            uow.checkpoints.replace_all(
                session.id,
                [
                    {
                        "checkpoint_id": checkpoint.id,
                        "label": checkpoint.label,
                        "snapshot_json": dump_json(checkpoint_to_dict(checkpoint)),
                        "created_at": dump_time(checkpoint.created_at),
                    }
                    for checkpoint in session.checkpoints
                ],
            )
            uow.summaries.replace_all(
                session.id,
                [dump_json(summary_to_dict(summary)) for summary in session.summaries],
            )
            uow.commit()
        session.row_version = next_version

    def _session_values(self, session: Session) -> dict[str, Any]:
        return {
            "title": session.title,
            "genre": session.genre,
            "description": session.description,
            "premise": session.premise,
            "setup_questions": session.setup_questions,
            "status": session.status.value,
            "world_state_json": dump_json(world_to_dict(session.world_state)),
            "characters_json": dump_json([character_to_dict(c) for c in session.characters]),
            "locations_json": dump_json([location_to_dict(loc) for loc in session.locations]),
            "dice_results_json": dump_json([dice_to_dict(roll) for roll in session.dice_results]),
            "stats_json": dump_json(stats_to_dict(session.stats)),
            "tags_json": dump_json([tag_to_dict(tag) for tag in session.tags]),
            "facts_json": dump_json([fact_to_dict(fact) for fact in session.facts]),
            "current_chapter": session.current_chapter,
            "story_created_at": dump_time(session.created_at),
        }

    def _save_events(self, uow: UnitOfWork, session: Session) -> None:
        stored = uow.events.list_for_session(session.id)
        incoming = [
            (
                _event_key(event.type, event.description, dump_time(event.timestamp)),
                dump_json([dice_to_dict(roll) for roll in event.dice_results]),
            )
            for event in session.events
        ]
        stored_keys = [_event_key(r.type, r.description, r.occurred_at) for r in stored]
        is_prefix = len(stored_keys) <= len(incoming) and all(
            stored_key == incoming_key for stored_key, (incoming_key, _) in zip(stored_keys, incoming)
        )

        start = len(stored_keys)
        if not is_prefix:
            deleted = uow.events.delete_for_session(session.id)
            logger.debug("Rewriting events for session %s (%s rows replaced)", session.id, deleted)
            start = 0

        for position in range(start, len(incoming)):
            (event_type, description, occurred_at), dice_json = incoming[position]
            uow.events.append(
                session_id=session.id,
                position=position,
                event_type=event_type,
                description=description,
                occurred_at=occurred_at,
                dice_json=dice_json,
            )
