from __future__ import annotations

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class StorySession(TimestampMixin, Base):
    __tablename__ = "se_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="Untitled Story")
    genre: Mapped[str] = mapped_column(String(64), nullable=False, default="Fantasy")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    premise: Mapped[str] = mapped_column(Text, nullable=False, default="")
    setup_questions: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="setup")

    world_state_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    characters_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    locations_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    dice_results_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    stats_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    facts_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    current_chapter: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    story_created_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class StoryEvent(Base):
    __tablename__ = "se_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_sessions.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    dice_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    occurred_at: Mapped[str | None] = mapped_column(String(40), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "position", name="uq_se_event_session_position"),
    )


Index("ix_se_event_session_position", StoryEvent.session_id, StoryEvent.position)


class StoryCheckpoint(Base):
    __tablename__ = "se_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_sessions.id"), nullable=False)
    checkpoint_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(256), nullable=False)
    snapshot_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str | None] = mapped_column(String(40), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "checkpoint_id", name="uq_se_checkpoint_session_id"),
    )


class StorySummary(Base):
    __tablename__ = "se_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("se_sessions.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)


Index("ix_se_summary_session_position", StorySummary.session_id, StorySummary.position)
