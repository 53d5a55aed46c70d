from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from story_engine.core.dice import DiceResolver
from story_engine.persistence.memory import InMemorySessionStore
from story_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from story_engine.persistence.sqlalchemy.store import SQLAlchemySessionStore
from story_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    sf = build_session_factory(engine)
    with sf() as session:
        session.execute(text("PRAGMA foreign_keys=ON"))
        session.commit()
    return sf


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def sql_store(session_factory):
    return SQLAlchemySessionStore(session_factory)


@pytest.fixture()
def memory_store():
    return InMemorySessionStore()


@pytest.fixture()
def clock():
    state = {"now": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)}

    def _clock():
        state["now"] = state["now"] + timedelta(seconds=1)
        return state["now"]

    return _clock


@pytest.fixture()
def seeded_dice(clock):
    return DiceResolver(rng=random.Random(1234), clock=clock)
