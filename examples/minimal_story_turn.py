from __future__ import annotations

import asyncio
import logging

from story_engine.core.engine import TurnProcessor
from story_engine.core.generation import FallbackGenerationService
from story_engine.core.types import StartSessionRequest
from story_engine.persistence.sqlalchemy import (
    SQLAlchemySessionStore,
    build_engine,
    build_session_factory,
    create_schema,
)


class FlakyLLM:
    name = "flaky"

    async def generate(self, prompt, config):
        raise RuntimeError("upstream overloaded")


class DemoLLM:
    name = "demo"

    async def generate(self, prompt, config):
        if "STORY SUMMARY REQUEST" in prompt:
            return "SUMMARY:\nThe heist is underway.\n\nKEYWORDS:\nCharacters: Mira\n"
        if "Do not start the story yet." in prompt:
            return "1. What tone should the story take?\n2. Who is your character?"
        if "CURRENT DICE RESULT:" in prompt:
            return "Your blade finds the gap in the guard's armor, and he stumbles back."
        return "Rain hammers the docks of Saltmere as Mira waits beside the warehouse."


def make_store() -> SQLAlchemySessionStore:
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return SQLAlchemySessionStore(build_session_factory(engine))


async def main() -> None:
    store = make_store()
    generation = FallbackGenerationService([FlakyLLM(), DemoLLM()], timeout_seconds=5.0)
    processor = TurnProcessor(store, generation)

    started = await processor.start_session(
        StartSessionRequest(prompt="A smuggler's last job in a rain-soaked port", title="Salt Road", session_id="demo")
    )
    print("setup questions:", started.text)

    opening = await processor.process_turn("demo", "Grim and rainy. I play Mira, a smuggler.")
    print("opening scene:", opening.text)

    checkpoint = await processor.process_turn("demo", "/checkpoint before the fight")
    print("checkpoint:", checkpoint.payload)

    turn = await processor.process_turn("demo", "I attack the guard")
    print("narration:", turn.text)
    print("dice:", turn.dice_result.result if turn.dice_result else None, turn.dice_meta)

    restored = await processor.process_turn("demo", "/back before")
    print("restored:", restored.payload)

    session = store.get("demo")
    print("persisted events:", len(session.events), "status:", session.status.value)
    print("generation stats:", generation.stats)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
