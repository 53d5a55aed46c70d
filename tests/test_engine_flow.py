from __future__ import annotations

import asyncio

from story_engine.core.dice import STORY_ASPECTS
from story_engine.core.engine import TurnProcessor
from story_engine.core.errors import GenerationUnavailableError
from story_engine.core.types import (
    CommandResult,
    EngineConfig,
    ErrorResult,
    Event,
    NarrativeAdvanced,
    Session,
    SessionStatus,
    SetupAdvanced,
    StartSessionRequest,
)


SUMMARY_REPLY = """SUMMARY:
The crew slipped out of the harbor.

KEYWORDS:
Characters: Mira
Locations: Harbor
"""


class ScriptedGeneration:
    """Replies from a queue; summary requests get a canned summary."""

    def __init__(self, replies=None, default="The story continues."):
        self.replies = list(replies or [])
        self.default = default
        self.prompts = []

    async def generate(self, prompt, config):
        self.prompts.append(prompt)
        if "STORY SUMMARY REQUEST" in prompt:
            return SUMMARY_REPLY
        if not self.replies:
            return self.default
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class GatedGeneration:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt, config):
        self.started.set()
        await self.release.wait()
        return "Time passes slowly."


class InterleavingStore:
    """Runs ``interleave`` once, right after the first load."""

    def __init__(self, inner, interleave):
        self.inner = inner
        self.interleave = interleave

    def get(self, session_id):
        session = self.inner.get(session_id)
        if self.interleave is not None:
            interleave, self.interleave = self.interleave, None
            interleave(session_id)
        return session

    def save(self, session):
        self.inner.save(session)


def _active_session(session_id: str = "s-1", n_events: int = 1) -> Session:
    session = Session(id=session_id, title="Salt Road", genre="Adventure", status=SessionStatus.ACTIVE)
    session.events = [Event(type="narrative", description=f"Earlier beat {i}.") for i in range(n_events)]
    return session


def _processor(store, generation, seeded_dice, clock, **config):
    return TurnProcessor(store, generation, config=EngineConfig(**config), dice=seeded_dice, clock=clock)


def test_setup_then_first_reply_activates(memory_store, seeded_dice, clock):
    async def run_test():
        generation = ScriptedGeneration(
            [
                "What tone do you want?\nWho is your character?",
                "Rain lashes the docks. A figure waits under a lantern.\nROLL: d20 | situation=stealth",
            ]
        )
        processor = _processor(memory_store, generation, seeded_dice, clock)

        started = await processor.start_session(
            StartSessionRequest(prompt="A smuggler's last job", title="Salt Road", session_id="s-1")
        )
        assert isinstance(started, SetupAdvanced)
        assert started.now_active is False
        assert started.session_id == "s-1"
        stored = memory_store.get("s-1")
        assert stored.status == SessionStatus.SETUP
        assert stored.events == []
        assert stored.setup_questions.startswith("What tone")

        result = await processor.process_turn("s-1", "Grim and rainy. I play Mira, a smuggler.")
        assert isinstance(result, SetupAdvanced)
        assert result.now_active is True
        assert "ROLL:" not in result.text

        session = memory_store.get("s-1")
        assert session.status == SessionStatus.ACTIVE
        assert len(session.events) == 1
        assert session.events[0].type == "narrative"
        assert session.world_state.current_situation == "Rain lashes the docks"
        assert "A smuggler's last job" in generation.prompts[1]
        assert "What tone do you want?" in generation.prompts[1]

    asyncio.run(run_test())


def test_attack_records_one_combat_roll(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        generation = ScriptedGeneration(["Steel rings out as you strike.\nROLL: d20 | situation=combat"])
        processor = _processor(memory_store, generation, seeded_dice, clock)

        result = await processor.process_turn("s-1", "I attack the guard")
        assert isinstance(result, NarrativeAdvanced)
        assert result.dice_result is not None
        assert result.dice_result.situation == "combat"
        assert result.text == "Steel rings out as you strike."
        assert len(generation.prompts) == 1
        assert "CURRENT DICE RESULT:" in generation.prompts[0]

        session = memory_store.get("s-1")
        assert len(session.events) == 2
        assert [len(e.dice_results) for e in session.events] == [0, 1]
        assert session.events[-1].dice_results[0].situation == "combat"
        assert len(session.dice_results) == 1
        assert session.stats.dice_roll_count == 1
        assert session.stats.interaction_count == 1
        assert session.world_state.current_situation == "Steel rings out as you strike"

    asyncio.run(run_test())


def test_directive_from_generator_triggers_second_call(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        generation = ScriptedGeneration(
            [
                "The lock is old and stiff.\nROLL: d20 | situation=investigation | reason=study the lock",
                "The tumblers give way with a click.",
            ]
        )
        processor = _processor(memory_store, generation, seeded_dice, clock, pre_roll_on_cues=False)

        result = await processor.process_turn("s-1", "I fiddle with the lock")
        assert isinstance(result, NarrativeAdvanced)
        assert result.text == "The tumblers give way with a click."
        assert result.dice_result.situation == "investigation"
        assert result.dice_meta["integrated"] is True
        assert len(generation.prompts) == 2

        session = memory_store.get("s-1")
        assert len(session.events) == 2
        assert session.events[-1].dice_results[0].reason == "study the lock"

    asyncio.run(run_test())


def test_explicit_dice_situation(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(["You talk fast."]), seeded_dice, clock)
        result = await processor.process_turn("s-1", "I ask nicely", dice_situation="persuasion")
        assert result.dice_result.situation == "persuasion"
        assert memory_store.get("s-1").stats.dice_roll_count == 1

    asyncio.run(run_test())


def test_free_form_dice_situation_maps_like_a_directive(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(["You slip into shadow."]), seeded_dice, clock)
        result = await processor.process_turn("s-1", "I wait by the wall", dice_situation="sneak")
        assert result.dice_result.situation == "stealth"

        rolled = await processor.process_turn("s-1", "/roll sneak adv")
        assert rolled.payload["roll"]["situation"] == "stealth"
        assert len(rolled.payload["roll"]["rolls"]) == 2

    asyncio.run(run_test())


def test_checkpoint_then_back_restores_snapshot(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(["Mira meets Oda at the pier."]), seeded_dice, clock)

        created = await processor.process_turn("s-1", "/checkpoint journal-1")
        assert isinstance(created, CommandResult)
        assert created.type == "checkpoint_created"
        assert created.payload["label"] == "journal-1"
        snapshot = memory_store.get("s-1")

        await processor.process_turn("s-1", "I look around the pier")
        assert len(memory_store.get("s-1").events) == 2

        restored = await processor.process_turn("s-1", "/back journal-1")
        assert restored.type == "checkpoint_restored"
        session = memory_store.get("s-1")
        assert session.events == snapshot.events
        assert session.world_state == snapshot.world_state
        assert session.characters == snapshot.characters
        assert session.locations == snapshot.locations

        listing = await processor.process_turn("s-1", "/list-checkpoints")
        assert [item["label"] for item in listing.payload["checkpoints"]] == ["journal-1"]

        missing = await processor.process_turn("s-1", "/back wedding")
        assert missing.type == "checkpoint_not_found"
        assert missing.payload["available"][0]["label"] == "journal-1"

    asyncio.run(run_test())


def test_back_without_checkpoints(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock)
        saves = memory_store.save_count
        result = await processor.process_turn("s-1", "/back")
        assert result.type == "no_checkpoints"
        assert memory_store.save_count == saves

    asyncio.run(run_test())


def test_unknown_command_leaves_session_untouched(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        before = memory_store.get("s-1")
        saves = memory_store.save_count
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock)

        result = await processor.process_turn("s-1", "/foobar")
        assert isinstance(result, CommandResult)
        assert result.type == "unknown_command"
        assert "/checkpoint" in result.payload["available"]
        assert memory_store.save_count == saves
        assert memory_store.get("s-1") == before

    asyncio.run(run_test())


def test_bare_slash_is_rejected_without_a_turn(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        saves = memory_store.save_count
        generation = ScriptedGeneration()
        processor = _processor(memory_store, generation, seeded_dice, clock)

        result = await processor.process_turn("s-1", "/")
        assert isinstance(result, CommandResult)
        assert result.type == "unknown_command"
        assert result.payload["command"] == "/"
        assert generation.prompts == []
        assert memory_store.save_count == saves
        assert len(memory_store.get("s-1").events) == 1

    asyncio.run(run_test())


def test_generation_failure_leaves_session_untouched(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        before = memory_store.get("s-1")
        generation = ScriptedGeneration([GenerationUnavailableError(attempts=[("only", "down")])])
        processor = _processor(memory_store, generation, seeded_dice, clock)

        result = await processor.process_turn("s-1", "I attack the guard")
        assert isinstance(result, ErrorResult)
        assert result.code == "generation_unavailable"
        assert memory_store.get("s-1") == before

    asyncio.run(run_test())


def test_missing_session(memory_store, seeded_dice, clock):
    async def run_test():
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock)
        result = await processor.process_turn("nope", "hello")
        assert isinstance(result, ErrorResult)
        assert result.code == "not_found"

    asyncio.run(run_test())


def test_concurrent_turn_is_rejected_when_configured(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        generation = GatedGeneration()
        processor = _processor(memory_store, generation, seeded_dice, clock, reject_concurrent_turns=True)

        first = asyncio.create_task(processor.process_turn("s-1", "I wait by the fire"))
        await generation.started.wait()
        second = await processor.process_turn("s-1", "I wait some more")
        assert isinstance(second, ErrorResult)
        assert second.code == "busy"

        generation.release.set()
        assert isinstance(await first, NarrativeAdvanced)
        assert len(memory_store.get("s-1").events) == 2

    asyncio.run(run_test())


def test_concurrent_turns_serialize_by_default(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock)
        results = await asyncio.gather(
            processor.process_turn("s-1", "I wait by the fire"),
            processor.process_turn("s-1", "I hum a tune"),
        )
        assert all(isinstance(r, NarrativeAdvanced) for r in results)
        assert len(memory_store.get("s-1").events) == 3

    asyncio.run(run_test())


def test_summary_compaction_runs_before_the_sixth_event(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session(n_events=5))
        generation = ScriptedGeneration(["Mira checks the sails."])
        processor = _processor(memory_store, generation, seeded_dice, clock)

        result = await processor.process_turn("s-1", "Where is Mira going?")
        assert isinstance(result, NarrativeAdvanced)
        session = memory_store.get("s-1")
        assert len(session.events) == 6
        assert len(session.summaries) == 1
        assert session.summaries[0].covered_event_count == 5
        assert "The crew slipped out of the harbor." in generation.prompts[-1]

    asyncio.run(run_test())


def test_end_roll_stats_and_reset(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(memory_store, ScriptedGeneration(["The scene settles anew."]), seeded_dice, clock)

        rolled = await processor.process_turn("s-1", "/roll d6")
        assert rolled.type == "dice_roll"
        assert rolled.payload["roll"]["dice_kind"] == "d6"
        session = memory_store.get("s-1")
        assert len(session.dice_results) == 1
        assert len(session.events) == 1

        reset = await processor.process_turn("s-1", "/reset-scene")
        assert reset.type == "scene_reset"
        assert reset.payload["mood"] in STORY_ASPECTS["mood"]
        assert len(memory_store.get("s-1").events) == 2

        stats = await processor.process_turn("s-1", "/stats")
        assert stats.payload["dice_roll_count"] == 1
        assert stats.payload["event_count"] == 2

        ended = await processor.process_turn("s-1", "/end")
        assert ended.type == "story_ended"
        assert memory_store.get("s-1").status == SessionStatus.COMPLETED

        after = await processor.process_turn("s-1", "I keep walking")
        assert isinstance(after, NarrativeAdvanced)

    asyncio.run(run_test())


def test_completed_sessions_can_be_blocked(memory_store, seeded_dice, clock):
    async def run_test():
        session = _active_session()
        session.status = SessionStatus.COMPLETED
        memory_store.save(session)
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock, block_completed=True)

        result = await processor.process_turn("s-1", "I keep walking")
        assert isinstance(result, ErrorResult)
        assert result.code == "session_completed"
        listing = await processor.process_turn("s-1", "/list-checkpoints")
        assert listing.type == "checkpoint_list"

    asyncio.run(run_test())


def test_char_and_info_commands(memory_store, seeded_dice, clock):
    async def run_test():
        memory_store.save(_active_session())
        processor = _processor(
            memory_store,
            ScriptedGeneration(["The harbor is loud, and Captain Rhys was gruff and brave."]),
            seeded_dice,
            clock,
        )
        await processor.process_turn("s-1", "I wait at the harbor")

        listing = await processor.process_turn("s-1", "/char")
        assert listing.type == "character_list"
        assert "Captain Rhys" in [c["name"] for c in listing.payload["characters"]]

        info = await processor.process_turn("s-1", "/char rhys")
        assert info.type == "character_info"
        assert info.payload["attributes"]["personality"] == "brave"

        missing = await processor.process_turn("s-1", "/char nobody")
        assert missing.type == "character_not_found"

        query = await processor.process_turn("s-1", "/info harbor")
        assert query.type == "info"
        assert query.payload["mentions"]
        assert any(fact["category"] == "event" and "harbor" in fact["fact"] for fact in query.payload["facts"])

        about_rhys = await processor.process_turn("s-1", "/info rhys")
        assert {"category": "character", "value": "Captain Rhys", "relevance": "high", "mention_count": 1} in about_rhys.payload["tags"]

        stats = await processor.process_turn("s-1", "/stats")
        assert stats.payload["chapter"] == 1

    asyncio.run(run_test())


def test_sqlalchemy_backed_turns(sql_store, seeded_dice, clock):
    async def run_test():
        sql_store.save(_active_session())
        processor = _processor(sql_store, ScriptedGeneration(["You board the ship."]), seeded_dice, clock)
        await processor.process_turn("s-1", "/checkpoint dock")
        await processor.process_turn("s-1", "I board the ship")
        assert len(sql_store.get("s-1").events) == 2
        await processor.process_turn("s-1", "/back dock")
        assert len(sql_store.get("s-1").events) == 1

    asyncio.run(run_test())


def test_reset_scene_waits_for_the_story_to_start(memory_store, seeded_dice, clock):
    async def run_test():
        session = _active_session(n_events=0)
        session.status = SessionStatus.SETUP
        memory_store.save(session)
        processor = _processor(memory_store, ScriptedGeneration(), seeded_dice, clock)

        result = await processor.process_turn("s-1", "/reset-scene")
        assert result.type == "usage"
        assert memory_store.get("s-1").events == []

    asyncio.run(run_test())


def test_turn_loses_to_a_write_that_landed_first(sql_store, uow_factory, seeded_dice, clock, caplog):
    async def run_test():
        sql_store.save(_active_session())

        def _rename(session_id):
            with uow_factory() as uow:
                assert uow.sessions.cas_apply_update(session_id, 1, {"title": "Renamed"})
                uow.commit()

        store = InterleavingStore(sql_store, _rename)
        processor = _processor(store, ScriptedGeneration(["You walk on."]), seeded_dice, clock)

        result = await processor.process_turn("s-1", "I walk on")
        assert isinstance(result, ErrorResult)
        assert result.code == "conflict"
        assert any(
            record.name == "story_engine.core.engine" and "changed during the turn" in record.getMessage()
            for record in caplog.records
        )
        stored = sql_store.get("s-1")
        assert stored.title == "Renamed"
        assert len(stored.events) == 1
        assert stored.row_version == 2

        retry = await processor.process_turn("s-1", "I walk on")
        assert isinstance(retry, NarrativeAdvanced)
        assert len(sql_store.get("s-1").events) == 2

    asyncio.run(run_test())
