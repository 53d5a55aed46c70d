from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Tuple

from .checkpoints import CheckpointManager
from .codec import dice_to_dict, dump_time
from .commands import SUPPORTED_COMMANDS, CommandName, SlashCommand, parse_input
from .context import ContextAssembler
from .dice import DIE_SIDES, DiceResolver
from .errors import (
    CheckpointNotFoundError,
    GenerationUnavailableError,
    SessionNotFoundError,
    StaleSessionError,
    TurnBusyError,
)
from .extraction import derive_situation, extract_characters, extract_locations
from .ports import GenerationPort
from .prompts import (
    RESET_SCENE_INSTRUCTION,
    SETUP_QUESTIONS_TEMPLATE,
    render_opening_scene,
    render_timeout,
)
from .roll_protocol import RollProtocol, classify_player_input, normalize_situation, scrub_protocol_artifacts
from .story_state import add_fact, extract_tags, query_facts, query_tags, record_tags
from .summary import SummaryCompactor
from .types import (
    CommandResult,
    DiceResult,
    EngineConfig,
    ErrorResult,
    Event,
    EventType,
    NarrativeAdvanced,
    Session,
    SessionStatus,
    SetupAdvanced,
    Situation,
    StartSessionRequest,
    TurnResult,
    WorldState,
    utcnow,
)

if TYPE_CHECKING:
    from ..persistence.interfaces import SessionStore

logger = logging.getLogger(__name__)

EMPTY_NARRATION = "The world shifts, but nothing clear emerges."

HandleResult = Tuple[Optional[Session], TurnResult]
CommandHandler = Callable[[Session, str], Awaitable[HandleResult]]

_ADVANTAGE_FLAGS = {"adv", "advantage"}
_DISADVANTAGE_FLAGS = {"dis", "disadv", "disadvantage"}


class TurnProcessor:
    """Per-turn state machine for a story session.

    ``handle`` is pure with respect to its input: it works on a deep copy
    and returns the new session value (or ``None`` when nothing changed).
    ``process_turn`` wraps it with load, per-session locking and save.
    """

    def __init__(
        self,
        store: SessionStore,
        generation: GenerationPort,
        *,
        config: EngineConfig | None = None,
        dice: DiceResolver | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._store = store
        self._generation = generation
        self._config = config or EngineConfig()
        self._clock = clock or utcnow
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._dice = dice or DiceResolver(clock=self._clock)
        self._compactor = SummaryCompactor(
            generation,
            config=self._config.summary,
            generation_config=self._config.summary_generation,
            clock=self._clock,
        )
        self._assembler = ContextAssembler(config=self._config.context, compactor=self._compactor)
        self._checkpoints = CheckpointManager(clock=self._clock)
        self._roll_protocol = RollProtocol(
            self._dice,
            generation,
            generation_config=self._config.story_generation,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._command_handlers: dict[CommandName, CommandHandler] = {
            CommandName.CHECKPOINT: self._cmd_checkpoint,
            CommandName.BACK: self._cmd_back,
            CommandName.LIST_CHECKPOINTS: self._cmd_list_checkpoints,
            CommandName.CHAR: self._cmd_char,
            CommandName.INFO: self._cmd_info,
            CommandName.TIMEOUT: self._cmd_timeout,
            CommandName.RESET_SCENE: self._cmd_reset_scene,
            CommandName.END: self._cmd_end,
            CommandName.STATS: self._cmd_stats,
            CommandName.ROLL: self._cmd_roll,
        }

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def checkpoints(self) -> CheckpointManager:
        return self._checkpoints

    async def start_session(self, request: StartSessionRequest) -> TurnResult:
        session_id = request.session_id or self._id_factory()
        if self._store.get(session_id) is not None:
            return ErrorResult(message=f"session_exists:{session_id}", code="conflict")

        now = self._clock()
        world = WorldState()
        if request.setting:
            world.setting = request.setting
        session = Session(
            id=session_id,
            title=request.title or "Untitled Story",
            genre=request.genre or "Fantasy",
            description=request.description or "",
            premise=request.prompt,
            world_state=world,
            characters=copy.deepcopy(request.characters),
            locations=copy.deepcopy(request.locations),
            created_at=now,
        )
        session.stats.last_active_at = now

        prompt = SETUP_QUESTIONS_TEMPLATE.format(
            prompt=request.prompt,
            genre=session.genre,
            title=session.title,
        )
        self._trace(f"SETUP QUESTIONS PROMPT session={session_id}", prompt)
        async with self._get_lock(session_id):
            try:
                response = await self._generation.generate(prompt, self._config.setup_generation)
            except GenerationUnavailableError as exc:
                logger.warning("Could not start session %s: %s", session_id, exc)
                return ErrorResult(message=str(exc), code="generation_unavailable")
            questions = scrub_protocol_artifacts(response)
            session.setup_questions = questions
            self._store.save(session)

        logger.info("Started session %s (%s, %s)", session_id, session.title, session.genre)
        return SetupAdvanced(text=questions, now_active=False, session_id=session_id)

    async def process_turn(
        self,
        session_id: str,
        raw_input: str,
        *,
        dice_situation: str | None = None,
    ) -> TurnResult:
        lock = self._get_lock(session_id)
        try:
            if self._config.reject_concurrent_turns and lock.locked():
                raise TurnBusyError(f"turn_in_progress:{session_id}")
            async with lock:
                session = self._store.get(session_id)
                if session is None:
                    raise SessionNotFoundError(session_id)
                updated, result = await self.handle(session, raw_input, dice_situation=dice_situation)
                if updated is not None:
                    self._store.save(updated)
                return result
        except TurnBusyError as exc:
            logger.info("Rejecting turn for session %s: another turn is in flight", session_id)
            return ErrorResult(message=str(exc), code="busy")
        except SessionNotFoundError as exc:
            return ErrorResult(message=str(exc), code="not_found")
        except StaleSessionError as exc:
            logger.warning("Session %s changed during the turn: %s", session_id, exc)
            return ErrorResult(message=str(exc), code="conflict")
        except Exception:
            logger.exception("Turn failed for session %s", session_id)
            return ErrorResult(message="turn_failed", code="error")

    async def handle(
        self,
        session: Session,
        raw_input: str,
        *,
        dice_situation: str | None = None,
    ) -> HandleResult:
        working = copy.deepcopy(session)
        parsed = parse_input(raw_input)
        try:
            if isinstance(parsed, SlashCommand):
                return await self._dispatch_command(working, parsed)

            text = parsed.text
            if not text:
                return None, ErrorResult(message="empty_input", code="invalid_input")
            if working.status == SessionStatus.SETUP:
                return await self._advance_setup(working, text)
            if working.status == SessionStatus.COMPLETED:
                if self._config.block_completed:
                    return None, ErrorResult(message="session_completed", code="session_completed")
                logger.warning("Session %s is completed; continuing narrative anyway", working.id)
            return await self._advance_narrative(working, text, dice_situation)
        except GenerationUnavailableError as exc:
            logger.warning("Generation unavailable for session %s: %s", working.id, exc)
            return None, ErrorResult(message=str(exc), code="generation_unavailable")

    async def _dispatch_command(self, session: Session, command: SlashCommand) -> HandleResult:
        if command.name is None:
            return None, CommandResult(
                type="unknown_command",
                payload={"command": f"/{command.raw_name}", "available": list(SUPPORTED_COMMANDS)},
            )
        handler = self._command_handlers[command.name]
        return await handler(session, command.argument)

    async def _advance_setup(self, session: Session, answers: str) -> HandleResult:
        prompt = self._assembler.build(
            session,
            answers,
            mode="brief",
            instruction=render_opening_scene(session.premise, session.setup_questions),
        )
        self._trace(f"OPENING SCENE PROMPT session={session.id}", prompt)
        response = await self._generation.generate(prompt, self._config.story_generation)
        self._trace("OPENING SCENE RAW RESPONSE", response)

        text = scrub_protocol_artifacts(response) or EMPTY_NARRATION
        self._commit_narrative(session, text, None)
        session.status = SessionStatus.ACTIVE
        logger.info("Session %s is now active", session.id)
        return session, SetupAdvanced(text=text, now_active=True, session_id=session.id)

    async def _advance_narrative(
        self,
        session: Session,
        player_input: str,
        dice_situation: str | None,
    ) -> HandleResult:
        prior_roll: DiceResult | None = None
        if dice_situation:
            prior_roll = self._roll_for(dice_situation, reason=player_input[:200])
        elif self._config.pre_roll_on_cues:
            cue = classify_player_input(player_input)
            if cue is not None:
                prior_roll = self._dice.roll(cue, reason=player_input[:200])

        prompt = await self._assembler.assemble(session, player_input, prior_roll)
        self._trace(f"STORY PROMPT session={session.id}", prompt)
        response = await self._generation.generate(prompt, self._config.story_generation)
        self._trace("STORY RAW RESPONSE", response)

        outcome = await self._roll_protocol.process(
            response,
            player_input=player_input,
            prior_roll=prior_roll,
            build_prompt=lambda roll: self._assembler.build(session, player_input, roll, instruction=""),
        )
        text = outcome.text or EMPTY_NARRATION
        self._commit_narrative(session, text, outcome.dice_result)
        return session, NarrativeAdvanced(
            text=text,
            dice_result=outcome.dice_result,
            dice_meta=dict(outcome.dice_meta),
        )

    def _commit_narrative(self, session: Session, text: str, roll: DiceResult | None) -> None:
        now = self._clock()
        session.events.append(
            Event(
                type=EventType.NARRATIVE.value,
                description=text,
                timestamp=now,
                dice_results=[roll] if roll is not None else [],
            )
        )
        if roll is not None:
            session.dice_results.append(roll)
            session.stats.dice_roll_count += 1
        session.stats.interaction_count += 1
        session.stats.last_active_at = now
        session.world_state.current_situation = derive_situation(text)
        self._merge_extracted(session, text, now)
        record_tags(session, extract_tags(text, now), limit=self._config.max_tags_tracked)
        add_fact(
            session,
            "event",
            session.world_state.current_situation,
            now=now,
            limit=self._config.max_facts_tracked,
        )

    def _merge_extracted(self, session: Session, text: str, now: datetime) -> None:
        cfg = self._config
        known_locations = {loc.name.lower() for loc in session.locations}
        for location in extract_locations(text):
            if location.name.lower() not in known_locations:
                known_locations.add(location.name.lower())
                session.locations.append(location)
                add_fact(session, "location", location.name, now=now, limit=cfg.max_facts_tracked)

        known_characters = {c.name.lower() for c in session.characters}
        for character in extract_characters(text, exclude=known_locations):
            if character.name.lower() not in known_characters:
                known_characters.add(character.name.lower())
                session.characters.append(character)
                fact = f"{character.name}: {character.description}" if character.description else character.name
                add_fact(session, "character", fact, now=now, limit=cfg.max_facts_tracked)

        if len(session.characters) > cfg.max_characters_tracked:
            session.characters = session.characters[-cfg.max_characters_tracked:]
        if len(session.locations) > cfg.max_locations_tracked:
            session.locations = session.locations[-cfg.max_locations_tracked:]

    def _roll_for(self, spec: str, reason: str = "", mode: str = "") -> DiceResult:
        key = spec.strip().lower()
        if key in DIE_SIDES:
            if key != "d20":
                return self._dice.roll_die(key, reason=reason)
            situation = Situation.UNSPECIFIED
        else:
            situation = normalize_situation(key)
        if mode == "advantage":
            return self._dice.roll_with_advantage(situation, reason=reason)
        if mode == "disadvantage":
            return self._dice.roll_with_disadvantage(situation, reason=reason)
        return self._dice.roll(situation, reason=reason)

    # ------------------------------------------------------------------
    # Commands

    async def _cmd_checkpoint(self, session: Session, argument: str) -> HandleResult:
        head, _, rest = argument.partition(" ")
        if head == "--delete":
            try:
                removed = self._checkpoints.delete(session, rest)
            except CheckpointNotFoundError as exc:
                return None, self._checkpoint_not_found(exc)
            return session, CommandResult(
                type="checkpoint_deleted",
                payload={"id": removed.id, "label": removed.label},
            )

        checkpoint = self._checkpoints.create(session, argument or None)
        return session, CommandResult(
            type="checkpoint_created",
            payload={
                "id": checkpoint.id,
                "label": checkpoint.label,
                "event_count": len(checkpoint.events),
            },
        )

    async def _cmd_back(self, session: Session, argument: str) -> HandleResult:
        try:
            checkpoint = self._checkpoints.restore(session, argument or None)
        except CheckpointNotFoundError as exc:
            return None, self._checkpoint_not_found(exc)
        if checkpoint is None:
            return None, CommandResult(type="no_checkpoints", payload={"message": "No checkpoints saved yet."})
        return session, CommandResult(
            type="checkpoint_restored",
            payload={
                "id": checkpoint.id,
                "label": checkpoint.label,
                "event_count": len(session.events),
                "current_situation": session.world_state.current_situation,
            },
        )

    async def _cmd_list_checkpoints(self, session: Session, argument: str) -> HandleResult:
        checkpoints = [
            {
                "id": info.id,
                "label": info.label,
                "created_at": dump_time(info.created_at),
                "event_count": info.event_count,
            }
            for info in self._checkpoints.list(session)
        ]
        return None, CommandResult(type="checkpoint_list", payload={"checkpoints": checkpoints})

    async def _cmd_char(self, session: Session, argument: str) -> HandleResult:
        if not argument:
            return None, CommandResult(
                type="character_list",
                payload={"characters": [{"name": c.name, "description": c.description} for c in session.characters]},
            )
        needle = argument.lower()
        matches = [c for c in session.characters if c.name.lower() == needle]
        matches = matches or [c for c in session.characters if needle in c.name.lower()]
        if not matches:
            return None, CommandResult(
                type="character_not_found",
                payload={"name": argument, "available": [c.name for c in session.characters]},
            )
        character = matches[-1]
        return None, CommandResult(
            type="character_info",
            payload={
                "name": character.name,
                "description": character.description,
                "attributes": dict(character.attributes),
            },
        )

    async def _cmd_info(self, session: Session, argument: str) -> HandleResult:
        if not argument:
            return None, CommandResult(
                type="usage",
                payload={"command": "/info", "message": "Please specify what you want information about. Use /info [name]"},
            )
        needle = argument.lower()
        details: list[dict[str, Any]] = []
        for summary in session.summaries:
            for detail in summary.important_details:
                if needle in detail.name.lower() or needle in detail.description.lower():
                    details.append(
                        {
                            "type": detail.type,
                            "name": detail.name,
                            "description": detail.description,
                            "relevance": detail.relevance,
                        }
                    )
        payload = {
            "query": argument,
            "characters": [c.name for c in session.characters if needle in c.name.lower()],
            "locations": [loc.name for loc in session.locations if needle in loc.name.lower()],
            "details": details,
            "mentions": [e.description for e in session.events if needle in e.description.lower()][-3:],
            "tags": [
                {
                    "category": tag.category,
                    "value": tag.value,
                    "relevance": tag.relevance,
                    "mention_count": tag.mention_count,
                }
                for tag in query_tags(session, argument)
            ],
            "facts": [{"category": f.category, "fact": f.fact} for f in query_facts(session, argument)],
        }
        return None, CommandResult(type="info", payload=payload)

    async def _cmd_timeout(self, session: Session, argument: str) -> HandleResult:
        prompt = self._assembler.build(session, argument or "(timeout)", mode="brief", instruction=render_timeout(argument))
        self._trace(f"TIMEOUT PROMPT session={session.id}", prompt)
        response = await self._generation.generate(prompt, self._config.story_generation)
        return None, CommandResult(
            type="timeout",
            payload={"topic": argument, "text": scrub_protocol_artifacts(response)},
        )

    async def _cmd_reset_scene(self, session: Session, argument: str) -> HandleResult:
        if session.status == SessionStatus.SETUP:
            return None, CommandResult(
                type="usage",
                payload={"command": "/reset-scene", "message": "The story has not started yet."},
            )
        session.world_state.mood = self._dice.roll_story_aspect("mood")
        session.world_state.weather = self._dice.roll_story_aspect("weather")
        prompt = self._assembler.build(
            session,
            argument or "Reset the scene.",
            mode="brief",
            instruction=RESET_SCENE_INSTRUCTION,
        )
        self._trace(f"RESET SCENE PROMPT session={session.id}", prompt)
        response = await self._generation.generate(prompt, self._config.story_generation)
        text = scrub_protocol_artifacts(response) or EMPTY_NARRATION
        self._commit_narrative(session, text, None)
        return session, CommandResult(
            type="scene_reset",
            payload={
                "text": text,
                "mood": session.world_state.mood,
                "weather": session.world_state.weather,
            },
        )

    async def _cmd_end(self, session: Session, argument: str) -> HandleResult:
        session.status = SessionStatus.COMPLETED
        session.stats.last_active_at = self._clock()
        logger.info("Session %s completed", session.id)
        return session, CommandResult(
            type="story_ended",
            payload={
                "message": "Story has been marked as completed.",
                "final_stats": {
                    "interaction_count": session.stats.interaction_count,
                    "dice_roll_count": session.stats.dice_roll_count,
                    "event_count": len(session.events),
                },
            },
        )

    async def _cmd_stats(self, session: Session, argument: str) -> HandleResult:
        stats = session.stats
        return None, CommandResult(
            type="stats",
            payload={
                "status": session.status.value,
                "interaction_count": stats.interaction_count,
                "dice_roll_count": stats.dice_roll_count,
                "last_active_at": dump_time(stats.last_active_at),
                "event_count": len(session.events),
                "checkpoint_count": len(session.checkpoints),
                "summary_count": len(session.summaries),
                "chapter": session.current_chapter,
            },
        )

    async def _cmd_roll(self, session: Session, argument: str) -> HandleResult:
        spec = ""
        mode = ""
        for token in argument.lower().split():
            if token in _ADVANTAGE_FLAGS:
                mode = "advantage"
            elif token in _DISADVANTAGE_FLAGS:
                mode = "disadvantage"
            elif not spec:
                spec = token
        roll = self._roll_for(spec or "unspecified", reason="manual roll", mode=mode)
        session.dice_results.append(roll)
        session.stats.dice_roll_count += 1
        session.stats.last_active_at = self._clock()
        return session, CommandResult(type="dice_roll", payload={"roll": dice_to_dict(roll)})

    # ------------------------------------------------------------------

    @staticmethod
    def _checkpoint_not_found(exc: CheckpointNotFoundError) -> CommandResult:
        return CommandResult(
            type="checkpoint_not_found",
            payload={"selector": exc.selector, "available": exc.available},
        )

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _trace(self, section: str, body: str = "") -> None:
        if body:
            logger.debug("%s\n%s", section, body)
        else:
            logger.debug("%s", section)
