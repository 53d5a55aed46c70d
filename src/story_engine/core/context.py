from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Literal

from .prompts import GM_FRAME, NARRATIVE_INSTRUCTION
from .story_state import relevant_facts, relevant_tags
from .summary import SummaryCompactor
from .tokens import estimate_tokens
from .types import ContextConfig, DiceResult, ImportantDetail, Session, Summary

logger = logging.getLogger(__name__)

ContextMode = Literal["full", "brief"]

_WORD_RE = re.compile(r"[a-z0-9']+")


@dataclass
class _Section:
    lines: list[str] = field(default_factory=list)
    priority: bool = False


def extract_keywords(text: str, min_length: int = 4) -> set[str]:
    return {word.strip("'") for word in _WORD_RE.findall((text or "").lower()) if len(word.strip("'")) >= min_length}


def _summary_terms(summary: Summary) -> set[str]:
    terms: set[str] = set()
    for keyword in summary.keywords.all():
        lowered = keyword.lower().strip()
        if not lowered:
            continue
        terms.add(lowered)
        terms.update(_WORD_RE.findall(lowered))
    return terms


def select_relevant(
    summaries: list[Summary],
    player_input: str,
    *,
    min_length: int = 4,
    max_summaries: int = 3,
    max_details: int = 5,
) -> tuple[list[Summary], list[ImportantDetail]]:
    """Pick summaries and details whose keywords overlap the player's words."""
    keywords = extract_keywords(player_input, min_length)
    relevant_summaries: list[Summary] = []
    relevant_details: list[ImportantDetail] = []
    for summary in summaries:
        if keywords & _summary_terms(summary):
            relevant_summaries.append(summary)
        for detail in summary.important_details:
            name = detail.name.lower()
            if detail.relevance == "high" or any(keyword in name for keyword in keywords):
                relevant_details.append(detail)
    if max_summaries <= 0:
        relevant_summaries = []
    if max_details <= 0:
        relevant_details = []
    return relevant_summaries[-max_summaries:], relevant_details[-max_details:]


def _entry(name: str, description: str) -> str:
    return f"- {name}: {description}" if description else f"- {name}"


def _format_roll(roll: DiceResult) -> str:
    label = roll.situation if roll.dice_kind == "d20" else roll.dice_kind
    return f"- {label} ({roll.dice_kind}): {roll.result} - {roll.interpretation}"


class ContextAssembler:
    """Builds the size-bounded digest sent to the generator each turn."""

    def __init__(
        self,
        *,
        config: ContextConfig | None = None,
        compactor: SummaryCompactor | None = None,
        token_count: Callable[[str], int] = estimate_tokens,
        frame: str = GM_FRAME,
    ):
        self._config = config or ContextConfig()
        self._compactor = compactor
        self._token_count = token_count
        self._frame = frame

    @property
    def config(self) -> ContextConfig:
        return self._config

    async def assemble(
        self,
        session: Session,
        player_input: str,
        prior_roll: DiceResult | None = None,
        *,
        mode: ContextMode = "full",
        max_tokens: int | None = None,
        instruction: str = NARRATIVE_INSTRUCTION,
    ) -> str:
        """Run the compaction precondition, then build the digest.

        Mutates ``session.summaries`` when a new summary is produced, so
        callers pass the working copy of the session.
        """
        if self._compactor is not None and self._compactor.should_compact(session):
            summary = await self._compactor.compact(session)
            if summary is not None:
                self._compactor.apply(session, summary)
                logger.info(
                    "Compacted session %s through event %s (%s summaries kept)",
                    session.id,
                    summary.covered_event_count,
                    len(session.summaries),
                )
        return self.build(
            session,
            player_input,
            prior_roll,
            mode=mode,
            max_tokens=max_tokens,
            instruction=instruction,
        )

    def build(
        self,
        session: Session,
        player_input: str,
        prior_roll: DiceResult | None = None,
        *,
        mode: ContextMode = "full",
        max_tokens: int | None = None,
        instruction: str = NARRATIVE_INSTRUCTION,
    ) -> str:
        cfg = self._config
        sections = self._sections(session, player_input, prior_roll, mode)
        body = self._render(sections)

        ceiling = cfg.max_context_tokens if max_tokens is None else max_tokens
        if ceiling is not None and self._token_count(body) > ceiling:
            logger.info(
                "Context for session %s over budget (%s > %s tokens); keeping priority sections",
                session.id,
                self._token_count(body),
                ceiling,
            )
            body = self._render([section for section in sections if section.priority])

        parts = [body, self._frame]
        if instruction:
            parts.append(instruction)
        return "\n\n".join(part for part in parts if part)

    def _sections(
        self,
        session: Session,
        player_input: str,
        prior_roll: DiceResult | None,
        mode: ContextMode,
    ) -> list[_Section]:
        cfg = self._config
        world = session.world_state
        sections: list[_Section] = [
            _Section(
                [
                    "STORY CONTEXT:",
                    f"Title: {session.title}",
                    f"Genre: {session.genre}",
                    f"Chapter: {session.current_chapter}",
                    f"Setting: {world.setting}",
                ]
            ),
            _Section([f"Current Situation: {world.current_situation}"], priority=True),
            _Section(
                [
                    f"Mood: {world.mood}",
                    f"Weather: {world.weather}",
                    f"Time of Day: {world.time_of_day}",
                ]
            ),
        ]

        characters = session.characters[-cfg.max_characters:] if cfg.max_characters else []
        if characters:
            sections.append(
                _Section(
                    ["CHARACTERS:"] + [_entry(c.name, c.description) for c in characters],
                    priority=True,
                )
            )

        locations = session.locations[-cfg.max_locations:] if cfg.max_locations else []
        if locations:
            sections.append(
                _Section(["LOCATIONS:"] + [_entry(loc.name, loc.description) for loc in locations])
            )

        limit = cfg.max_recent_events if mode == "full" else cfg.max_recent_events_brief
        events = session.events[-limit:] if limit else []
        event_lines = [f"- {event.type}: {event.description}" for event in events] or ["No recent events."]
        sections.append(_Section(["RECENT EVENTS:"] + event_lines, priority=True))

        dice = session.dice_results[-cfg.max_dice_results:] if cfg.max_dice_results else []
        if dice:
            sections.append(_Section(["RECENT DICE ROLLS:"] + [_format_roll(roll) for roll in dice]))

        summaries, details = select_relevant(
            session.summaries,
            player_input,
            min_length=cfg.min_keyword_length,
            max_summaries=cfg.max_relevant_summaries,
            max_details=cfg.max_relevant_details,
        )
        summary_lines = [f"- {s.text}" for s in summaries if s.text]
        if summary_lines:
            sections.append(_Section(["EARLIER IN THE STORY:"] + summary_lines))
        if details:
            sections.append(
                _Section(
                    ["IMPORTANT DETAILS:"]
                    + [f"- [{d.type}] {d.name}: {d.description} ({d.relevance})" for d in details]
                )
            )

        tags = (
            relevant_tags(session, player_input, limit=cfg.max_relevant_tags, min_length=cfg.min_keyword_length)
            if cfg.max_relevant_tags
            else []
        )
        if tags:
            sections.append(
                _Section(
                    ["STORY TAGS:"]
                    + [f"- {t.category}: {t.value} ({t.relevance}, {t.mention_count} mentions)" for t in tags]
                )
            )
        facts = relevant_facts(
            session,
            player_input,
            limit=cfg.max_relevant_facts,
            min_length=cfg.min_keyword_length,
        )
        if facts:
            sections.append(_Section(["ESTABLISHED FACTS:"] + [f"- {f.category}: {f.fact}" for f in facts]))

        if prior_roll is not None:
            sections.append(_Section(["CURRENT DICE RESULT:", _format_roll(prior_roll)], priority=True))

        sections.append(_Section([f"PLAYER INPUT: {player_input}"], priority=True))
        return sections

    @staticmethod
    def _render(sections: list[_Section]) -> str:
        return "\n\n".join("\n".join(section.lines) for section in sections if section.lines)
