from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    SETUP = "setup"
    ACTIVE = "active"
    COMPLETED = "completed"


class Situation(str, Enum):
    COMBAT = "combat"
    PERSUASION = "persuasion"
    STEALTH = "stealth"
    INVESTIGATION = "investigation"
    SURVIVAL = "survival"
    UNSPECIFIED = "unspecified"


class EventType(str, Enum):
    NARRATIVE = "narrative"
    DIALOGUE = "dialogue"
    COMBAT = "combat"
    EXPLORATION = "exploration"
    DISCOVERY = "discovery"
    CONFLICT = "conflict"
    RESOLUTION = "resolution"
    DICE = "dice"


@dataclass
class DiceResult:
    situation: str
    result: int
    interpretation: str
    outcome: str
    dice_kind: str = "d20"
    reason: str = ""
    rolls: list[int] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Event:
    type: str
    description: str
    timestamp: datetime = field(default_factory=utcnow)
    dice_results: list[DiceResult] = field(default_factory=list)


@dataclass
class Character:
    name: str
    description: str = ""
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class Location:
    name: str
    description: str = ""
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class WorldState:
    setting: str = "To be determined"
    current_situation: str = "Story setup in progress"
    mood: str = "neutral"
    weather: str = "clear"
    time_of_day: str = "morning"


@dataclass
class Checkpoint:
    id: str
    label: str
    created_at: datetime
    events: list[Event]
    world_state: WorldState
    characters: list[Character]
    locations: list[Location]


@dataclass
class CheckpointInfo:
    id: str
    label: str
    created_at: datetime
    event_count: int


@dataclass(frozen=True)
class SummaryKeywords:
    characters: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    items: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)

    def all(self) -> list[str]:
        return [*self.characters, *self.locations, *self.items, *self.concepts, *self.events]


@dataclass(frozen=True)
class ImportantDetail:
    type: str
    name: str
    description: str
    relevance: str


@dataclass(frozen=True)
class Summary:
    covered_event_count: int
    text: str
    chapter: int = 1
    keywords: SummaryKeywords = field(default_factory=SummaryKeywords)
    important_details: list[ImportantDetail] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class StoryTag:
    category: str
    value: str
    relevance: str = "medium"
    mention_count: int = 1
    last_mentioned: datetime = field(default_factory=utcnow)


@dataclass
class Fact:
    category: str
    fact: str
    source: str = "narrative"
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SessionStats:
    interaction_count: int = 0
    dice_roll_count: int = 0
    last_active_at: Optional[datetime] = None


@dataclass
class Session:
    id: str
    title: str = "Untitled Story"
    genre: str = "Fantasy"
    description: str = ""
    premise: str = ""
    setup_questions: str = ""
    status: SessionStatus = SessionStatus.SETUP
    world_state: WorldState = field(default_factory=WorldState)
    events: list[Event] = field(default_factory=list)
    dice_results: list[DiceResult] = field(default_factory=list)
    characters: list[Character] = field(default_factory=list)
    locations: list[Location] = field(default_factory=list)
    checkpoints: list[Checkpoint] = field(default_factory=list)
    summaries: list[Summary] = field(default_factory=list)
    current_chapter: int = 1
    tags: list[StoryTag] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    stats: SessionStats = field(default_factory=SessionStats)
    created_at: datetime = field(default_factory=utcnow)
    row_version: int = field(default=0, compare=False)


@dataclass
class StartSessionRequest:
    prompt: str
    title: str = "Untitled Story"
    genre: str = "Fantasy"
    description: str = ""
    setting: Optional[str] = None
    characters: list[Character] = field(default_factory=list)
    locations: list[Location] = field(default_factory=list)
    session_id: Optional[str] = None


@dataclass(frozen=True)
class GenerationConfig:
    max_output_tokens: int = 2000
    temperature: float = 0.7
    model: Optional[str] = None


@dataclass(frozen=True)
class ContextConfig:
    max_recent_events: int = 8
    max_recent_events_brief: int = 3
    max_characters: int = 3
    max_locations: int = 2
    max_dice_results: int = 2
    max_relevant_summaries: int = 3
    max_relevant_details: int = 5
    max_relevant_tags: int = 5
    max_relevant_facts: int = 5
    min_keyword_length: int = 4
    max_context_tokens: Optional[int] = 4000


@dataclass(frozen=True)
class SummaryConfig:
    interval: int = 5
    max_summaries: int = 10


@dataclass(frozen=True)
class EngineConfig:
    context: ContextConfig = field(default_factory=ContextConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    story_generation: GenerationConfig = field(default_factory=GenerationConfig)
    summary_generation: GenerationConfig = field(
        default_factory=lambda: GenerationConfig(max_output_tokens=1000, temperature=0.7)
    )
    setup_generation: GenerationConfig = field(
        default_factory=lambda: GenerationConfig(max_output_tokens=800, temperature=0.8)
    )
    pre_roll_on_cues: bool = True
    block_completed: bool = False
    reject_concurrent_turns: bool = False
    max_characters_tracked: int = 50
    max_locations_tracked: int = 50
    max_tags_tracked: int = 200
    max_facts_tracked: int = 200


@dataclass
class NarrativeAdvanced:
    text: str
    dice_result: Optional[DiceResult] = None
    dice_meta: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="narrative_advanced", init=False)


@dataclass
class CommandResult:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="command_result", init=False)


@dataclass
class SetupAdvanced:
    text: str
    now_active: bool
    session_id: Optional[str] = None
    kind: str = field(default="setup_advanced", init=False)


@dataclass
class ErrorResult:
    message: str
    code: str = "error"
    kind: str = field(default="error", init=False)


TurnResult = Union[NarrativeAdvanced, CommandResult, SetupAdvanced, ErrorResult]
