from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from .types import (
    Character,
    Checkpoint,
    DiceResult,
    Event,
    Fact,
    ImportantDetail,
    Location,
    Session,
    SessionStats,
    SessionStatus,
    StoryTag,
    Summary,
    SummaryKeywords,
    WorldState,
    utcnow,
)


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def parse_json_list(text: str | None) -> list[Any]:
    if not text:
        return []
    try:
        data = json.loads(text)
    except Exception:
        return []
    return data if isinstance(data, list) else []


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def dump_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def load_time(value: Any, default: datetime | None = None) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return default
    return default


def _str_dict(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items()}


def dice_to_dict(roll: DiceResult) -> dict[str, Any]:
    return {
        "situation": roll.situation,
        "dice_kind": roll.dice_kind,
        "result": roll.result,
        "interpretation": roll.interpretation,
        "outcome": roll.outcome,
        "reason": roll.reason,
        "rolls": list(roll.rolls),
        "timestamp": dump_time(roll.timestamp),
    }


def dice_from_dict(data: dict[str, Any]) -> DiceResult:
    return DiceResult(
        situation=str(data.get("situation") or "unspecified"),
        dice_kind=str(data.get("dice_kind") or "d20"),
        result=int(data.get("result") or 0),
        interpretation=str(data.get("interpretation") or ""),
        outcome=str(data.get("outcome") or ""),
        reason=str(data.get("reason") or ""),
        rolls=[int(value) for value in data.get("rolls") or []],
        timestamp=load_time(data.get("timestamp"), utcnow()),
    )


def event_to_dict(event: Event) -> dict[str, Any]:
    return {
        "type": event.type,
        "description": event.description,
        "timestamp": dump_time(event.timestamp),
        "dice_results": [dice_to_dict(roll) for roll in event.dice_results],
    }


def event_from_dict(data: dict[str, Any]) -> Event:
    return Event(
        type=str(data.get("type") or "narrative"),
        description=str(data.get("description") or ""),
        timestamp=load_time(data.get("timestamp"), utcnow()),
        dice_results=[dice_from_dict(item) for item in data.get("dice_results") or [] if isinstance(item, dict)],
    )


def character_to_dict(character: Character) -> dict[str, Any]:
    return {"name": character.name, "description": character.description, "attributes": dict(character.attributes)}


def character_from_dict(data: dict[str, Any]) -> Character:
    return Character(
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        attributes=_str_dict(data.get("attributes")),
    )


def location_to_dict(location: Location) -> dict[str, Any]:
    return {"name": location.name, "description": location.description, "attributes": dict(location.attributes)}


def location_from_dict(data: dict[str, Any]) -> Location:
    return Location(
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        attributes=_str_dict(data.get("attributes")),
    )


def world_to_dict(world: WorldState) -> dict[str, Any]:
    return {
        "setting": world.setting,
        "current_situation": world.current_situation,
        "mood": world.mood,
        "weather": world.weather,
        "time_of_day": world.time_of_day,
    }


def world_from_dict(data: dict[str, Any]) -> WorldState:
    defaults = WorldState()
    return WorldState(
        setting=str(data.get("setting") or defaults.setting),
        current_situation=str(data.get("current_situation") or defaults.current_situation),
        mood=str(data.get("mood") or defaults.mood),
        weather=str(data.get("weather") or defaults.weather),
        time_of_day=str(data.get("time_of_day") or defaults.time_of_day),
    )


def checkpoint_to_dict(checkpoint: Checkpoint) -> dict[str, Any]:
    return {
        "id": checkpoint.id,
        "label": checkpoint.label,
        "created_at": dump_time(checkpoint.created_at),
        "events": [event_to_dict(event) for event in checkpoint.events],
        "world_state": world_to_dict(checkpoint.world_state),
        "characters": [character_to_dict(c) for c in checkpoint.characters],
        "locations": [location_to_dict(loc) for loc in checkpoint.locations],
    }


def checkpoint_from_dict(data: dict[str, Any]) -> Checkpoint:
    return Checkpoint(
        id=str(data.get("id") or ""),
        label=str(data.get("label") or ""),
        created_at=load_time(data.get("created_at"), utcnow()),
        events=[event_from_dict(item) for item in data.get("events") or []],
        world_state=world_from_dict(data.get("world_state") or {}),
        characters=[character_from_dict(item) for item in data.get("characters") or []],
        locations=[location_from_dict(item) for item in data.get("locations") or []],
    )


def summary_to_dict(summary: Summary) -> dict[str, Any]:
    keywords = summary.keywords
    return {
        "covered_event_count": summary.covered_event_count,
        "text": summary.text,
        "chapter": summary.chapter,
        "keywords": {
            "characters": list(keywords.characters),
            "locations": list(keywords.locations),
            "items": list(keywords.items),
            "concepts": list(keywords.concepts),
            "events": list(keywords.events),
        },
        "important_details": [
            {"type": d.type, "name": d.name, "description": d.description, "relevance": d.relevance}
            for d in summary.important_details
        ],
        "created_at": dump_time(summary.created_at),
    }


def summary_from_dict(data: dict[str, Any]) -> Summary:
    raw_keywords = data.get("keywords") or {}
    keywords = SummaryKeywords(
        **{
            key: [str(value) for value in raw_keywords.get(key) or []]
            for key in ("characters", "locations", "items", "concepts", "events")
        }
    )
    details = [
        ImportantDetail(
            type=str(item.get("type") or ""),
            name=str(item.get("name") or ""),
            description=str(item.get("description") or ""),
            relevance=str(item.get("relevance") or "low"),
        )
        for item in data.get("important_details") or []
        if isinstance(item, dict)
    ]
    return Summary(
        covered_event_count=int(data.get("covered_event_count") or 0),
        text=str(data.get("text") or ""),
        chapter=int(data.get("chapter") or 1),
        keywords=keywords,
        important_details=details,
        created_at=load_time(data.get("created_at"), utcnow()),
    )


def tag_to_dict(tag: StoryTag) -> dict[str, Any]:
    return {
        "category": tag.category,
        "value": tag.value,
        "relevance": tag.relevance,
        "mention_count": tag.mention_count,
        "last_mentioned": dump_time(tag.last_mentioned),
    }


def tag_from_dict(data: dict[str, Any]) -> StoryTag:
    return StoryTag(
        category=str(data.get("category") or ""),
        value=str(data.get("value") or ""),
        relevance=str(data.get("relevance") or "medium"),
        mention_count=int(data.get("mention_count") or 1),
        last_mentioned=load_time(data.get("last_mentioned"), utcnow()),
    )


def fact_to_dict(fact: Fact) -> dict[str, Any]:
    return {
        "category": fact.category,
        "fact": fact.fact,
        "source": fact.source,
        "timestamp": dump_time(fact.timestamp),
    }


def fact_from_dict(data: dict[str, Any]) -> Fact:
    return Fact(
        category=str(data.get("category") or "detail"),
        fact=str(data.get("fact") or ""),
        source=str(data.get("source") or "narrative"),
        timestamp=load_time(data.get("timestamp"), utcnow()),
    )


def stats_to_dict(stats: SessionStats) -> dict[str, Any]:
    return {
        "interaction_count": stats.interaction_count,
        "dice_roll_count": stats.dice_roll_count,
        "last_active_at": dump_time(stats.last_active_at),
    }


def stats_from_dict(data: dict[str, Any]) -> SessionStats:
    return SessionStats(
        interaction_count=int(data.get("interaction_count") or 0),
        dice_roll_count=int(data.get("dice_roll_count") or 0),
        last_active_at=load_time(data.get("last_active_at")),
    )


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "genre": session.genre,
        "description": session.description,
        "premise": session.premise,
        "setup_questions": session.setup_questions,
        "status": session.status.value,
        "world_state": world_to_dict(session.world_state),
        "events": [event_to_dict(event) for event in session.events],
        "dice_results": [dice_to_dict(roll) for roll in session.dice_results],
        "characters": [character_to_dict(c) for c in session.characters],
        "locations": [location_to_dict(loc) for loc in session.locations],
        "checkpoints": [checkpoint_to_dict(cp) for cp in session.checkpoints],
        "summaries": [summary_to_dict(s) for s in session.summaries],
        "current_chapter": session.current_chapter,
        "tags": [tag_to_dict(tag) for tag in session.tags],
        "facts": [fact_to_dict(fact) for fact in session.facts],
        "stats": stats_to_dict(session.stats),
        "created_at": dump_time(session.created_at),
    }


def session_from_dict(data: dict[str, Any]) -> Session:
    try:
        status = SessionStatus(str(data.get("status") or "setup"))
    except ValueError:
        status = SessionStatus.SETUP
    return Session(
        id=str(data["id"]),
        title=str(data.get("title") or "Untitled Story"),
        genre=str(data.get("genre") or "Fantasy"),
        description=str(data.get("description") or ""),
        premise=str(data.get("premise") or ""),
        setup_questions=str(data.get("setup_questions") or ""),
        status=status,
        world_state=world_from_dict(data.get("world_state") or {}),
        events=[event_from_dict(item) for item in data.get("events") or []],
        dice_results=[dice_from_dict(item) for item in data.get("dice_results") or []],
        characters=[character_from_dict(item) for item in data.get("characters") or []],
        locations=[location_from_dict(item) for item in data.get("locations") or []],
        checkpoints=[checkpoint_from_dict(item) for item in data.get("checkpoints") or []],
        summaries=[summary_from_dict(item) for item in data.get("summaries") or []],
        current_chapter=int(data.get("current_chapter") or 1),
        tags=[tag_from_dict(item) for item in data.get("tags") or [] if isinstance(item, dict)],
        facts=[fact_from_dict(item) for item in data.get("facts") or [] if isinstance(item, dict)],
        stats=stats_from_dict(data.get("stats") or {}),
        created_at=load_time(data.get("created_at"), utcnow()),
    )
