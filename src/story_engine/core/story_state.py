from __future__ import annotations

import logging
import re
from datetime import datetime

from .extraction import COMMON_WORDS, extract_characters, extract_locations
from .types import Fact, Session, StoryTag, utcnow

logger = logging.getLogger(__name__)

TAG_CATEGORIES = ("character", "location", "item", "event", "concept")
FACT_CATEGORIES = ("character", "location", "event", "detail")

ITEM_WORDS = frozenset(
    """
    weapon gun knife dagger sword blade axe bow shield armor food water medicine
    potion tool key map book note letter scroll money coin gold silver
    backpack bag container box chest door window wall lantern rope
    """.split()
)
EVENT_WORDS = ("explosion", "fight", "meeting", "journey", "discovery", "attack", "escape", "arrival", "departure")
CONCEPT_WORDS = ("survival", "hope", "fear", "trust", "betrayal", "loyalty", "power", "freedom", "justice")

_ITEM_RE = re.compile(r"\b(?:the|a|an|found|saw|picked up|grabbed)\s+(?:(?:the|a|an)\s+)?([a-z]+)")
_QUERY_WORD_RE = re.compile(r"[a-z0-9']+")


def _relevance_rank(tag: StoryTag) -> tuple[int, int, datetime]:
    return (1 if tag.relevance == "high" else 0, tag.mention_count, tag.last_mentioned)


def _is_item(word: str) -> bool:
    return word in ITEM_WORDS or (word.endswith("s") and word[:-1] in ITEM_WORDS)


def extract_tags(text: str | None, now: datetime | None = None) -> list[StoryTag]:
    """Tag the named things, items, events and themes mentioned in ``text``."""
    raw = text or ""
    lowered = raw.lower()
    stamp = now or utcnow()
    found: dict[tuple[str, str], StoryTag] = {}

    def _add(category: str, value: str, relevance: str) -> None:
        key = (category, value.lower())
        if key not in found:
            found[key] = StoryTag(category=category, value=value, relevance=relevance, last_mentioned=stamp)

    locations = extract_locations(raw)
    for location in locations:
        _add("location", location.name, "medium")
    for character in extract_characters(raw, exclude={loc.name for loc in locations}):
        _add("character", character.name, "high")
    for match in _ITEM_RE.finditer(lowered):
        if _is_item(match.group(1)):
            _add("item", match.group(1), "medium")
    for word in EVENT_WORDS:
        if word in lowered:
            _add("event", word, "high")
    for word in CONCEPT_WORDS:
        if word in lowered:
            _add("concept", word, "medium")
    return list(found.values())


def record_tags(session: Session, tags: list[StoryTag], *, limit: int = 200) -> None:
    """Merge ``tags`` into the session index, counting repeat mentions."""
    index = {(tag.category, tag.value.lower()): tag for tag in session.tags}
    for tag in tags:
        existing = index.get((tag.category, tag.value.lower()))
        if existing is None:
            session.tags.append(tag)
            index[(tag.category, tag.value.lower())] = tag
            continue
        existing.mention_count += 1
        existing.last_mentioned = tag.last_mentioned
        if tag.relevance == "high":
            existing.relevance = "high"

    if limit and len(session.tags) > limit:
        keep = sorted(session.tags, key=_relevance_rank, reverse=True)[:limit]
        kept_ids = {id(tag) for tag in keep}
        session.tags = [tag for tag in session.tags if id(tag) in kept_ids]


def query_tags(
    session: Session,
    query: str,
    category: str | None = None,
    limit: int = 10,
) -> list[StoryTag]:
    needle = (query or "").strip().lower()
    matches = [
        tag
        for tag in session.tags
        if (category is None or tag.category == category) and (not needle or needle in tag.value.lower())
    ]
    matches.sort(key=_relevance_rank, reverse=True)
    return matches[:limit]


def query_keywords(text: str | None, min_length: int = 4) -> list[str]:
    seen: list[str] = []
    for word in _QUERY_WORD_RE.findall((text or "").lower()):
        word = word.strip("'")
        if len(word) < min_length or word.isdigit() or word in COMMON_WORDS or word in seen:
            continue
        seen.append(word)
    return seen


def relevant_tags(session: Session, text: str | None, *, limit: int = 15, min_length: int = 4) -> list[StoryTag]:
    """Tags whose value matches a keyword of ``text``, strongest first."""
    picked: dict[tuple[str, str], StoryTag] = {}
    for keyword in query_keywords(text, min_length):
        for tag in query_tags(session, keyword, limit=5):
            picked.setdefault((tag.category, tag.value.lower()), tag)
    return sorted(picked.values(), key=_relevance_rank, reverse=True)[:limit]


def facts_by_category(session: Session, category: str) -> list[Fact]:
    return [fact for fact in session.facts if fact.category == category]


def check_contradiction(session: Session, category: str, fact: str) -> bool:
    """True when ``fact`` overlaps an established fact of the same category.

    Overlap is a case-insensitive substring match either way round; it flags
    a restatement worth reviewing, not a proven conflict.
    """
    lowered = fact.strip().lower()
    if not lowered:
        return False
    for existing in facts_by_category(session, category):
        other = existing.fact.lower()
        if lowered in other or other in lowered:
            return True
    return False


def add_fact(
    session: Session,
    category: str,
    fact: str,
    source: str = "narrative",
    *,
    now: datetime | None = None,
    limit: int = 200,
) -> bool:
    """Record an established fact; exact repeats are ignored."""
    if category not in FACT_CATEGORIES:
        raise ValueError(f"Unknown fact category: {category}")
    text = " ".join((fact or "").split())
    if not text:
        return False
    if any(f.category == category and f.fact.lower() == text.lower() for f in session.facts):
        return False
    if check_contradiction(session, category, text):
        logger.debug("Fact for session %s overlaps an established %s fact: %s", session.id, category, text)

    session.facts.append(Fact(category=category, fact=text, source=source, timestamp=now or utcnow()))
    if limit and len(session.facts) > limit:
        del session.facts[: len(session.facts) - limit]
    return True


def query_facts(session: Session, query: str, limit: int = 10) -> list[Fact]:
    needle = (query or "").strip().lower()
    if not needle:
        return []
    return [fact for fact in session.facts if needle in fact.fact.lower()][-limit:]


def relevant_facts(session: Session, text: str | None, *, limit: int = 5, min_length: int = 4) -> list[Fact]:
    keywords = query_keywords(text, min_length)
    if not keywords or limit <= 0:
        return []
    hits = [fact for fact in session.facts if any(keyword in fact.fact.lower() for keyword in keywords)]
    return hits[-limit:]
