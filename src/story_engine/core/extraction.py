from __future__ import annotations

import re

from .types import Character, Location

DEFAULT_SITUATION = "Story continues..."
SITUATION_MAX_CHARS = 300

_NAME = r"[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*"
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_SPEECH_RES = (
    re.compile(rf"\b(?:said|asked|replied|whispered|shouted|called|muttered)\s+({_NAME})"),
    re.compile(rf"\b({_NAME})\s+(?:said|asks|asked|replied|whispered|shouted|called|muttered|nods|nodded|smiles|smiled)\b"),
)
_CAPITALIZED_RE = re.compile(rf"\b{_NAME}\b")
_LOCATION_RE = re.compile(rf"\b(?:in|at|to|from|into|toward|towards|inside|near)\s+(?:the\s+)?({_NAME})")
_DESCRIPTION_RE = re.compile(r"\b(?:was|is|looked|looks|appeared|appears|seemed|seems)\s+([^.!?]+)", re.IGNORECASE)
_BACKGROUND_RE = re.compile(r"\b(?:from|born|raised|worked|lived)\s+[^.!?]+", re.IGNORECASE)
_STATE_RE = re.compile(r"\b(?:currently|now|presently)\s+[^.!?]+", re.IGNORECASE)

PERSONALITY_TRAITS = (
    "brave", "cowardly", "wise", "foolish", "kind", "cruel",
    "honest", "deceitful", "calm", "angry", "friendly", "hostile",
)

COMMON_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by
    you your yours yourself yourselves i me my myself we our ours ourselves
    he him his himself she her hers herself it its itself they them their theirs themselves
    this that these those who whom whose which what where when why how
    all any both each few more most other some such no nor not only own same
    so than too very can will just should now
    is are was were be been being have has had do does did
    would could may might must shall
    suddenly then there here yes as if after before while perhaps still
    choices choice option options what's
    """.split()
)


def derive_situation(text: str | None) -> str:
    """First sentence of the narrative, used as the current situation."""
    raw = " ".join((text or "").split())
    if not raw:
        return DEFAULT_SITUATION
    first = raw.split(".", 1)[0].strip()
    if not first:
        return DEFAULT_SITUATION
    return first[:SITUATION_MAX_CHARS]


def _is_common(name: str) -> bool:
    words = name.lower().split()
    return len(name) < 3 or all(word in COMMON_WORDS for word in words)


def _sentence_starts(text: str) -> set[int]:
    starts = {0}
    for match in _SENTENCE_SPLIT_RE.finditer(text):
        starts.add(match.end())
    for match in re.finditer(r"\n\s*", text):
        starts.add(match.end())
    return starts


def _trim_leading_common(name: str) -> str:
    words = name.split()
    while words and words[0].lower() in COMMON_WORDS:
        words.pop(0)
    return " ".join(words)


def _context_for(text: str, name: str) -> str:
    needle = name.lower()
    sentences = [s.strip() for s in re.split(r"[.!?]+", text) if needle in s.lower()]
    return ". ".join(sentences)


def extract_locations(text: str | None) -> list[Location]:
    raw = text or ""
    seen: set[str] = set()
    out: list[Location] = []
    for match in _LOCATION_RE.finditer(raw):
        name = _trim_leading_common(match.group(1))
        if not name or _is_common(name) or name.lower() in seen:
            continue
        seen.add(name.lower())
        out.append(Location(name=name))
    return out


def extract_characters(text: str | None, exclude: set[str] | None = None) -> list[Character]:
    """Best-effort proper-noun extraction.

    Capitalized runs at the start of a sentence only count when a speech
    verb ties them to a person; location names are excluded.
    """
    raw = text or ""
    excluded = {name.lower() for name in (exclude or set())}
    excluded.update(loc.name.lower() for loc in extract_locations(raw))

    candidates: list[str] = []
    for pattern in _SPEECH_RES:
        candidates.extend(match.group(1) for match in pattern.finditer(raw))

    starts = _sentence_starts(raw)
    for match in _CAPITALIZED_RE.finditer(raw):
        if match.start() in starts:
            continue
        candidates.append(match.group(0))

    seen: set[str] = set()
    out: list[Character] = []
    for candidate in candidates:
        name = _trim_leading_common(candidate)
        key = name.lower()
        if not name or _is_common(name) or key in seen or key in excluded:
            continue
        seen.add(key)
        out.append(_describe_character(raw, name))
    return out


def _describe_character(text: str, name: str) -> Character:
    context = _context_for(text, name)
    description = ""
    match = _DESCRIPTION_RE.search(context)
    if match:
        description = match.group(1).strip()

    attributes: dict[str, str] = {}
    lowered = context.lower()
    traits = [trait for trait in PERSONALITY_TRAITS if re.search(rf"\b{trait}\b", lowered)]
    if traits:
        attributes["personality"] = ", ".join(traits)
    background = _BACKGROUND_RE.search(context)
    if background:
        attributes["background"] = background.group(0).strip()
    state = _STATE_RE.search(context)
    if state:
        attributes["current_state"] = state.group(0).strip()
    return Character(name=name, description=description, attributes=attributes)
