from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from .dice import DiceResolver
from .ports import GenerationPort
from .prompts import render_roll_resolved
from .types import DiceResult, GenerationConfig, Situation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollDirective:
    situation: Optional[str] = None
    reason: str = ""
    line: str = ""


@dataclass(frozen=True)
class NoDirective:
    pass


ParsedDirective = Union[RollDirective, NoDirective]


@dataclass
class RollOutcome:
    text: str
    dice_result: Optional[DiceResult] = None
    dice_meta: dict[str, Any] = field(default_factory=dict)


_WRAPPER_CHARS = "*_`>~ \t"

_DIRECTIVE_HEAD_RE = re.compile(r"^roll\s*:\s*1?d20\b(?P<rest>.*)$", re.IGNORECASE)

_LIST_PREFIX_RE = re.compile(r"^\d+[.)]\s*")

_SENTINEL_LINE_RE = re.compile(r"^[\W_]*(?:\d+[.)]\s*)?[\W_]*roll\s*:\s*1?d20\b.*$", re.IGNORECASE)

_ARTIFACT_LINE_RES = (
    _SENTINEL_LINE_RE,
    re.compile(r"^[\W_]*(remember|don't forget|do not forget)\b.*\broll\b.*$", re.IGNORECASE),
    re.compile(r"^[\W_]*(please\s+)?roll\s+(a\s+|the\s+)?(1?d20|dice|die)\b.*$", re.IGNORECASE),
    re.compile(r"^[\W_]*(do not|don't)\s+(request|ask for)\s+another\s+roll\b.*$", re.IGNORECASE),
    re.compile(r"^[\W_]*(system|gm|dm|internal|ooc|protocol)(\s+(note|hint|instruction|message))?\s*[:\]].*$", re.IGNORECASE),
    re.compile(r"^[\W_]*(roll|dice)\s+(result|outcome)\s*:.*$", re.IGNORECASE),
    re.compile(r"^.*\|\s*situation\s*=.*$", re.IGNORECASE),
)

_CUES: tuple[tuple[Situation, re.Pattern[str]], ...] = (
    (
        Situation.COMBAT,
        re.compile(
            r"\b(attack\w*|fight\w*|combat|battle\w*|hit|hits|hitting|strik\w*|stab\w*|shoot\w*|punch\w*|slash\w*)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Situation.PERSUASION,
        re.compile(
            r"\b(persua\w*|convinc\w*|negotiat\w*|bargain\w*|brib\w*|charm\w*|intimidat\w*|deceiv\w*)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Situation.STEALTH,
        re.compile(r"\b(stealth\w*|sneak\w*|hide|hides|hiding|conceal\w*|tiptoe\w*)\b", re.IGNORECASE),
    ),
    (
        Situation.INVESTIGATION,
        re.compile(r"\b(investigat\w*|search\w*|examin\w*|inspect\w*|scrutini\w*)\b", re.IGNORECASE),
    ),
    (
        Situation.SURVIVAL,
        re.compile(
            r"\b(surviv\w*|navigat\w*|track\w*|forag\w*|climb\w*|find|finds|finding|locate|locates|locating)\b",
            re.IGNORECASE,
        ),
    ),
)

_GENERIC_CUE_RE = re.compile(
    r"\b(repair\w*|fix|fixes|fixing|craft\w*|build\w*|cast|casts|casting|spell\w*|magic\w*|ritual\w*)\b",
    re.IGNORECASE,
)

_SITUATION_SYNONYMS: dict[Situation, tuple[str, ...]] = {
    Situation.COMBAT: ("melee", "weapon", "initiative", "attack", "fight", "combat", "battle", "defend", "dodge"),
    Situation.PERSUASION: ("social", "diplomacy", "persua", "convinc", "charisma", "deception", "intimidat", "negotiat"),
    Situation.STEALTH: ("stealth", "sneak", "hid", "sleight", "conceal", "quiet"),
    Situation.INVESTIGATION: ("investigat", "perception", "notice", "search", "clue", "insight", "lore", "arcana", "examin"),
    Situation.SURVIVAL: ("surviv", "athletic", "endurance", "wilderness", "nature", "navigat", "track", "climb"),
}


def _unwrap(line: str) -> str:
    unwrapped = line.strip().strip(_WRAPPER_CHARS)
    return _LIST_PREFIX_RE.sub("", unwrapped, count=1).strip(_WRAPPER_CHARS)


def _parse_directive_line(line: str) -> RollDirective | None:
    match = _DIRECTIVE_HEAD_RE.match(_unwrap(line))
    if not match:
        return None
    rest = match.group("rest").strip()
    if rest and not rest.startswith("|"):
        return None

    situation: str | None = None
    reason = ""
    for segment in rest.split("|"):
        key, sep, value = segment.partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "situation" and value:
            situation = value
        elif key == "reason":
            reason = value
    return RollDirective(situation=situation, reason=reason, line=line)


def parse_roll_directive(text: str | None) -> ParsedDirective:
    """Return the first whole-line roll directive in ``text``.

    Anything that does not match the grammar
    ``ROLL: d20 [| situation=<tag>] [| reason=<text>]`` is ordinary prose.
    """
    for line in (text or "").splitlines():
        directive = _parse_directive_line(line)
        if directive is not None:
            return directive
    return NoDirective()


def classify_player_input(text: str | None) -> Situation | None:
    raw = text or ""
    for situation, pattern in _CUES:
        if pattern.search(raw):
            return situation
    if _GENERIC_CUE_RE.search(raw):
        return Situation.UNSPECIFIED
    return None


def normalize_situation(tag: str | None, reason: str = "") -> Situation:
    """Map a free-form situation tag into the closed set.

    Ambiguous or empty tags resolve to investigation.
    """
    raw = (tag or "").strip().lower()
    if raw:
        try:
            return Situation(raw)
        except ValueError:
            pass
    haystack = raw or (reason or "").strip().lower()
    if not haystack:
        return Situation.INVESTIGATION

    scores: dict[Situation, int] = {}
    for situation, stems in _SITUATION_SYNONYMS.items():
        score = sum(1 for stem in stems if stem in haystack)
        if score:
            scores[situation] = score
    if not scores:
        return Situation.INVESTIGATION
    best = max(scores.values())
    winners = [situation for situation, score in scores.items() if score == best]
    if len(winners) != 1:
        return Situation.INVESTIGATION
    return winners[0]


def _filter_lines(text: str | None, patterns: tuple[re.Pattern[str], ...]) -> str:
    kept: list[str] = []
    for line in (text or "").splitlines():
        candidate = line.strip()
        if candidate and any(pattern.match(candidate) for pattern in patterns):
            continue
        kept.append(line.rstrip())
    cleaned = "\n".join(kept)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def strip_directive_lines(text: str | None) -> str:
    return _filter_lines(text, (_SENTINEL_LINE_RE,))


def scrub_protocol_artifacts(text: str | None) -> str:
    """Drop residual sentinels, roll reminders and leaked hint lines."""
    return _filter_lines(text, _ARTIFACT_LINE_RES)


class RollProtocol:
    def __init__(
        self,
        dice: DiceResolver,
        generation: GenerationPort,
        *,
        generation_config: GenerationConfig | None = None,
    ):
        self._dice = dice
        self._generation = generation
        self._generation_config = generation_config or GenerationConfig()

    async def process(
        self,
        first_response: str,
        *,
        player_input: str,
        prior_roll: DiceResult | None,
        build_prompt: Callable[[DiceResult], str],
    ) -> RollOutcome:
        """Resolve a roll request in ``first_response`` and fold it back in.

        ``build_prompt`` returns the regular context digest for the turn with
        the resolved roll included; the roll-resolved instruction is appended
        here before the second generation call.
        """
        if prior_roll is not None:
            if not isinstance(parse_roll_directive(first_response), NoDirective):
                logger.info("Ignoring roll directive: turn already carries a %s roll", prior_roll.situation)
            return RollOutcome(
                text=scrub_protocol_artifacts(first_response),
                dice_result=prior_roll,
                dice_meta={"source": "pre_roll", "integrated": True},
            )

        parsed = parse_roll_directive(first_response)
        if isinstance(parsed, RollDirective):
            situation = normalize_situation(parsed.situation, parsed.reason)
            reason = parsed.reason
            source = "directive"
            requested = parsed.situation
        else:
            cue = classify_player_input(player_input)
            if cue is None:
                return RollOutcome(text=scrub_protocol_artifacts(first_response))
            situation = cue
            reason = player_input.strip()[:200]
            source = "synthesized"
            requested = None

        roll = self._dice.roll(situation, reason=reason)
        stripped = strip_directive_lines(first_response)
        meta: dict[str, Any] = {
            "source": source,
            "requested_situation": requested,
            "integrated": False,
        }

        prompt = "\n\n".join(
            [
                build_prompt(roll),
                render_roll_resolved(roll.situation, roll.result, roll.interpretation, roll.reason),
            ]
        )
        try:
            second = await self._generation.generate(prompt, self._generation_config)
        except Exception as exc:
            logger.warning("Roll integration call failed, keeping first response: %s", exc)
            return RollOutcome(text=scrub_protocol_artifacts(stripped), dice_result=roll, dice_meta=meta)

        cleaned = scrub_protocol_artifacts(second)
        if not cleaned:
            logger.warning("Roll integration call returned no usable text, keeping first response")
            return RollOutcome(text=scrub_protocol_artifacts(stripped), dice_result=roll, dice_meta=meta)

        meta["integrated"] = True
        return RollOutcome(text=cleaned, dice_result=roll, dice_meta=meta)
