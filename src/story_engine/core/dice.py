from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .ports import RandomSource
from .types import DiceResult, Situation, utcnow

D20_SIDES = 20

CRITICAL_FAILURE = "critical_failure"
FAILURE = "failure"
PARTIAL = "partial"
SUCCESS = "success"
CRITICAL_SUCCESS = "critical_success"

DIE_SIDES = {
    "d4": 4,
    "d6": 6,
    "d8": 8,
    "d10": 10,
    "d12": 12,
    "d20": 20,
    "d100": 100,
}

STORY_ASPECTS = {
    "mood": ("dark", "hopeful", "tense", "peaceful", "mysterious", "chaotic", "romantic", "melancholic"),
    "weather": ("stormy", "clear", "foggy", "windy", "calm", "rainy", "snowy", "overcast"),
}


@dataclass(frozen=True)
class SituationBands:
    """Interpretation table for one situation.

    ``failure_max`` and ``partial_max`` are inclusive upper bounds; results
    above ``partial_max`` (and below 20) are successes. 1 and 20 always use
    the critical texts.
    """

    critical_failure: str
    failure: str
    partial: str
    success: str
    critical_success: str
    failure_max: int
    partial_max: int

    def interpret(self, result: int) -> tuple[str, str]:
        if result <= 1:
            return CRITICAL_FAILURE, self.critical_failure
        if result >= D20_SIDES:
            return CRITICAL_SUCCESS, self.critical_success
        if result <= self.failure_max:
            return FAILURE, self.failure
        if result <= self.partial_max:
            return PARTIAL, self.partial
        return SUCCESS, self.success


# combat: 2-9 miss, 10-15 glancing hit, 16-19 solid hit
# persuasion: 2-8 failure, 9-15 partial, 16-19 success
# stealth: 2-7 detected, 8-14 noticed, 15-19 hidden
# investigation: 2-8 nothing, 9-15 minor clue, 16-19 important discovery
# survival: 2-7 struggle, 8-14 manage at a cost, 15-19 thrive
# unspecified: 2-8 failure, 9-15 partial, 16-19 success
SITUATION_BANDS: dict[Situation, SituationBands] = {
    Situation.COMBAT: SituationBands(
        critical_failure="Critical miss - you stumble and fall",
        failure="Miss - the blow fails to land",
        partial="Glancing hit - you connect, but not cleanly",
        success="Hit - a solid, telling blow",
        critical_success="Critical hit - a devastating blow",
        failure_max=9,
        partial_max=15,
    ),
    Situation.PERSUASION: SituationBands(
        critical_failure="Critical failure - they become hostile",
        failure="Failure - they are not convinced",
        partial="Partial success - they hesitate, wanting more",
        success="Success - they come around to your view",
        critical_success="Critical success - they're completely convinced",
        failure_max=8,
        partial_max=15,
    ),
    Situation.STEALTH: SituationBands(
        critical_failure="Critical failure - you make a loud noise",
        failure="Detected - someone spots you",
        partial="Noticed - something seems off, but you are not pinpointed",
        success="Hidden - you slip by unseen",
        critical_success="Critical success - you're completely undetected",
        failure_max=7,
        partial_max=14,
    ),
    Situation.INVESTIGATION: SituationBands(
        critical_failure="Critical failure - you find false information",
        failure="No clues found",
        partial="Minor clue - a small detail stands out",
        success="Important discovery",
        critical_success="Critical success - you discover a crucial clue",
        failure_max=8,
        partial_max=15,
    ),
    Situation.SURVIVAL: SituationBands(
        critical_failure="Critical failure - you get lost",
        failure="Struggle - the wilds get the better of you",
        partial="Manage - you get through, at a cost",
        success="Thrive - you handle the conditions with ease",
        critical_success="Critical success - you find the perfect path",
        failure_max=7,
        partial_max=14,
    ),
    Situation.UNSPECIFIED: SituationBands(
        critical_failure="Critical failure - something goes terribly wrong",
        failure="Failure - things don't go as planned",
        partial="Partial success - it works, with a complication",
        success="Success - things go well",
        critical_success="Critical success - a perfect outcome",
        failure_max=8,
        partial_max=15,
    ),
}


def coerce_situation(value: object) -> Situation:
    if isinstance(value, Situation):
        return value
    raw = str(value or "").strip().lower()
    try:
        return Situation(raw)
    except ValueError:
        return Situation.UNSPECIFIED


class DiceResolver:
    """Maps a situation to a d20 outcome with interpretation text.

    The random source is injectable; by default every draw goes through
    ``random.SystemRandom`` so no two calls share state.
    """

    def __init__(
        self,
        rng: RandomSource | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._rng = rng or random.SystemRandom()
        self._clock = clock or utcnow

    @staticmethod
    def situations() -> list[str]:
        return [situation.value for situation in Situation]

    def _draw(self, sides: int = D20_SIDES) -> int:
        return self._rng.randint(1, sides)

    def _build(self, situation: Situation, result: int, reason: str, rolls: list[int]) -> DiceResult:
        outcome, interpretation = SITUATION_BANDS[situation].interpret(result)
        return DiceResult(
            situation=situation.value,
            dice_kind="d20",
            result=result,
            interpretation=interpretation,
            outcome=outcome,
            reason=reason,
            rolls=rolls,
            timestamp=self._clock(),
        )

    def roll(self, situation: Situation | str | None, reason: str = "") -> DiceResult:
        resolved = coerce_situation(situation)
        result = self._draw()
        return self._build(resolved, result, reason, [result])

    def roll_with_advantage(self, situation: Situation | str | None, reason: str = "") -> DiceResult:
        resolved = coerce_situation(situation)
        rolls = [self._draw(), self._draw()]
        return self._build(resolved, max(rolls), reason, rolls)

    def roll_with_disadvantage(self, situation: Situation | str | None, reason: str = "") -> DiceResult:
        resolved = coerce_situation(situation)
        rolls = [self._draw(), self._draw()]
        return self._build(resolved, min(rolls), reason, rolls)

    def roll_die(self, kind: str, reason: str = "") -> DiceResult:
        key = str(kind or "").strip().lower()
        sides = DIE_SIDES.get(key)
        if sides is None:
            raise ValueError(f"Unknown dice type: {kind}")
        result = self._draw(sides)
        outcome, interpretation = self._interpret_percentage(result, sides)
        return DiceResult(
            situation=Situation.UNSPECIFIED.value,
            dice_kind=key,
            result=result,
            interpretation=interpretation,
            outcome=outcome,
            reason=reason,
            rolls=[result],
            timestamp=self._clock(),
        )

    def roll_story_aspect(self, aspect: str) -> str:
        table = STORY_ASPECTS.get(str(aspect or "").strip().lower())
        if table is None:
            raise ValueError(f"Unknown story aspect: {aspect}")
        return self._rng.choice(table)

    @staticmethod
    def _interpret_percentage(result: int, sides: int) -> tuple[str, str]:
        if result == 1:
            return CRITICAL_FAILURE, "Critical failure"
        if result == sides:
            return CRITICAL_SUCCESS, "Critical success"
        percentage = result / sides * 100
        if percentage <= 25:
            return FAILURE, "Major failure"
        if percentage <= 40:
            return FAILURE, "Failure"
        if percentage <= 60:
            return PARTIAL, "Average"
        if percentage <= 75:
            return SUCCESS, "Success"
        return SUCCESS, "Great success"
