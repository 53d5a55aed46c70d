from __future__ import annotations

import asyncio

from story_engine.core.dice import DiceResolver
from story_engine.core.roll_protocol import (
    NoDirective,
    RollDirective,
    RollProtocol,
    classify_player_input,
    normalize_situation,
    parse_roll_directive,
    scrub_protocol_artifacts,
    strip_directive_lines,
)
from story_engine.core.types import Situation


class QueuedRandom:
    def __init__(self, values):
        self.values = list(values)

    def randint(self, a, b):
        return self.values.pop(0)

    def choice(self, seq):
        return seq[0]


class StubGeneration:
    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate(self, prompt, config):
        self.prompts.append(prompt)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_parse_directive_with_both_keys():
    parsed = parse_roll_directive(
        "The guard squints into the dark.\nROLL: d20 | situation=stealth | reason=slip past the guard"
    )
    assert isinstance(parsed, RollDirective)
    assert parsed.situation == "stealth"
    assert parsed.reason == "slip past the guard"


def test_parse_directive_is_case_insensitive_and_order_free():
    parsed = parse_roll_directive("  roll: D20 | reason=swing | situation=Combat  ")
    assert isinstance(parsed, RollDirective)
    assert parsed.situation == "Combat"
    assert parsed.reason == "swing"


def test_parse_directive_keys_optional_and_markdown_wrapped():
    bare = parse_roll_directive("ROLL: d20")
    assert isinstance(bare, RollDirective)
    assert bare.situation is None
    assert bare.reason == ""

    wrapped = parse_roll_directive("**ROLL: d20 | situation=combat**")
    assert isinstance(wrapped, RollDirective)
    assert wrapped.situation == "combat"


def test_malformed_or_inline_directives_are_prose():
    assert isinstance(parse_roll_directive("ROLL: d6 | situation=combat"), NoDirective)
    assert isinstance(parse_roll_directive("You shout ROLL: d20 at the sky."), NoDirective)
    assert isinstance(parse_roll_directive("ROLL: d20 situation=combat"), NoDirective)
    assert isinstance(parse_roll_directive(""), NoDirective)
    assert isinstance(parse_roll_directive(None), NoDirective)


def test_classify_player_input():
    assert classify_player_input("I attack the goblin") == Situation.COMBAT
    assert classify_player_input("I try to convince the captain") == Situation.PERSUASION
    assert classify_player_input("I sneak past the sentries") == Situation.STEALTH
    assert classify_player_input("I search the desk") == Situation.INVESTIGATION
    assert classify_player_input("We navigate the swamp") == Situation.SURVIVAL
    assert classify_player_input("I repair the radio") == Situation.UNSPECIFIED
    assert classify_player_input("I walk to the inn and order a drink") is None


def test_normalize_situation():
    assert normalize_situation("Combat") == Situation.COMBAT
    assert normalize_situation("melee") == Situation.COMBAT
    assert normalize_situation("perception") == Situation.INVESTIGATION
    assert normalize_situation("athletics") == Situation.SURVIVAL
    assert normalize_situation("social") == Situation.PERSUASION
    assert normalize_situation("unspecified") == Situation.UNSPECIFIED
    assert normalize_situation("") == Situation.INVESTIGATION
    assert normalize_situation("gibberish") == Situation.INVESTIGATION
    assert normalize_situation("sneak attack") == Situation.INVESTIGATION
    assert normalize_situation(None, reason="dodge the blade") == Situation.COMBAT


def test_scrub_removes_whole_line_artifacts_only():
    raw = "\n".join(
        [
            "The door creaks open.",
            "ROLL: d20 | situation=combat | reason=ambush",
            "Remember to roll for initiative!",
            "System note: the player seems nervous",
            "A cold wind blows through the hall.",
        ]
    )
    assert scrub_protocol_artifacts(raw) == "The door creaks open.\nA cold wind blows through the hall."

    stripped = strip_directive_lines(raw)
    assert "ROLL:" not in stripped
    assert "Remember to roll for initiative!" in stripped


def test_prior_roll_means_no_second_call():
    async def run_test():
        dice = DiceResolver(rng=QueuedRandom([14]))
        generation = StubGeneration([])
        protocol = RollProtocol(dice, generation)
        prior = dice.roll("combat")

        outcome = await protocol.process(
            "Steel meets steel.\nROLL: d20 | situation=combat",
            player_input="I attack",
            prior_roll=prior,
            build_prompt=lambda roll: "digest",
        )
        assert outcome.text == "Steel meets steel."
        assert outcome.dice_result is prior
        assert outcome.dice_meta["source"] == "pre_roll"
        assert generation.prompts == []

    asyncio.run(run_test())


def test_directive_resolves_and_integrates():
    async def run_test():
        dice = DiceResolver(rng=QueuedRandom([18]))
        generation = StubGeneration(["You slip past unseen.\nRemember to roll next time."])
        protocol = RollProtocol(dice, generation)

        outcome = await protocol.process(
            "The guard turns.\nROLL: d20 | situation=stealth | reason=slip past",
            player_input="I move quietly",
            prior_roll=None,
            build_prompt=lambda roll: f"DIGEST result={roll.result}",
        )
        assert outcome.text == "You slip past unseen."
        assert outcome.dice_result.situation == "stealth"
        assert outcome.dice_result.result == 18
        assert outcome.dice_result.outcome == "success"
        assert outcome.dice_meta == {
            "source": "directive",
            "requested_situation": "stealth",
            "integrated": True,
        }
        assert len(generation.prompts) == 1
        prompt = generation.prompts[0]
        assert prompt.startswith("DIGEST result=18")
        assert "Result: 18 on a d20" in prompt
        assert "Do NOT request another roll" in prompt

    asyncio.run(run_test())


def test_second_call_failure_degrades_but_keeps_roll():
    async def run_test():
        dice = DiceResolver(rng=QueuedRandom([3]))
        generation = StubGeneration([RuntimeError("provider down")])
        protocol = RollProtocol(dice, generation)

        outcome = await protocol.process(
            "The cliff face is slick.\nROLL: d20 | situation=survival",
            player_input="I climb",
            prior_roll=None,
            build_prompt=lambda roll: "digest",
        )
        assert outcome.text == "The cliff face is slick."
        assert outcome.dice_result is not None
        assert outcome.dice_result.situation == "survival"
        assert outcome.dice_meta["integrated"] is False

    asyncio.run(run_test())


def test_no_directive_and_no_cue_leaves_text_alone():
    async def run_test():
        generation = StubGeneration([])
        protocol = RollProtocol(DiceResolver(rng=QueuedRandom([])), generation)
        outcome = await protocol.process(
            "The tavern is warm.",
            player_input="I order a drink",
            prior_roll=None,
            build_prompt=lambda roll: "digest",
        )
        assert outcome.text == "The tavern is warm."
        assert outcome.dice_result is None
        assert generation.prompts == []

    asyncio.run(run_test())


def test_cue_synthesizes_roll_when_generator_forgets():
    async def run_test():
        generation = StubGeneration(["Your blade finds its mark."])
        protocol = RollProtocol(DiceResolver(rng=QueuedRandom([16])), generation)
        outcome = await protocol.process(
            "The bandit raises his axe.",
            player_input="I attack the bandit",
            prior_roll=None,
            build_prompt=lambda roll: "digest",
        )
        assert outcome.text == "Your blade finds its mark."
        assert outcome.dice_result.situation == "combat"
        assert outcome.dice_meta["source"] == "synthesized"

    asyncio.run(run_test())


def test_synthesized_roll_scrubs_sentinel_from_second_reply():
    async def run_test():
        generation = StubGeneration(["Your blade finds its mark.\nROLL: d20 | situation=combat"])
        protocol = RollProtocol(DiceResolver(rng=QueuedRandom([12])), generation)
        outcome = await protocol.process(
            "The bandit raises his axe.",
            player_input="I attack the bandit",
            prior_roll=None,
            build_prompt=lambda roll: "digest",
        )
        assert outcome.dice_meta["source"] == "synthesized"
        assert outcome.text == "Your blade finds its mark."
        assert "ROLL:" not in outcome.text
        assert len(generation.prompts) == 1

    asyncio.run(run_test())


def test_numbered_sentinel_lines_are_recognized_and_scrubbed():
    parsed = parse_roll_directive("You swing.\n1. ROLL: d20 | situation=combat")
    assert isinstance(parsed, RollDirective)
    assert parsed.situation == "combat"
    assert scrub_protocol_artifacts("You swing.\n1. ROLL: d20") == "You swing."
    assert strip_directive_lines("You swing.\n2) **ROLL: d20**") == "You swing."
