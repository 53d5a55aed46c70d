from __future__ import annotations

import asyncio

import pytest

from story_engine.core.errors import GenerationUnavailableError
from story_engine.core.generation import FallbackGenerationService
from story_engine.core.types import GenerationConfig


class Provider:
    def __init__(self, name, reply=None, error=None, delay=0.0):
        self.name = name
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = 0

    async def generate(self, prompt, config):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def test_first_healthy_provider_wins():
    async def run_test():
        primary = Provider("primary", reply="from primary")
        backup = Provider("backup", reply="from backup")
        service = FallbackGenerationService([primary, backup])
        assert await service.generate("p", GenerationConfig()) == "from primary"
        assert backup.calls == 0
        assert service.stats.by_provider == {"primary": 1}

    asyncio.run(run_test())


def test_falls_back_in_order():
    async def run_test():
        broken = Provider("broken", error=RuntimeError("502"))
        empty = Provider("empty", reply="   ")
        slow = Provider("slow", reply="too late", delay=1.0)
        good = Provider("good", reply="finally")
        service = FallbackGenerationService([broken, empty, slow, good], timeout_seconds=0.05)

        assert await service.generate("p", GenerationConfig()) == "finally"
        assert [p.calls for p in (broken, empty, slow, good)] == [1, 1, 1, 1]
        assert service.stats.failed_attempts == 3

    asyncio.run(run_test())


def test_exhaustion_raises_with_attempts():
    async def run_test():
        service = FallbackGenerationService(
            [Provider("a", error=RuntimeError("down")), Provider("b", reply="")],
        )
        with pytest.raises(GenerationUnavailableError) as excinfo:
            await service.generate("p", GenerationConfig())
        assert [name for name, _ in excinfo.value.attempts] == ["a", "b"]
        assert excinfo.value.attempts[0][1] == "down"

    asyncio.run(run_test())


def test_requires_providers():
    with pytest.raises(ValueError):
        FallbackGenerationService([])
