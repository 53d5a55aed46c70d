from __future__ import annotations

from typing import Protocol, Sequence, TypeVar

from .types import GenerationConfig

T = TypeVar("T")


class GenerationPort(Protocol):
    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        ...


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int:
        ...

    def choice(self, seq: Sequence[T]) -> T:
        ...
