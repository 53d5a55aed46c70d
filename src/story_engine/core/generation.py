from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from .errors import GenerationUnavailableError
from .ports import GenerationPort
from .types import GenerationConfig

logger = logging.getLogger(__name__)


@dataclass
class GenerationStats:
    total_calls: int = 0
    failed_attempts: int = 0
    by_provider: dict[str, int] = field(default_factory=dict)


def provider_name(provider: GenerationPort) -> str:
    name = getattr(provider, "name", None)
    if isinstance(name, str) and name.strip():
        return name.strip()
    return type(provider).__name__


class FallbackGenerationService:
    """Tries each provider in order until one returns usable text.

    A provider fails when it raises, times out or returns blank text. When
    every provider fails, ``GenerationUnavailableError`` carries the
    per-provider reasons.
    """

    def __init__(
        self,
        providers: Sequence[GenerationPort],
        *,
        timeout_seconds: float | None = 30.0,
    ):
        if not providers:
            raise ValueError("at least one generation provider is required")
        self._providers = list(providers)
        self._timeout_seconds = timeout_seconds
        self._stats = GenerationStats()

    @property
    def stats(self) -> GenerationStats:
        return self._stats

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        attempts: list[tuple[str, str]] = []
        for provider in self._providers:
            name = provider_name(provider)
            try:
                if self._timeout_seconds is None:
                    text = await provider.generate(prompt, config)
                else:
                    text = await asyncio.wait_for(
                        provider.generate(prompt, config),
                        timeout=self._timeout_seconds,
                    )
            except asyncio.TimeoutError:
                reason = f"timed out after {self._timeout_seconds}s"
                logger.warning("Generation provider %s %s", name, reason)
                attempts.append((name, reason))
                self._stats.failed_attempts += 1
                continue
            except Exception as exc:
                logger.warning("Generation provider %s failed: %s", name, exc)
                attempts.append((name, str(exc) or type(exc).__name__))
                self._stats.failed_attempts += 1
                continue

            if not isinstance(text, str) or not text.strip():
                logger.warning("Generation provider %s returned an empty response", name)
                attempts.append((name, "empty_response"))
                self._stats.failed_attempts += 1
                continue

            self._stats.total_calls += 1
            self._stats.by_provider[name] = self._stats.by_provider.get(name, 0) + 1
            return text

        raise GenerationUnavailableError(attempts=attempts)
