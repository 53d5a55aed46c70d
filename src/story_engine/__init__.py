from .core.engine import TurnProcessor
from .core.generation import FallbackGenerationService
from .core.tokens import estimate_tokens
from .core.types import (
    CommandResult,
    EngineConfig,
    ErrorResult,
    GenerationConfig,
    NarrativeAdvanced,
    Session,
    SetupAdvanced,
    StartSessionRequest,
)
from .persistence.memory import InMemorySessionStore

__all__ = [
    "TurnProcessor",
    "FallbackGenerationService",
    "InMemorySessionStore",
    "estimate_tokens",
    "CommandResult",
    "EngineConfig",
    "ErrorResult",
    "GenerationConfig",
    "NarrativeAdvanced",
    "Session",
    "SetupAdvanced",
    "StartSessionRequest",
]
