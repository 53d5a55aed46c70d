from .checkpoints import CheckpointManager
from .commands import CommandName, FreeText, SlashCommand, parse_input
from .context import ContextAssembler, select_relevant
from .dice import DiceResolver
from .engine import TurnProcessor
from .errors import (
    CheckpointNotFoundError,
    GenerationUnavailableError,
    NotFoundError,
    SessionNotFoundError,
    StaleSessionError,
    StoryEngineError,
    TurnBusyError,
)
from .generation import FallbackGenerationService
from .ports import GenerationPort, RandomSource
from .roll_protocol import (
    NoDirective,
    RollDirective,
    RollOutcome,
    RollProtocol,
    classify_player_input,
    normalize_situation,
    parse_roll_directive,
    scrub_protocol_artifacts,
    strip_directive_lines,
)
from .summary import SummaryCompactor, parse_summary_response
from .tokens import estimate_tokens
from .types import (
    Character,
    Checkpoint,
    CheckpointInfo,
    CommandResult,
    ContextConfig,
    DiceResult,
    EngineConfig,
    ErrorResult,
    Event,
    GenerationConfig,
    Location,
    NarrativeAdvanced,
    Session,
    SessionStatus,
    SetupAdvanced,
    Situation,
    StartSessionRequest,
    Summary,
    SummaryConfig,
    TurnResult,
    WorldState,
)

__all__ = [
    "TurnProcessor",
    "CheckpointManager",
    "ContextAssembler",
    "DiceResolver",
    "FallbackGenerationService",
    "RollProtocol",
    "SummaryCompactor",
    "CommandName",
    "FreeText",
    "SlashCommand",
    "parse_input",
    "select_relevant",
    "classify_player_input",
    "normalize_situation",
    "parse_roll_directive",
    "parse_summary_response",
    "scrub_protocol_artifacts",
    "strip_directive_lines",
    "estimate_tokens",
    "GenerationPort",
    "RandomSource",
    "NoDirective",
    "RollDirective",
    "RollOutcome",
    "StoryEngineError",
    "NotFoundError",
    "SessionNotFoundError",
    "CheckpointNotFoundError",
    "GenerationUnavailableError",
    "StaleSessionError",
    "TurnBusyError",
    "Character",
    "Checkpoint",
    "CheckpointInfo",
    "CommandResult",
    "ContextConfig",
    "DiceResult",
    "EngineConfig",
    "ErrorResult",
    "Event",
    "GenerationConfig",
    "Location",
    "NarrativeAdvanced",
    "Session",
    "SessionStatus",
    "SetupAdvanced",
    "Situation",
    "StartSessionRequest",
    "Summary",
    "SummaryConfig",
    "TurnResult",
    "WorldState",
]
