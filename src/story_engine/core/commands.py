from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CommandName(str, Enum):
    CHECKPOINT = "checkpoint"
    BACK = "back"
    LIST_CHECKPOINTS = "list-checkpoints"
    CHAR = "char"
    INFO = "info"
    TIMEOUT = "timeout"
    RESET_SCENE = "reset-scene"
    END = "end"
    STATS = "stats"
    ROLL = "roll"


SUPPORTED_COMMANDS = tuple(f"/{name.value}" for name in CommandName)


@dataclass(frozen=True)
class FreeText:
    text: str


@dataclass(frozen=True)
class SlashCommand:
    raw_name: str
    argument: str = ""
    name: Optional[CommandName] = None

    @property
    def known(self) -> bool:
        return self.name is not None


ParsedInput = Union[FreeText, SlashCommand]


def parse_input(raw: str | None) -> ParsedInput:
    text = (raw or "").strip()
    if not text.startswith("/"):
        return FreeText(text)

    head, _, rest = text[1:].partition(" ")
    raw_name = head.strip().lower()
    try:
        name: CommandName | None = CommandName(raw_name)
    except ValueError:
        name = None
    return SlashCommand(raw_name=raw_name, argument=rest.strip(), name=name)
