from dataclasses import dataclass
from typing import Optional, Union

from .config import DEFAULT_SESSION_NAMESPACE

RESET_COMMAND = "/new"


@dataclass(frozen=True)
class ResetAll:
    pass


@dataclass(frozen=True)
class ResetWithRemainder:
    remainder: str


Command = Union[ResetAll, ResetWithRemainder]


def derive_session(chat_id: int, namespace: str = DEFAULT_SESSION_NAMESPACE) -> str:
    return f"{namespace}_{chat_id}"


def detect_command(text: str) -> Optional[Command]:
    if not text.startswith(RESET_COMMAND):
        return None
    rest = text[len(RESET_COMMAND):]
    if rest and not rest[0].isspace():
        # "/newer" and friends are ordinary text
        return None
    remainder = rest.lstrip(" ")
    if not remainder.strip():
        return ResetAll()
    return ResetWithRemainder(remainder)
