from dataclasses import dataclass
from typing import Optional, Union

from .updates import Update


@dataclass(frozen=True)
class TextMessage:
    body: str
    # Set when the same message also carried content the bridge cannot handle.
    unsupported_kind: Optional[str] = None


@dataclass(frozen=True)
class UnsupportedContent:
    kind: str


@dataclass(frozen=True)
class Empty:
    pass


Classification = Union[TextMessage, UnsupportedContent, Empty]


def classify_update(update: Update) -> Classification:
    if update.chat_id is None:
        return Empty()

    text = update.text or ""
    if text.strip():
        return TextMessage(text, unsupported_kind=update.unsupported_kind)
    if update.unsupported_kind is not None:
        return UnsupportedContent(update.unsupported_kind)
    return Empty()
