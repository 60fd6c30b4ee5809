"""Typed view of the Telegram getUpdates wire format.

Only the fields the bridge acts on are mapped; everything else in the
payload is ignored so that new Telegram fields never break parsing.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

# Message payload keys the bridge recognizes but cannot process.
UNSUPPORTED_PAYLOAD_KEYS = ("voice", "audio", "video_note")


@dataclass(frozen=True)
class Update:
    update_id: int
    chat_id: Optional[int] = None
    message_id: Optional[int] = None
    text: Optional[str] = None
    unsupported_kind: Optional[str] = None

    @property
    def next_offset(self) -> int:
        return self.update_id + 1


def parse_update(raw: Dict[str, object]) -> Optional[Update]:
    update_id = raw.get("update_id")
    if not isinstance(update_id, int) or isinstance(update_id, bool):
        return None

    message = raw.get("message")
    if not isinstance(message, dict):
        return Update(update_id=update_id)

    chat = message.get("chat")
    chat_id = chat.get("id") if isinstance(chat, dict) else None
    if not isinstance(chat_id, int):
        return Update(update_id=update_id)

    message_id = message.get("message_id")
    text = message.get("text")

    unsupported_kind: Optional[str] = None
    for key in UNSUPPORTED_PAYLOAD_KEYS:
        if isinstance(message.get(key), dict):
            unsupported_kind = key
            break

    return Update(
        update_id=update_id,
        chat_id=chat_id,
        message_id=message_id if isinstance(message_id, int) else None,
        text=text if isinstance(text, str) else None,
        unsupported_kind=unsupported_kind,
    )


def parse_updates(result: List[object]) -> List[Update]:
    updates: List[Update] = []
    for item in result:
        if not isinstance(item, dict):
            logging.warning("Skipping non-object entry in getUpdates result: %r", item)
            continue
        update = parse_update(item)
        if update is None:
            logging.warning("Skipping update without an integer update_id: %r", item)
            continue
        updates.append(update)
    return updates
