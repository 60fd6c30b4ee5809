import json
import logging
from http.client import HTTPException
from typing import Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .config import TELEGRAM_LIMIT, Config
from .updates import Update, parse_updates

# Slack on top of the long-poll timeout before the socket gives up.
REQUEST_TIMEOUT_MARGIN_SECONDS = 10


class BackendError(RuntimeError):
    def __init__(self, method: str, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Telegram API {method} failed: {message}")
        self.method = method
        self.cause = cause


class DecodeError(BackendError):
    pass


def split_for_limit(text: str, limit: int = TELEGRAM_LIMIT) -> List[str]:
    if len(text) <= limit:
        return [text]
    chunks: List[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, limit)
        if split_at <= 0:
            split_at = limit
        else:
            # keep the newline with the chunk so joined chunks equal the input
            split_at += 1
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:]
    return chunks


class TelegramClient:
    def __init__(self, config: Config) -> None:
        self.config = config

    def _endpoint(self, method: str) -> str:
        return f"{self.config.api_base}/bot{self.config.token}/{method}"

    def _open(self, method: str, request: Request, timeout: float) -> Dict[str, object]:
        try:
            with urlopen(request, timeout=timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            raise BackendError(method, f"HTTP {exc.code} {exc.reason}", exc) from exc
        except (URLError, HTTPException, TimeoutError, OSError) as exc:
            raise BackendError(method, f"network error: {exc}", exc) from exc

        try:
            decoded = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(method, f"invalid JSON envelope: {exc}", exc) from exc
        if not isinstance(decoded, dict):
            raise DecodeError(method, "response envelope is not an object")
        if not decoded.get("ok"):
            description = decoded.get("description", "unknown Telegram error")
            raise BackendError(method, str(description))
        return decoded

    def _post_json(self, method: str, payload: Dict[str, object]) -> Dict[str, object]:
        request = Request(
            self._endpoint(method),
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        return self._open(
            method,
            request,
            timeout=self.config.poll_timeout_seconds + REQUEST_TIMEOUT_MARGIN_SECONDS,
        )

    def get_updates(
        self,
        offset: int,
        timeout_seconds: Optional[int] = None,
    ) -> List[Update]:
        timeout = self.config.poll_timeout_seconds if timeout_seconds is None else timeout_seconds
        query = urlencode({"offset": offset, "timeout": timeout})
        request = Request(f"{self._endpoint('getUpdates')}?{query}", method="GET")
        response = self._open(
            "getUpdates",
            request,
            timeout=timeout + REQUEST_TIMEOUT_MARGIN_SECONDS,
        )
        result = response.get("result", [])
        if not isinstance(result, list):
            raise DecodeError("getUpdates", "result is not a list")
        return parse_updates(result)

    def send_message(self, chat_id: int, text: str) -> None:
        for chunk in split_for_limit(text):
            self._post_json("sendMessage", {"chat_id": str(chat_id), "text": chunk})

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self._post_json("sendChatAction", {"chat_id": str(chat_id), "action": action})


def drop_pending_updates(client: TelegramClient, offset: int = 0) -> int:
    dropped = 0

    while True:
        updates = client.get_updates(offset, timeout_seconds=0)
        if not updates:
            break

        dropped += len(updates)
        next_offset = max(offset, max(update.next_offset for update in updates))
        if next_offset == offset:
            logging.warning(
                "Startup backlog discard could not advance offset; stopping discard loop."
            )
            break
        offset = next_offset

    if dropped:
        logging.info("Dropped %s queued Telegram update(s) at startup.", dropped)
    else:
        logging.info("No queued Telegram updates found at startup.")
    return offset
