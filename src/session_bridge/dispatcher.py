"""Update ingestion and dispatch loop.

One thread fetches a batch with getUpdates, handles each update in arrival
order, and advances the cursor past an update only once its replies have
been sent. A failure anywhere aborts the rest of the batch; the loop logs
it, sleeps, and starts over from the last advanced cursor. Updates after
the failure point are fetched again, so replies are at-least-once.
"""

import enum
import logging
import threading
import time
from typing import Callable, List, Optional, Protocol

from .classifier import Empty, TextMessage, UnsupportedContent, classify_update
from .config import Config
from .executor import ProcessorError, SessionProcessor
from .offset_tracker import OffsetTracker
from .session_router import ResetAll, ResetWithRemainder, derive_session, detect_command
from .state_store import OffsetStore
from .transport import BackendError
from .updates import Update


class BackendClient(Protocol):
    def get_updates(self, offset: int, timeout_seconds: Optional[int] = None) -> List[Update]:
        ...

    def send_message(self, chat_id: int, text: str) -> None:
        ...

    def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        ...


class LoopState(enum.Enum):
    FETCHING = "fetching"
    PROCESSING = "processing"
    BACKOFF_WAIT = "backoff_wait"


class UpdateDispatcher:
    def __init__(
        self,
        config: Config,
        client: BackendClient,
        processor: SessionProcessor,
        tracker: OffsetTracker,
        offset_store: Optional[OffsetStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client = client
        self.processor = processor
        self.tracker = tracker
        self.offset_store = offset_store
        self.sleep = sleep
        self.state = LoopState.FETCHING
        self.last_error: Optional[BaseException] = None
        # Serializes processor calls between the loop and deliver_text callers.
        self._processor_lock = threading.Lock()

    def session_for(self, chat_id: int) -> str:
        return derive_session(chat_id, self.config.session_namespace)

    def run_forever(self) -> None:
        logging.info("Dispatch loop started at offset=%s", self.tracker.current())
        while True:
            self.step()

    def step(self) -> LoopState:
        if self.state is LoopState.BACKOFF_WAIT:
            self.sleep(self.config.retry_sleep_seconds)
            self.state = LoopState.FETCHING
            return self.state

        try:
            self.run_cycle()
        except BackendError as exc:
            self._enter_backoff(exc, "Network/API error while polling Telegram")
        except ProcessorError as exc:
            self._enter_backoff(exc, "Processor failed; batch will be refetched")
        except Exception as exc:
            self._enter_backoff(exc, "Unexpected loop error")
        else:
            self.last_error = None
            self.state = LoopState.FETCHING
        finally:
            self._checkpoint()
        return self.state

    def _enter_backoff(self, exc: BaseException, message: str) -> None:
        logging.exception(
            "%s (offset=%s); retrying in %ss",
            message,
            self.tracker.current(),
            self.config.retry_sleep_seconds,
        )
        self.last_error = exc
        self.state = LoopState.BACKOFF_WAIT

    def _checkpoint(self) -> None:
        if self.offset_store is not None:
            self.offset_store.save(self.tracker.current())

    def run_cycle(self) -> int:
        self.state = LoopState.FETCHING
        updates = self.client.get_updates(self.tracker.current(), self.config.poll_timeout_seconds)
        if not updates:
            return 0

        logging.debug("Fetched %s update(s) at offset=%s", len(updates), self.tracker.current())
        self.state = LoopState.PROCESSING
        for update in updates:
            self.handle_update(update)
            self.tracker.advance(update.next_offset)
        return len(updates)

    def handle_update(self, update: Update) -> None:
        classification = classify_update(update)
        chat_id = update.chat_id
        if isinstance(classification, Empty) or chat_id is None:
            return

        if isinstance(classification, UnsupportedContent):
            logging.info(
                "Unsupported %s message from chat_id=%s (update_id=%s)",
                classification.kind,
                chat_id,
                update.update_id,
            )
            self.client.send_message(chat_id, self.config.unsupported_content_message)
            return

        if not isinstance(classification, TextMessage):
            raise TypeError(f"Unknown classification {classification!r}")

        if classification.unsupported_kind is not None:
            try:
                self.client.send_message(chat_id, self.config.unsupported_content_message)
            except Exception:
                logging.exception("Failed to send unsupported-content notice to chat_id=%s", chat_id)

        session_id = self.session_for(chat_id)
        text = classification.body
        command = detect_command(text)
        if command is not None:
            self._reset_session(session_id)
        if isinstance(command, ResetAll):
            self.client.send_message(chat_id, self.config.reset_confirmation_message)
            return
        if isinstance(command, ResetWithRemainder):
            text = command.remainder

        logging.info("Processing message from chat_id=%s session=%s", chat_id, session_id)
        self._send_typing(chat_id)
        self._reply(chat_id, self._process(session_id, text))

    def deliver_text(self, chat_id: int, text: str, silent_reply: Optional[str] = None) -> str:
        """Route a synthetic message through the chat's session.

        Never touches the cursor. A reply equal to ``silent_reply`` is not sent.
        """
        session_id = self.session_for(chat_id)
        reply = self._process(session_id, text)
        if silent_reply is not None and reply.strip() == silent_reply:
            logging.info("Suppressed %s reply for session=%s", silent_reply, session_id)
            return reply
        self._reply(chat_id, reply)
        return reply

    def _process(self, session_id: str, text: str) -> str:
        with self._processor_lock:
            try:
                return self.processor.process(session_id, text)
            except ProcessorError:
                raise
            except Exception as exc:
                raise ProcessorError(f"Processor failed for session {session_id}: {exc}") from exc

    def _reply(self, chat_id: int, reply: str) -> None:
        if not reply.strip():
            logging.warning("Processor returned an empty reply for chat_id=%s", chat_id)
            reply = self.config.empty_output_message
        self.client.send_message(chat_id, reply)

    def _reset_session(self, session_id: str) -> None:
        try:
            with self._processor_lock:
                self.processor.reset(session_id)
        except Exception:
            logging.warning("Failed to reset session %s", session_id, exc_info=True)

    def _send_typing(self, chat_id: int) -> None:
        try:
            self.client.send_chat_action(chat_id, "typing")
        except Exception:
            logging.warning("Failed to send typing indicator to chat_id=%s", chat_id, exc_info=True)
