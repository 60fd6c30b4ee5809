import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

HEARTBEAT_FILENAME = "HEARTBEAT.md"
HEARTBEAT_OK = "HEARTBEAT_OK"
HEARTBEAT_PROMPT = (
    "Read HEARTBEAT.md in your workspace.\n"
    "Follow any instructions or tasks listed there.\n"
    f"If nothing needs attention, reply with just: {HEARTBEAT_OK}"
)
HEARTBEAT_MAX_BYTES = 1024 * 1024
HEARTBEAT_POLL_SECONDS = 30.0


def is_heartbeat_empty(content: str) -> bool:
    for line in content.splitlines():
        trimmed = line.strip(" \t\r")
        if not trimmed or trimmed.startswith("#") or trimmed.startswith("<!--"):
            continue
        return False
    return True


class HeartbeatService:
    def __init__(
        self,
        workspace_path: str,
        interval_seconds: float = 1800,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.workspace_path = workspace_path
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.last_tick_at: Optional[float] = None

    @property
    def heartbeat_path(self) -> Path:
        return Path(self.workspace_path) / HEARTBEAT_FILENAME

    def should_tick(self) -> bool:
        now = self.clock()
        if self.last_tick_at is None:
            # never tick immediately on startup
            self.last_tick_at = now
            return False
        return now - self.last_tick_at >= self.interval_seconds

    def record_tick(self) -> None:
        self.last_tick_at = self.clock()

    def get_prompt(self) -> Optional[str]:
        path = self.heartbeat_path
        if not path.exists():
            return None
        with path.open("rb") as handle:
            raw = handle.read(HEARTBEAT_MAX_BYTES)
        if is_heartbeat_empty(raw.decode("utf-8", errors="replace")):
            return None
        return HEARTBEAT_PROMPT


def run_heartbeat_once(
    service: HeartbeatService,
    deliver: Callable[[str], object],
) -> bool:
    if not service.should_tick():
        return False
    service.record_tick()
    try:
        prompt = service.get_prompt()
    except OSError:
        logging.exception("Failed to read %s", service.heartbeat_path)
        return False
    if prompt is None:
        return False
    logging.info("Heartbeat tick: surfacing %s", service.heartbeat_path)
    try:
        deliver(prompt)
    except Exception:
        logging.exception("Heartbeat delivery failed")
        return False
    return True


def start_heartbeat_thread(
    service: HeartbeatService,
    deliver: Callable[[str], object],
    stop_event: Optional[threading.Event] = None,
    poll_seconds: float = HEARTBEAT_POLL_SECONDS,
) -> threading.Thread:
    stop = stop_event or threading.Event()

    def worker() -> None:
        while not stop.wait(poll_seconds):
            run_heartbeat_once(service, deliver)

    thread = threading.Thread(target=worker, name="heartbeat", daemon=True)
    thread.start()
    return thread
