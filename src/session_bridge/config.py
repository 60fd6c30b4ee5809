import logging
import os
import shlex
from dataclasses import dataclass
from typing import List, Optional

TELEGRAM_LIMIT = 4096
DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_SESSION_NAMESPACE = "tg"


@dataclass
class Config:
    token: str
    api_base: str
    poll_timeout_seconds: int
    retry_sleep_seconds: float
    admin_chat_id: Optional[int]
    session_namespace: str
    drop_pending_updates: bool
    state_dir: str
    persist_offset: bool
    processor_cmd: List[str]
    processor_timeout_seconds: int
    max_output_chars: int
    heartbeat_interval_seconds: int
    heartbeat_workspace: str
    reset_confirmation_message: str = "🆕 Session cleared! Send me a new message."
    unsupported_content_message: str = (
        "🎤 Voice and audio messages are not supported. Please send a text message instead."
    )
    startup_message: str = "🚀 Bot is ready and starting to poll for messages..."
    empty_output_message: str = "(No output from the assistant)"

    @property
    def offset_path(self) -> str:
        return os.path.join(self.state_dir, "telegram_offset.json")

    @property
    def sessions_dir(self) -> str:
        return os.path.join(self.state_dir, "sessions")


def parse_int_env(name: str, default: int, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return parsed


def parse_float_env(name: str, default: float, minimum: float = 0.0) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return parsed


def parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean (1/0, true/false)")


def parse_optional_chat_id_env(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} value: {raw!r}") from exc


def parse_processor_cmd(required: bool) -> List[str]:
    raw = os.getenv("BRIDGE_PROCESSOR_CMD", "").strip()
    if not raw:
        if required:
            raise ValueError("BRIDGE_PROCESSOR_CMD is required")
        return []
    cmd = shlex.split(raw)
    if not cmd:
        raise ValueError("BRIDGE_PROCESSOR_CMD cannot be blank")
    return cmd


def parse_log_level_env(name: str, default: str = "INFO") -> int:
    raw = os.getenv(name, "").strip() or default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid {name} value: {raw!r}")
    return level


def load_config() -> Config:
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()

    state_dir = os.path.expanduser(
        os.getenv("BRIDGE_STATE_DIR", os.path.join("~", ".bots")).strip()
    )
    if not state_dir:
        raise ValueError("BRIDGE_STATE_DIR cannot be empty")

    namespace = os.getenv("TELEGRAM_SESSION_NAMESPACE", DEFAULT_SESSION_NAMESPACE).strip()
    if not namespace:
        raise ValueError("TELEGRAM_SESSION_NAMESPACE cannot be empty")

    heartbeat_workspace = os.path.expanduser(
        os.getenv("HEARTBEAT_WORKSPACE", "").strip() or state_dir
    )

    return Config(
        token=token,
        api_base=os.getenv("TELEGRAM_API_BASE", DEFAULT_API_BASE).strip().rstrip("/"),
        poll_timeout_seconds=parse_int_env("TELEGRAM_POLL_TIMEOUT_SECONDS", 5, minimum=0),
        retry_sleep_seconds=parse_float_env("TELEGRAM_RETRY_SLEEP_SECONDS", 5.0),
        admin_chat_id=parse_optional_chat_id_env("TELEGRAM_ADMIN_CHAT_ID"),
        session_namespace=namespace,
        drop_pending_updates=parse_bool_env("TELEGRAM_DROP_PENDING_UPDATES", False),
        state_dir=state_dir,
        persist_offset=parse_bool_env("BRIDGE_PERSIST_OFFSET", True),
        processor_cmd=parse_processor_cmd(required=bool(token)),
        processor_timeout_seconds=parse_int_env("BRIDGE_PROCESSOR_TIMEOUT_SECONDS", 600),
        max_output_chars=parse_int_env("BRIDGE_MAX_OUTPUT_CHARS", 20000, minimum=64),
        heartbeat_interval_seconds=parse_int_env("HEARTBEAT_INTERVAL_SECONDS", 1800),
        heartbeat_workspace=heartbeat_workspace,
    )
