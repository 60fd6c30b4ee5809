#!/usr/bin/env python3
"""Telegram long-poll bridge that routes each chat to a processor session."""

import argparse
import logging
from typing import Optional

from .classifier import Empty, TextMessage, UnsupportedContent, classify_update
from .config import Config, load_config, parse_log_level_env
from .dispatcher import UpdateDispatcher
from .executor import CommandProcessor
from .heartbeat import HEARTBEAT_OK, HeartbeatService, start_heartbeat_thread
from .offset_tracker import OffsetTracker
from .session_router import ResetAll, ResetWithRemainder, derive_session, detect_command
from .state_store import OffsetStore, ensure_state_dir
from .transport import TelegramClient, drop_pending_updates
from .updates import parse_update


def run_self_test() -> int:
    if derive_session(42) != "tg_42":
        raise RuntimeError("Session self-test failed")
    if detect_command("/new") != ResetAll():
        raise RuntimeError("Command self-test failed (/new)")
    if detect_command("/new tell me a joke") != ResetWithRemainder("tell me a joke"):
        raise RuntimeError("Command self-test failed (/new <text>)")
    if detect_command("/newer stuff") is not None:
        raise RuntimeError("Command self-test failed (/newer)")

    text_update = parse_update({"update_id": 1, "message": {"chat": {"id": 7}, "text": "hi"}})
    voice_update = parse_update({"update_id": 2, "message": {"chat": {"id": 7}, "voice": {"file_id": "v"}}})
    blank_update = parse_update({"update_id": 3, "message": {"chat": {"id": 7}, "text": "   "}})
    if text_update is None or classify_update(text_update) != TextMessage("hi"):
        raise RuntimeError("Classifier self-test failed (text)")
    if voice_update is None or classify_update(voice_update) != UnsupportedContent("voice"):
        raise RuntimeError("Classifier self-test failed (voice)")
    if blank_update is None or classify_update(blank_update) != Empty():
        raise RuntimeError("Classifier self-test failed (blank)")

    print("self-test: ok")
    return 0


def initial_offset(config: Config, client: TelegramClient, store: Optional[OffsetStore]) -> int:
    offset = 0
    if store is not None:
        loaded = store.load()
        if loaded is not None:
            offset = loaded
            logging.info("Resuming from checkpointed offset=%s", offset)

    if config.drop_pending_updates:
        try:
            offset = drop_pending_updates(client, offset)
        except Exception:
            logging.exception("Failed to discard queued startup updates; keeping offset=%s", offset)
    return offset


def send_startup_notice(config: Config, client: TelegramClient) -> None:
    if config.admin_chat_id is None:
        logging.info("No TELEGRAM_ADMIN_CHAT_ID configured. Startup message not sent.")
        return
    try:
        client.send_message(config.admin_chat_id, config.startup_message)
    except Exception:
        logging.exception("Failed to send startup message to chat_id=%s", config.admin_chat_id)


def run_bridge(config: Config) -> int:
    store: Optional[OffsetStore] = None
    if config.persist_offset:
        try:
            ensure_state_dir(config.state_dir)
            store = OffsetStore(config.offset_path)
        except OSError:
            logging.exception(
                "State dir %s unavailable; offset checkpoints disabled.",
                config.state_dir,
            )

    client = TelegramClient(config)
    processor = CommandProcessor(config)
    tracker = OffsetTracker(initial_offset(config, client, store))
    dispatcher = UpdateDispatcher(config, client, processor, tracker, offset_store=store)

    logging.info("Bridge started. Session namespace=%s", config.session_namespace)
    logging.info("Processor command=%s", config.processor_cmd)
    send_startup_notice(config, client)

    admin_chat_id = config.admin_chat_id
    if admin_chat_id is not None:
        heartbeat = HeartbeatService(config.heartbeat_workspace, config.heartbeat_interval_seconds)
        start_heartbeat_thread(
            heartbeat,
            lambda prompt: dispatcher.deliver_text(admin_chat_id, prompt, silent_reply=HEARTBEAT_OK),
        )
        logging.info(
            "Heartbeat enabled for %s every %ss",
            heartbeat.heartbeat_path,
            config.heartbeat_interval_seconds,
        )

    dispatcher.run_forever()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Telegram session bridge")
    parser.add_argument(
        "--self-test",
        action="store_true",
        help="run local self test and exit",
    )
    args = parser.parse_args()

    level_error: Optional[ValueError] = None
    try:
        level = parse_log_level_env("TELEGRAM_LOG_LEVEL")
    except ValueError as exc:
        level = logging.INFO
        level_error = exc
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if level_error is not None:
        logging.error("Configuration error: %s", level_error)
        return 1

    if args.self_test:
        return run_self_test()

    try:
        config = load_config()
    except Exception as exc:
        logging.error("Configuration error: %s", exc)
        return 1

    if not config.token:
        logging.warning("TELEGRAM_BOT_TOKEN is not set; bridge not started.")
        return 0

    return run_bridge(config)


if __name__ == "__main__":
    raise SystemExit(main())
