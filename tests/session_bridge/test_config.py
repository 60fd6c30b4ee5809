import logging
import os
import unittest
from unittest import mock

from session_bridge import main as bridge_main
from session_bridge.config import load_config, parse_bool_env, parse_int_env, parse_log_level_env

BASE_ENV = {
    "TELEGRAM_BOT_TOKEN": "123:abc",
    "BRIDGE_PROCESSOR_CMD": "my-agent --quiet",
    "BRIDGE_STATE_DIR": "/var/lib/bridge",
}


class LoadConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, BASE_ENV, clear=True):
            config = load_config()

        self.assertEqual(config.token, "123:abc")
        self.assertEqual(config.api_base, "https://api.telegram.org")
        self.assertEqual(config.poll_timeout_seconds, 5)
        self.assertEqual(config.retry_sleep_seconds, 5.0)
        self.assertEqual(config.session_namespace, "tg")
        self.assertIsNone(config.admin_chat_id)
        self.assertFalse(config.drop_pending_updates)
        self.assertTrue(config.persist_offset)
        self.assertEqual(config.processor_cmd, ["my-agent", "--quiet"])
        self.assertEqual(config.offset_path, "/var/lib/bridge/telegram_offset.json")
        self.assertEqual(config.sessions_dir, "/var/lib/bridge/sessions")
        self.assertEqual(config.heartbeat_workspace, "/var/lib/bridge")

    def test_overrides(self):
        env = dict(
            BASE_ENV,
            TELEGRAM_API_BASE="http://127.0.0.1:8081/",
            TELEGRAM_POLL_TIMEOUT_SECONDS="30",
            TELEGRAM_RETRY_SLEEP_SECONDS="0.5",
            TELEGRAM_ADMIN_CHAT_ID="-1001",
            TELEGRAM_DROP_PENDING_UPDATES="yes",
            BRIDGE_PERSIST_OFFSET="0",
            HEARTBEAT_WORKSPACE="/srv/workspace",
        )
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config()

        self.assertEqual(config.api_base, "http://127.0.0.1:8081")
        self.assertEqual(config.poll_timeout_seconds, 30)
        self.assertEqual(config.retry_sleep_seconds, 0.5)
        self.assertEqual(config.admin_chat_id, -1001)
        self.assertTrue(config.drop_pending_updates)
        self.assertFalse(config.persist_offset)
        self.assertEqual(config.heartbeat_workspace, "/srv/workspace")

    def test_token_requires_processor_command(self):
        env = {"TELEGRAM_BOT_TOKEN": "123:abc", "BRIDGE_STATE_DIR": "/tmp/x"}
        with mock.patch.dict(os.environ, env, clear=True):
            with self.assertRaises(ValueError):
                load_config()

    def test_missing_token_loads_without_processor(self):
        with mock.patch.dict(os.environ, {"BRIDGE_STATE_DIR": "/tmp/x"}, clear=True):
            config = load_config()
        self.assertEqual(config.token, "")
        self.assertEqual(config.processor_cmd, [])

    def test_invalid_values(self):
        cases = {
            "TELEGRAM_POLL_TIMEOUT_SECONDS": "soon",
            "TELEGRAM_RETRY_SLEEP_SECONDS": "-1",
            "TELEGRAM_ADMIN_CHAT_ID": "me",
            "BRIDGE_PERSIST_OFFSET": "maybe",
        }
        for name, value in cases.items():
            with self.subTest(name=name):
                with mock.patch.dict(os.environ, dict(BASE_ENV, **{name: value}), clear=True):
                    with self.assertRaises(ValueError):
                        load_config()

    def test_env_helpers(self):
        with mock.patch.dict(os.environ, {"N": "0", "B": "off"}, clear=True):
            self.assertEqual(parse_int_env("N", 5, minimum=0), 0)
            self.assertEqual(parse_int_env("MISSING", 5), 5)
            with self.assertRaises(ValueError):
                parse_int_env("N", 5, minimum=1)
            self.assertFalse(parse_bool_env("B", True))

    def test_log_level_env(self):
        cases = {"": logging.INFO, "debug": logging.DEBUG, " WARNING ": logging.WARNING, "15": 15}
        for value, expected in cases.items():
            with self.subTest(value=value):
                with mock.patch.dict(os.environ, {"LEVEL": value}, clear=True):
                    self.assertEqual(parse_log_level_env("LEVEL"), expected)
        with mock.patch.dict(os.environ, {"LEVEL": "verbose"}, clear=True):
            with self.assertRaises(ValueError):
                parse_log_level_env("LEVEL")


class MainTests(unittest.TestCase):
    def test_self_test_passes(self):
        with mock.patch("builtins.print"):
            self.assertEqual(bridge_main.run_self_test(), 0)

    def test_missing_token_does_not_start_bridge(self):
        with mock.patch.dict(os.environ, {"BRIDGE_STATE_DIR": "/tmp/x"}, clear=True), \
                mock.patch("sys.argv", ["session-bridge"]), \
                mock.patch.object(bridge_main, "run_bridge") as run_bridge:
            with self.assertLogs(level="WARNING"):
                self.assertEqual(bridge_main.main(), 0)
        run_bridge.assert_not_called()

    def test_configuration_error_exits_nonzero(self):
        env = {"TELEGRAM_BOT_TOKEN": "123:abc", "BRIDGE_STATE_DIR": "/tmp/x"}
        with mock.patch.dict(os.environ, env, clear=True), \
                mock.patch("sys.argv", ["session-bridge"]), \
                mock.patch.object(bridge_main, "run_bridge") as run_bridge:
            with self.assertLogs(level="ERROR"):
                self.assertEqual(bridge_main.main(), 1)
        run_bridge.assert_not_called()

    def test_unknown_log_level_exits_nonzero(self):
        env = dict(BASE_ENV, TELEGRAM_LOG_LEVEL="verbose")
        with mock.patch.dict(os.environ, env, clear=True), \
                mock.patch("sys.argv", ["session-bridge"]), \
                mock.patch.object(bridge_main, "run_bridge") as run_bridge:
            with self.assertLogs(level="ERROR") as logs:
                self.assertEqual(bridge_main.main(), 1)
        self.assertIn("TELEGRAM_LOG_LEVEL", logs.output[0])
        run_bridge.assert_not_called()


if __name__ == "__main__":
    unittest.main()
