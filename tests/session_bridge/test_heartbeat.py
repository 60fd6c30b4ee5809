import tempfile
import threading
import unittest
from pathlib import Path

from session_bridge.heartbeat import (
    HEARTBEAT_PROMPT,
    HeartbeatService,
    is_heartbeat_empty,
    run_heartbeat_once,
    start_heartbeat_thread,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class HeartbeatServiceTests(unittest.TestCase):
    def test_does_not_tick_on_first_check(self):
        clock = FakeClock()
        service = HeartbeatService("/tmp", interval_seconds=60, clock=clock)

        self.assertFalse(service.should_tick())
        clock.now += 59
        self.assertFalse(service.should_tick())
        clock.now += 1
        self.assertTrue(service.should_tick())

        service.record_tick()
        self.assertFalse(service.should_tick())

    def test_prompt_only_when_file_has_content(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            service = HeartbeatService(tmpdir)
            self.assertIsNone(service.get_prompt())

            path = Path(tmpdir) / "HEARTBEAT.md"
            path.write_text("# Tasks\n\n<!-- nothing yet -->\n", encoding="utf-8")
            self.assertIsNone(service.get_prompt())

            path.write_text("# Tasks\n- water the plants\n", encoding="utf-8")
            self.assertEqual(service.get_prompt(), HEARTBEAT_PROMPT)

    def test_is_heartbeat_empty(self):
        self.assertTrue(is_heartbeat_empty(""))
        self.assertTrue(is_heartbeat_empty("  \r\n\t\n## Heading\n"))
        self.assertFalse(is_heartbeat_empty("do something\n"))


class HeartbeatRunTests(unittest.TestCase):
    def test_run_once_delivers_prompt_when_due(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "HEARTBEAT.md").write_text("check backups\n", encoding="utf-8")
            clock = FakeClock()
            service = HeartbeatService(tmpdir, interval_seconds=10, clock=clock)
            delivered = []

            self.assertFalse(run_heartbeat_once(service, delivered.append))
            clock.now += 10
            with self.assertLogs(level="INFO"):
                self.assertTrue(run_heartbeat_once(service, delivered.append))
            self.assertFalse(run_heartbeat_once(service, delivered.append))

            self.assertEqual(delivered, [HEARTBEAT_PROMPT])

    def test_run_once_survives_delivery_failure(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "HEARTBEAT.md").write_text("check backups\n", encoding="utf-8")
            clock = FakeClock()
            service = HeartbeatService(tmpdir, interval_seconds=10, clock=clock)
            service.should_tick()
            clock.now += 10

            def deliver(prompt):
                raise RuntimeError("processor down")

            with self.assertLogs(level="ERROR"):
                self.assertFalse(run_heartbeat_once(service, deliver))
            self.assertEqual(service.last_tick_at, clock.now)

    def test_thread_delivers_and_stops(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "HEARTBEAT.md").write_text("check backups\n", encoding="utf-8")
            service = HeartbeatService(tmpdir, interval_seconds=0)
            delivered = threading.Event()
            stop = threading.Event()

            thread = start_heartbeat_thread(
                service,
                lambda prompt: delivered.set(),
                stop_event=stop,
                poll_seconds=0.01,
            )
            try:
                self.assertTrue(delivered.wait(timeout=5))
            finally:
                stop.set()
                thread.join(timeout=5)
            self.assertFalse(thread.is_alive())


if __name__ == "__main__":
    unittest.main()
