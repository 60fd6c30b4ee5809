import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import IO, List, Optional, Protocol

from .config import Config

OUTPUT_BEGIN_MARKER = "OUTPUT_BEGIN"
STREAM_CAPTURE_MAX_CHARS = 2 * 1024 * 1024
STDERR_TAIL_CHARS = 500


class ProcessorError(RuntimeError):
    pass


class SessionProcessor(Protocol):
    def process(self, session_id: str, text: str) -> str:
        ...

    def reset(self, session_id: str) -> bool:
        ...


class CappedTextCapture:
    """Collect stream text up to a fixed size, counting what was dropped."""

    def __init__(self, max_chars: int) -> None:
        self.max_chars = max(1, max_chars)
        self.parts: List[str] = []
        self.size = 0
        self.dropped = 0

    def append(self, text: str) -> None:
        room = self.max_chars - self.size
        if room <= 0:
            self.dropped += len(text)
            return
        kept = text[:room]
        self.parts.append(kept)
        self.size += len(kept)
        self.dropped += len(text) - len(kept)

    def render(self) -> str:
        return "".join(self.parts)


def trim_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    marker = "\n\n[output truncated]"
    return text[: max(0, limit - len(marker))] + marker


def parse_processor_output(stdout: str) -> str:
    lines = (stdout or "").splitlines()
    for index, line in enumerate(lines):
        if line.strip() == OUTPUT_BEGIN_MARKER:
            return "\n".join(lines[index + 1:]).strip()
    return (stdout or "").strip()


def _drain(stream: IO[str], capture: CappedTextCapture) -> None:
    for raw_line in stream:
        capture.append(raw_line)


def run_processor_command(
    cmd: List[str],
    prompt: str,
    env: dict,
    timeout_seconds: int,
) -> subprocess.CompletedProcess:
    logging.info("Running processor command: %s", cmd)
    process = subprocess.Popen(
        cmd,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
        env=env,
    )
    if process.stdin is None or process.stdout is None or process.stderr is None:
        raise RuntimeError("Failed to initialize processor pipes")

    stdout_capture = CappedTextCapture(STREAM_CAPTURE_MAX_CHARS)
    stderr_capture = CappedTextCapture(STREAM_CAPTURE_MAX_CHARS)
    stdout_worker = threading.Thread(target=_drain, args=(process.stdout, stdout_capture), daemon=True)
    stderr_worker = threading.Thread(target=_drain, args=(process.stderr, stderr_capture), daemon=True)
    stdout_worker.start()
    stderr_worker.start()

    try:
        process.stdin.write(prompt)
        if not prompt.endswith("\n"):
            process.stdin.write("\n")
        process.stdin.close()
    except Exception:
        process.kill()
        process.wait(timeout=5)
        raise

    try:
        return_code = process.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait(timeout=5)
        stdout_worker.join(timeout=1.5)
        stderr_worker.join(timeout=1.5)
        raise

    stdout_worker.join(timeout=1.5)
    stderr_worker.join(timeout=1.5)
    if stdout_capture.dropped:
        logging.warning("Processor stdout exceeded capture limit; dropped %s chars", stdout_capture.dropped)

    return subprocess.CompletedProcess(
        args=cmd,
        returncode=return_code,
        stdout=stdout_capture.render(),
        stderr=stderr_capture.render(),
    )


class CommandProcessor:
    """Runs the configured processor command once per message.

    The command is invoked as ``<cmd...> <session_id>`` with the message on
    stdin. It learns where to keep conversation state from
    ``BRIDGE_SESSION_FILE``; resetting a session deletes that file.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    def session_file(self, session_id: str) -> Path:
        return Path(self.config.sessions_dir) / f"{session_id}.json"

    def process(self, session_id: str, text: str) -> str:
        session_file = self.session_file(session_id)
        env = dict(os.environ)
        env["BRIDGE_SESSION_ID"] = session_id
        env["BRIDGE_SESSION_FILE"] = str(session_file)
        cmd = list(self.config.processor_cmd) + [session_id]

        try:
            session_file.parent.mkdir(parents=True, exist_ok=True)
            result = run_processor_command(
                cmd,
                text,
                env,
                self.config.processor_timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise ProcessorError(
                f"Processor timed out after {self.config.processor_timeout_seconds}s "
                f"for session {session_id}"
            ) from exc
        except OSError as exc:
            raise ProcessorError(f"Failed to start processor {cmd[0]!r}: {exc}") from exc

        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip()[-STDERR_TAIL_CHARS:]
            raise ProcessorError(
                f"Processor exited with code {result.returncode} for session {session_id}: "
                f"{stderr_tail or '(no stderr)'}"
            )

        return trim_output(parse_processor_output(result.stdout), self.config.max_output_chars)

    def reset(self, session_id: str) -> bool:
        session_file = self.session_file(session_id)
        try:
            session_file.unlink()
        except FileNotFoundError:
            return False
        logging.info("Cleared session file %s", session_file)
        return True
