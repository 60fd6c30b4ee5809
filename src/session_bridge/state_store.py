import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional


def ensure_state_dir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def quarantine_corrupt_state_file(path: str) -> Optional[str]:
    data_path = Path(path)
    if not data_path.exists():
        return None
    timestamp = time.strftime("%Y%m%d%H%M%S", time.gmtime())
    quarantined = data_path.with_name(f"{data_path.name}.corrupt.{timestamp}")
    data_path.replace(quarantined)
    return str(quarantined)


def persist_json_state_file(path_value: str, serialized: Dict[str, object]) -> None:
    if not path_value:
        return
    path = Path(path_value)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(
        json.dumps(serialized, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    tmp_path.replace(path)


def load_offset_file(path: str) -> Optional[int]:
    data_path = Path(path)
    if not data_path.exists():
        return None
    try:
        raw = json.loads(data_path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Failed to parse offset state {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid offset state {path}: root is not object")
    offset = raw.get("offset")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise ValueError(f"Invalid offset state {path}: offset is not a non-negative integer")
    return offset


class OffsetStore:
    """Warm-restart checkpoint for the getUpdates cursor.

    Every failure here degrades to "no checkpoint"; none of them reach the
    dispatch loop.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.last_saved: Optional[int] = None

    def load(self) -> Optional[int]:
        try:
            offset = load_offset_file(self.path)
        except Exception:
            logging.exception(
                "Failed to load offset checkpoint from %s; starting from offset=0.",
                self.path,
            )
            try:
                moved = quarantine_corrupt_state_file(self.path)
            except OSError:
                logging.warning("Could not quarantine offset checkpoint %s", self.path)
                moved = None
            if moved:
                logging.error("Quarantined corrupt offset checkpoint to %s", moved)
            return None
        self.last_saved = offset
        return offset

    def save(self, offset: int) -> bool:
        if offset == self.last_saved:
            return False
        try:
            persist_json_state_file(self.path, {"offset": offset, "saved_at": time.time()})
        except Exception:
            logging.warning("Failed to checkpoint offset=%s to %s", offset, self.path, exc_info=True)
            return False
        self.last_saved = offset
        return True
