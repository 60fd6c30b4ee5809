class OffsetTracker:
    """Monotonic getUpdates cursor owned by a single dispatch loop."""

    def __init__(self, initial: int = 0) -> None:
        self._offset = max(0, initial)

    def current(self) -> int:
        return self._offset

    def advance(self, new_offset: int) -> bool:
        if new_offset <= self._offset:
            return False
        self._offset = new_offset
        return True
