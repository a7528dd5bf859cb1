"""Bounded, linear undo/redo history of materialized buffers."""

import logging
from typing import Callable, List, Optional

from rasterlab.models import AdjustmentState, HistoryEntry, HistoryInfo, PixelBuffer

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50


class HistoryManager:
    """Ordered list of snapshots with a cursor.

    Invariants: the cursor is -1 only when the list is empty, otherwise it
    indexes a valid entry; the list never holds more than ``capacity`` entries.
    Entries are copied on the way in and on the way out, so no caller ever
    shares a buffer with the history.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._entries: List[HistoryEntry] = []
        self._cursor = -1
        self._capacity = max(1, int(capacity))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, buffer: PixelBuffer, adjustments: Optional[AdjustmentState] = None) -> None:
        """Record a new snapshot after the cursor, discarding any redo branch."""
        del self._entries[self._cursor + 1:]
        self._entries.append(HistoryEntry(buffer.copy(), adjustments))

        if len(self._entries) > self._capacity:
            self._entries.pop(0)
            log.debug(f"History full ({self._capacity}), evicted oldest entry")

        self._cursor = len(self._entries) - 1

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def undo(self) -> Optional[HistoryEntry]:
        """Step back one entry. Returns None at the oldest entry."""
        if not self.can_undo():
            log.debug("Nothing to undo")
            return None
        self._cursor -= 1
        return self._entries[self._cursor].copy()

    def redo(self) -> Optional[HistoryEntry]:
        """Step forward one entry. Returns None at the newest entry."""
        if not self.can_redo():
            log.debug("Nothing to redo")
            return None
        self._cursor += 1
        return self._entries[self._cursor].copy()

    def current(self) -> Optional[HistoryEntry]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor].copy()

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = -1

    def info(self) -> HistoryInfo:
        return HistoryInfo(
            total=len(self._entries),
            current=self._cursor + 1,
            can_undo=self.can_undo(),
            can_redo=self.can_redo(),
        )

    def set_capacity(self, capacity: int) -> None:
        """Change the capacity, dropping the oldest entries if it shrinks."""
        self._capacity = max(1, int(capacity))
        overflow = len(self._entries) - self._capacity
        if overflow > 0:
            del self._entries[:overflow]
            self._cursor = max(0, self._cursor - overflow)
            log.debug(f"History shrunk to {self._capacity}, dropped {overflow} entries")

    def rebuild(self, fn: Callable[[HistoryEntry], PixelBuffer]) -> None:
        """Replace every entry's buffer with ``fn(entry)``.

        Used by geometry edits so undo never restores a buffer whose
        dimensions disagree with the current original.
        """
        for entry in self._entries:
            entry.buffer = fn(entry)
