# marketplace/services/cart_sync.py
import itertools
import time
from typing import Callable

from marketplace.utils.settings import REALTIME_ECHO_WINDOW_SECONDS


class CartProjection:
    """
    Client-held cache of the server cart.

    Local intents get a monotonic sequence number. While any intent is in
    flight the projection is stale and incoming snapshots are held back, so
    an echo of an older server state cannot overwrite a newer optimistic
    one. After our own write lands, realtime snapshots are ignored for a
    short window (they are echoes of that write).
    """

    def __init__(self, echo_window: float = REALTIME_ECHO_WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.echo_window = echo_window
        self.clock = clock
        self.snapshot: dict | None = None
        self.version = 0
        self.pending: set[int] = set()
        self.last_applied_seq = 0
        self._seq = itertools.count(1)
        self._last_own_write = None

    @property
    def is_stale(self) -> bool:
        return bool(self.pending)

    #intents
    def begin_mutation(self) -> int:
        seq = next(self._seq)
        self.pending.add(seq)
        return seq

    def complete_mutation(self, seq: int, snapshot: dict) -> bool:
        """Server answered intent `seq` with an authoritative snapshot."""
        self.pending.discard(seq)
        self._last_own_write = self.clock()
        if seq < self.last_applied_seq:
            return False
        return self._apply(snapshot, seq)

    def fail_mutation(self, seq: int) -> None:
        self.pending.discard(seq)

    #incoming snapshots
    def apply_snapshot(self, snapshot: dict) -> bool:
        """Snapshot from a plain refetch."""
        if self.pending:
            return False
        return self._apply(snapshot, self.last_applied_seq)

    def apply_realtime(self, snapshot: dict) -> bool:
        if self.pending:
            return False
        if self._last_own_write is not None and self.clock() - self._last_own_write < self.echo_window:
            return False
        return self._apply(snapshot, self.last_applied_seq)

    def _apply(self, snapshot: dict, seq: int) -> bool:
        version = int(snapshot.get("version", 0))
        if self.snapshot is not None and version <= self.version:
            return False
        self.snapshot = snapshot
        self.version = version
        self.last_applied_seq = max(self.last_applied_seq, seq)
        return True
