from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable

DEFAULT_MAX_AGE_S = 3600.0
DEFAULT_MAX_ENTRIES = 10_000


class FollowUpTracker:
    """Remembers when the bot last replied in each conversation.

    Entries older than ``max_age_s`` are evicted when new replies are recorded,
    and at most ``max_entries`` conversations are kept (oldest reply evicted
    first). ``max_age_s`` should be at least the largest configured follow-up
    window.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        max_age_s: float | None = DEFAULT_MAX_AGE_S,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self._clock = clock
        self._max_age_s = max_age_s
        self._max_entries = max_entries
        self._last_reply_at: OrderedDict[Hashable, float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_reply_at)

    def record_reply(self, conversation_id: Hashable) -> None:
        now = self._clock()
        with self._lock:
            self._last_reply_at.pop(conversation_id, None)
            self._last_reply_at[conversation_id] = now
            self._evict_locked(now)

    def last_reply_at(self, conversation_id: Hashable) -> float | None:
        with self._lock:
            return self._last_reply_at.get(conversation_id)

    def is_within_window(self, conversation_id: Hashable, window_s: float) -> bool:
        last = self.last_reply_at(conversation_id)
        if last is None:
            return False
        return self._clock() - last < window_s

    def _evict_locked(self, now: float) -> None:
        # insertion order is reply order, so the oldest entry is always first
        if self._max_age_s is not None:
            cutoff = now - self._max_age_s
            while self._last_reply_at:
                key, stamp = next(iter(self._last_reply_at.items()))
                if stamp >= cutoff:
                    break
                del self._last_reply_at[key]
        if self._max_entries is not None:
            while len(self._last_reply_at) > self._max_entries:
                self._last_reply_at.popitem(last=False)
