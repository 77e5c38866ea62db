"""Analytics tracker: named product events with string metadata.

Events are held in memory (newest last, capped) and written to the state
store under ``analytics.events.v1``. Writes are coalesced: every
``track`` call cancels the pending write and schedules a new one
``debounce_seconds`` later on a ``threading.Timer``. The writer takes a
snapshot of the list, so later ``track`` calls never produce a partial
write.

The tracker does not interpret events; the KPI scorecard does that.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from mindsense.core.storage.repository import RepositoryError, StateRepository

logger = logging.getLogger(__name__)

ANALYTICS_KEY = "analytics.events.v1"


# ---------------------------------------------------------------------------
# AnalyticsEvent dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalyticsEvent:
    """A single tracked event."""

    event: str                       # e.g. 'session_started'
    timestamp: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> AnalyticsEvent:
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            id=str(data["id"]),
            event=str(data["event"]),
            timestamp=timestamp,
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


# ---------------------------------------------------------------------------
# AnalyticsTracker
# ---------------------------------------------------------------------------

class AnalyticsTracker:
    """Capped, debounced analytics event log.

    Usage::

        tracker = AnalyticsTracker(repo, debounce_seconds=1.0)
        tracker.load()
        tracker.track("session_started", {"source": "today"})
        tracker.flush()   # force the pending write, e.g. on shutdown
    """

    def __init__(
        self,
        repository: StateRepository,
        *,
        debounce_seconds: float = 1.0,
        max_events: int = 400,
        max_bytes: int = 350_000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._debounce = debounce_seconds
        self._max_events = max_events
        self._max_bytes = max_bytes
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._events: list[AnalyticsEvent] = []
        self._lock = threading.Lock()
        self._pending: threading.Timer | None = None
        # Bumped by clear(); timers from an older generation never write.
        self._generation = 0

    @property
    def events(self) -> list[AnalyticsEvent]:
        """A copy of the in-memory events, oldest first."""
        with self._lock:
            return list(self._events)

    @property
    def has_pending_write(self) -> bool:
        return self._pending is not None

    # ---------------------------------------------------------------
    # Load
    # ---------------------------------------------------------------

    def load(self) -> list[AnalyticsEvent]:
        """Restore persisted events.

        A payload over ``max_bytes`` is deleted unread. An undecodable
        payload loads as empty. A list over ``max_events`` is trimmed to
        the newest entries and written back.
        """
        raw = self._repo.get_raw(ANALYTICS_KEY)
        if raw is None:
            events: list[AnalyticsEvent] = []
        elif len(raw[0].encode()) > self._max_bytes:
            logger.warning(
                "Analytics payload is %d bytes (limit %d); discarding",
                len(raw[0].encode()),
                self._max_bytes,
            )
            self._repo.delete(ANALYTICS_KEY)
            events = []
        else:
            events = self._decode()

        trimmed = len(events) > self._max_events
        if trimmed:
            events = events[-self._max_events:]

        with self._lock:
            self._events = events
        if trimmed:
            self._schedule_write()
        return list(events)

    def _decode(self) -> list[AnalyticsEvent]:
        try:
            data = self._repo.get(ANALYTICS_KEY) or []
            return [AnalyticsEvent.from_dict(item) for item in data]
        except (RepositoryError, KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Analytics events could not be decoded; starting empty")
            return []

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def track(self, event: str, metadata: dict[str, Any] | None = None) -> AnalyticsEvent:
        """Record an event and schedule a debounced write."""
        record = AnalyticsEvent(
            event=event,
            timestamp=self._clock(),
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
        )

        with self._lock:
            self._events.append(record)
            overflow = len(self._events) - self._max_events
            if overflow > 0:
                del self._events[:overflow]

        logger.debug("Tracked %s", event)
        self._schedule_write()
        return record

    def _schedule_write(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
            snapshot = [e.to_dict() for e in self._events[-self._max_events:]]
            timer = threading.Timer(
                self._debounce, self._write, args=(snapshot, self._generation)
            )
            timer.daemon = True
            self._pending = timer
        timer.start()

    def _write(self, snapshot: list[dict[str, Any]], generation: int) -> None:
        # The put happens under the lock so clear() cannot interleave with it.
        with self._lock:
            # A newer timer may already be pending; only clear our own.
            if self._pending is threading.current_thread():
                self._pending = None
            if generation != self._generation:
                logger.debug("Dropping analytics write scheduled before clear()")
                return
            try:
                self._repo.put(ANALYTICS_KEY, snapshot)
            except Exception:
                logger.exception("Failed to persist analytics events; write dropped")

    def flush(self) -> None:
        """Write the pending snapshot now instead of waiting for the timer."""
        with self._lock:
            pending = self._pending
            self._pending = None
            if pending is None:
                return
            pending.cancel()
            snapshot = [e.to_dict() for e in self._events]
            generation = self._generation
        self._write(snapshot, generation)

    def clear(self) -> None:
        """Drop all events, cancel any pending write and delete the stored list."""
        with self._lock:
            self._generation += 1
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
            self._events = []
            self._repo.delete(ANALYTICS_KEY)

    def close(self) -> None:
        self.flush()

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def count(self, event: str) -> int:
        with self._lock:
            return sum(1 for e in self._events if e.event == event)

    def of(self, event: str) -> list[AnalyticsEvent]:
        """Events with the given name, oldest first."""
        with self._lock:
            matching = [e for e in self._events if e.event == event]
        return sorted(matching, key=lambda e: e.timestamp)

