"""Usage observer for the context store.

Records read/write/miss events, keeps rolling aggregate counters, and
persists both to the awareness document.

Writes are batched. Each ``log()`` call buffers the event together with a
summary delta (a pure function over the summary). The buffer is flushed
immediately once it holds ``batch_size`` events, otherwise a deferred flush
is scheduled ``flush_delay`` seconds out. Every read accessor flushes first,
so a process always reads its own writes.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from opencontext.awareness.persistence import AwarenessFile, ObservationLog
from opencontext.awareness.scheduling import ThreadingScheduler
from opencontext.protocols import SchedulerProtocol, StorageError, TimerHandle
from opencontext.types import (
    EventAction,
    ObservationEvent,
    ObservationSummary,
    SelfImprovementRecord,
    parse_datetime,
    to_iso,
)
from opencontext.utils import default_awareness_path

logger = logging.getLogger(__name__)

# Flush once this many events are buffered
FLUSH_BATCH_SIZE = 10
# Otherwise flush this long after the first buffered event
FLUSH_DELAY_SECONDS = 0.5

# Event log hysteresis: past MAX_EVENTS, keep the newest TRIM_TO
MAX_EVENTS = 1000
TRIM_TO = 500

# Improvement history hysteresis
MAX_IMPROVEMENTS = 200
IMPROVEMENTS_TRIM_TO = 100

RECENT_IMPROVEMENTS_WINDOW = timedelta(hours=24)

SummaryDelta = Callable[[ObservationSummary], ObservationSummary]


def _copy_summary(s: ObservationSummary) -> ObservationSummary:
    return replace(
        s,
        missed_queries=list(s.missed_queries),
        missed_query_count=dict(s.missed_query_count),
        type_read_frequency=dict(s.type_read_frequency),
        type_write_frequency=dict(s.type_write_frequency),
    )


def summary_delta(event: ObservationEvent) -> SummaryDelta:
    """Build the summary update for one event.

    Every counter increment corresponds to exactly this event. ``update``
    and ``delete`` events only move ``last_activity``.
    """

    def apply(summary: ObservationSummary) -> ObservationSummary:
        s = _copy_summary(summary)
        s.last_activity = event.timestamp
        if event.action == EventAction.READ.value:
            s.total_reads += 1
            if event.context_type:
                s.type_read_frequency[event.context_type] = (
                    s.type_read_frequency.get(event.context_type, 0) + 1
                )
        elif event.action == EventAction.WRITE.value:
            s.total_writes += 1
            if event.context_type:
                s.type_write_frequency[event.context_type] = (
                    s.type_write_frequency.get(event.context_type, 0) + 1
                )
        elif event.action == EventAction.QUERY_MISS.value:
            s.total_misses += 1
            if event.query:
                q = event.query
                s.missed_query_count[q] = s.missed_query_count.get(q, 0) + 1
                if q not in s.missed_queries:
                    s.missed_queries.append(q)
        return s

    return apply


def summarize_events(
    events: Iterable[ObservationEvent], start: Optional[ObservationSummary] = None
) -> ObservationSummary:
    """Rebuild a summary by folding every event's delta, in order."""
    summary = start or ObservationSummary()
    for event in events:
        summary = summary_delta(event)(summary)
    return summary


@dataclass
class FlushBuffer:
    """Events and summary deltas not yet written, plus the flush timer."""

    events: List[ObservationEvent] = field(default_factory=list)
    deltas: List[SummaryDelta] = field(default_factory=list)
    timer: Optional[TimerHandle] = None
    # Bumped on every schedule/cancel so a superseded timer callback is a no-op
    generation: int = 0

    def __len__(self) -> int:
        return len(self.events)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.generation += 1

    def discard(self) -> None:
        self.cancel_timer()
        self.events.clear()
        self.deltas.clear()


class Observer:
    """Owns the event log and summary; sole writer of both.

    Args:
        path: Awareness document location (default ``~/.opencontext/awareness.json``).
        clock: Returns the current time; injectable for tests.
        scheduler: Runs the deferred flush; defaults to a threading timer.
        batch_size: Buffered event count that forces an immediate flush.
        flush_delay: Seconds before a deferred flush.
        max_events: Event count past which the log is trimmed.
        trim_to: Events kept after a trim.
        max_improvements: Improvement record count past which history is trimmed.
        improvements_trim_to: Improvement records kept after a trim.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        scheduler: Optional[SchedulerProtocol] = None,
        batch_size: int = FLUSH_BATCH_SIZE,
        flush_delay: float = FLUSH_DELAY_SECONDS,
        max_events: int = MAX_EVENTS,
        trim_to: int = TRIM_TO,
        max_improvements: int = MAX_IMPROVEMENTS,
        improvements_trim_to: int = IMPROVEMENTS_TRIM_TO,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if trim_to > max_events:
            raise ValueError("trim_to must not exceed max_events")
        if improvements_trim_to > max_improvements:
            raise ValueError("improvements_trim_to must not exceed max_improvements")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._scheduler = scheduler or ThreadingScheduler()
        self._file = AwarenessFile(
            Path(path) if path is not None else default_awareness_path(), self._empty_summary
        )
        self._buffer = FlushBuffer()
        self._lock = threading.RLock()
        self.batch_size = batch_size
        self.flush_delay = flush_delay
        self.max_events = max_events
        self.trim_to = trim_to
        self.max_improvements = max_improvements
        self.improvements_trim_to = improvements_trim_to

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def buffered(self) -> int:
        """Number of events logged but not yet persisted."""
        return len(self._buffer)

    def now(self) -> datetime:
        return self._clock()

    def _empty_summary(self) -> ObservationSummary:
        return ObservationSummary(last_activity=to_iso(self._clock()))

    # ---- Recording ----

    def log(
        self,
        action: Union[EventAction, str],
        tool: str,
        context_type: Optional[str] = None,
        entry_ids: Optional[List[str]] = None,
        query: Optional[str] = None,
        agent: Optional[str] = None,
        useful: Optional[bool] = None,
    ) -> ObservationEvent:
        """Record one usage event, stamped with the current time."""
        event = ObservationEvent(
            timestamp=to_iso(self._clock()),
            action=EventAction(action).value,
            tool=tool,
            context_type=context_type,
            entry_ids=list(entry_ids) if entry_ids is not None else None,
            query=query,
            agent=agent,
            useful=useful,
        )
        with self._lock:
            self._buffer.events.append(event)
            self._buffer.deltas.append(summary_delta(event))
            if len(self._buffer) >= self.batch_size:
                self.flush()
            elif self._buffer.timer is None:
                self._schedule_flush()
        return event

    def _schedule_flush(self) -> None:
        self._buffer.generation += 1
        generation = self._buffer.generation
        self._buffer.timer = self._scheduler.call_later(
            self.flush_delay, lambda: self._deferred_flush(generation)
        )

    def _deferred_flush(self, generation: int) -> None:
        with self._lock:
            if generation != self._buffer.generation:
                return
            self._buffer.timer = None
            try:
                self.flush()
            except StorageError as e:
                # Buffer is kept; the next log() or read retries the write
                logger.error(f"Deferred observer flush failed: {e}")

    def flush(self) -> int:
        """Write buffered events and summary deltas, in arrival order.

        Returns the number of events written. No write happens when the
        buffer is empty.
        """
        with self._lock:
            self._buffer.cancel_timer()
            if not self._buffer.events and not self._buffer.deltas:
                return 0
            obs_log = self._file.load()
            obs_log.events.extend(self._buffer.events)
            summary = obs_log.summary
            for delta in self._buffer.deltas:
                summary = delta(summary)
            obs_log.summary = summary
            self._trim_events(obs_log)
            self._file.save(obs_log)
            count = len(self._buffer.events)
            self._buffer.events.clear()
            self._buffer.deltas.clear()
        logger.debug(f"Flushed {count} observation event(s) to {self.path}")
        return count

    def _trim_events(self, obs_log: ObservationLog) -> bool:
        if len(obs_log.events) > self.max_events:
            obs_log.events = obs_log.events[-self.trim_to :]
            return True
        return False

    def rotate_if_needed(self) -> bool:
        """Trim the persisted event log to its tail once it exceeds the cap."""
        with self._lock:
            self.flush()
            obs_log = self._file.load()
            if not self._trim_events(obs_log):
                return False
            self._file.save(obs_log)
        logger.info(f"Rotated observation log down to {self.trim_to} events")
        return True

    def log_self_improvement(self, record: SelfImprovementRecord) -> None:
        """Append an improvement record after flushing buffered events."""
        with self._lock:
            self.flush()
            obs_log = self._file.load()
            obs_log.improvements.append(record)
            if len(obs_log.improvements) > self.max_improvements:
                obs_log.improvements = obs_log.improvements[-self.improvements_trim_to :]
            self._file.save(obs_log)

    # ---- Reading ----

    def get_summary(self) -> ObservationSummary:
        with self._lock:
            self.flush()
            return self._file.load().summary

    def get_missed_queries(self) -> List[str]:
        return list(self.get_summary().missed_queries)

    def get_type_popularity(self) -> Dict[str, Dict[str, int]]:
        """Reads and writes per context type."""
        s = self.get_summary()
        all_types = list(s.type_read_frequency)
        all_types += [t for t in s.type_write_frequency if t not in s.type_read_frequency]
        return {
            t: {
                "reads": s.type_read_frequency.get(t, 0),
                "writes": s.type_write_frequency.get(t, 0),
            }
            for t in all_types
        }

    def get_recent_improvements(
        self, since: Optional[datetime] = None
    ) -> List[SelfImprovementRecord]:
        """Improvement records at or after ``since`` (default: the last 24 hours)."""
        if since is None:
            since = self._clock() - RECENT_IMPROVEMENTS_WINDOW
        improvements = self.load_raw().improvements
        recent = []
        for record in improvements:
            ts = parse_datetime(record.timestamp)
            if ts is not None and ts >= since:
                recent.append(record)
        return recent

    # ---- Whole-document access ----

    def load_raw(self) -> ObservationLog:
        """Flush, then return the full persisted document."""
        with self._lock:
            self.flush()
            return self._file.load()

    def persist_raw(self, obs_log: ObservationLog) -> None:
        """Replace the persisted document wholesale.

        Anything still buffered is discarded and the pending timer is
        cancelled, so stale events never land on top of ``obs_log``.
        """
        with self._lock:
            if self._buffer.events:
                logger.debug(f"Discarding {len(self._buffer)} buffered event(s) on overwrite")
            self._buffer.discard()
            self._file.save(obs_log)

    def close(self) -> None:
        """Flush and stop the timer."""
        with self._lock:
            self.flush()
            self._buffer.cancel_timer()
