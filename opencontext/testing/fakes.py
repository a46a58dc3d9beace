"""Test doubles: a controllable clock, scheduler, and note store."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from opencontext.types import Bubble, ContextEntry, to_iso


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **kwargs) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now


@dataclass
class _ScheduledCall:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects deferred callbacks and fires them when time is advanced."""

    def __init__(self) -> None:
        self.elapsed = 0.0
        self.calls: List[_ScheduledCall] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ScheduledCall:
        call = _ScheduledCall(due=self.elapsed + delay, callback=callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> List[_ScheduledCall]:
        return [c for c in self.calls if not c.cancelled and not c.fired]

    def advance(self, seconds: float) -> int:
        """Move time forward and fire every callback now due. Returns the count fired."""
        self.elapsed += seconds
        fired = 0
        for call in sorted(self.pending, key=lambda c: c.due):
            if call.due <= self.elapsed and not call.cancelled:
                call.fired = True
                call.callback()
                fired += 1
        return fired


class InMemoryContextStore:
    """A list-backed note store for tests."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.entries: List[ContextEntry] = []
        self.bubbles: List[Bubble] = []

    def add(
        self,
        content: str,
        context_type: Optional[str] = None,
        tags: Optional[List[str]] = None,
        age_days: float = 0.0,
        created_days_ago: Optional[float] = None,
        archived: bool = False,
        entry_id: Optional[str] = None,
    ) -> ContextEntry:
        """Add an entry last updated ``age_days`` ago."""
        now = self._clock()
        updated = now - timedelta(days=age_days)
        created = now - timedelta(
            days=created_days_ago if created_days_ago is not None else age_days
        )
        entry = ContextEntry(
            id=entry_id or str(uuid.uuid4()),
            content=content,
            created_at=to_iso(created),
            updated_at=to_iso(updated),
            tags=list(tags or []),
            context_type=context_type,
            archived=archived,
        )
        self.entries.append(entry)
        return entry

    def add_bubble(self, name: str) -> Bubble:
        now = to_iso(self._clock())
        bubble = Bubble(id=str(uuid.uuid4()), name=name, created_at=now, updated_at=now)
        self.bubbles.append(bubble)
        return bubble

    def list_contexts(self) -> List[ContextEntry]:
        return list(self.entries)

    def list_bubbles(self) -> List[Bubble]:
        return list(self.bubbles)
