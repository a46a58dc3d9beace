"""Deterministic test doubles for the awareness engine.

``ManualClock`` and ``ManualScheduler`` let tests decide when time passes
and when a deferred flush fires. ``InMemoryContextStore`` satisfies
``ContextStoreProtocol`` without touching disk.
"""

from opencontext.testing.fakes import InMemoryContextStore, ManualClock, ManualScheduler

__all__ = ["InMemoryContextStore", "ManualClock", "ManualScheduler"]
