"""
opencontext Protocol Definitions
================================

Contracts between the awareness engine and the collaborators it does not
own:

- Note store:  lists context entries and bubbles. CRUD lives elsewhere.
- Scheduler:   runs the observer's deferred flush after a delay.
- Proposer:    turns a self-model into candidate improvement actions.
- Executor:    applies an approved or auto-executed action.

Error handling philosophy:
- Not-found and wrong-state conditions are returned as values
- Unreadable persisted data falls back to an empty document
- Storage that cannot be written raises StorageError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from opencontext.types import (
    Bubble,
    ContextEntry,
    ImprovementAction,
    ObservationSummary,
    SelfModel,
)

# =============================================================================
# ERRORS
# =============================================================================


class OpenContextError(Exception):
    """Base for all opencontext errors."""


class StorageError(OpenContextError):
    """The awareness document could not be written."""


# =============================================================================
# COLLABORATORS
# =============================================================================


@runtime_checkable
class ContextStoreProtocol(Protocol):
    """Read side of the note store that the self-model consumes."""

    def list_contexts(self) -> List[ContextEntry]:
        """All entries, archived ones included."""
        ...

    def list_bubbles(self) -> List[Bubble]: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class SchedulerProtocol(Protocol):
    """Runs a callback once after a delay, with a cancellable handle."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass
class ProposedAction:
    """A candidate from the proposer, with optional presentation data."""

    action: ImprovementAction
    preview: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None
    reasoning: Optional[str] = None


class ProposerProtocol(Protocol):
    def propose(self, model: SelfModel, summary: ObservationSummary) -> List[ProposedAction]: ...


class ExecutorProtocol(Protocol):
    def execute(self, action: ImprovementAction) -> None:
        """Apply the action. Raising marks this one action as failed."""
        ...
