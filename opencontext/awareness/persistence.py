"""Durable storage for the awareness document.

The observer, control plane and self-model cache all live in one JSON
document (``awareness.json``). Every durability operation reads or writes
the whole thing. There is no file locking: one process owns the file.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from opencontext.protocols import StorageError
from opencontext.types import (
    ObservationEvent,
    ObservationSummary,
    PendingAction,
    Protection,
    SelfImprovementRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class ObservationLog:
    """The whole persisted document, partitioned by field."""

    events: List[ObservationEvent] = field(default_factory=list)
    summary: ObservationSummary = field(default_factory=ObservationSummary)
    improvements: List[SelfImprovementRecord] = field(default_factory=list)
    pending_actions: List[PendingAction] = field(default_factory=list)
    protections: List[Protection] = field(default_factory=list)
    schema_cache: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "events": [e.to_dict() for e in self.events],
            "summary": self.summary.to_dict(),
            "improvements": [r.to_dict() for r in self.improvements],
            "pendingActions": [a.to_dict() for a in self.pending_actions],
            "protections": [p.to_dict() for p in self.protections],
        }
        if self.schema_cache is not None:
            d["schemaCache"] = self.schema_cache
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any], empty_summary: Callable[[], ObservationSummary]):
        summary = d.get("summary")
        return cls(
            events=[ObservationEvent.from_dict(e) for e in d.get("events") or []],
            summary=ObservationSummary.from_dict(summary) if summary else empty_summary(),
            improvements=[
                SelfImprovementRecord.from_dict(r) for r in d.get("improvements") or []
            ],
            pending_actions=[PendingAction.from_dict(a) for a in d.get("pendingActions") or []],
            protections=[Protection.from_dict(p) for p in d.get("protections") or []],
            schema_cache=d.get("schemaCache"),
        )


class AwarenessFile:
    """Reads and writes the awareness document at ``path``.

    Args:
        path: Location of the JSON document.
        empty_summary: Factory for a fresh summary; it stamps ``lastActivity``
            so the caller's clock decides what "now" is.
    """

    def __init__(self, path: Path, empty_summary: Callable[[], ObservationSummary]):
        self.path = Path(path)
        self._empty_summary = empty_summary

    def empty(self) -> ObservationLog:
        return ObservationLog(summary=self._empty_summary())

    def load(self) -> ObservationLog:
        """Load the document, or an empty one if missing or unreadable."""
        if not self.path.exists():
            return self.empty()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return ObservationLog.from_dict(data, self._empty_summary)
        except (
            json.JSONDecodeError,
            OSError,
            ValueError,
            KeyError,
            TypeError,
            IndexError,
            AttributeError,
        ) as e:
            logger.warning(f"Awareness document {self.path} is unreadable, starting empty: {e}")
            return self.empty()

    def save(self, log: ObservationLog) -> None:
        """Atomically replace the document with ``log``."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(log.to_dict(), f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            logger.error(f"Cannot write awareness document {self.path}: {e}")
            raise StorageError(f"Cannot write awareness document {self.path}: {e}") from e
