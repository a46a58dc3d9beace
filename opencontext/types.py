"""
Shared types for the opencontext awareness engine.

The observer, self-model builder and control plane all speak in these
dataclasses. Each type knows how to turn itself into the camelCase JSON
shape stored in ``awareness.json`` and back again.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime the way the awareness document stores it."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None when it is unreadable."""
    if not s or not isinstance(s, str):
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# === Enums ===


class EventAction(str, Enum):
    """What kind of usage an observation event records."""

    READ = "read"
    WRITE = "write"
    UPDATE = "update"
    DELETE = "delete"
    QUERY_MISS = "query_miss"


class ActionType(str, Enum):
    """The closed set of improvement action kinds."""

    AUTO_TAG = "auto_tag"
    MERGE_DUPLICATES = "merge_duplicates"
    PROMOTE_TO_TYPE = "promote_to_type"
    ARCHIVE_STALE = "archive_stale"
    CREATE_GAP_STUBS = "create_gap_stubs"
    RESOLVE_CONTRADICTIONS = "resolve_contradictions"
    SUGGEST_SCHEMA = "suggest_schema"


VALID_ACTION_TYPE_VALUES = frozenset(t.value for t in ActionType)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionStatus(str, Enum):
    """Lifecycle of a pending action.

    PENDING is the only non-terminal state.
    """

    PENDING = "pending"
    APPROVED = "approved"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class GapSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"


class OverallHealth(str, Enum):
    HEALTHY = "healthy"
    NEEDS_ATTENTION = "needs-attention"
    SPARSE = "sparse"


# === Observation ===


@dataclass(frozen=True)
class ObservationEvent:
    """One recorded usage fact. Append-only."""

    timestamp: str
    action: str  # EventAction value
    tool: str
    context_type: Optional[str] = None
    entry_ids: Optional[List[str]] = None
    query: Optional[str] = None
    agent: Optional[str] = None
    useful: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "action": self.action,
            "tool": self.tool,
        }
        if self.context_type is not None:
            d["contextType"] = self.context_type
        if self.entry_ids is not None:
            d["entryIds"] = list(self.entry_ids)
        if self.query is not None:
            d["query"] = self.query
        if self.agent is not None:
            d["agent"] = self.agent
        if self.useful is not None:
            d["useful"] = self.useful
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ObservationEvent":
        return cls(
            timestamp=d.get("timestamp", ""),
            action=d.get("action", ""),
            tool=d.get("tool", ""),
            context_type=d.get("contextType"),
            entry_ids=d.get("entryIds"),
            query=d.get("query"),
            agent=d.get("agent"),
            useful=d.get("useful"),
        )


@dataclass
class ObservationSummary:
    """Aggregate counters derived from the event log.

    This is a cache: folding every logged event through the observer's
    delta functions reproduces it exactly.
    """

    total_reads: int = 0
    total_writes: int = 0
    total_misses: int = 0
    missed_queries: List[str] = field(default_factory=list)
    missed_query_count: Dict[str, int] = field(default_factory=dict)
    type_read_frequency: Dict[str, int] = field(default_factory=dict)
    type_write_frequency: Dict[str, int] = field(default_factory=dict)
    last_activity: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalReads": self.total_reads,
            "totalWrites": self.total_writes,
            "totalMisses": self.total_misses,
            "missedQueries": list(self.missed_queries),
            "missedQueryCount": dict(self.missed_query_count),
            "typeReadFrequency": dict(self.type_read_frequency),
            "typeWriteFrequency": dict(self.type_write_frequency),
            "lastActivity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ObservationSummary":
        return cls(
            total_reads=int(d.get("totalReads", 0)),
            total_writes=int(d.get("totalWrites", 0)),
            total_misses=int(d.get("totalMisses", 0)),
            missed_queries=list(d.get("missedQueries", [])),
            missed_query_count=dict(d.get("missedQueryCount", {})),
            type_read_frequency=dict(d.get("typeReadFrequency", {})),
            type_write_frequency=dict(d.get("typeWriteFrequency", {})),
            last_activity=d.get("lastActivity", ""),
        )


@dataclass(frozen=True)
class SelfImprovementRecord:
    """What an executor applied, and whether it ran without approval."""

    timestamp: str
    actions: Tuple[Tuple[str, int], ...] = ()  # (action type, count)
    auto_executed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "actions": [{"type": t, "count": c} for t, c in self.actions],
        }
        if self.auto_executed is not None:
            d["autoExecuted"] = self.auto_executed
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SelfImprovementRecord":
        return cls(
            timestamp=d.get("timestamp", ""),
            actions=tuple(
                (a.get("type", ""), int(a.get("count", 0))) for a in d.get("actions", [])
            ),
            auto_executed=d.get("autoExecuted"),
        )


# === Improvement Actions ===
#
# A tagged union: one dataclass per ActionType, each carrying only the
# data that kind needs. ``action_from_dict`` is the single decoder.


@dataclass(frozen=True)
class EntryRef:
    """An affected context entry, optionally with its last update time."""

    id: str
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id}
        if self.updated_at is not None:
            d["updatedAt"] = self.updated_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EntryRef":
        return cls(id=d["id"], updated_at=d.get("updatedAt"))


@dataclass(frozen=True)
class TypePromotion:
    id: str
    suggested_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "suggestedType": self.suggested_type}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TypePromotion":
        return cls(id=d["id"], suggested_type=d.get("suggestedType", ""))


@dataclass(frozen=True)
class ImprovementAction(ABC):
    """Base for all improvement actions."""

    @property
    @abstractmethod
    def type(self) -> str:
        """The ActionType value (or the unknown type name) this action carries."""

    def affected_entry_ids(self) -> List[str]:
        """Ids of specific entries this action targets (empty when none)."""
        return []

    def item_count(self) -> int:
        """How many items the action touches, for improvement records."""
        return 1

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"type": self.type}
        d.update(self.payload())
        return d


@dataclass(frozen=True)
class AutoTagAction(ImprovementAction):
    entries: Tuple[EntryRef, ...] = ()

    @property
    def type(self) -> str:
        return ActionType.AUTO_TAG.value

    def affected_entry_ids(self) -> List[str]:
        return [e.id for e in self.entries]

    def item_count(self) -> int:
        return len(self.entries)

    def payload(self) -> Dict[str, Any]:
        return {"entries": [e.to_dict() for e in self.entries]}


@dataclass(frozen=True)
class MergeDuplicatesAction(ImprovementAction):
    pairs: Tuple[Tuple[str, str], ...] = ()

    @property
    def type(self) -> str:
        return ActionType.MERGE_DUPLICATES.value

    def item_count(self) -> int:
        return len(self.pairs)

    def payload(self) -> Dict[str, Any]:
        return {"pairs": [[a, b] for a, b in self.pairs]}


@dataclass(frozen=True)
class PromoteToTypeAction(ImprovementAction):
    entries: Tuple[TypePromotion, ...] = ()

    @property
    def type(self) -> str:
        return ActionType.PROMOTE_TO_TYPE.value

    def affected_entry_ids(self) -> List[str]:
        return [e.id for e in self.entries]

    def item_count(self) -> int:
        return len(self.entries)

    def payload(self) -> Dict[str, Any]:
        return {"entries": [e.to_dict() for e in self.entries]}


@dataclass(frozen=True)
class ArchiveStaleAction(ImprovementAction):
    entries: Tuple[EntryRef, ...] = ()

    @property
    def type(self) -> str:
        return ActionType.ARCHIVE_STALE.value

    def affected_entry_ids(self) -> List[str]:
        return [e.id for e in self.entries]

    def item_count(self) -> int:
        return len(self.entries)

    def payload(self) -> Dict[str, Any]:
        return {"entries": [e.to_dict() for e in self.entries]}


@dataclass(frozen=True)
class CreateGapStubsAction(ImprovementAction):
    queries: Tuple[str, ...] = ()

    @property
    def type(self) -> str:
        return ActionType.CREATE_GAP_STUBS.value

    def item_count(self) -> int:
        return len(self.queries)

    def payload(self) -> Dict[str, Any]:
        return {"queries": list(self.queries)}


@dataclass(frozen=True)
class ResolveContradictionsAction(ImprovementAction):
    # Each item names the pair and which entry to archive ("archiveId").
    contradictions: Tuple[Dict[str, Any], ...] = ()

    @property
    def type(self) -> str:
        return ActionType.RESOLVE_CONTRADICTIONS.value

    def item_count(self) -> int:
        return len(self.contradictions)

    def payload(self) -> Dict[str, Any]:
        return {"contradictions": [dict(c) for c in self.contradictions]}


@dataclass(frozen=True)
class SuggestSchemaAction(ImprovementAction):
    suggestions: Tuple[Dict[str, Any], ...] = ()

    @property
    def type(self) -> str:
        return ActionType.SUGGEST_SCHEMA.value

    def item_count(self) -> int:
        return len(self.suggestions)

    def payload(self) -> Dict[str, Any]:
        return {"suggestions": [dict(s) for s in self.suggestions]}


@dataclass(frozen=True)
class UnrecognizedAction(ImprovementAction):
    """A persisted action whose type is outside the known set.

    Kept verbatim so loading and re-saving the document loses nothing.
    """

    type_name: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.type_name

    def affected_entry_ids(self) -> List[str]:
        entries = self.raw.get("entries") or []
        return [e["id"] for e in entries if isinstance(e, dict) and e.get("id")]

    def to_dict(self) -> Dict[str, Any]:
        d = dict(self.raw)
        d["type"] = self.type_name
        return d


def action_from_dict(d: Dict[str, Any]) -> ImprovementAction:
    """Decode a persisted action payload into its variant."""
    kind = d.get("type", "")
    if kind == ActionType.AUTO_TAG.value:
        return AutoTagAction(entries=tuple(EntryRef.from_dict(e) for e in d.get("entries", [])))
    if kind == ActionType.MERGE_DUPLICATES.value:
        return MergeDuplicatesAction(pairs=tuple((p[0], p[1]) for p in d.get("pairs", [])))
    if kind == ActionType.PROMOTE_TO_TYPE.value:
        return PromoteToTypeAction(
            entries=tuple(TypePromotion.from_dict(e) for e in d.get("entries", []))
        )
    if kind == ActionType.ARCHIVE_STALE.value:
        return ArchiveStaleAction(
            entries=tuple(EntryRef.from_dict(e) for e in d.get("entries", []))
        )
    if kind == ActionType.CREATE_GAP_STUBS.value:
        return CreateGapStubsAction(queries=tuple(d.get("queries", [])))
    if kind == ActionType.RESOLVE_CONTRADICTIONS.value:
        return ResolveContradictionsAction(
            contradictions=tuple(dict(c) for c in d.get("contradictions", []))
        )
    if kind == ActionType.SUGGEST_SCHEMA.value:
        return SuggestSchemaAction(suggestions=tuple(dict(s) for s in d.get("suggestions", [])))
    raw = {k: v for k, v in d.items() if k != "type"}
    return UnrecognizedAction(type_name=kind, raw=raw)


# === Control Plane Records ===


@dataclass
class PendingAction:
    """A proposed improvement awaiting approval, dismissal, or expiry."""

    id: str
    created_at: str
    expires_at: str
    action: ImprovementAction
    risk: str  # RiskLevel value
    description: str
    reasoning: str
    preview: Dict[str, Any] = field(default_factory=dict)
    status: str = ActionStatus.PENDING.value
    dismiss_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "action": self.action.to_dict(),
            "risk": self.risk,
            "description": self.description,
            "reasoning": self.reasoning,
            "preview": self.preview,
            "status": self.status,
        }
        if self.dismiss_reason is not None:
            d["dismissReason"] = self.dismiss_reason
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PendingAction":
        return cls(
            id=d["id"],
            created_at=d.get("createdAt", ""),
            expires_at=d.get("expiresAt", ""),
            action=action_from_dict(d.get("action") or {}),
            risk=d.get("risk", RiskLevel.HIGH.value),
            description=d.get("description", ""),
            reasoning=d.get("reasoning", ""),
            preview=d.get("preview") or {},
            status=d.get("status", ActionStatus.PENDING.value),
            dismiss_reason=d.get("dismissReason"),
        )


@dataclass
class Protection:
    """A standing rule that suppresses future proposals.

    Entry-scoped when ``entry_id`` is set; a pattern protection (covering
    every entry) when only ``pattern`` is set.
    """

    protected_from: List[str]
    reason: str
    created_at: str = ""
    entry_id: Optional[str] = None
    pattern: Optional[str] = None
    scope: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.entry_id is not None:
            d["entryId"] = self.entry_id
        if self.pattern is not None:
            d["pattern"] = self.pattern
        if self.scope is not None:
            d["scope"] = dict(self.scope)
        d["protectedFrom"] = list(self.protected_from)
        d["reason"] = self.reason
        d["createdAt"] = self.created_at
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Protection":
        return cls(
            protected_from=list(d.get("protectedFrom", [])),
            reason=d.get("reason", ""),
            created_at=d.get("createdAt", ""),
            entry_id=d.get("entryId"),
            pattern=d.get("pattern"),
            scope=d.get("scope"),
        )


# === Self-Model ===


@dataclass(frozen=True)
class Gap:
    description: str
    severity: str  # GapSeverity value
    suggestion: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "severity": self.severity,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class Contradiction:
    entry_a: str
    entry_b: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"entryA": self.entry_a, "entryB": self.entry_b, "description": self.description}


@dataclass
class IdentitySection:
    context_count: int
    type_breakdown: Dict[str, int]
    bubble_count: int
    oldest_entry: str
    newest_entry: str


@dataclass
class CoverageSection:
    types_with_entries: List[str]
    types_empty: List[str]
    untyped: int


@dataclass
class StaleEntry:
    id: str
    type: Optional[str]
    updated_at: str


@dataclass
class FreshnessSection:
    recently_updated: int
    stale: int
    stalest_entries: List[StaleEntry]


@dataclass
class HealthSection:
    coverage_score: float
    freshness_score: float
    overall_health: str  # OverallHealth value


@dataclass
class SelfModel:
    """Point-in-time health snapshot of the context store."""

    identity: IdentitySection
    coverage: CoverageSection
    freshness: FreshnessSection
    gaps: List[Gap]
    contradictions: List[Contradiction]
    health: HealthSection
    pending_actions_count: int = 0
    recent_improvements: List[SelfImprovementRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": {
                "contextCount": self.identity.context_count,
                "typeBreakdown": dict(self.identity.type_breakdown),
                "bubbleCount": self.identity.bubble_count,
                "oldestEntry": self.identity.oldest_entry,
                "newestEntry": self.identity.newest_entry,
            },
            "coverage": {
                "typesWithEntries": list(self.coverage.types_with_entries),
                "typesEmpty": list(self.coverage.types_empty),
                "untyped": self.coverage.untyped,
            },
            "freshness": {
                "recentlyUpdated": self.freshness.recently_updated,
                "stale": self.freshness.stale,
                "stalestEntries": [
                    {"id": e.id, "type": e.type, "updatedAt": e.updated_at}
                    for e in self.freshness.stalest_entries
                ],
            },
            "gaps": [g.to_dict() for g in self.gaps],
            "contradictions": [c.to_dict() for c in self.contradictions],
            "health": {
                "coverageScore": self.health.coverage_score,
                "freshnessScore": self.health.freshness_score,
                "overallHealth": self.health.overall_health,
            },
            "pendingActionsCount": self.pending_actions_count,
            "recentImprovements": [
                {"timestamp": r.timestamp, "actions": r.to_dict()["actions"]}
                for r in self.recent_improvements
            ],
        }


# === Store Collaborator Records ===


@dataclass
class ContextEntry:
    """A stored free-text note, as listed by the note store."""

    id: str
    content: str
    created_at: str
    updated_at: str
    tags: List[str] = field(default_factory=list)
    source: str = "chat"
    bubble_id: Optional[str] = None
    context_type: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    archived: bool = False


@dataclass
class Bubble:
    """A named grouping of context entries."""

    id: str
    name: str
    created_at: str = ""
    updated_at: str = ""
    description: Optional[str] = None


@dataclass
class SchemaType:
    name: str
    description: str = ""


@dataclass
class Schema:
    """Declared context types, in declaration order."""

    types: List[SchemaType] = field(default_factory=list)
    version: int = 1

    def type_names(self) -> List[str]:
        return [t.name for t in self.types]
