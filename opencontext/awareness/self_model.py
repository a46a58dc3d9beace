"""Self-model of the context store.

Builds a point-in-time health snapshot from the note store's listing and the
observer's statistics: what exists, what is fresh, which schema types and
recurring queries are uncovered, and which entries seem to disagree.

The builder owns no state. Its only write is the optional cache refresh,
which stores the last model in the awareness document for cheap re-reads.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from opencontext.awareness.observer import Observer
from opencontext.protocols import ContextStoreProtocol
from opencontext.types import (
    ActionStatus,
    Contradiction,
    ContextEntry,
    CoverageSection,
    FreshnessSection,
    Gap,
    GapSeverity,
    HealthSection,
    IdentitySection,
    OverallHealth,
    Schema,
    SelfModel,
    StaleEntry,
    parse_datetime,
    to_iso,
)

logger = logging.getLogger(__name__)

STALE_DAYS = 90
RECENTLY_UPDATED_DAYS = 7
STALEST_SHOWN = 5

# Missed-query repeats before the query counts as a gap
MISSED_QUERY_GAP_THRESHOLD = 3

MAX_CONTRADICTIONS = 10

HEALTHY_THRESHOLD = 0.7
NEEDS_ATTENTION_THRESHOLD = 0.4

# Opposition keyword pairs: (word, opposite), both directions are checked.
# Plain substring matching, not a semantic check: it over- and under-reports.
OPPOSITION_PAIRS = [
    ("prefer", "avoid"),
    ("use", "don't use"),
    ("always", "never"),
    ("composition", "inheritance"),
    ("functional", "class"),
    ("stateless", "stateful"),
    ("monolith", "microservice"),
    ("sql", "nosql"),
    ("sync", "async"),
]


def _days_since(iso: str, now: datetime) -> Optional[float]:
    dt = parse_datetime(iso)
    if dt is None:
        return None
    return (now - dt) / timedelta(days=1)


def detect_keyword_contradictions(
    entries: List[ContextEntry], limit: int = MAX_CONTRADICTIONS
) -> List[Contradiction]:
    """Pairwise keyword scan over active entries.

    Two entries are compared unless both are typed with different types.
    One contradiction per pair at most; the scan stops after ``limit``.
    """
    contradictions: List[Contradiction] = []
    active = [e for e in entries if not e.archived]
    texts = [e.content.lower() for e in active]

    for i in range(len(active)):
        for j in range(i + 1, len(active)):
            a, b = active[i], active[j]
            if a.context_type and b.context_type and a.context_type != b.context_type:
                continue
            text_a, text_b = texts[i], texts[j]
            for word, opposite in OPPOSITION_PAIRS:
                if word in text_a and opposite in text_b:
                    first, second = a, b
                elif word in text_b and opposite in text_a:
                    first, second = b, a
                else:
                    continue
                contradictions.append(
                    Contradiction(
                        entry_a=a.id,
                        entry_b=b.id,
                        description=(
                            f'Entry {first.id[:8]} contains "{word}" while entry '
                            f'{second.id[:8]} contains "{opposite}"'
                        ),
                    )
                )
                break
            if len(contradictions) >= limit:
                return contradictions
    return contradictions


def classify_health(active_count: int, coverage_score: float, freshness_score: float) -> str:
    """Overall health; an empty store is always sparse."""
    if active_count == 0:
        return OverallHealth.SPARSE.value
    avg = (coverage_score + freshness_score) / 2
    if avg >= HEALTHY_THRESHOLD:
        return OverallHealth.HEALTHY.value
    if avg >= NEEDS_ATTENTION_THRESHOLD:
        return OverallHealth.NEEDS_ATTENTION.value
    return OverallHealth.SPARSE.value


def build_self_model(
    store: ContextStoreProtocol,
    schema: Optional[Schema],
    observer: Optional[Observer] = None,
    now: Optional[datetime] = None,
) -> SelfModel:
    """Compute the store's self-model.

    Reads the store, the schema's declared types and, when given, the
    observer's summary, pending actions and recent improvements. Mutates
    nothing beyond the observer's own flush-before-read.
    """
    if now is None:
        now = observer.now() if observer is not None else datetime.now(timezone.utc)

    active = [e for e in store.list_contexts() if not e.archived]
    bubbles = store.list_bubbles()

    # Identity
    type_breakdown: Dict[str, int] = {}
    untyped = 0
    for entry in active:
        if entry.context_type:
            type_breakdown[entry.context_type] = type_breakdown.get(entry.context_type, 0) + 1
        else:
            untyped += 1

    created = sorted(e.created_at for e in active)
    oldest = created[0] if created else to_iso(now)
    newest = created[-1] if created else to_iso(now)

    # Coverage
    declared = schema.type_names() if schema else []
    types_with_entries = [t for t in declared if type_breakdown.get(t, 0) > 0]
    types_empty = [t for t in declared if type_breakdown.get(t, 0) == 0]

    # Freshness
    recently_updated = 0
    stale: List[ContextEntry] = []
    for entry in active:
        age = _days_since(entry.updated_at, now)
        if age is None:
            continue
        if age <= RECENTLY_UPDATED_DAYS:
            recently_updated += 1
        if age >= STALE_DAYS:
            stale.append(entry)
    stale.sort(key=lambda e: parse_datetime(e.updated_at))
    stalest = [
        StaleEntry(id=e.id, type=e.context_type, updated_at=e.updated_at)
        for e in stale[:STALEST_SHOWN]
    ]

    # Gaps
    gaps: List[Gap] = []
    for empty_type in types_empty:
        gaps.append(
            Gap(
                description=f'Type "{empty_type}" is defined in your schema but has 0 entries.',
                severity=GapSeverity.WARNING.value,
                suggestion=f'Use save_typed_context with type "{empty_type}" to start populating it.',
            )
        )

    if observer is not None:
        summary = observer.get_summary()
        for query, count in summary.missed_query_count.items():
            if count >= MISSED_QUERY_GAP_THRESHOLD:
                gaps.append(
                    Gap(
                        description=f'Agents searched for "{query}" {count} times but found nothing.',
                        severity=GapSeverity.WARNING.value,
                        suggestion=f'Save a context entry covering "{query}" to fill this gap.',
                    )
                )

    if stale:
        gaps.append(
            Gap(
                description=f"{len(stale)} entries haven't been updated in {STALE_DAYS}+ days.",
                severity=GapSeverity.INFO.value,
                suggestion="Review and update or archive stale entries.",
            )
        )

    contradictions = detect_keyword_contradictions(active)

    # Health: vacuously 1 on empty inputs, classification handles the empty store
    coverage_score = 1.0 if not declared else len(types_with_entries) / len(declared)
    freshness_score = 1.0 if not active else recently_updated / len(active)
    overall = classify_health(len(active), coverage_score, freshness_score)

    pending_count = 0
    recent = []
    if observer is not None:
        obs_log = observer.load_raw()
        pending_count = sum(
            1 for a in obs_log.pending_actions if a.status == ActionStatus.PENDING.value
        )
        recent = observer.get_recent_improvements()

    return SelfModel(
        identity=IdentitySection(
            context_count=len(active),
            type_breakdown=type_breakdown,
            bubble_count=len(bubbles),
            oldest_entry=oldest,
            newest_entry=newest,
        ),
        coverage=CoverageSection(
            types_with_entries=types_with_entries,
            types_empty=types_empty,
            untyped=untyped,
        ),
        freshness=FreshnessSection(
            recently_updated=recently_updated,
            stale=len(stale),
            stalest_entries=stalest,
        ),
        gaps=gaps,
        contradictions=contradictions,
        health=HealthSection(
            coverage_score=round(coverage_score, 2),
            freshness_score=round(freshness_score, 2),
            overall_health=overall,
        ),
        pending_actions_count=pending_count,
        recent_improvements=recent,
    )


def format_self_model(model: SelfModel) -> str:
    """Render the model as a first-person report for an agent or human."""
    lines = ["I am the context store for this workspace.", ""]
    lines.append(f"I have {model.identity.context_count} active entries:")
    for type_name, count in model.identity.type_breakdown.items():
        lines.append(f"  - {type_name}: {count} entries")
    if model.coverage.untyped > 0:
        lines.append(f"  - (untyped): {model.coverage.untyped} entries")

    lines.append("")
    lines.append(
        f"Health: {model.health.overall_health} "
        f"(coverage: {round(model.health.coverage_score * 100)}%, "
        f"freshness: {round(model.health.freshness_score * 100)}%)"
    )

    if model.coverage.types_empty:
        lines.append("")
        lines.append("Schema types with no entries:")
        for t in model.coverage.types_empty:
            lines.append(f'  ⚠ "{t}" is defined but has 0 entries')

    if model.gaps:
        lines.append("")
        lines.append("Gaps:")
        for gap in model.gaps:
            icon = "⚠" if gap.severity == GapSeverity.WARNING.value else "ℹ"
            lines.append(f"  {icon} {gap.description}")
            lines.append(f"    → {gap.suggestion}")

    if model.contradictions:
        lines.append("")
        lines.append("Potential contradictions:")
        for c in model.contradictions:
            lines.append(f"  ⚠ {c.description}")
            lines.append(
                f"    Entries: {c.entry_a} vs {c.entry_b}; consider resolving with update_context"
            )

    if model.pending_actions_count > 0:
        lines.append("")
        lines.append(
            f"{model.pending_actions_count} self-improvement action(s) await your approval. "
            "Use review_pending_actions to see them."
        )

    if model.recent_improvements:
        lines.append("")
        total = sum(len(r.actions) for r in model.recent_improvements)
        lines.append(f"In the last 24 hours, {total} autonomous improvement(s) were applied.")

    return "\n".join(lines)


def refresh_cache(
    store: ContextStoreProtocol, schema: Optional[Schema], observer: Observer
) -> SelfModel:
    """Build the model and store it in the awareness document's schema cache."""
    model = build_self_model(store, schema, observer)
    obs_log = observer.load_raw()
    cache: Dict[str, Any] = dict(obs_log.schema_cache or {})
    results = dict(cache.get("analysisResults") or {})
    results["selfModel"] = model.to_dict()
    cache["analysisResults"] = results
    cache["lastAnalysis"] = to_iso(observer.now())
    obs_log.schema_cache = cache
    observer.persist_raw(obs_log)
    logger.debug(f"Refreshed self-model cache ({model.health.overall_health})")
    return model


def load_cached_self_model(
    observer: Observer, max_age: Optional[timedelta] = None
) -> Optional[Dict[str, Any]]:
    """Last cached model as a dict, or None if missing or older than ``max_age``."""
    cache = observer.load_raw().schema_cache or {}
    model = (cache.get("analysisResults") or {}).get("selfModel")
    if model is None:
        return None
    if max_age is not None:
        last = parse_datetime(cache.get("lastAnalysis"))
        if last is None or observer.now() - last > max_age:
            return None
    return model
