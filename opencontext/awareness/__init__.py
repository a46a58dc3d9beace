"""Observer, self-model builder, and control plane."""

from opencontext.awareness.control_plane import (
    ApprovalResult,
    BulkOutcome,
    ControlPlane,
    ControlPlaneConfig,
    describe_action,
)
from opencontext.awareness.cycle import CycleReport, run_improvement_cycle
from opencontext.awareness.hooks import CacheRefresher, WriteEvent, WriteNotifier
from opencontext.awareness.observer import Observer, summarize_events
from opencontext.awareness.persistence import ObservationLog
from opencontext.awareness.self_model import (
    build_self_model,
    format_self_model,
    load_cached_self_model,
    refresh_cache,
)

__all__ = [
    "ApprovalResult",
    "BulkOutcome",
    "CacheRefresher",
    "ControlPlane",
    "ControlPlaneConfig",
    "CycleReport",
    "ObservationLog",
    "Observer",
    "WriteEvent",
    "WriteNotifier",
    "build_self_model",
    "describe_action",
    "format_self_model",
    "load_cached_self_model",
    "refresh_cache",
    "run_improvement_cycle",
    "summarize_events",
]
