"""One self-improvement pass: observe, decide, route, record.

The proposer and executor are external. This module only wires them to
the control plane: protected entries are filtered out, low-risk actions
run immediately, everything else waits in the pending queue.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from opencontext.awareness.control_plane import ControlPlane, describe_action
from opencontext.awareness.observer import Observer
from opencontext.awareness.self_model import build_self_model, refresh_cache
from opencontext.logging_config import log_cycle
from opencontext.protocols import (
    ContextStoreProtocol,
    ExecutorProtocol,
    ProposerProtocol,
)
from opencontext.types import EventAction, Schema, SelfImprovementRecord, to_iso

logger = logging.getLogger(__name__)

DEFAULT_REASONING = "Identified during self-improvement tick based on store analysis."


@dataclass
class CycleReport:
    expired: int = 0
    executed: List[Tuple[str, int]] = field(default_factory=list)
    enqueued: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # action types, with reason logged
    failed: List[str] = field(default_factory=list)


def run_improvement_cycle(
    store: ContextStoreProtocol,
    schema: Optional[Schema],
    observer: Observer,
    proposer: ProposerProtocol,
    executor: ExecutorProtocol,
    control_plane: Optional[ControlPlane] = None,
    now: Optional[datetime] = None,
) -> CycleReport:
    plane = control_plane or ControlPlane(observer)
    report = CycleReport()

    # Observe
    observer.rotate_if_needed()
    report.expired = plane.expire_stale(now)
    model = build_self_model(store, schema, observer, now=now)
    summary = observer.get_summary()

    # Decide
    proposals = proposer.propose(model, summary)

    # Route
    pending_types = {p.action.type for p in plane.list_pending()}
    for proposal in proposals:
        action = plane.filter_protected(proposal.action)
        if action is None:
            logger.info(f"Skipping {proposal.action.type}: every target is protected")
            report.skipped.append(proposal.action.type)
            continue

        if plane.should_auto_execute(action):
            try:
                executor.execute(action)
            except Exception as e:
                logger.warning(f"Auto-executing {action.type} failed: {e}")
                report.failed.append(action.type)
                continue
            report.executed.append((action.type, action.item_count()))
            observer.log(EventAction.WRITE, tool="self-improvement", context_type=action.type)
            continue

        if action.type in pending_types:
            logger.debug(f"Skipping {action.type}: an action of this type is already pending")
            report.skipped.append(action.type)
            continue
        pending = plane.enqueue(
            action,
            description=proposal.description or describe_action(action),
            reasoning=proposal.reasoning or DEFAULT_REASONING,
            preview=proposal.preview,
            created_at=now,
        )
        pending_types.add(action.type)
        report.enqueued.append(pending.id)

    # Record
    if report.executed:
        observer.log_self_improvement(
            SelfImprovementRecord(
                timestamp=to_iso(now or observer.now()),
                actions=tuple(report.executed),
                auto_executed=True,
            )
        )

    refresh_cache(store, schema, observer)
    logger.info(
        f"Improvement cycle: {len(report.executed)} executed, "
        f"{len(report.enqueued)} queued, {report.expired} expired"
    )
    log_cycle(
        len(report.executed), len(report.enqueued), report.expired, len(report.failed)
    )
    return report
