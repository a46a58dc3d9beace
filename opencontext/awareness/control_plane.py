"""Approval gate for self-improvement actions.

Classifies each proposed action by risk, decides whether it may run
without a human, and owns the lifecycle of the ones that may not::

    pending -> approved    (terminal)
    pending -> dismissed   (terminal, may teach a protection)
    pending -> expired     (terminal)

Approving never executes anything. An external executor picks up approved
actions and reports back through ``Observer.log_self_improvement``.

Pending actions and protections are stored in the observer's awareness
document; every mutator is a full read-modify-write of that document.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Set, Union

from opencontext.awareness.observer import Observer
from opencontext.logging_config import (
    log_decision,
    log_enqueue,
    log_expired,
    log_protection_learned,
)
from opencontext.types import (
    ActionStatus,
    ActionType,
    ArchiveStaleAction,
    AutoTagAction,
    CreateGapStubsAction,
    ImprovementAction,
    MergeDuplicatesAction,
    PendingAction,
    PromoteToTypeAction,
    Protection,
    ResolveContradictionsAction,
    RiskLevel,
    SuggestSchemaAction,
    UnrecognizedAction,
    parse_datetime,
    to_iso,
)

logger = logging.getLogger(__name__)

RISK_MAP: Dict[str, RiskLevel] = {
    ActionType.AUTO_TAG.value: RiskLevel.LOW,
    ActionType.CREATE_GAP_STUBS.value: RiskLevel.LOW,
    ActionType.SUGGEST_SCHEMA.value: RiskLevel.LOW,
    ActionType.PROMOTE_TO_TYPE.value: RiskLevel.MEDIUM,
    ActionType.MERGE_DUPLICATES.value: RiskLevel.MEDIUM,
    ActionType.ARCHIVE_STALE.value: RiskLevel.HIGH,
    ActionType.RESOLVE_CONTRADICTIONS.value: RiskLevel.HIGH,
}

AUTO_EXECUTE_DEFAULTS: Dict[RiskLevel, bool] = {
    RiskLevel.LOW: True,
    RiskLevel.MEDIUM: False,
    RiskLevel.HIGH: False,
}

ENV_AUTO_APPROVE_PREFIX = "OPENCONTEXT_AUTO_APPROVE_"

# Dismissals of one action type (with entries) before a pattern protection is learned
AUTO_LEARN_THRESHOLD = 3

DEFAULT_PENDING_TTL = timedelta(days=7)


def override_enabled(value: str) -> bool:
    """Only the literal strings "false" and "0" switch a tier off."""
    return value not in ("false", "0")


def pending_ttl_from_env(environ: Optional[Mapping[str, str]] = None) -> timedelta:
    """TTL for new pending actions; ``OPENCONTEXT_PENDING_TTL`` is in milliseconds."""
    env = os.environ if environ is None else environ
    raw = env.get("OPENCONTEXT_PENDING_TTL")
    if raw:
        try:
            return timedelta(milliseconds=int(raw))
        except ValueError:
            logger.warning(f"Ignoring invalid OPENCONTEXT_PENDING_TTL={raw!r}")
    return DEFAULT_PENDING_TTL


@dataclass(frozen=True)
class ControlPlaneConfig:
    """Per-risk-tier auto-execute overrides.

    ``None`` means "use the tier default". Any other value is interpreted
    with ``override_enabled``.
    """

    auto_approve_low: Optional[str] = None
    auto_approve_medium: Optional[str] = None
    auto_approve_high: Optional[str] = None

    def override_for(self, risk: RiskLevel) -> Optional[str]:
        return {
            RiskLevel.LOW: self.auto_approve_low,
            RiskLevel.MEDIUM: self.auto_approve_medium,
            RiskLevel.HIGH: self.auto_approve_high,
        }[risk]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ControlPlaneConfig":
        env = os.environ if environ is None else environ
        return cls(
            auto_approve_low=env.get(f"{ENV_AUTO_APPROVE_PREFIX}LOW"),
            auto_approve_medium=env.get(f"{ENV_AUTO_APPROVE_PREFIX}MEDIUM"),
            auto_approve_high=env.get(f"{ENV_AUTO_APPROVE_PREFIX}HIGH"),
        )


@dataclass
class ApprovalResult:
    """Outcome of ``approve``. ``executed`` means the action was marked approved."""

    executed: bool
    result: str
    action: Optional[PendingAction] = None


@dataclass
class BulkOutcome:
    id: str
    ok: bool
    result: str


def describe_action(action: ImprovementAction) -> str:
    """Default one-line description shown to the approver."""
    if isinstance(action, AutoTagAction):
        return f"Auto-tag {len(action.entries)} untagged entries using keyword extraction"
    if isinstance(action, MergeDuplicatesAction):
        return (
            f"Merge {len(action.pairs)} near-duplicate entry pair(s) (>80% content overlap)"
        )
    if isinstance(action, PromoteToTypeAction):
        return f"Promote {len(action.entries)} untyped entries to matching schema types"
    if isinstance(action, ArchiveStaleAction):
        return f"Archive {len(action.entries)} entries older than 180 days with zero reads"
    if isinstance(action, CreateGapStubsAction):
        return f"Create {len(action.queries)} stub entry(ies) for repeatedly-missed queries"
    if isinstance(action, ResolveContradictionsAction):
        return f"Archive older entry in {len(action.contradictions)} contradiction pair(s)"
    if isinstance(action, SuggestSchemaAction):
        return (
            f"Propose {len(action.suggestions)} new schema type(s) from untyped entry clusters"
        )
    if isinstance(action, UnrecognizedAction):
        return f"Unknown action type {action.type!r}"
    raise TypeError(f"Unhandled improvement action: {type(action).__name__}")


def _without_entries(action: ImprovementAction, blocked: Set[str]) -> ImprovementAction:
    if isinstance(action, AutoTagAction):
        return AutoTagAction(entries=tuple(e for e in action.entries if e.id not in blocked))
    if isinstance(action, PromoteToTypeAction):
        return PromoteToTypeAction(
            entries=tuple(e for e in action.entries if e.id not in blocked)
        )
    if isinstance(action, ArchiveStaleAction):
        return ArchiveStaleAction(
            entries=tuple(e for e in action.entries if e.id not in blocked)
        )
    return action


class ControlPlane:
    """Risk policy, pending-action lifecycle, and protections.

    Args:
        observer: Owner of the awareness document this plane persists through.
        config: Auto-execute overrides. When omitted, the environment is
            re-read on every ``should_auto_execute`` call.
        clock: Current time; defaults to the observer's clock.
        auto_learn_threshold: Dismissals of one action type (with entries)
            before a pattern protection is learned.
    """

    def __init__(
        self,
        observer: Observer,
        config: Optional[ControlPlaneConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        auto_learn_threshold: int = AUTO_LEARN_THRESHOLD,
    ):
        if auto_learn_threshold < 1:
            raise ValueError("auto_learn_threshold must be at least 1")
        self._observer = observer
        self._config = config
        self._clock = clock or observer.now
        self._issued_ids: Set[str] = set()
        self.auto_learn_threshold = auto_learn_threshold

    # ---- Policy ----

    def classify_risk(self, action: Union[ImprovementAction, str]) -> RiskLevel:
        """Risk tier for an action; anything unrecognized is HIGH."""
        action_type = action if isinstance(action, str) else action.type
        return RISK_MAP.get(action_type, RiskLevel.HIGH)

    def should_auto_execute(self, action: Union[ImprovementAction, str]) -> bool:
        risk = self.classify_risk(action)
        config = self._config if self._config is not None else ControlPlaneConfig.from_env()
        override = config.override_for(risk)
        if override is not None:
            return override_enabled(override)
        return AUTO_EXECUTE_DEFAULTS.get(risk, False)

    def is_protected(self, entry_id: str, action_type: str) -> bool:
        return self._matches_protection(self.list_protections(), entry_id, action_type)

    @staticmethod
    def _matches_protection(
        protections: List[Protection], entry_id: Optional[str], action_type: str
    ) -> bool:
        for p in protections:
            if action_type not in p.protected_from:
                continue
            if p.entry_id is not None and p.entry_id == entry_id:
                return True
            if p.entry_id is None and p.pattern == action_type:
                return True
        return False

    def filter_protected(self, action: ImprovementAction) -> Optional[ImprovementAction]:
        """Drop protected entries from an action.

        Returns None when a pattern protection blocks the whole type or when
        every targeted entry is protected.
        """
        protections = self.list_protections()
        if any(
            p.entry_id is None and p.pattern == action.type and action.type in p.protected_from
            for p in protections
        ):
            return None
        entry_ids = action.affected_entry_ids()
        if not entry_ids:
            return action
        blocked = {
            eid
            for eid in entry_ids
            if self._matches_protection(protections, eid, action.type)
        }
        if not blocked:
            return action
        if len(blocked) == len(set(entry_ids)):
            return None
        return _without_entries(action, blocked)

    # ---- Lifecycle ----

    def _new_id(self, existing: Set[str]) -> str:
        while True:
            candidate = f"pa-{uuid.uuid4().hex[:8]}"
            if candidate not in existing and candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

    def enqueue(
        self,
        action: ImprovementAction,
        *,
        description: Optional[str] = None,
        reasoning: str = "",
        preview: Optional[Dict] = None,
        risk: Optional[RiskLevel] = None,
        created_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> PendingAction:
        """Queue an action for human review. Status is always ``pending``."""
        created = created_at or self._clock()
        expires = expires_at or created + pending_ttl_from_env()
        obs_log = self._observer.load_raw()
        pending = PendingAction(
            id=self._new_id({a.id for a in obs_log.pending_actions}),
            created_at=to_iso(created),
            expires_at=to_iso(expires),
            action=action,
            risk=RiskLevel(risk or self.classify_risk(action)).value,
            description=description if description is not None else describe_action(action),
            reasoning=reasoning,
            preview=dict(preview or {}),
            status=ActionStatus.PENDING.value,
        )
        obs_log.pending_actions.append(pending)
        self._observer.persist_raw(obs_log)
        logger.info(f"Queued {pending.action.type} action {pending.id} ({pending.risk} risk)")
        log_enqueue(pending.id, pending.action.type, pending.risk)
        return pending

    def list_pending(self) -> List[PendingAction]:
        return self.list_actions(ActionStatus.PENDING)

    def list_actions(
        self, status: Optional[Union[ActionStatus, str]] = None
    ) -> List[PendingAction]:
        actions = self._observer.load_raw().pending_actions
        if status is None:
            return actions
        wanted = ActionStatus(status).value
        return [a for a in actions if a.status == wanted]

    def get_action(self, action_id: str) -> Optional[PendingAction]:
        for a in self._observer.load_raw().pending_actions:
            if a.id == action_id:
                return a
        return None

    def approve(self, action_id: str) -> ApprovalResult:
        """Mark a pending action approved. Execution is the caller's job."""
        obs_log = self._observer.load_raw()
        pending = next((a for a in obs_log.pending_actions if a.id == action_id), None)
        if pending is None:
            return ApprovalResult(False, f'No pending action found with ID "{action_id}".')
        if pending.status != ActionStatus.PENDING.value:
            return ApprovalResult(False, f"Action {action_id} is already {pending.status}.")
        pending.status = ActionStatus.APPROVED.value
        self._observer.persist_raw(obs_log)
        logger.info(f"Approved {pending.action.type} action {action_id}")
        log_decision(action_id, pending.action.type, "approve")
        return ApprovalResult(True, f"Action {action_id} ({pending.action.type}) approved.", pending)

    def dismiss(self, action_id: str, reason: Optional[str] = None) -> bool:
        """Dismiss a pending action; False if it is missing or not pending.

        Every entry the action targeted gets an entry protection for this
        action type. Once ``auto_learn_threshold`` entry-carrying actions of
        one type have been dismissed, a single pattern protection is added.
        """
        obs_log = self._observer.load_raw()
        pending = next((a for a in obs_log.pending_actions if a.id == action_id), None)
        if pending is None or pending.status != ActionStatus.PENDING.value:
            return False

        pending.status = ActionStatus.DISMISSED.value
        if reason:
            pending.dismiss_reason = reason

        action_type = pending.action.type
        entry_ids = pending.action.affected_entry_ids()
        if entry_ids:
            now = to_iso(self._clock())
            for entry_id in dict.fromkeys(entry_ids):
                if self._matches_protection(
                    [p for p in obs_log.protections if p.entry_id is not None],
                    entry_id,
                    action_type,
                ):
                    continue
                obs_log.protections.append(
                    Protection(
                        entry_id=entry_id,
                        protected_from=[action_type],
                        reason=reason or f"Dismissed {action_type} action {action_id}",
                        created_at=now,
                    )
                )
            # Counts dismissed actions, not distinct entries
            same_dismissals = [
                a
                for a in obs_log.pending_actions
                if a.action.type == action_type
                and a.status == ActionStatus.DISMISSED.value
                and a.action.affected_entry_ids()
            ]
            if len(same_dismissals) >= self.auto_learn_threshold:
                has_pattern = any(
                    p.pattern == action_type and p.entry_id is None for p in obs_log.protections
                )
                if not has_pattern:
                    obs_log.protections.append(
                        Protection(
                            pattern=action_type,
                            protected_from=[action_type],
                            reason=(
                                f"Auto-learned: user dismissed {len(same_dismissals)} "
                                f'"{action_type}" actions'
                            ),
                            created_at=now,
                        )
                    )
                    logger.info(f"Learned pattern protection against {action_type}")
                    log_protection_learned(action_type, len(same_dismissals))

        self._observer.persist_raw(obs_log)
        logger.info(f"Dismissed {action_type} action {action_id}")
        log_decision(action_id, action_type, "dismiss", reason)
        return True

    def bulk_approve(self, action_ids: List[str]) -> List[BulkOutcome]:
        outcomes = []
        for action_id in action_ids:
            result = self.approve(action_id)
            outcomes.append(BulkOutcome(action_id, result.executed, result.result))
        return outcomes

    def bulk_dismiss(self, action_ids: List[str], reason: Optional[str] = None) -> List[BulkOutcome]:
        outcomes = []
        for action_id in action_ids:
            ok = self.dismiss(action_id, reason)
            message = "dismissed" if ok else "not found or not pending"
            outcomes.append(BulkOutcome(action_id, ok, message))
        return outcomes

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Expire pending actions past ``expires_at``. No write when none expire."""
        current = now or self._clock()
        obs_log = self._observer.load_raw()
        count = 0
        for pending in obs_log.pending_actions:
            if pending.status != ActionStatus.PENDING.value:
                continue
            expires = parse_datetime(pending.expires_at)
            if expires is None:
                logger.warning(f"Pending action {pending.id} has unreadable expiresAt")
                continue
            if expires < current:
                pending.status = ActionStatus.EXPIRED.value
                count += 1
        if count > 0:
            self._observer.persist_raw(obs_log)
            logger.info(f"Expired {count} stale pending action(s)")
            log_expired(count)
        return count

    # ---- Protections ----

    def add_protection(
        self,
        protected_from: List[str],
        reason: str,
        entry_id: Optional[str] = None,
        pattern: Optional[str] = None,
        scope: Optional[Dict[str, str]] = None,
    ) -> Protection:
        if entry_id is None and pattern is None:
            raise ValueError("A protection needs an entry_id or a pattern")
        if not protected_from:
            raise ValueError("protected_from must name at least one action type")
        protection = Protection(
            entry_id=entry_id,
            pattern=pattern,
            scope=dict(scope) if scope is not None else None,
            protected_from=list(protected_from),
            reason=reason,
            created_at=to_iso(self._clock()),
        )
        obs_log = self._observer.load_raw()
        obs_log.protections.append(protection)
        self._observer.persist_raw(obs_log)
        return protection

    def list_protections(self) -> List[Protection]:
        return self._observer.load_raw().protections

    def remove_protection(self, entry_id: str, action_type: str) -> int:
        """Remove entry protections covering ``action_type``. Returns how many."""
        obs_log = self._observer.load_raw()
        kept = [
            p
            for p in obs_log.protections
            if not (p.entry_id == entry_id and action_type in p.protected_from)
        ]
        removed = len(obs_log.protections) - len(kept)
        if removed:
            obs_log.protections = kept
            self._observer.persist_raw(obs_log)
        return removed
