"""Local logging for opencontext.

Two files per day under ``<data dir>/logs``:

- ``local-YYYY-MM-DD.log``: the ``opencontext`` logger's output.
- ``awareness-events-YYYY-MM-DD.log``: one line per governance event
  (queued, approved, dismissed, expired, protection learned, cycle run),
  an audit trail of what the engine decided and why.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from opencontext.utils import get_opencontext_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def _log_dir() -> Path:
    return get_opencontext_home() / "logs"


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_opencontext_logging(
    level: Union[str, int] = "INFO", log_dir: Optional[str] = None
) -> logging.Logger:
    """Attach a dated file handler to the ``opencontext`` logger.

    Args:
        level: Level name (case-insensitive) or number. Unknown names fall
            back to INFO. DEBUG also logs to the console.
        log_dir: Override for the log directory.

    Calling this twice does not add duplicate handlers.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = level

    root = logging.getLogger("opencontext")
    root.setLevel(resolved)

    if any(isinstance(h, logging.FileHandler) for h in root.handlers):
        return root

    directory = _log_dir() if log_dir is None else Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(directory / f"local-{_today()}.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if resolved <= logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    return root


def log_awareness_event(event_type: str, details: str) -> None:
    """Append one line to today's awareness-events log.

    The event log is an audit trail alongside the awareness document, so a
    failure to write it is logged and does not fail the operation.
    """
    directory = _log_dir()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / f"awareness-events-{_today()}.log", "a", encoding="utf-8") as f:
            f.write(f"{timestamp} | {event_type} | {details}\n")
    except OSError as e:
        logger.warning(f"Could not write awareness event log: {e}")


def log_enqueue(action_id: str, action_type: str, risk: str) -> None:
    log_awareness_event("enqueue", f"id={action_id}, type={action_type}, risk={risk}")


def log_decision(
    action_id: str, action_type: str, decision: str, reason: Optional[str] = None
) -> None:
    details = f"id={action_id}, type={action_type}"
    if reason:
        details += f", reason={reason[:80]}"
    log_awareness_event(decision, details)


def log_expired(count: int) -> None:
    log_awareness_event("expire", f"count={count}")


def log_protection_learned(action_type: str, dismissals: int) -> None:
    log_awareness_event("learn", f"type={action_type}, dismissals={dismissals}")


def log_cycle(executed: int, enqueued: int, expired: int, failed: int = 0) -> None:
    log_awareness_event(
        "cycle",
        f"executed={executed}, enqueued={enqueued}, expired={expired}, failed={failed}",
    )
