"""Filesystem locations for opencontext data."""

import os
from pathlib import Path


def get_opencontext_home() -> Path:
    """Directory holding opencontext data.

    ``OPENCONTEXT_DATA_DIR`` wins when set; otherwise ``~/.opencontext``.
    """
    override = os.environ.get("OPENCONTEXT_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".opencontext"


def default_awareness_path() -> Path:
    return get_opencontext_home() / "awareness.json"
