"""
Pytest fixtures and test configuration for opencontext tests.
"""

from datetime import datetime, timezone

import pytest

from opencontext.awareness.control_plane import ControlPlane
from opencontext.awareness.observer import Observer
from opencontext.testing import InMemoryContextStore, ManualClock, ManualScheduler
from opencontext.types import Schema, SchemaType

AUTO_APPROVE_VARS = (
    "OPENCONTEXT_AUTO_APPROVE_LOW",
    "OPENCONTEXT_AUTO_APPROVE_MEDIUM",
    "OPENCONTEXT_AUTO_APPROVE_HIGH",
    "OPENCONTEXT_PENDING_TTL",
)


@pytest.fixture(autouse=True)
def clean_policy_env(monkeypatch):
    """Keep host environment overrides out of policy decisions."""
    for var in AUTO_APPROVE_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Route the data directory (and the event logs in it) to a temp dir."""
    home = tmp_path / "opencontext-home"
    monkeypatch.setenv("OPENCONTEXT_DATA_DIR", str(home))
    return home


@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def awareness_path(tmp_path):
    return tmp_path / "awareness.json"


@pytest.fixture
def observer(awareness_path, clock, scheduler):
    obs = Observer(awareness_path, clock=clock, scheduler=scheduler)
    yield obs
    obs.close()


@pytest.fixture
def control_plane(observer):
    return ControlPlane(observer)


@pytest.fixture
def store(clock):
    return InMemoryContextStore(clock=clock)


@pytest.fixture
def schema():
    return Schema(
        types=[
            SchemaType("preference", "Personal preferences and working style"),
            SchemaType("decision", "Architecture decisions and their rationale"),
            SchemaType("project", "Active projects and their status"),
        ]
    )
