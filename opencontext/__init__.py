"""
opencontext - personal context store with a self-improvement governance engine.

The awareness engine observes how the store is used, builds a self-model of
its health, and gates proposed improvements behind risk policy and approval.
"""

from .awareness import ControlPlane, Observer, build_self_model

try:
    from importlib.metadata import version

    __version__ = version("opencontext")
except Exception:
    __version__ = "0.0.0"

__all__ = ["ControlPlane", "Observer", "build_self_model"]
