"""Regression Bisection Tool - Measurement-driven first-bad-revision search."""

__version__ = "0.1.0"

from regbisect.config import BisectConfig
from regbisect.core import BisectDriver, BisectionSession
from regbisect.persistence import StateManager


__all__ = [
    "BisectConfig",
    "BisectDriver",
    "BisectionSession",
    "StateManager",
    "__version__",
]
