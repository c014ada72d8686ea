"""Core orchestration components for regression bisection."""

from regbisect.core.orchestrator import BisectDriver
from regbisect.core.session import BisectionSession


__all__ = [
    "BisectDriver",
    "BisectionSession",
]
