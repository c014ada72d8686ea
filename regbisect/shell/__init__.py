"""Process boundary for running build, measurement and git commands."""

from regbisect.shell.base import FAILED_TO_RUN, CommandRunner
from regbisect.shell.local import LocalCommandRunner


__all__ = [
    "FAILED_TO_RUN",
    "CommandRunner",
    "LocalCommandRunner",
]
