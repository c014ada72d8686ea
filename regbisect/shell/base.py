#!/usr/bin/env python3
"""Abstract base class for command runners.

Provides the process boundary used by the oracle and the git history source.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple


# Return code reported when a command could not be started or timed out
FAILED_TO_RUN = -1


class CommandRunner(ABC):
    """Abstract base class for command runners.

    Implementations execute a shell command in a working directory and
    report its exit status and output. They never raise for a failing
    command; callers decide what a non-zero exit means.
    """

    @abstractmethod
    def run_command(
        self, command: str, cwd: Optional[str] = None, timeout: Optional[int] = None
    ) -> Tuple[int, str, str]:
        """Run command.

        Args:
            command: Shell command to execute
            cwd: Working directory (None for the current directory)
            timeout: Command timeout in seconds (None for no timeout)

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
