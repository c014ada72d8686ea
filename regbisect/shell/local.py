#!/usr/bin/env python3
"""Local command runner built on subprocess."""

import logging
import subprocess
import time
from typing import Optional, Tuple

from regbisect.shell.base import FAILED_TO_RUN, CommandRunner


logger = logging.getLogger(__name__)


class LocalCommandRunner(CommandRunner):
    """Run shell commands on the local machine.

    Attributes:
        default_timeout: Timeout applied when a call does not pass one
    """

    def __init__(self, default_timeout: Optional[int] = None) -> None:
        self.default_timeout = default_timeout

    def run_command(
        self, command: str, cwd: Optional[str] = None, timeout: Optional[int] = None
    ) -> Tuple[int, str, str]:
        """Run command locally through the shell.

        Args:
            command: Command to execute
            cwd: Working directory
            timeout: Command timeout in seconds

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        if timeout is None:
            timeout = self.default_timeout

        logger.debug(f"Running: {command} (in {cwd or '.'})")
        start_time = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout}s: {command}")
            return FAILED_TO_RUN, "", f"Timeout after {timeout}s"
        except OSError as exc:
            logger.error(f"Command failed to start: {exc}")
            return FAILED_TO_RUN, "", str(exc)

        duration = time.monotonic() - start_time
        logger.debug(f"Command completed in {duration:.2f}s (exit {result.returncode})")
        return result.returncode, result.stdout, result.stderr
