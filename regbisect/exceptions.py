#!/usr/bin/env python3
"""Exception hierarchy for regbisect.

Only infrastructure failures are raised. Measurement failures and untestable
revisions are ordinary oracle results and never surface as exceptions.
"""

from typing import Optional


class InfrastructureError(Exception):
    """Base exception for failures that abort a bisection session."""


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


class OracleError(InfrastructureError):
    """The oracle could not run or could not persist its artifact."""


class OracleParseError(OracleError):
    """A successful measurement did not contain the expected metric."""


class WalkerError(InfrastructureError):
    """The history source rejected an operation or is in an unusable state."""


class IllPosedSearchError(WalkerError):
    """The good anchor is not strictly better than the bad anchor."""


class DatabaseError(InfrastructureError):
    """Base exception for database-related errors."""


class RecorderError(InfrastructureError):
    """The run log, an artifact or the replay transcript could not be written."""


class BisectAbortedError(InfrastructureError):
    """A session was aborted by an infrastructure failure.

    Attributes:
        step: Description of the step that failed
        last_revision: Last revision whose verdict was durably recorded
    """

    def __init__(self, step: str, last_revision: Optional[str], cause: Exception) -> None:
        self.step = step
        self.last_revision = last_revision
        self.cause = cause
        last = last_revision or "none"
        super().__init__(f"Aborted during {step} (last recorded revision: {last}): {cause}")
