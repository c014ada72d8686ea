"""Persistence module for regbisect.

Session state database and the file-based run recorder.
"""

from regbisect.persistence.recorder import (
    RunRecorder,
    Transcript,
    VerdictRecord,
    artifact_name,
    format_transcript,
    load_transcript,
    parse_transcript,
    save_transcript,
    write_artifact,
)
from regbisect.persistence.state_manager import (
    IterationRecord,
    SessionRecord,
    StateManager,
)


__all__ = [
    "IterationRecord",
    "RunRecorder",
    "SessionRecord",
    "StateManager",
    "Transcript",
    "VerdictRecord",
    "artifact_name",
    "format_transcript",
    "load_transcript",
    "parse_transcript",
    "save_transcript",
    "write_artifact",
]
