#!/usr/bin/env python3
"""Run Recorder - append-only run log, per-revision artifacts and replay transcript.

The run log is a CSV file with one row per tested revision and a final
culprit row. The transcript uses git bisect log syntax so it can be fed to
both ``regbisect replay`` and ``git bisect replay``.
"""

import csv
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from regbisect.exceptions import RecorderError
from regbisect.history.base import Revision, Verdict


logger = logging.getLogger(__name__)

# Constants
CULPRIT_MARKER = "culprit"
DEFAULT_LABEL = "unknown"

_LABEL_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._+-]+")
_TRANSCRIPT_MARK_RE = re.compile(r"^git bisect (good|bad|skip)((?:\s+\S+)+)\s*$")
_TRANSCRIPT_CULPRIT_RE = re.compile(r"^# first bad commit: \[(\S+)\](?:\s+(.*))?$")


@dataclass
class VerdictRecord:
    """One row of the run log.

    Attributes:
        timestamp: ISO timestamp (UTC) of the record
        revision: Full revision id
        label: Derived label of the measured revision
        outcome: Verdict (bisect), oracle status (sweep) or the culprit marker
        metric: Measured metric, when there is one
    """

    timestamp: str
    revision: str
    label: str
    outcome: str
    metric: Optional[float] = None

    @classmethod
    def now(
        cls, revision: Revision, label: Optional[str], outcome: str, metric: Optional[float] = None
    ) -> "VerdictRecord":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            revision=revision.id,
            label=label or DEFAULT_LABEL,
            outcome=outcome,
            metric=metric,
        )

    def to_row(self) -> List[str]:
        metric = "" if self.metric is None else f"{self.metric:g}"
        return [self.timestamp, self.revision, self.label, self.outcome, metric]


@dataclass
class Transcript:
    """Ordered decision sequence of one bisection.

    Attributes:
        good: Good anchor
        bad: Bad anchor
        marks: Verdicts applied after the anchors, in order
        culprit: First bad revision, once known
    """

    good: Revision
    bad: Revision
    marks: List[Tuple[Revision, Verdict]] = field(default_factory=list)
    culprit: Optional[Revision] = None


class RunRecorder:
    """Append-only CSV run log.

    Attributes:
        path: CSV file path
        outcome_column: Name of the fourth column ('verdict' or 'status')
    """

    def __init__(self, path: Union[str, Path], outcome_column: str = "verdict") -> None:
        self.path = Path(path)
        self.outcome_column = outcome_column

    @property
    def header(self) -> List[str]:
        return ["timestamp", "revision", "label", self.outcome_column, "metric"]

    def start(self, reset: bool) -> None:
        """Prepare the run log for a session.

        Args:
            reset: Start a fresh log (new session); otherwise continue the
                existing one, creating it when missing
        """
        if not reset and self.path.exists():
            logger.info(f"Continuing run log {self.path}")
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", newline="") as f:
                csv.writer(f).writerow(self.header)
        except OSError as exc:
            raise RecorderError(f"Cannot create run log {self.path}: {exc}") from exc
        logger.info(f"Started run log {self.path}")

    def record(self, record: VerdictRecord) -> None:
        """Append one row and flush it to disk.

        Raises:
            RecorderError: If the row cannot be written
        """
        try:
            with open(self.path, "a", newline="") as f:
                csv.writer(f).writerow(record.to_row())
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise RecorderError(f"Cannot append to run log {self.path}: {exc}") from exc

    def record_culprit(self, revision: Revision, label: Optional[str] = None) -> VerdictRecord:
        record = VerdictRecord.now(revision, label, CULPRIT_MARKER)
        self.record(record)
        return record

    def read_records(self) -> List[VerdictRecord]:
        """Read all rows of the run log, header excluded."""
        if not self.path.exists():
            return []

        try:
            with open(self.path, newline="") as f:
                rows = list(csv.reader(f))
        except OSError as exc:
            raise RecorderError(f"Cannot read run log {self.path}: {exc}") from exc

        records = []
        for row in rows[1:]:
            if len(row) < 5:
                continue
            metric = float(row[4]) if row[4] else None
            records.append(VerdictRecord(row[0], row[1], row[2], row[3], metric))
        return records


def artifact_name(label: Optional[str], revision: Revision) -> str:
    """Deterministic artifact file name for a measured revision."""
    safe = _LABEL_UNSAFE_RE.sub("_", label or "").strip("_") or DEFAULT_LABEL
    return f"{safe}-{revision.short}.txt"


def write_artifact(
    directory: Union[str, Path], label: Optional[str], revision: Revision, content: str
) -> Path:
    """Write the detailed diagnostic dump of one measurement.

    Returns:
        Path of the written artifact

    Raises:
        RecorderError: If the artifact cannot be written
    """
    path = Path(directory) / artifact_name(label, revision)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    except OSError as exc:
        raise RecorderError(f"Cannot write artifact {path}: {exc}") from exc
    logger.debug(f"Wrote artifact {path}")
    return path


def format_transcript(
    good: Revision,
    bad: Revision,
    marks: Sequence[Tuple[Revision, Verdict]],
    culprit: Optional[Revision] = None,
) -> str:
    """Render a decision sequence in git bisect log syntax."""

    def entry(revision: Revision, verdict: Verdict) -> List[str]:
        subject = f" {revision.subject}" if revision.subject else ""
        return [f"# {verdict.value}: [{revision.id}]{subject}", f"git bisect {verdict.value} {revision.id}"]

    lines = ["git bisect start"]
    lines.extend(entry(bad, Verdict.BAD))
    lines.extend(entry(good, Verdict.GOOD))
    for revision, verdict in marks:
        lines.extend(entry(revision, verdict))

    if culprit is not None:
        subject = f" {culprit.subject}" if culprit.subject else ""
        lines.append(f"# first bad commit: [{culprit.id}]{subject}")

    return "\n".join(lines) + "\n"


def parse_transcript(text: str) -> Transcript:
    """Parse a transcript written by format_transcript or git bisect log.

    The first bad and the first good instruction are the anchors; every later
    instruction is a mark.

    Raises:
        RecorderError: If an anchor is missing
    """
    good: Optional[Revision] = None
    bad: Optional[Revision] = None
    marks: List[Tuple[Revision, Verdict]] = []
    culprit: Optional[Revision] = None

    for line in text.splitlines():
        line = line.strip()

        match = _TRANSCRIPT_CULPRIT_RE.match(line)
        if match:
            culprit = Revision(match.group(1), match.group(2) or None)
            continue

        match = _TRANSCRIPT_MARK_RE.match(line)
        if not match:
            continue

        verdict = Verdict(match.group(1))
        for rev_id in match.group(2).split():
            revision = Revision(rev_id)
            if verdict == Verdict.BAD and bad is None:
                bad = revision
            elif verdict == Verdict.GOOD and good is None:
                good = revision
            else:
                marks.append((revision, verdict))

    if good is None or bad is None:
        raise RecorderError("Transcript does not name both a good and a bad anchor")

    return Transcript(good=good, bad=bad, marks=marks, culprit=culprit)


def save_transcript(path: Union[str, Path], text: str) -> Path:
    """Write the transcript, replacing any previous one atomically.

    Raises:
        RecorderError: If the transcript cannot be written
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(text)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise RecorderError(f"Cannot write transcript {path}: {exc}") from exc
    logger.info(f"Replay transcript saved to {path}")
    return path


def load_transcript(path: Union[str, Path]) -> Transcript:
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise RecorderError(f"Cannot read transcript {path}: {exc}") from exc
    return parse_transcript(text)
