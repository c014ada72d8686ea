#!/usr/bin/env python3
"""Abstract base class for revision walkers.

A revision walker drives binary search over a version history: it offers the
next revision to test, accepts verdicts and reports when the search is over.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

from regbisect.exceptions import WalkerError


logger = logging.getLogger(__name__)

# Constants
SHORT_REVISION_LENGTH = 8


@dataclass(frozen=True)
class Revision:
    """Immutable revision identifier.

    Attributes:
        id: Full revision identifier (commit hash)
        subject: One-line description, when the history provides one
    """

    id: str
    subject: Optional[str] = None

    @property
    def short(self) -> str:
        return self.id[:SHORT_REVISION_LENGTH]

    def __str__(self) -> str:
        return self.short


class Verdict(Enum):
    """Bisection verdict applied to a tested revision."""

    GOOD = "good"
    BAD = "bad"
    SKIP = "skip"


class WalkerState(Enum):
    """Revision walker state."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    NEEDS_DISAMBIGUATION = "needs_disambiguation"
    COMPLETE = "complete"
    EXHAUSTED = "exhausted"


class MarkStatus(Enum):
    """Outcome of applying a verdict."""

    CONTINUE = "continue"
    CULPRIT = "culprit"
    AMBIGUOUS = "ambiguous"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class MarkResult:
    """Structured reply of the walker after a verdict was applied.

    Attributes:
        status: What the search needs next
        revision: Culprit (CULPRIT) or merge point to disambiguate (AMBIGUOUS)
        candidates: Remaining possible culprits (EXHAUSTED)
        message: Raw text from the history source, for the log
    """

    status: MarkStatus
    revision: Optional[Revision] = None
    candidates: Tuple[Revision, ...] = ()
    message: str = ""

    @classmethod
    def proceed(cls, message: str = "") -> "MarkResult":
        return cls(MarkStatus.CONTINUE, message=message)

    @classmethod
    def found(cls, culprit: Revision, message: str = "") -> "MarkResult":
        return cls(MarkStatus.CULPRIT, revision=culprit, message=message)

    @classmethod
    def ambiguous(cls, merge_point: Revision, message: str = "") -> "MarkResult":
        return cls(MarkStatus.AMBIGUOUS, revision=merge_point, message=message)

    @classmethod
    def exhausted(cls, candidates: Sequence[Revision], message: str = "") -> "MarkResult":
        return cls(MarkStatus.EXHAUSTED, candidates=tuple(candidates), message=message)

    @property
    def culprit(self) -> Optional[Revision]:
        return self.revision if self.status == MarkStatus.CULPRIT else None


_STATE_AFTER = {
    MarkStatus.CONTINUE: WalkerState.RUNNING,
    MarkStatus.CULPRIT: WalkerState.COMPLETE,
    MarkStatus.AMBIGUOUS: WalkerState.NEEDS_DISAMBIGUATION,
    MarkStatus.EXHAUSTED: WalkerState.EXHAUSTED,
}

ACTIVE_STATES = (WalkerState.RUNNING, WalkerState.NEEDS_DISAMBIGUATION)


class RevisionWalker(ABC):
    """Abstract base class for revision walkers.

    Subclasses implement the history-specific primitives; this class keeps
    the state machine and enforces that no revision is marked twice.

    Attributes:
        state: Current walker state
        good: Good anchor (set by start)
        bad: Bad anchor (set by start)
        culprit: First bad revision once the search is complete
        candidates: Possible culprits when the search is exhausted
    """

    def __init__(self) -> None:
        self.state = WalkerState.NOT_STARTED
        self.good: Optional[Revision] = None
        self.bad: Optional[Revision] = None
        self.culprit: Optional[Revision] = None
        self.candidates: Tuple[Revision, ...] = ()
        self._marks: List[Tuple[Revision, Verdict]] = []

    @abstractmethod
    def resolve(self, expression: str) -> Revision:
        """Resolve a revision expression (tag, branch, hash prefix).

        Raises:
            WalkerError: If the expression does not name a revision
        """

    @abstractmethod
    def next(self) -> Optional[Revision]:
        """Return the revision to test next, or None when the search is over."""

    @abstractmethod
    def checkout(self, revision: Revision) -> None:
        """Make revision the content of the working copy."""

    @abstractmethod
    def restore_working_copy(self) -> None:
        """Discard local modifications of the working copy.

        Raises:
            WalkerError: If the working copy cannot be restored
        """

    @abstractmethod
    def _start(self, good: Revision, bad: Revision) -> MarkResult:
        """History-specific part of start."""

    @abstractmethod
    def _mark(self, revision: Revision, verdict: Verdict) -> MarkResult:
        """History-specific part of mark."""

    def _reset(self) -> None:
        """History-specific part of reset."""

    def start(self, good: Revision, bad: Revision) -> MarkResult:
        """Begin a search between two anchors.

        Args:
            good: Good anchor revision
            bad: Bad anchor revision

        Returns:
            MarkResult (CULPRIT immediately when the anchors are adjacent)
        """
        self._marks = []
        self.culprit = None
        self.candidates = ()
        self.good = good
        self.bad = bad
        result = self._start(good, bad)
        self._apply(result)
        logger.debug(f"Walker started: good={good.short} bad={bad.short} -> {result.status.value}")
        return result

    def mark(self, revision: Revision, verdict: Verdict) -> MarkResult:
        """Apply a verdict to a revision and advance the search.

        Args:
            revision: Tested revision
            verdict: Verdict for that revision

        Returns:
            MarkResult describing the new search state

        Raises:
            WalkerError: If the search is not active or the revision was already marked
        """
        if self.state not in ACTIVE_STATES:
            raise WalkerError(f"Cannot mark {revision.short}: walker is {self.state.value}")

        if self.is_marked(revision):
            raise WalkerError(f"Revision {revision.short} was already marked in this session")

        result = self._mark(revision, verdict)
        self._marks.append((revision, verdict))
        self._apply(result)
        return result

    def reset(self) -> None:
        """Drop all search state."""
        self._reset()
        self.state = WalkerState.NOT_STARTED
        self.good = None
        self.bad = None
        self.culprit = None
        self.candidates = ()
        self._marks = []

    def replay(
        self, good: Revision, bad: Revision, marks: Sequence[Tuple[Revision, Verdict]]
    ) -> MarkResult:
        """Reconstruct search state from a prior decision sequence.

        Args:
            good: Good anchor revision
            bad: Bad anchor revision
            marks: Verdicts in the order they were applied

        Returns:
            MarkResult after the last replayed mark

        Raises:
            WalkerError: If the sequence does not fit this history
        """
        result = self.start(good, bad)
        for revision, verdict in marks:
            if self.state not in ACTIVE_STATES:
                raise WalkerError(
                    f"Replay diverged: search already {self.state.value} before {revision.short}"
                )
            result = self.mark(revision, verdict)
        return result

    def is_marked(self, revision: Revision) -> bool:
        return any(marked.id == revision.id for marked, _ in self._marks)

    def transcript_marks(self) -> List[Tuple[Revision, Verdict]]:
        """Verdicts applied in this search, in order."""
        return list(self._marks)

    def open_candidates(self) -> Tuple[Revision, ...]:
        """Revisions that may still be the first bad one.

        Without a view of the history between the bounds this is every
        skipped revision plus the earliest known bad revision.
        """
        skipped = [rev for rev, verdict in self._marks if verdict == Verdict.SKIP]
        bad = [rev for rev, verdict in self._marks if verdict == Verdict.BAD]
        lowest_bad = bad[-1] if bad else self.bad
        if lowest_bad is not None:
            skipped.append(lowest_bad)
        return tuple(skipped)

    @contextmanager
    def working_copy(self, revision: Optional[Revision] = None) -> Iterator[None]:
        """Hold the working copy for one measurement.

        Checks out revision when given and always restores the working copy
        on exit, on both success and failure paths.
        """
        if revision is not None:
            self.checkout(revision)
        try:
            yield
        finally:
            self.restore_working_copy()

    def _apply(self, result: MarkResult) -> None:
        self.state = _STATE_AFTER[result.status]
        if result.status == MarkStatus.CULPRIT:
            self.culprit = result.revision
        elif result.status == MarkStatus.EXHAUSTED:
            self.candidates = result.candidates
