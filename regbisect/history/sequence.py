#!/usr/bin/env python3
"""Binary search directly over an explicit ordered revision list."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple, Union

from regbisect.exceptions import IllPosedSearchError, WalkerError
from regbisect.history.base import MarkResult, Revision, RevisionWalker, Verdict, WalkerState
from regbisect.history.git import GitRepository


logger = logging.getLogger(__name__)


def load_revision_list(path: Union[str, Path], reverse: bool = False) -> List[Revision]:
    """Load a JSON array of revision ids.

    Args:
        path: JSON file holding a list of revision ids
        reverse: Reverse the list (for newest-first exports)

    Returns:
        List of revisions in the requested order

    Raises:
        WalkerError: If the file cannot be read or is not a list of strings
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as exc:
        raise WalkerError(f"Cannot read revision list {path}: {exc}") from exc

    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise WalkerError(f"Revision list {path} must be a JSON array of strings")

    revisions = [Revision(item.strip()) for item in data if item.strip()]
    if reverse:
        revisions.reverse()
    return revisions


class SequenceWalker(RevisionWalker):
    """Revision walker over an explicit ordered list, oldest first.

    The open interval between the last good and the first bad index is
    searched by repeatedly offering the untested revision closest to its
    midpoint. Skipped revisions stay in the interval but are never offered
    again.

    Attributes:
        revisions: Ordered revision list
        repository: Optional git repository used for checkout and restore
    """

    def __init__(
        self, revisions: Sequence[Revision], repository: Optional[GitRepository] = None
    ) -> None:
        super().__init__()
        self.revisions = list(revisions)
        self.repository = repository
        self._index = {rev.id: i for i, rev in enumerate(self.revisions)}
        self._low = 0
        self._high = len(self.revisions) - 1
        self._skipped: Set[int] = set()

        if len(self._index) != len(self.revisions):
            raise WalkerError("Revision list contains duplicates")

    @property
    def remaining_range(self) -> Tuple[Revision, Revision]:
        """Current (last good, first bad) bounds of the search."""
        return self.revisions[self._low], self.revisions[self._high]

    def open_candidates(self) -> Tuple[Revision, ...]:
        return tuple(self.revisions[self._low + 1 : self._high + 1])

    def resolve(self, expression: str) -> Revision:
        if expression in self._index:
            return self.revisions[self._index[expression]]

        if self.repository is not None:
            resolved = self.repository.resolve(expression)
            if resolved.id in self._index:
                return self.revisions[self._index[resolved.id]]
            raise WalkerError(f"Revision '{expression}' ({resolved.short}) is not in the revision list")

        matches = [rev for rev in self.revisions if rev.id.startswith(expression)]
        if len(matches) != 1:
            raise WalkerError(f"Revision '{expression}' does not name exactly one listed revision")
        return matches[0]

    def next(self) -> Optional[Revision]:
        if self.state != WalkerState.RUNNING:
            return None

        candidates = self._untested()
        if not candidates:
            return None

        midpoint = (self._low + self._high) / 2
        index = min(candidates, key=lambda i: (abs(i - midpoint), i))
        return self.revisions[index]

    def checkout(self, revision: Revision) -> None:
        if self.repository is not None:
            self.repository.checkout(revision)

    def restore_working_copy(self) -> None:
        if self.repository is not None:
            self.repository.restore()

    def _start(self, good: Revision, bad: Revision) -> MarkResult:
        low = self._position(good)
        high = self._position(bad)
        if low >= high:
            raise IllPosedSearchError(
                f"Good anchor {good.short} must come before bad anchor {bad.short} in the revision list"
            )

        self._low = low
        self._high = high
        self._skipped = set()
        logger.info(f"Bisecting {high - low - 1} revisions between {good.short} and {bad.short}")
        return self._evaluate()

    def _mark(self, revision: Revision, verdict: Verdict) -> MarkResult:
        index = self._position(revision)
        if not self._low < index < self._high:
            raise WalkerError(
                f"Revision {revision.short} is outside the remaining range "
                f"{self.revisions[self._low].short}..{self.revisions[self._high].short}"
            )

        if verdict == Verdict.GOOD:
            self._low = index
        elif verdict == Verdict.BAD:
            self._high = index
        else:
            self._skipped.add(index)

        return self._evaluate()

    def _reset(self) -> None:
        self._low = 0
        self._high = len(self.revisions) - 1
        self._skipped = set()

    def _position(self, revision: Revision) -> int:
        try:
            return self._index[revision.id]
        except KeyError:
            raise WalkerError(f"Revision {revision.short} is not in the revision list") from None

    def _untested(self) -> List[int]:
        return [i for i in range(self._low + 1, self._high) if i not in self._skipped]

    def _evaluate(self) -> MarkResult:
        remaining = len(self._untested())
        if remaining:
            return MarkResult.proceed(f"{remaining} revisions left to test")

        if self._high - self._low == 1:
            return MarkResult.found(self.revisions[self._high])

        return MarkResult.exhausted(self.open_candidates(), "Only skipped revisions left to test")
