#!/usr/bin/env python3
"""Git history source.

GitRepository wraps the plain git operations the engine needs (resolve,
checkout, restore, enumerate). GitBisectWalker drives git's own bisection
primitive and translates its textual replies into MarkResult values.
"""

import logging
import re
import shlex
from typing import List, Optional, Sequence, Tuple

from regbisect.exceptions import IllPosedSearchError, WalkerError
from regbisect.history.base import (
    MarkResult,
    Revision,
    RevisionWalker,
    Verdict,
    WalkerState,
)
from regbisect.shell.base import CommandRunner


logger = logging.getLogger(__name__)

# Constants
COMMIT_HASH_LENGTH = 40
DEFAULT_GIT_TIMEOUT = 300

_CULPRIT_RE = re.compile(r"^([0-9a-f]{40}) is the first bad commit", re.MULTILINE)
_HASH_LINE_RE = re.compile(r"^([0-9a-f]{40})\s*$", re.MULTILINE)
_LOG_MARK_RE = re.compile(r"^git bisect (good|bad|skip) ([0-9a-f]{40})\s*$", re.MULTILINE)
_LOG_CULPRIT_RE = re.compile(r"^# first bad commit: \[([0-9a-f]{40})\]", re.MULTILINE)

_ONLY_SKIPPED = "only 'skip'ped commits left to test"
_MERGE_BASE_TESTED = "a merge base must be tested"


def _is_full_hash(value: str) -> bool:
    if len(value) != COMMIT_HASH_LENGTH:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


class GitRepository:
    """Plain git operations on one working copy.

    Attributes:
        path: Path to the repository working copy
        runner: Command runner used for git invocations
        timeout: Timeout for each git invocation in seconds
    """

    def __init__(
        self, path: str, runner: CommandRunner, timeout: Optional[int] = DEFAULT_GIT_TIMEOUT
    ) -> None:
        self.path = path
        self.runner = runner
        self.timeout = timeout

    def git(self, args: str, check: bool = True) -> Tuple[int, str, str]:
        """Run a git subcommand in the repository.

        Args:
            args: Arguments after "git", already shell-quoted
            check: Raise on non-zero exit

        Returns:
            Tuple of (return_code, stdout, stderr)

        Raises:
            WalkerError: If check is set and git fails
        """
        ret, stdout, stderr = self.runner.run_command(
            f"git {args}", cwd=self.path, timeout=self.timeout
        )
        if check and ret != 0:
            raise WalkerError(f"git {args} failed in {self.path}: {stderr.strip() or stdout.strip()}")
        return ret, stdout, stderr

    def resolve(self, expression: str) -> Revision:
        """Resolve a revision expression to a full commit hash.

        Args:
            expression: Tag, branch, short or full hash

        Returns:
            Revision with full hash and subject

        Raises:
            WalkerError: If the expression does not name a commit
        """
        ret, stdout, stderr = self.git(
            f"rev-parse --verify --quiet {shlex.quote(expression + '^{commit}')}", check=False
        )
        sha = stdout.strip()
        if ret != 0 or not _is_full_hash(sha):
            raise WalkerError(
                f"Revision '{expression}' does not exist in {self.path}"
                + (f": {stderr.strip()}" if stderr.strip() else "")
            )
        return Revision(sha, self.subject(sha))

    def subject(self, sha: str) -> Optional[str]:
        ret, stdout, _ = self.git(f"log -1 --format=%s {shlex.quote(sha)}", check=False)
        return stdout.strip() if ret == 0 and stdout.strip() else None

    def head(self) -> Revision:
        """Return the currently checked out commit.

        Raises:
            WalkerError: If HEAD cannot be read or is not a valid hash
        """
        _, stdout, _ = self.git("rev-parse HEAD")
        sha = stdout.strip()
        if not _is_full_hash(sha):
            raise WalkerError(f"Invalid commit hash for HEAD: {sha!r}")
        return Revision(sha, self.subject(sha))

    def checkout(self, revision: Revision) -> None:
        self.git(f"checkout --quiet {shlex.quote(revision.id)}")

    def restore(self) -> None:
        """Discard modifications to tracked files."""
        self.git("restore .")

    def is_ancestor(self, ancestor: Revision, descendant: Revision) -> bool:
        ret, _, _ = self.git(
            f"merge-base --is-ancestor {shlex.quote(ancestor.id)} {shlex.quote(descendant.id)}",
            check=False,
        )
        return ret == 0

    def revisions_between(self, good: Revision, bad: Revision) -> List[Revision]:
        """Enumerate revisions from good to bad, oldest first, anchors included."""
        _, stdout, _ = self.git(
            f"rev-list --reverse --topo-order {shlex.quote(good.id)}..{shlex.quote(bad.id)}"
        )
        revisions = [good]
        revisions.extend(Revision(line.strip()) for line in stdout.splitlines() if line.strip())
        return revisions


class GitBisectWalker(RevisionWalker):
    """Revision walker delegating the search to git bisect.

    Git keeps its bisection state inside the repository, so an interrupted
    search survives process restarts; replay reconciles that state with the
    persisted decision sequence.
    """

    def __init__(self, repository: GitRepository) -> None:
        super().__init__()
        self.repository = repository

    def resolve(self, expression: str) -> Revision:
        return self.repository.resolve(expression)

    def next(self) -> Optional[Revision]:
        """Return the commit git bisect has checked out for testing."""
        if self.state not in (WalkerState.RUNNING, WalkerState.NEEDS_DISAMBIGUATION):
            return None
        return self.repository.head()

    def checkout(self, revision: Revision) -> None:
        if self.repository.head().id != revision.id:
            self.repository.checkout(revision)

    def restore_working_copy(self) -> None:
        self.repository.restore()

    def _start(self, good: Revision, bad: Revision) -> MarkResult:
        self._validate_anchors(good, bad)

        self.repository.git("bisect reset", check=False)
        ret, stdout, stderr = self.repository.git(
            f"bisect start {shlex.quote(bad.id)} {shlex.quote(good.id)}", check=False
        )
        logger.info(f"Started git bisect between {good.short} (good) and {bad.short} (bad)")
        return self._parse_reply(ret, stdout, stderr)

    def _mark(self, revision: Revision, verdict: Verdict) -> MarkResult:
        ret, stdout, stderr = self.repository.git(
            f"bisect {verdict.value} {shlex.quote(revision.id)}", check=False
        )
        result = self._parse_reply(ret, stdout, stderr)
        logger.info(f"Marked {revision.short} as {verdict.value}")
        return result

    def _reset(self) -> None:
        self.repository.git("bisect reset", check=False)

    def _validate_anchors(self, good: Revision, bad: Revision) -> None:
        """Check that good is an ancestor of bad.

        Raises:
            IllPosedSearchError: If the anchors are equal, swapped or unrelated
        """
        if good.id == bad.id:
            raise IllPosedSearchError(f"Good and bad anchors are the same commit: {good.id}")

        if self.repository.is_ancestor(good, bad):
            return

        if self.repository.is_ancestor(bad, good):
            raise IllPosedSearchError(
                f"Anchors appear to be swapped: bad {bad.short} is an ancestor of good {good.short}"
            )
        raise IllPosedSearchError(
            f"Good anchor {good.short} is not an ancestor of bad anchor {bad.short}"
        )

    def _parse_reply(self, ret: int, stdout: str, stderr: str) -> MarkResult:
        """Translate git bisect output into a MarkResult.

        Raises:
            IllPosedSearchError: If git reports an inverted range
            WalkerError: For any other git failure
        """
        text = f"{stdout}\n{stderr}"

        match = _CULPRIT_RE.search(text)
        if match:
            sha = match.group(1)
            return MarkResult.found(Revision(sha, self.repository.subject(sha)), text.strip())

        if _ONLY_SKIPPED in text:
            candidates = [Revision(sha) for sha in _HASH_LINE_RE.findall(text)]
            return MarkResult.exhausted(candidates, text.strip())

        if _MERGE_BASE_TESTED in text:
            return MarkResult.ambiguous(self.repository.head(), text.strip())

        if ret != 0:
            if ("merge base" in text and "is bad" in text) or "not ancestors of the bad rev" in text:
                raise IllPosedSearchError(f"git bisect reports an inverted range: {text.strip()}")
            raise WalkerError(f"git bisect failed: {text.strip()}")

        return MarkResult.proceed(stdout.strip())

    def bisect_log(self) -> Optional[str]:
        """Return git's bisect log, or None when no bisection is in progress."""
        ret, stdout, _ = self.repository.git("bisect log", check=False)
        if ret != 0 or not stdout.strip():
            return None
        return stdout

    def replay_log(self) -> List[Tuple[Revision, Verdict]]:
        """Verdicts recorded in git's bisect log, anchors included, in order."""
        log = self.bisect_log() or ""
        return [(Revision(sha), Verdict(verdict)) for verdict, sha in _LOG_MARK_RE.findall(log)]

    def replay(
        self, good: Revision, bad: Revision, marks: Sequence[Tuple[Revision, Verdict]]
    ) -> MarkResult:
        """Reconcile git's bisection state with the persisted marks.

        When git already holds a prefix of the persisted decision sequence
        for the same anchors, only the missing marks are applied. Any other
        state is rebuilt from scratch.
        """
        log = self.bisect_log()
        if log is None:
            logger.info("No git bisection in progress, rebuilding from recorded verdicts")
            return super().replay(good, bad, marks)

        logged = self.replay_log()
        anchors = {good.id, bad.id}
        anchor_marks = {(r.id, v) for r, v in logged if r.id in anchors}
        logged_marks = [(r.id, v) for r, v in logged if r.id not in anchors]
        expected = [(r.id, v) for r, v in marks]

        same_anchors = anchor_marks == {(good.id, Verdict.GOOD), (bad.id, Verdict.BAD)}
        if not same_anchors or expected[: len(logged_marks)] != logged_marks:
            logger.warning("Git bisect state diverges from recorded verdicts, rebuilding")
            return super().replay(good, bad, marks)

        self.good = good
        self.bad = bad
        self.culprit = None
        self.candidates = ()
        self._marks = list(marks[: len(logged_marks)])

        match = _LOG_CULPRIT_RE.search(log)
        if match:
            result = MarkResult.found(Revision(match.group(1), self.repository.subject(match.group(1))))
        else:
            result = MarkResult.proceed()
        self._apply(result)

        logger.info(f"Resuming git bisection with {len(logged_marks)} verdicts already applied")
        for revision, verdict in marks[len(logged_marks):]:
            if self.state not in (WalkerState.RUNNING, WalkerState.NEEDS_DISAMBIGUATION):
                raise WalkerError(
                    f"Replay diverged: search already {self.state.value} before {revision.short}"
                )
            logger.info(f"Re-applying recorded verdict {verdict.value} for {revision.short}")
            result = self.mark(revision, verdict)
        return result
