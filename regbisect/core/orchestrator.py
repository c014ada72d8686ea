#!/usr/bin/env python3
"""Bisection Driver - composes oracle, policy, walker, session and recorder.

Runs a regression search to a terminal outcome, sweeps an explicit revision
list without bisecting, and replays a saved transcript without measuring.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from regbisect.config.config import BisectConfig
from regbisect.core.oracle import Oracle, OracleStatus
from regbisect.core.session import (
    BisectionSession,
    CulpritFound,
    SearchExhausted,
    StepOutcome,
)
from regbisect.core.verdict import VerdictPolicy
from regbisect.exceptions import BisectAbortedError, InfrastructureError, WalkerError
from regbisect.history.base import MarkStatus, Revision, RevisionWalker
from regbisect.persistence.recorder import RunRecorder, Transcript, VerdictRecord
from regbisect.persistence.state_manager import STATUS_HALTED, StateManager


logger = logging.getLogger(__name__)

# Constants
MAX_ITERATIONS = 1000


@dataclass
class SweepResult:
    """Outcome of a range sweep.

    Attributes:
        measured: Revisions measured in this run, with their records
        skipped: Revisions already present in the sweep log
    """

    measured: List[VerdictRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def sweep_targets(revisions: Sequence[Revision], step: int) -> List[Revision]:
    """Select every step-th revision; the last revision is always included.

    Args:
        revisions: Ordered revision list
        step: Stride (1 measures every revision)

    Returns:
        Revisions to measure, in order
    """
    if step < 1:
        raise ValueError("step must be at least 1")

    targets = [rev for i, rev in enumerate(revisions) if i % step == 0]
    if revisions and targets[-1].id != revisions[-1].id:
        targets.append(revisions[-1])
    return targets


class BisectDriver:
    """Drive bisection sessions.

    Attributes:
        config: Bisection configuration
        walker: Revision walker
        oracle: Measurement oracle
        policy: Verdict policy (None builds it from configuration or calibration)
        state: Session state database
        recorder: Run log recorder for the bisect mode
    """

    def __init__(
        self,
        config: BisectConfig,
        walker: RevisionWalker,
        oracle: Oracle,
        state: StateManager,
        recorder: Optional[RunRecorder] = None,
        policy: Optional[VerdictPolicy] = None,
    ) -> None:
        self.config = config
        self.walker = walker
        self.oracle = oracle
        self.state = state
        self.recorder = recorder or RunRecorder(config.summary_path)
        self.policy = policy
        self.session: Optional[BisectionSession] = None

    def open_session(self) -> BisectionSession:
        """Resume or start the session for the configured anchors.

        Raises:
            BisectAbortedError: On infrastructure failure
        """
        self.session = BisectionSession(
            self.config, self.walker, self.oracle, self.state, self.recorder, self.policy
        )
        try:
            self.session.open()
        except InfrastructureError as exc:
            raise self._halt(exc) from exc
        return self.session

    def run(self) -> StepOutcome:
        """Run the regression search until a terminal outcome.

        Returns:
            CulpritFound or SearchExhausted

        Raises:
            BisectAbortedError: On infrastructure failure
        """
        logger.info("=== Starting Bisection ===")
        session = self.session or self.open_session()

        for _ in range(MAX_ITERATIONS):
            try:
                outcome = session.step()
            except InfrastructureError as exc:
                raise self._halt(exc) from exc

            if isinstance(outcome, (CulpritFound, SearchExhausted)):
                return outcome

        exc = WalkerError(f"Safety limit reached: exceeded {MAX_ITERATIONS} iterations")
        raise self._halt(exc) from exc

    def _halt(self, exc: Exception) -> BisectAbortedError:
        """Halt the session and restore the working copy after a fatal error.

        Returns:
            BisectAbortedError naming the failing step, for the caller to raise
        """
        session = self.session
        step = session.current_step if session else "initialization"
        last = session.last_recorded.id if session and session.last_recorded else None

        logger.error(f"Fatal error during {step}: {exc}")
        if last:
            logger.error(f"Last recorded revision: {last}")

        try:
            self.walker.restore_working_copy()
        except InfrastructureError as restore_exc:
            logger.error(f"Could not restore working copy: {restore_exc}")

        if session and session.session_id is not None:
            try:
                self.state.update_session(session.session_id, status=STATUS_HALTED)
                self.state.add_log(
                    session.session_id,
                    "fatal",
                    f"Aborted during {step} (last recorded revision: {last or 'none'}): {exc}",
                )
            except InfrastructureError as db_exc:
                logger.error(f"Could not record fatal error: {db_exc}")

        return BisectAbortedError(step, last, exc)

    def sweep(
        self,
        revisions: Sequence[Revision],
        step: int = 1,
        resume: bool = False,
        recorder: Optional[RunRecorder] = None,
    ) -> SweepResult:
        """Measure every step-th revision without bisecting.

        Args:
            revisions: Ordered revision list
            step: Stride between measured revisions
            resume: Keep the existing sweep log and skip revisions it already has
            recorder: Sweep log recorder (defaults to the sweep summary path)

        Returns:
            SweepResult

        Raises:
            BisectAbortedError: On infrastructure failure
        """
        recorder = recorder or RunRecorder(self.config.sweep_summary_path, outcome_column="status")
        targets = sweep_targets(revisions, step)
        logger.info(f"=== Sweeping {len(targets)} of {len(revisions)} revisions (step {step}) ===")

        result = SweepResult()
        current_step = "starting sweep log"
        last: Optional[str] = None
        try:
            recorder.start(reset=not resume)
            done: Set[str] = {r.revision for r in recorder.read_records()} if resume else set()

            for index, revision in enumerate(targets, 1):
                if revision.id in done:
                    logger.info(f"[{index}/{len(targets)}] {revision.short} already measured, skipping")
                    result.skipped.append(revision.id)
                    continue

                logger.info(f"[{index}/{len(targets)}] Measuring {revision.short}")
                current_step = f"measuring {revision.short}"
                self.walker.restore_working_copy()
                with self.walker.working_copy(revision):
                    measured = self.oracle.measure(revision)

                current_step = f"recording {revision.short}"
                record = VerdictRecord.now(
                    revision, measured.label, measured.status.value, measured.metric
                )
                recorder.record(record)
                result.measured.append(record)
                last = revision.id

                if measured.status != OracleStatus.OK:
                    logger.warning(f"{revision.short}: {measured.status.value}: {measured.diagnostics}")
        except InfrastructureError as exc:
            logger.error(f"Fatal error during {current_step}: {exc}")
            try:
                self.walker.restore_working_copy()
            except InfrastructureError as restore_exc:
                logger.error(f"Could not restore working copy: {restore_exc}")
            raise BisectAbortedError(current_step, last, exc) from exc

        logger.info(
            f"Sweep complete: {len(result.measured)} measured, {len(result.skipped)} already present"
        )
        return result

    def replay(self, transcript: Transcript) -> StepOutcome:
        """Reconstruct a finished search from a transcript without measuring.

        Args:
            transcript: Parsed transcript

        Returns:
            CulpritFound or SearchExhausted

        Raises:
            WalkerError: If the transcript does not reach a terminal state or
                reaches a different culprit than it records
        """
        logger.info(
            f"Replaying {len(transcript.marks)} verdicts between "
            f"{transcript.good.short} and {transcript.bad.short}"
        )
        try:
            mark_result = self.walker.replay(transcript.good, transcript.bad, transcript.marks)
        finally:
            self.walker.reset()

        if mark_result.status == MarkStatus.CULPRIT:
            culprit = mark_result.revision
            if transcript.culprit is not None and transcript.culprit.id != culprit.id:
                raise WalkerError(
                    f"Replay reached {culprit.short} but the transcript records {transcript.culprit.short}"
                )
            logger.info(f"Replay reached first bad revision {culprit.id}")
            return CulpritFound(culprit)

        if mark_result.status == MarkStatus.EXHAUSTED:
            return SearchExhausted(mark_result.candidates, "only skipped revisions left to test")

        raise WalkerError("Transcript ends before the search reached a terminal state")
