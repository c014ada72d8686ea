#!/usr/bin/env python3
"""Bisection Session - the resumable search state machine.

One step takes the next revision from the walker, measures it through the
oracle, maps the result to a verdict, records it durably and only then
advances the walker. Every step leaves a persisted trace (the iteration
phase) so an interrupted step can be recovered after a restart.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple, Union

from regbisect.config.config import BisectConfig
from regbisect.core.oracle import Oracle, OracleResult, OracleStatus
from regbisect.core.verdict import VerdictPolicy, create_policy
from regbisect.exceptions import IllPosedSearchError, WalkerError
from regbisect.history.base import (
    MarkResult,
    MarkStatus,
    Revision,
    RevisionWalker,
    Verdict,
    WalkerState,
)
from regbisect.persistence.recorder import (
    RunRecorder,
    VerdictRecord,
    format_transcript,
    save_transcript,
)
from regbisect.persistence.state_manager import (
    PHASE_DISCARDED,
    PHASE_MARKED,
    PHASE_MEASURED,
    PHASE_MEASURING,
    STATUS_COMPLETED,
    STATUS_EXHAUSTED,
    STATUS_HALTED,
    STATUS_RUNNING,
    IterationRecord,
    StateManager,
)


logger = logging.getLogger(__name__)

# Constants
AMBIGUOUS_REASON = "ambiguous merge point, both parents need verdicts"
SKIP_BUDGET_REASON = "skip budget exhausted"
ONLY_SKIPPED_REASON = "only skipped revisions left to test"


class SessionPhase(Enum):
    """Lifecycle phase of a bisection session."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Continuing:
    """A revision was measured and got a good or bad verdict."""

    revision: Revision
    verdict: Verdict
    metric: Optional[float] = None


@dataclass(frozen=True)
class CulpritFound:
    """The first bad revision is known."""

    revision: Revision


@dataclass(frozen=True)
class NoOracleData:
    """A revision was skipped; reason says why."""

    revision: Revision
    reason: str


@dataclass(frozen=True)
class SearchExhausted:
    """No single culprit can be named; candidates holds the possible ones."""

    candidates: Tuple[Revision, ...]
    reason: str


StepOutcome = Union[Continuing, CulpritFound, NoOracleData, SearchExhausted]
TERMINAL_OUTCOMES = (CulpritFound, SearchExhausted)


@dataclass
class HistoryEntry:
    """One applied verdict of the session history."""

    revision: Revision
    verdict: Verdict
    metric: Optional[float]
    timestamp: Optional[str]


@dataclass
class SessionState:
    """Read-only view of the session for status displays.

    Attributes:
        phase: Session lifecycle phase
        pending_revision: Revision of an interrupted step, if any
        history: Applied verdicts in order
    """

    phase: SessionPhase
    pending_revision: Optional[Revision] = None
    history: List[HistoryEntry] = field(default_factory=list)


class BisectionSession:
    """Drive a resumable bisection one step at a time.

    Attributes:
        config: Bisection configuration
        walker: Revision walker over the history
        oracle: Measurement oracle
        policy: Verdict policy (built from configuration or calibration when None)
        state: Session state database
        recorder: Run log recorder
        session_id: Database session ID once opened
        phase: Session lifecycle phase
        current_step: Description of the step being executed
        last_recorded: Last revision whose verdict was durably recorded
    """

    def __init__(
        self,
        config: BisectConfig,
        walker: RevisionWalker,
        oracle: Oracle,
        state: StateManager,
        recorder: RunRecorder,
        policy: Optional[VerdictPolicy] = None,
    ) -> None:
        self.config = config
        self.walker = walker
        self.oracle = oracle
        self.state = state
        self.recorder = recorder
        self.policy = policy

        self.session_id: Optional[int] = None
        self.phase = SessionPhase.NOT_STARTED
        self.current_step = "initialization"
        self.last_recorded: Optional[Revision] = None
        self.outcome: Optional[StepOutcome] = None

        self.good: Optional[Revision] = None
        self.bad: Optional[Revision] = None
        self.iteration_count = 0
        self.skip_count = 0
        self._pending: Optional[IterationRecord] = None

    def open(self) -> bool:
        """Resume the session for the configured anchors or start a new one.

        Returns:
            True if an existing session was resumed, False if a new one started

        Raises:
            InfrastructureError: If anchors, database, oracle or walker fail
        """
        self.current_step = "resolving anchors"
        self.good = self.walker.resolve(self.config.good)
        self.bad = self.walker.resolve(self.config.bad)
        logger.info(f"Anchors: good {self.good.short} ({self.config.good}), bad {self.bad.short} ({self.config.bad})")

        existing = self.state.find_active_session(self.good.id, self.bad.id)
        if existing:
            self._resume(existing.session_id, existing.status, existing.good_ref, existing.bad_ref)
            return True

        self._start_new()
        return False

    def _start_new(self) -> None:
        self.current_step = "creating session"
        self.session_id = self.state.create_session(
            self.good.id,
            self.bad.id,
            self.config.policy,
            self.config.good_ref,
            self.config.bad_ref,
            config=self._config_snapshot(),
        )
        self.recorder.start(reset=True)

        calibrated = self._ensure_policy(self.config.good_ref, self.config.bad_ref)
        if self.config.verify_anchors and not calibrated:
            self._verify_anchors()

        self.current_step = "starting search"
        result = self.walker.start(self.good, self.bad)
        self.phase = SessionPhase.RUNNING
        logger.info(f"Started bisection session {self.session_id}: {result.message or result.status.value}")

    def _resume(
        self, session_id: int, status: str, good_ref: Optional[float], bad_ref: Optional[float]
    ) -> None:
        self.current_step = "resuming session"
        self.session_id = session_id
        if status == STATUS_HALTED:
            self.state.update_session(session_id, status=STATUS_RUNNING)
            self.state.add_log(session_id, "resume", "Resumed halted session")

        if (
            self.config.policy == "threshold"
            and self.config.good_ref is not None
            and good_ref is not None
            and (self.config.good_ref, self.config.bad_ref) != (good_ref, bad_ref)
        ):
            logger.warning(
                f"Configured references ({self.config.good_ref}, {self.config.bad_ref}) differ "
                f"from session references ({good_ref}, {bad_ref}); keeping the session's"
            )
        self._ensure_policy(
            good_ref if good_ref is not None else self.config.good_ref,
            bad_ref if bad_ref is not None else self.config.bad_ref,
        )
        self.recorder.start(reset=False)

        iterations = self.state.get_iterations(session_id)
        self.iteration_count = max((it.iteration_num for it in iterations), default=0)

        marks = [
            (Revision(it.commit_sha, it.commit_message), Verdict(it.final_result))
            for it in iterations
            if it.phase == PHASE_MARKED and it.final_result
        ]
        pending = self.state.get_pending_iteration(session_id)

        # A measured step already has its verdict; re-apply it with the others.
        recovered = None
        if pending and pending.phase == PHASE_MEASURED and pending.final_result:
            recovered = pending
            marks.append((Revision(pending.commit_sha, pending.commit_message), Verdict(pending.final_result)))
        elif pending and pending.phase == PHASE_MEASURING:
            self._pending = pending

        self.current_step = "replaying recorded verdicts"
        logger.info(f"Resuming session {session_id} with {len(marks)} recorded verdicts")
        self.walker.replay(self.good, self.bad, marks)
        self.phase = SessionPhase.RUNNING

        self.skip_count = sum(1 for _, verdict in marks if verdict == Verdict.SKIP)
        if marks:
            self.last_recorded = marks[-1][0]

        if recovered:
            self._recover_measured(recovered)

    def _recover_measured(self, iteration: IterationRecord) -> None:
        revision = Revision(iteration.commit_sha, iteration.commit_message)
        if not any(r.revision == revision.id for r in self.recorder.read_records()):
            self.recorder.record(
                VerdictRecord.now(revision, iteration.label, iteration.final_result, iteration.metric)
            )
        self.state.update_iteration(iteration.iteration_id, phase=PHASE_MARKED)
        message = f"Re-applied recorded verdict {iteration.final_result} for {revision.short} after restart"
        self.state.add_log(self.session_id, "recovery", message, iteration.iteration_id)
        logger.info(message)

    def _ensure_policy(self, good_ref: Optional[float], bad_ref: Optional[float]) -> bool:
        """Build the verdict policy, calibrating threshold references if needed.

        Returns:
            True if the anchors were measured for calibration
        """
        if self.policy is not None:
            return False

        calibrated = False
        if self.config.policy == "threshold" and (good_ref is None or bad_ref is None):
            good_ref, bad_ref = self._calibrate()
            calibrated = True

        self.policy = create_policy(self.config.policy, good_ref, bad_ref)
        return calibrated

    def _calibrate(self) -> Tuple[float, float]:
        """Measure both anchors and use their metrics as threshold references.

        Raises:
            IllPosedSearchError: If an anchor has no metric or good is not better than bad
        """
        self.current_step = "calibrating references"
        good_result = self._measure_anchor(self.good, "good")
        bad_result = self._measure_anchor(self.bad, "bad")

        for name, result in (("good", good_result), ("bad", bad_result)):
            if result.status != OracleStatus.OK or result.metric is None:
                raise IllPosedSearchError(
                    f"Cannot calibrate: {name} anchor measured {result.status.value}: {result.diagnostics}"
                )

        if good_result.metric >= bad_result.metric:
            raise IllPosedSearchError(
                f"Good anchor metric {good_result.metric:g} is not better than "
                f"bad anchor metric {bad_result.metric:g}"
            )

        self.state.update_session(
            self.session_id, good_ref=good_result.metric, bad_ref=bad_result.metric
        )
        logger.info(f"Calibrated references: good {good_result.metric:g}, bad {bad_result.metric:g}")
        return good_result.metric, bad_result.metric

    def _verify_anchors(self) -> None:
        """Check that the policy judges the anchors the way they are labelled.

        Raises:
            IllPosedSearchError: If either anchor gets the opposite verdict
        """
        self.current_step = "verifying anchors"
        for name, revision, expected in (
            ("good", self.good, Verdict.GOOD),
            ("bad", self.bad, Verdict.BAD),
        ):
            result = self._measure_anchor(revision, name)
            verdict = self.policy.decide(result)
            if verdict != expected:
                raise IllPosedSearchError(
                    f"The {name} anchor {revision.short} measures as {verdict.value} "
                    f"({self.policy.explain(result)})"
                )

    def _measure_anchor(self, revision: Revision, name: str) -> OracleResult:
        logger.info(f"Measuring {name} anchor {revision.short}")
        with self.walker.working_copy(revision):
            result = self.oracle.measure(revision)
        self.state.add_log(
            self.session_id,
            "anchor",
            f"{name} anchor {revision.short} ({result.label}): {result.status.value}"
            + (f", metric {result.metric:g}" if result.metric is not None else ""),
        )
        return result

    def step(self) -> StepOutcome:
        """Run one bisection step.

        Returns:
            StepOutcome of this step, or the terminal outcome once reached

        Raises:
            InfrastructureError: On oracle, walker, database or recorder failure
        """
        if self.phase == SessionPhase.NOT_STARTED:
            raise WalkerError("Session is not open")

        if self.outcome is not None and isinstance(self.outcome, TERMINAL_OUTCOMES):
            return self.outcome

        if self.walker.state == WalkerState.COMPLETE:
            return self._finish_culprit(self.walker.culprit)

        if self.walker.state == WalkerState.EXHAUSTED:
            return self._finish_exhausted(self.walker.candidates, ONLY_SKIPPED_REASON)

        self.current_step = "selecting next revision"
        revision = self.walker.next()
        if revision is None:
            raise WalkerError(f"Walker offered no revision while {self.walker.state.value}")

        if self.walker.is_marked(revision):
            raise WalkerError(f"Walker offered {revision.short} again after it was marked")

        if self.walker.state == WalkerState.NEEDS_DISAMBIGUATION:
            self.outcome = self._skip_ambiguous(revision)
        else:
            self.outcome = self._measure_and_mark(revision)
        return self.outcome

    def _measure_and_mark(self, revision: Revision) -> StepOutcome:
        iteration_id = self._begin_iteration(revision)
        logger.info(f"=== Iteration {self.iteration_count}: {revision.short} {revision.subject or ''}")

        self.current_step = f"measuring {revision.short}"
        with self.walker.working_copy(revision):
            result = self.oracle.measure(revision)

        verdict = self.policy.decide(result)
        reason = self.policy.explain(result)
        if result.status != OracleStatus.OK and result.diagnostics:
            reason = f"{reason}: {result.diagnostics.splitlines()[0]}"

        self.current_step = f"recording {revision.short}"
        self.state.update_iteration(
            iteration_id,
            phase=PHASE_MEASURED,
            label=result.label,
            oracle_status=result.status.value,
            metric=result.metric,
            final_result=verdict.value,
            reason=reason,
            artifact_path=result.artifact_path,
            end_time=datetime.now(timezone.utc).isoformat(),
            duration=round(result.duration, 2),
        )
        self.recorder.record(VerdictRecord.now(revision, result.label, verdict.value, result.metric))
        if result.status == OracleStatus.INCONCLUSIVE:
            self.state.add_log(
                self.session_id, "untestable", f"{revision.short}: {result.diagnostics}", iteration_id
            )

        mark_result = self._mark(revision, verdict, iteration_id)
        logger.info(f"{revision.short} ({result.label}): {verdict.value} - {reason}")

        terminal = self._terminal_after(mark_result, verdict)
        if terminal is not None:
            return terminal

        if verdict == Verdict.SKIP:
            return NoOracleData(revision, reason)
        return Continuing(revision, verdict, result.metric)

    def _skip_ambiguous(self, revision: Revision) -> StepOutcome:
        iteration_id = self._begin_iteration(revision)
        self.current_step = f"skipping ambiguous {revision.short}"

        self.state.update_iteration(
            iteration_id,
            phase=PHASE_MEASURED,
            final_result=Verdict.SKIP.value,
            reason=AMBIGUOUS_REASON,
            end_time=datetime.now(timezone.utc).isoformat(),
            duration=0.0,
        )
        self.recorder.record(VerdictRecord.now(revision, None, Verdict.SKIP.value))
        self.state.add_log(
            self.session_id, "ambiguous", f"Skipping {revision.short}: {AMBIGUOUS_REASON}", iteration_id
        )
        logger.warning(f"{revision.short} is an ambiguous merge point, marking skip")

        mark_result = self._mark(revision, Verdict.SKIP, iteration_id)
        terminal = self._terminal_after(mark_result, Verdict.SKIP)
        if terminal is not None:
            return terminal
        return NoOracleData(revision, AMBIGUOUS_REASON)

    def _begin_iteration(self, revision: Revision) -> int:
        pending, self._pending = self._pending, None
        if pending and pending.commit_sha == revision.id:
            message = f"Re-measuring {revision.short}: the previous measurement was interrupted"
            self.state.add_log(self.session_id, "recovery", message, pending.iteration_id)
            logger.info(message)
            return pending.iteration_id

        if pending:
            message = (
                f"Discarded interrupted measurement of {pending.commit_sha[:8]}: "
                f"the search now offers {revision.short}"
            )
            self.state.update_iteration(pending.iteration_id, phase=PHASE_DISCARDED, reason=message)
            self.state.add_log(self.session_id, "recovery", message, pending.iteration_id)
            logger.warning(message)

        self.iteration_count += 1
        return self.state.create_iteration(
            self.session_id, self.iteration_count, revision.id, revision.subject
        )

    def _mark(self, revision: Revision, verdict: Verdict, iteration_id: int) -> MarkResult:
        self.current_step = f"marking {revision.short} {verdict.value}"
        mark_result = self.walker.mark(revision, verdict)
        self.state.update_iteration(iteration_id, phase=PHASE_MARKED)
        self.last_recorded = revision
        if verdict == Verdict.SKIP:
            self.skip_count += 1
        return mark_result

    def _terminal_after(self, mark_result: MarkResult, verdict: Verdict) -> Optional[StepOutcome]:
        if mark_result.status == MarkStatus.CULPRIT:
            return self._finish_culprit(mark_result.revision)

        if mark_result.status == MarkStatus.EXHAUSTED:
            return self._finish_exhausted(mark_result.candidates, ONLY_SKIPPED_REASON)

        if (
            verdict == Verdict.SKIP
            and self.config.max_skips is not None
            and self.skip_count > self.config.max_skips
        ):
            return self._finish_exhausted(self.walker.open_candidates(), SKIP_BUDGET_REASON)

        return None

    def _finish_culprit(self, culprit: Revision) -> CulpritFound:
        self.current_step = "recording culprit"
        label = next(
            (it.label for it in self.state.get_iterations(self.session_id) if it.commit_sha == culprit.id),
            None,
        )
        self.state.close_session(self.session_id, STATUS_COMPLETED, culprit.id)
        self.recorder.record_culprit(culprit, label)
        self.state.add_log(self.session_id, "culprit", f"First bad revision: {culprit.id}")
        self._save_transcript(culprit)

        logger.info(f"First bad revision: {culprit.id} {culprit.subject or ''}".rstrip())
        self._cleanup()
        self.outcome = CulpritFound(culprit)
        return self.outcome

    def _finish_exhausted(self, candidates: Tuple[Revision, ...], reason: str) -> SearchExhausted:
        self.current_step = "recording exhausted search"
        self.state.close_session(self.session_id, STATUS_EXHAUSTED)
        shorts = ", ".join(c.short for c in candidates) or "none"
        self.state.add_log(self.session_id, "exhausted", f"{reason}; candidates: {shorts}")
        self._save_transcript(None)

        logger.warning(f"Search exhausted ({reason}); possible first bad revisions: {shorts}")
        self._cleanup()
        self.outcome = SearchExhausted(tuple(candidates), reason)
        return self.outcome

    def _save_transcript(self, culprit: Optional[Revision]) -> None:
        text = format_transcript(self.good, self.bad, self.walker.transcript_marks(), culprit)
        save_transcript(self.config.transcript_path, text)

    def _cleanup(self) -> None:
        self.current_step = "resetting walker"
        self.walker.reset()
        self.phase = SessionPhase.COMPLETE

    def snapshot(self) -> SessionState:
        """Build a read-only view of the session from the database."""
        if self.session_id is None:
            return SessionState(SessionPhase.NOT_STARTED)
        return session_state(self.state, self.session_id)

    def _config_snapshot(self) -> dict:
        return {
            "history_path": self.config.history_path,
            "target_path": self.config.measurement_path,
            "good": self.config.good,
            "bad": self.config.bad,
            "policy": self.config.policy,
            "walker": self.config.walker,
            "max_skips": self.config.max_skips,
        }


def session_state(state: StateManager, session_id: int) -> SessionState:
    """Reconstruct the session view of a stored session.

    Args:
        state: State database
        session_id: Session ID

    Returns:
        SessionState with the applied verdicts in order
    """
    record = state.get_session(session_id)
    if record is None:
        return SessionState(SessionPhase.NOT_STARTED)

    phase = SessionPhase.RUNNING
    if record.status in (STATUS_COMPLETED, STATUS_EXHAUSTED):
        phase = SessionPhase.COMPLETE

    history = []
    pending = None
    for it in state.get_iterations(session_id):
        if it.phase == PHASE_MARKED and it.final_result:
            history.append(
                HistoryEntry(
                    Revision(it.commit_sha, it.commit_message),
                    Verdict(it.final_result),
                    it.metric,
                    it.end_time,
                )
            )
        elif it.phase in (PHASE_MEASURING, PHASE_MEASURED):
            pending = Revision(it.commit_sha, it.commit_message)

    return SessionState(phase=phase, pending_revision=pending, history=history)
