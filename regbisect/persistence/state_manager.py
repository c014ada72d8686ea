#!/usr/bin/env python3
"""State Manager - Persistent state storage using SQLAlchemy ORM.

Tracks bisection sessions, the per-revision iterations with their crash-safe
phase, operator-visible events, and generates reports.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.orm import scoped_session, sessionmaker

from regbisect.exceptions import DatabaseError
from regbisect.persistence.models import Base, Iteration, Log
from regbisect.persistence.models import (
    Session as SessionModel,
)


logger = logging.getLogger(__name__)

# Constants
DEFAULT_DB_PATH = "bisect.db"

STATUS_RUNNING = "running"
STATUS_HALTED = "halted"
STATUS_COMPLETED = "completed"
STATUS_EXHAUSTED = "exhausted"
STATUS_ABANDONED = "abandoned"
RESUMABLE_STATUSES = (STATUS_RUNNING, STATUS_HALTED)

PHASE_MEASURING = "measuring"
PHASE_MEASURED = "measured"
PHASE_MARKED = "marked"
PHASE_DISCARDED = "discarded"
PENDING_PHASES = (PHASE_MEASURING, PHASE_MEASURED)


@dataclass
class SessionRecord:
    """Bisection session data.

    Attributes:
        session_id: Unique session identifier
        good_commit: Resolved good anchor
        bad_commit: Resolved bad anchor
        policy: Verdict policy kind
        good_ref: Threshold reference of the good anchor
        bad_ref: Threshold reference of the bad anchor
        start_time: Session start timestamp
        end_time: Session end timestamp (None while resumable)
        status: running, halted, completed, exhausted or abandoned
        result_commit: First bad commit found (None until complete)
    """

    session_id: int
    good_commit: str
    bad_commit: str
    policy: str
    good_ref: Optional[float]
    bad_ref: Optional[float]
    start_time: str
    end_time: Optional[str] = None
    status: str = STATUS_RUNNING
    result_commit: Optional[str] = None


@dataclass
class IterationRecord:
    """Test iteration record.

    Attributes:
        iteration_id: Unique iteration identifier
        session_id: Parent session ID
        iteration_num: Iteration number (1-indexed)
        commit_sha: Revision being tested
        commit_message: Revision subject
        phase: measuring, measured or marked
        label: Derived label of the revision
        oracle_status: ok, fail or inconclusive
        metric: Measured metric
        final_result: Verdict (good, bad, skip)
        reason: Why the verdict was reached
        artifact_path: Detailed measurement dump
        start_time: Iteration start timestamp
        end_time: Iteration end timestamp
        duration: Duration in seconds
    """

    iteration_id: int
    session_id: int
    iteration_num: int
    commit_sha: str
    commit_message: Optional[str]
    phase: str = PHASE_MEASURING
    label: Optional[str] = None
    oracle_status: Optional[str] = None
    metric: Optional[float] = None
    final_result: Optional[str] = None
    reason: Optional[str] = None
    artifact_path: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[float] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _session_record(row: SessionModel) -> SessionRecord:
    return SessionRecord(
        session_id=row.session_id,
        good_commit=row.good_commit,
        bad_commit=row.bad_commit,
        policy=row.policy,
        good_ref=row.good_ref,
        bad_ref=row.bad_ref,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        result_commit=row.result_commit,
    )


def _iteration_record(row: Iteration) -> IterationRecord:
    return IterationRecord(
        iteration_id=row.iteration_id,
        session_id=row.session_id,
        iteration_num=row.iteration_num,
        commit_sha=row.commit_sha,
        commit_message=row.commit_message,
        phase=row.phase,
        label=row.label,
        oracle_status=row.oracle_status,
        metric=row.metric,
        final_result=row.final_result,
        reason=row.reason,
        artifact_path=row.artifact_path,
        start_time=row.start_time,
        end_time=row.end_time,
        duration=row.duration,
    )


class StateManager:
    """Manage bisection state using SQLAlchemy ORM.

    Attributes:
        db_path: Path to SQLite database file
        engine: SQLAlchemy engine
        Session: Scoped session factory
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        """Initialize state manager with SQLAlchemy.

        Args:
            db_path: Path to SQLite database file

        Raises:
            DatabaseError: If the database cannot be initialized
        """
        self.db_path = db_path

        db_parent = Path(db_path).parent
        if db_parent != Path():
            db_parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        session_factory = sessionmaker(bind=self.engine)
        self.Session = scoped_session(session_factory)

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        try:
            Base.metadata.create_all(self.engine)
            logger.debug(f"Database initialized at {self.db_path}")
        except Exception as exc:
            msg = f"Failed to initialize database: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc

    def create_session(
        self,
        good_commit: str,
        bad_commit: str,
        policy: str,
        good_ref: Optional[float] = None,
        bad_ref: Optional[float] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Create new bisection session.

        Args:
            good_commit: Resolved good anchor
            bad_commit: Resolved bad anchor
            policy: Verdict policy kind
            good_ref: Threshold reference of the good anchor
            bad_ref: Threshold reference of the bad anchor
            config: Optional configuration dict

        Returns:
            Session ID

        Raises:
            DatabaseError: If session creation fails
        """
        session = self.Session()
        try:
            new_session = SessionModel(
                good_commit=good_commit,
                bad_commit=bad_commit,
                policy=policy,
                good_ref=good_ref,
                bad_ref=bad_ref,
                start_time=_now(),
                status=STATUS_RUNNING,
                config=json.dumps(config) if config else None,
            )

            session.add(new_session)
            session.commit()
            session_id = new_session.session_id

            logger.info(f"Created bisection session {session_id}")
            return session_id

        except Exception as exc:
            session.rollback()
            msg = f"Failed to create session: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc
        finally:
            session.close()

    def get_session(self, session_id: int) -> Optional[SessionRecord]:
        """Get session by ID.

        Args:
            session_id: Session ID to retrieve

        Returns:
            SessionRecord or None if not found
        """
        session = self.Session()
        try:
            stmt = select(SessionModel).where(SessionModel.session_id == session_id)
            result = session.execute(stmt).scalar_one_or_none()
            return _session_record(result) if result else None
        finally:
            session.close()

    def get_latest_session(self) -> Optional[SessionRecord]:
        """Get most recent session.

        Returns:
            SessionRecord or None if no sessions exist
        """
        session = self.Session()
        try:
            stmt = select(SessionModel).order_by(SessionModel.session_id.desc()).limit(1)
            result = session.execute(stmt).scalar_one_or_none()
            return _session_record(result) if result else None
        finally:
            session.close()

    def find_active_session(
        self, good_commit: Optional[str] = None, bad_commit: Optional[str] = None
    ) -> Optional[SessionRecord]:
        """Find the newest resumable session, optionally for an exact anchor pair.

        Args:
            good_commit: Resolved good anchor to match
            bad_commit: Resolved bad anchor to match

        Returns:
            SessionRecord or None
        """
        session = self.Session()
        try:
            stmt = select(SessionModel).where(SessionModel.status.in_(RESUMABLE_STATUSES))
            if good_commit is not None:
                stmt = stmt.where(SessionModel.good_commit == good_commit)
            if bad_commit is not None:
                stmt = stmt.where(SessionModel.bad_commit == bad_commit)
            stmt = stmt.order_by(SessionModel.session_id.desc()).limit(1)

            result = session.execute(stmt).scalar_one_or_none()
            return _session_record(result) if result else None
        finally:
            session.close()

    def update_session(self, session_id: int, **kwargs: Any) -> None:
        """Update session fields.

        Args:
            session_id: Session ID to update
            **kwargs: Fields to update (end_time, status, result_commit, good_ref, bad_ref)

        Raises:
            DatabaseError: If update fails
        """
        session = self.Session()
        try:
            stmt = select(SessionModel).where(SessionModel.session_id == session_id)
            db_session = session.execute(stmt).scalar_one_or_none()

            if not db_session:
                logger.warning(f"Session {session_id} not found for update")
                return

            valid_fields = {"end_time", "status", "result_commit", "good_ref", "bad_ref"}
            for field, value in kwargs.items():
                if field in valid_fields:
                    setattr(db_session, field, value)

            session.commit()

        except Exception as exc:
            session.rollback()
            msg = f"Failed to update session: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc
        finally:
            session.close()

    def close_session(
        self, session_id: int, status: str, result_commit: Optional[str] = None
    ) -> None:
        """Move a session to a terminal status and stamp its end time."""
        self.update_session(
            session_id, status=status, result_commit=result_commit, end_time=_now()
        )

    def create_iteration(
        self, session_id: int, iteration_num: int, commit_sha: str, commit_message: Optional[str]
    ) -> int:
        """Create new iteration in the measuring phase.

        Args:
            session_id: Parent session ID
            iteration_num: Iteration number
            commit_sha: Revision being tested
            commit_message: Revision subject

        Returns:
            Iteration ID

        Raises:
            DatabaseError: If iteration creation fails
        """
        session = self.Session()
        try:
            new_iteration = Iteration(
                session_id=session_id,
                iteration_num=iteration_num,
                commit_sha=commit_sha,
                commit_message=commit_message,
                phase=PHASE_MEASURING,
                start_time=_now(),
            )

            session.add(new_iteration)
            session.commit()
            iteration_id = new_iteration.iteration_id

            logger.debug(f"Created iteration {iteration_id}")
            return iteration_id

        except Exception as exc:
            session.rollback()
            msg = f"Failed to create iteration: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc
        finally:
            session.close()

    def update_iteration(self, iteration_id: int, **kwargs: Any) -> None:
        """Update iteration fields.

        Args:
            iteration_id: Iteration ID to update
            **kwargs: Fields to update

        Raises:
            DatabaseError: If update fails
        """
        session = self.Session()
        try:
            stmt = select(Iteration).where(Iteration.iteration_id == iteration_id)
            db_iteration = session.execute(stmt).scalar_one_or_none()

            if not db_iteration:
                logger.warning(f"Iteration {iteration_id} not found for update")
                return

            valid_fields = {
                "phase",
                "label",
                "oracle_status",
                "metric",
                "final_result",
                "reason",
                "artifact_path",
                "end_time",
                "duration",
            }
            for field, value in kwargs.items():
                if field in valid_fields:
                    setattr(db_iteration, field, value)

            session.commit()

        except Exception as exc:
            session.rollback()
            msg = f"Failed to update iteration: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc
        finally:
            session.close()

    def get_iterations(self, session_id: int) -> List[IterationRecord]:
        """Get all iterations for a session, in test order.

        Args:
            session_id: Session ID

        Returns:
            List of IterationRecord objects
        """
        session = self.Session()
        try:
            stmt = (
                select(Iteration)
                .where(Iteration.session_id == session_id)
                .order_by(Iteration.iteration_num)
            )
            results = session.execute(stmt).scalars().all()
            return [_iteration_record(row) for row in results]
        finally:
            session.close()

    def get_pending_iteration(self, session_id: int) -> Optional[IterationRecord]:
        """Get the iteration of an interrupted step, if any.

        Returns:
            Newest iteration still measuring or measured, or None
        """
        pending = [it for it in self.get_iterations(session_id) if it.phase in PENDING_PHASES]
        return pending[-1] if pending else None

    def add_log(
        self,
        session_id: int,
        log_type: str,
        message: str,
        iteration_id: Optional[int] = None,
    ) -> None:
        """Add a session event.

        Args:
            session_id: Session ID
            log_type: Type of log entry
            message: Log message
            iteration_id: Optional iteration the event belongs to

        Raises:
            DatabaseError: If log creation fails
        """
        session = self.Session()
        try:
            new_log = Log(
                session_id=session_id,
                iteration_id=iteration_id,
                log_type=log_type,
                timestamp=_now(),
                message=message,
            )

            session.add(new_log)
            session.commit()

        except Exception as exc:
            session.rollback()
            msg = f"Failed to add log: {exc}"
            logger.error(msg)
            raise DatabaseError(msg) from exc
        finally:
            session.close()

    def get_logs(self, session_id: int) -> List[Dict[str, Any]]:
        """Get events of a session.

        Args:
            session_id: Session ID

        Returns:
            List of log dictionaries
        """
        session = self.Session()
        try:
            stmt = select(Log).where(Log.session_id == session_id).order_by(Log.log_id)
            results = session.execute(stmt).scalars().all()

            return [
                {
                    "log_id": log.log_id,
                    "iteration_id": log.iteration_id,
                    "log_type": log.log_type,
                    "timestamp": log.timestamp,
                    "message": log.message,
                }
                for log in results
            ]
        finally:
            session.close()

    def generate_summary(self, session_id: int) -> Dict[str, Any]:
        """Generate summary of bisection session.

        Args:
            session_id: Session ID

        Returns:
            Summary dictionary
        """
        session_data = self.get_session(session_id)
        if not session_data:
            return {}

        iterations = self.get_iterations(session_id)

        results = {"good": 0, "bad": 0, "skip": 0, "unknown": 0}
        for it in iterations:
            if it.final_result:
                results[it.final_result] = results.get(it.final_result, 0) + 1
            else:
                results["unknown"] += 1

        total_duration = sum(it.duration for it in iterations if it.duration)

        return {
            "session_id": session_id,
            "good_commit": session_data.good_commit,
            "bad_commit": session_data.bad_commit,
            "policy": session_data.policy,
            "good_ref": session_data.good_ref,
            "bad_ref": session_data.bad_ref,
            "start_time": session_data.start_time,
            "end_time": session_data.end_time,
            "status": session_data.status,
            "result_commit": session_data.result_commit,
            "total_iterations": len(iterations),
            "results": results,
            "total_duration_seconds": round(total_duration, 2),
            "iterations": [asdict(it) for it in iterations],
            "logs": self.get_logs(session_id),
        }

    def export_report(self, session_id: int, format: str = "json") -> str:
        """Export bisection report.

        Args:
            session_id: Session ID
            format: Output format (json or text)

        Returns:
            Report string
        """
        summary = self.generate_summary(session_id)

        if format == "json":
            return json.dumps(summary, indent=2)

        if format == "text":
            if not summary:
                return f"Session {session_id} not found"

            report = []
            report.append("=" * 70)
            report.append("REGRESSION BISECTION REPORT")
            report.append("=" * 70)
            report.append(f"\nSession ID: {summary['session_id']}")
            report.append(f"Good anchor: {summary['good_commit']}")
            report.append(f"Bad anchor:  {summary['bad_commit']}")
            report.append(f"Policy: {summary['policy']}")
            if summary["good_ref"] is not None and summary["bad_ref"] is not None:
                midpoint = (summary["good_ref"] + summary["bad_ref"]) / 2
                report.append(
                    f"References: good {summary['good_ref']:g}, bad {summary['bad_ref']:g} "
                    f"(midpoint {midpoint:g})"
                )
            report.append(f"Status: {summary['status']}")

            report.append(f"\nTotal iterations: {summary['total_iterations']}")
            report.append(f"Total time: {summary['total_duration_seconds']}s")

            report.append("\nResults breakdown:")
            for result, count in summary["results"].items():
                report.append(f"  {result}: {count}")

            report.append("\n" + "-" * 70)
            report.append("Iteration Details:")
            report.append("-" * 70)

            for it in summary["iterations"]:
                metric = "" if it["metric"] is None else f"{it['metric']:g}"
                report.append(
                    f"\n{it['iteration_num']:3d}. {it['commit_sha'][:8]} | "
                    f"{it['final_result'] or 'unknown':7s} | "
                    f"{it['label'] or '-':12s} | {metric:>8s} | "
                    f"{it['duration'] or 0:7.1f}s"
                )
                if it["commit_message"]:
                    report.append(f"     {it['commit_message']}")
                if it["reason"]:
                    report.append(f"     Reason: {it['reason']}")

            if summary["logs"]:
                report.append("\n" + "-" * 70)
                report.append("Events:")
                report.append("-" * 70)
                for log in summary["logs"]:
                    report.append(f"{log['timestamp']} [{log['log_type']}] {log['message']}")

            if summary["result_commit"]:
                report.append("\n" + "=" * 70)
                report.append("FIRST BAD COMMIT:")
                report.append("=" * 70)

                subject = next(
                    (
                        it["commit_message"]
                        for it in summary["iterations"]
                        if it["commit_sha"] == summary["result_commit"]
                    ),
                    None,
                )
                report.append(
                    f"# first bad commit: [{summary['result_commit']}]"
                    + (f" {subject}" if subject else "")
                )

            report.append("\n" + "=" * 70)

            return "\n".join(report)

        return ""

    def close(self) -> None:
        """Close database connection and cleanup."""
        try:
            self.Session.remove()
            self.engine.dispose()
            logger.debug("Database connections closed")
        except Exception as exc:
            logger.error(f"Error closing database: {exc}")
