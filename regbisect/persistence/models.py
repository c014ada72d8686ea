#!/usr/bin/env python3
"""SQLAlchemy ORM Models for the regression bisection database.

Defines the session, iteration and log tables using SQLAlchemy declarative
models.
"""

from typing import List, Optional

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Session(Base):
    """Bisection session model.

    One search between an exact (good, bad) anchor pair, from start until a
    terminal outcome or an operator reset.
    """

    __tablename__ = "sessions"

    session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    good_commit: Mapped[str] = mapped_column(String, nullable=False)
    bad_commit: Mapped[str] = mapped_column(String, nullable=False)
    policy: Mapped[str] = mapped_column(String, nullable=False)
    good_ref: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    bad_ref: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_time: Mapped[str] = mapped_column(String, nullable=False)
    end_time: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="running")
    result_commit: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    config: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON as TEXT

    # Relationships
    iterations: Mapped[List["Iteration"]] = relationship(
        "Iteration", back_populates="session", cascade="all, delete-orphan"
    )
    logs: Mapped[List["Log"]] = relationship(
        "Log", back_populates="session", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<Session(id={self.session_id}, status={self.status}, "
            f"good={self.good_commit[:8]}, bad={self.bad_commit[:8]})>"
        )


class Iteration(Base):
    """Test iteration model.

    One measured revision. The phase column makes the step crash-safe:
    measuring (oracle started), measured (oracle result and verdict stored),
    marked (verdict applied to the walker).
    """

    __tablename__ = "iterations"

    iteration_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(Integer, ForeignKey("sessions.session_id"), nullable=False)
    iteration_num: Mapped[int] = mapped_column(Integer, nullable=False)
    commit_sha: Mapped[str] = mapped_column(String, nullable=False)
    commit_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phase: Mapped[str] = mapped_column(String, nullable=False, default="measuring")
    label: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    oracle_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    metric: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    final_result: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    artifact_path: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    start_time: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Relationships
    session: Mapped["Session"] = relationship("Session", back_populates="iterations")

    def __repr__(self) -> str:
        return (
            f"<Iteration(id={self.iteration_id}, num={self.iteration_num}, "
            f"commit={self.commit_sha[:8]}, phase={self.phase}, result={self.final_result})>"
        )


class Log(Base):
    """Operator-visible session event."""

    __tablename__ = "logs"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(Integer, ForeignKey("sessions.session_id"), nullable=False)
    iteration_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("iterations.iteration_id"), nullable=True
    )
    log_type: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    session: Mapped["Session"] = relationship("Session", back_populates="logs")

    def __repr__(self) -> str:
        return f"<Log(id={self.log_id}, type={self.log_type}, session={self.session_id})>"
