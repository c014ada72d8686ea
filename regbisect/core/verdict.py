#!/usr/bin/env python3
"""Verdict policies.

A policy is a pure mapping from an oracle result to a bisection verdict.
"""

from abc import ABC, abstractmethod
from typing import Optional

from regbisect.core.oracle import OracleResult, OracleStatus
from regbisect.exceptions import ConfigError, IllPosedSearchError
from regbisect.history.base import Verdict


class VerdictPolicy(ABC):
    """Abstract base class for verdict policies."""

    name = "abstract"

    @abstractmethod
    def decide(self, result: OracleResult) -> Verdict:
        """Map an oracle result to a verdict.

        Args:
            result: Normalized oracle result

        Returns:
            Verdict for the tested revision
        """

    def explain(self, result: OracleResult) -> str:
        """One-line reason for the verdict, for logs and the run log."""
        return f"{result.status.value} -> {self.decide(result).value}"


class BinaryPolicy(VerdictPolicy):
    """Capability policy: the bad side is the side where the capability works.

    ok maps to bad, fail maps to good, inconclusive maps to skip. Metrics are
    ignored.
    """

    name = "binary"

    def decide(self, result: OracleResult) -> Verdict:
        if result.status == OracleStatus.OK:
            return Verdict.BAD
        if result.status == OracleStatus.FAIL:
            return Verdict.GOOD
        return Verdict.SKIP


class ThresholdPolicy(VerdictPolicy):
    """Magnitude policy comparing the metric against the reference midpoint.

    Lower metrics are better. A metric equal to the midpoint is good.

    Attributes:
        good_ref: Reference metric of the good anchor
        bad_ref: Reference metric of the bad anchor
    """

    name = "threshold"

    def __init__(self, good_ref: float, bad_ref: float) -> None:
        if good_ref >= bad_ref:
            raise IllPosedSearchError(
                f"good_ref ({good_ref}) must be lower than bad_ref ({bad_ref})"
            )
        self.good_ref = float(good_ref)
        self.bad_ref = float(bad_ref)

    @property
    def midpoint(self) -> float:
        return (self.good_ref + self.bad_ref) / 2

    def decide(self, result: OracleResult) -> Verdict:
        # fail carries no metric, so it cannot be placed on either side
        if result.status != OracleStatus.OK or result.metric is None:
            return Verdict.SKIP
        if result.metric <= self.midpoint:
            return Verdict.GOOD
        return Verdict.BAD

    def explain(self, result: OracleResult) -> str:
        verdict = self.decide(result)
        if result.status == OracleStatus.OK and result.metric is not None:
            relation = "<=" if verdict == Verdict.GOOD else ">"
            return f"metric {result.metric:g} {relation} midpoint {self.midpoint:g}"
        return f"no metric ({result.status.value})"


def create_policy(
    kind: str, good_ref: Optional[float] = None, bad_ref: Optional[float] = None
) -> VerdictPolicy:
    """Create verdict policy instance.

    Args:
        kind: Policy kind ('binary' or 'threshold')
        good_ref: Reference metric of the good anchor (threshold only)
        bad_ref: Reference metric of the bad anchor (threshold only)

    Returns:
        VerdictPolicy instance

    Raises:
        ConfigError: If the kind is unknown or threshold references are missing
        IllPosedSearchError: If good_ref is not lower than bad_ref
    """
    if kind == "binary":
        return BinaryPolicy()

    if kind == "threshold":
        if good_ref is None or bad_ref is None:
            raise ConfigError("Threshold policy requires good_ref and bad_ref")
        return ThresholdPolicy(good_ref, bad_ref)

    raise ConfigError(f"Unknown policy '{kind}'. Valid policies: 'binary', 'threshold'")
