#!/usr/bin/env python3
"""Configuration classes for regression bisection.

This module contains the configuration dataclasses passed explicitly to the
driver, the oracle and the revision walkers.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from regbisect.exceptions import ConfigError


# Constants
DEFAULT_CONFIG_PATH = "bisect.yaml"
DEFAULT_OUTPUT_DIR = "regbisect-results"
DEFAULT_DB_NAME = "bisect.db"
DEFAULT_METRIC_PATTERN = r"Build time:\s+(\d+(?:\.\d+)?)s"
DEFAULT_RESTORE_COMMAND = "git restore ."
SUMMARY_FILE_NAME = "summary.csv"
SWEEP_SUMMARY_FILE_NAME = "sweep-summary.csv"
TRANSCRIPT_FILE_NAME = "bisect-replay.log"
ARTIFACTS_DIR_NAME = "artifacts"

POLICY_KINDS = ("binary", "threshold")
WALKER_KINDS = ("git", "sequence")


@dataclass
class CommandStep:
    """One external command of the oracle pipeline.

    Attributes:
        name: Short name used in logs and artifacts
        command: Shell command line
        timeout: Timeout in seconds (None falls back to the oracle timeout)
    """

    name: str
    command: str
    timeout: Optional[int] = None


@dataclass
class InstallFallback:
    """Alternative build variant tried when the install steps fail.

    Attributes:
        name: Variant name appended to the derived label
        build: Steps rebuilding the artifact (default: the regular build steps)
        install: Steps installing it (default: the regular install steps)
    """

    name: str
    build: List[CommandStep] = field(default_factory=list)
    install: List[CommandStep] = field(default_factory=list)


@dataclass
class OracleConfig:
    """Measurement pipeline configuration.

    Attributes:
        build: Steps run in the history working copy to build the artifact
        install: Steps run in the target to consume the built artifact
        label_command: Command whose output yields the derived label
        label_pattern: Regex with one group applied to the label output
        check_command: Auxiliary structural check run before measuring
        run_check: Measurement mode toggle for the structural check
        measure_command: Timing command; None selects capability mode
        metric_pattern: Regex with one group capturing the metric
        inconclusive_patterns: Output patterns marking an untestable revision
        clean_paths: Target-relative paths deleted before measuring
        timeout: Default per-step timeout in seconds
        install_fallbacks: Build variants tried in order after a failed install
        restore_command: Command run in the history before each fallback
    """

    build: List[CommandStep] = field(default_factory=list)
    install: List[CommandStep] = field(default_factory=list)
    label_command: Optional[str] = None
    label_pattern: Optional[str] = None
    check_command: Optional[str] = None
    run_check: bool = True
    measure_command: Optional[str] = None
    metric_pattern: str = DEFAULT_METRIC_PATTERN
    inconclusive_patterns: List[str] = field(default_factory=list)
    clean_paths: List[str] = field(default_factory=list)
    timeout: Optional[int] = None
    install_fallbacks: List[InstallFallback] = field(default_factory=list)
    restore_command: str = DEFAULT_RESTORE_COMMAND


@dataclass
class BisectConfig:
    """Regression bisection configuration.

    Attributes:
        history_path: Working copy of the history being bisected (REQUIRED)
        target_path: Consumer of the built artifact (defaults to history_path)
        good: Good anchor revision expression
        bad: Bad anchor revision expression
        policy: Verdict policy kind (binary or threshold)
        good_ref: Reference metric of the good anchor
        bad_ref: Reference metric of the bad anchor
        walker: Revision walker kind (git or sequence)
        revisions_file: JSON list of revisions for the sequence walker
        max_skips: Skip budget before the session is declared stuck
        verify_anchors: Measure both anchors before the first step
        output_dir: Directory for the run log, artifacts and transcript
        db_path: Path to SQLite database (defaults inside output_dir)
        oracle: Measurement pipeline configuration
        sweep_step: Measure every Nth revision in sweep mode
        sweep_reverse: Reverse the sweep revision list before walking it
    """

    history_path: str
    target_path: Optional[str] = None
    good: Optional[str] = None
    bad: Optional[str] = None

    # Verdict policy
    policy: str = "threshold"
    good_ref: Optional[float] = None
    bad_ref: Optional[float] = None

    # Revision walker
    walker: str = "git"
    revisions_file: Optional[str] = None
    max_skips: Optional[int] = None
    verify_anchors: bool = False

    # Output and database
    output_dir: str = DEFAULT_OUTPUT_DIR
    db_path: Optional[str] = None

    oracle: OracleConfig = field(default_factory=OracleConfig)

    # Range sweep
    sweep_step: int = 1
    sweep_reverse: bool = False

    @property
    def measurement_path(self) -> str:
        return self.target_path or self.history_path

    @property
    def database_path(self) -> str:
        return self.db_path or str(Path(self.output_dir) / DEFAULT_DB_NAME)

    @property
    def summary_path(self) -> Path:
        return Path(self.output_dir) / SUMMARY_FILE_NAME

    @property
    def sweep_summary_path(self) -> Path:
        return Path(self.output_dir) / SWEEP_SUMMARY_FILE_NAME

    @property
    def transcript_path(self) -> Path:
        return Path(self.output_dir) / TRANSCRIPT_FILE_NAME

    @property
    def artifacts_dir(self) -> Path:
        return Path(self.output_dir) / ARTIFACTS_DIR_NAME

    def validate(self, require_anchors: bool = True, require_policy: bool = True) -> None:
        """Check option values and their combinations.

        Args:
            require_anchors: Whether good and bad anchors must be present
            require_policy: Whether the verdict policy must be fully specified

        Raises:
            ConfigError: If the configuration cannot drive a session
        """
        if not self.history_path:
            raise ConfigError("history_path is required")

        if self.policy not in POLICY_KINDS:
            raise ConfigError(
                f"Unknown policy '{self.policy}'. Valid policies: {', '.join(POLICY_KINDS)}"
            )

        if self.walker not in WALKER_KINDS:
            raise ConfigError(
                f"Unknown walker '{self.walker}'. Valid walkers: {', '.join(WALKER_KINDS)}"
            )

        if require_anchors and (not self.good or not self.bad):
            raise ConfigError("Both good and bad anchors are required")

        if require_policy and self.policy == "threshold":
            refs = (self.good_ref, self.bad_ref)
            if None in refs and not self.verify_anchors:
                raise ConfigError(
                    "Threshold policy needs good_ref and bad_ref, or verify_anchors to calibrate them"
                )
            if None not in refs and self.good_ref >= self.bad_ref:
                raise ConfigError(
                    f"good_ref ({self.good_ref}) must be lower than bad_ref ({self.bad_ref}); "
                    "the search is ill-posed otherwise"
                )
            if not self.oracle.measure_command:
                raise ConfigError("Threshold policy needs an oracle measure command")

        if self.max_skips is not None and self.max_skips < 0:
            raise ConfigError("max_skips must not be negative")

        if self.sweep_step < 1:
            raise ConfigError("sweep_step must be at least 1")
