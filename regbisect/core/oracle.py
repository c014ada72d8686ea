#!/usr/bin/env python3
"""Oracle Adapter - wraps one external measurement attempt.

Runs the configured build, install, label, check and measure commands for
one revision and normalizes the outcome into an OracleResult. Failing
commands are results, not exceptions. Only infrastructure problems (the
artifact cannot be written, the metric is missing from a successful
measurement) raise.
"""

import logging
import re
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List, Optional, Pattern

from regbisect.config.config import BisectConfig, CommandStep, OracleConfig
from regbisect.exceptions import OracleError, OracleParseError
from regbisect.history.base import Revision
from regbisect.persistence.recorder import DEFAULT_LABEL, write_artifact
from regbisect.shell.base import CommandRunner


logger = logging.getLogger(__name__)

# Constants
DIAGNOSTIC_TAIL_LINES = 20


class OracleStatus(Enum):
    """Normalized status of one measurement."""

    OK = "ok"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class OracleResult:
    """Normalized outcome of one measurement attempt.

    Attributes:
        status: ok, fail or inconclusive
        metric: Measured scalar (only with status ok)
        diagnostics: Free-form explanation, for the run log and operators
        label: Derived label of the measured revision
        duration: Wall time of the whole pipeline in seconds
        artifact_path: Detailed per-revision dump, once written
    """

    status: OracleStatus
    metric: Optional[float] = None
    diagnostics: str = ""
    label: str = DEFAULT_LABEL
    duration: float = 0.0
    artifact_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.metric is not None and self.status != OracleStatus.OK:
            raise ValueError(f"metric is only allowed with status ok, got {self.status.value}")

    @classmethod
    def ok(cls, metric: Optional[float] = None, diagnostics: str = "", **kwargs) -> "OracleResult":
        return cls(OracleStatus.OK, metric, diagnostics, **kwargs)

    @classmethod
    def fail(cls, diagnostics: str, **kwargs) -> "OracleResult":
        return cls(OracleStatus.FAIL, None, diagnostics, **kwargs)

    @classmethod
    def inconclusive(cls, diagnostics: str, **kwargs) -> "OracleResult":
        return cls(OracleStatus.INCONCLUSIVE, None, diagnostics, **kwargs)


@dataclass
class StepRun:
    """Outcome of one pipeline command."""

    name: str
    command: str
    cwd: str
    return_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0

    def tail(self, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


@dataclass
class _PipelineRun:
    steps: List[StepRun] = field(default_factory=list)
    label: str = DEFAULT_LABEL
    fallback: Optional[str] = None


class Oracle(ABC):
    """Abstract base class for oracles."""

    @abstractmethod
    def measure(self, revision: Revision) -> OracleResult:
        """Measure the revision currently checked out in the working copy.

        Args:
            revision: Revision under test (already checked out)

        Returns:
            Normalized OracleResult

        Raises:
            OracleError: On infrastructure failure
        """


class CommandOracle(Oracle):
    """Oracle running a pipeline of shell commands.

    Attributes:
        config: Pipeline configuration
        history_path: Working copy where build steps run
        target_path: Directory where install, label, check and measure run
        artifacts_dir: Directory receiving one artifact per measurement
        runner: Command runner
    """

    def __init__(
        self,
        config: OracleConfig,
        history_path: str,
        target_path: str,
        artifacts_dir: Path,
        runner: CommandRunner,
    ) -> None:
        self.config = config
        self.history_path = history_path
        self.target_path = target_path
        self.artifacts_dir = Path(artifacts_dir)
        self.runner = runner

        try:
            self._metric_re = re.compile(config.metric_pattern, re.MULTILINE)
            self._label_re = re.compile(config.label_pattern, re.MULTILINE) if config.label_pattern else None
            self._inconclusive_res: List[Pattern] = [
                re.compile(p, re.MULTILINE) for p in config.inconclusive_patterns
            ]
        except re.error as exc:
            raise OracleError(f"Invalid oracle pattern: {exc}") from exc

    @classmethod
    def from_config(cls, config: BisectConfig, runner: CommandRunner) -> "CommandOracle":
        return cls(
            config.oracle,
            config.history_path,
            config.measurement_path,
            config.artifacts_dir,
            runner,
        )

    def measure(self, revision: Revision) -> OracleResult:
        start_time = time.monotonic()
        run = _PipelineRun()

        result = self._run_pipeline(revision, run)
        result = replace(result, label=run.label, duration=time.monotonic() - start_time)

        artifact = write_artifact(
            self.artifacts_dir, run.label, revision, self._render_artifact(revision, result, run)
        )
        result = replace(result, artifact_path=str(artifact))

        logger.info(
            f"Oracle for {revision.short} ({result.label}): {result.status.value}"
            + (f", metric {result.metric:g}" if result.metric is not None else "")
        )
        return result

    def _run_pipeline(self, revision: Revision, run: _PipelineRun) -> OracleResult:
        failure = self._run_steps(self.config.build, self.history_path, run)
        if failure:
            return failure

        failure = self._run_steps(self.config.install, self.target_path, run)
        if failure and self.config.install_fallbacks:
            failure = self._try_fallbacks(failure, run)
        if failure:
            return failure

        if self.config.label_command:
            run.label = self._derive_label(run)
        if run.fallback:
            run.label = f"{run.label}<-{run.fallback}"

        if self.config.check_command and self.config.run_check:
            step = CommandStep("check", self.config.check_command)
            failure = self._run_required(step, self.target_path, run)
            if failure:
                return failure

        if not self.config.measure_command:
            return OracleResult.ok(diagnostics="capability present")

        self._clean_target()
        measured = self._run_step(CommandStep("measure", self.config.measure_command), self.target_path, run)

        match = self._metric_re.search(measured.output)
        if match:
            try:
                metric = float(match.group(1))
            except (IndexError, ValueError) as exc:
                raise OracleParseError(
                    f"Metric pattern matched '{match.group(0)}' without a numeric group"
                ) from exc
            return OracleResult.ok(metric, f"measured {metric:g}")

        inconclusive = self._inconclusive_reason(measured)
        if inconclusive:
            return inconclusive

        if not measured.succeeded:
            return OracleResult.fail(
                f"step measure failed (exit {measured.return_code}):\n{measured.tail()}"
            )

        missing = OracleResult.fail("metric missing from successful measurement", label=run.label)
        write_artifact(self.artifacts_dir, run.label, revision, self._render_artifact(revision, missing, run))
        raise OracleParseError(
            f"Measurement of {revision.short} succeeded but output does not match "
            f"'{self.config.metric_pattern}'"
        )

    def _run_step(self, step: CommandStep, cwd: str, run: _PipelineRun) -> StepRun:
        timeout = step.timeout if step.timeout is not None else self.config.timeout
        logger.info(f"Running {step.name}: {step.command}")

        start_time = time.monotonic()
        ret, stdout, stderr = self.runner.run_command(step.command, cwd=cwd, timeout=timeout)
        step_run = StepRun(
            name=step.name,
            command=step.command,
            cwd=cwd,
            return_code=ret,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - start_time,
        )
        run.steps.append(step_run)

        logger.debug(f"Step {step.name} finished with exit {ret} in {step_run.duration:.1f}s")
        return step_run

    def _run_required(
        self, step: CommandStep, cwd: str, run: _PipelineRun
    ) -> Optional[OracleResult]:
        """Run a step that must succeed; return the failure result, if any."""
        step_run = self._run_step(step, cwd, run)
        if step_run.succeeded:
            return None

        inconclusive = self._inconclusive_reason(step_run)
        if inconclusive:
            return inconclusive

        return OracleResult.fail(
            f"step {step.name} failed (exit {step_run.return_code}):\n{step_run.tail()}"
        )

    def _run_steps(
        self, steps: List[CommandStep], cwd: str, run: _PipelineRun
    ) -> Optional[OracleResult]:
        for step in steps:
            failure = self._run_required(step, cwd, run)
            if failure:
                return failure
        return None

    def _try_fallbacks(self, failure: OracleResult, run: _PipelineRun) -> Optional[OracleResult]:
        """Rebuild with each fallback variant until one of them installs.

        Returns:
            None once a variant installs, otherwise the original install failure

        Raises:
            OracleError: If the history cannot be restored between attempts
        """
        for fallback in self.config.install_fallbacks:
            logger.info(f"Install failed, trying fallback '{fallback.name}'")
            restored = self._run_step(
                CommandStep(f"restore-{fallback.name}", self.config.restore_command), self.history_path, run
            )
            if not restored.succeeded:
                raise OracleError(
                    f"Cannot restore {self.history_path} before fallback '{fallback.name}': {restored.tail()}"
                )

            if (
                self._run_steps(fallback.build or self.config.build, self.history_path, run) is None
                and self._run_steps(fallback.install or self.config.install, self.target_path, run) is None
            ):
                logger.info(f"Fallback '{fallback.name}' installed")
                run.fallback = fallback.name
                return None
            logger.warning(f"Fallback '{fallback.name}' failed")

        return failure

    def _inconclusive_reason(self, step_run: StepRun) -> Optional[OracleResult]:
        for pattern in self._inconclusive_res:
            match = pattern.search(step_run.output)
            if match:
                return OracleResult.inconclusive(
                    f"step {step_run.name} untestable: {match.group(0).strip()}"
                )
        return None

    def _derive_label(self, run: _PipelineRun) -> str:
        step_run = self._run_step(CommandStep("label", self.config.label_command), self.target_path, run)
        if not step_run.succeeded:
            logger.warning(f"Label command failed (exit {step_run.return_code}), using '{DEFAULT_LABEL}'")
            return DEFAULT_LABEL

        if self._label_re:
            match = self._label_re.search(step_run.stdout)
            if not match:
                return DEFAULT_LABEL
            return (match.group(1) if match.groups() else match.group(0)).strip() or DEFAULT_LABEL

        lines = [line.strip() for line in step_run.stdout.splitlines() if line.strip()]
        return lines[-1] if lines else DEFAULT_LABEL

    def _clean_target(self) -> None:
        """Delete configured paths under the target to force a clean measurement.

        Raises:
            OracleError: If a path cannot be removed
        """
        for rel_path in self.config.clean_paths:
            path = Path(self.target_path) / rel_path
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                elif path.exists() or path.is_symlink():
                    path.unlink()
                else:
                    continue
            except OSError as exc:
                raise OracleError(f"Cannot clean {path}: {exc}") from exc
            logger.debug(f"Removed {path}")

    def _render_artifact(self, revision: Revision, result: OracleResult, run: _PipelineRun) -> str:
        lines = [
            f"revision: {revision.id}",
            f"subject: {revision.subject or ''}",
            f"label: {run.label}",
            f"status: {result.status.value}",
            f"metric: {'' if result.metric is None else f'{result.metric:g}'}",
            f"duration: {result.duration:.2f}s",
            f"diagnostics: {result.diagnostics}",
            "",
        ]
        for step_run in run.steps:
            lines.append(
                f"=== {step_run.name} (exit {step_run.return_code}, {step_run.duration:.2f}s) in {step_run.cwd}"
            )
            lines.append(f"$ {step_run.command}")
            if step_run.stdout:
                lines.append(step_run.stdout.rstrip("\n"))
            if step_run.stderr:
                lines.append("--- stderr")
                lines.append(step_run.stderr.rstrip("\n"))
            lines.append("")
        return "\n".join(lines)
