"""Preflight checker for regbisect tools, configuration and working copy."""

import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..config.config import BisectConfig
from ..exceptions import ConfigError, WalkerError
from ..history.git import GitRepository
from ..shell.base import CommandRunner
from ..shell.local import LocalCommandRunner


logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Result of a single check operation."""

    category: str
    name: str
    passed: bool
    message: str
    details: Optional[str] = None
    warning: bool = False


class SystemChecker:
    """Validates regbisect dependencies, configuration and the working copy."""

    def __init__(self, config: BisectConfig, runner: Optional[CommandRunner] = None):
        """Initialize system checker with configuration.

        Args:
            config: Loaded bisect configuration
            runner: Command runner for git queries
        """
        self.config = config
        self.runner = runner or LocalCommandRunner()
        self.results: List[CheckResult] = []

    def check_local_tools(self) -> List[CheckResult]:
        """Check that git and the executables of the oracle commands are available.

        Returns:
            List of check results for local tools
        """
        results = []

        git_path = shutil.which("git")
        results.append(
            CheckResult(
                category="Local System",
                name="git command",
                passed=bool(git_path),
                message=f"Found at {git_path}" if git_path else "git not found in PATH",
            )
        )

        oracle = self.config.oracle
        commands = [step.command for step in oracle.build + oracle.install]
        commands += [c for c in (oracle.label_command, oracle.check_command, oracle.measure_command) if c]

        seen = set()
        for command in commands:
            try:
                words = shlex.split(command)
            except ValueError:
                continue
            if not words or words[0] in seen or "=" in words[0]:
                continue
            tool = words[0]
            seen.add(tool)

            # Relative tools may only exist inside the history or target tree
            if "/" in tool:
                continue
            tool_path = shutil.which(tool)
            results.append(
                CheckResult(
                    category="Local System",
                    name=f"{tool} command",
                    passed=True,
                    message=f"Found at {tool_path}" if tool_path else f"{tool} not found in PATH",
                    warning=not tool_path,
                )
            )

        return results

    def check_config_validity(self) -> List[CheckResult]:
        """Validate option values and referenced paths.

        Returns:
            List of check results for configuration
        """
        results = []

        try:
            self.config.validate()
            results.append(
                CheckResult(
                    category="Configuration",
                    name="options",
                    passed=True,
                    message=f"policy {self.config.policy}, walker {self.config.walker}",
                )
            )
        except ConfigError as exc:
            results.append(
                CheckResult(category="Configuration", name="options", passed=False, message=str(exc))
            )

        target = Path(self.config.measurement_path)
        results.append(
            CheckResult(
                category="Configuration",
                name="target path",
                passed=target.is_dir(),
                message=f"{target} exists" if target.is_dir() else f"Directory not found: {target}",
            )
        )

        if self.config.revisions_file:
            revisions_file = Path(self.config.revisions_file)
            results.append(
                CheckResult(
                    category="Configuration",
                    name="revisions file",
                    passed=revisions_file.is_file(),
                    message=(
                        f"Found at {revisions_file}"
                        if revisions_file.is_file()
                        else f"File not found: {revisions_file}"
                    ),
                )
            )

        output_dir = Path(self.config.output_dir)
        parent = output_dir if output_dir.exists() else output_dir.parent
        writable = os.access(parent if str(parent) else ".", os.W_OK)
        results.append(
            CheckResult(
                category="Configuration",
                name="output directory",
                passed=writable,
                message=f"{output_dir} is writable" if writable else f"Cannot write to {output_dir}",
            )
        )

        return results

    def check_history(self) -> List[CheckResult]:
        """Check the history working copy, the anchors and the bisection state.

        Returns:
            List of check results for the history source
        """
        category = "History"
        results = []
        repository = GitRepository(self.config.history_path, self.runner)

        ret, stdout, _ = repository.git("rev-parse --is-inside-work-tree", check=False)
        if ret != 0 or stdout.strip() != "true":
            results.append(
                CheckResult(
                    category=category,
                    name="working copy",
                    passed=False,
                    message=f"{self.config.history_path} is not a git working copy",
                )
            )
            return results

        results.append(
            CheckResult(
                category=category,
                name="working copy",
                passed=True,
                message=f"{self.config.history_path} is a git working copy",
            )
        )

        _, stdout, _ = repository.git("status --porcelain --untracked-files=no", check=False)
        results.append(
            CheckResult(
                category=category,
                name="local modifications",
                passed=True,
                message="clean" if not stdout.strip() else "tracked files are modified",
                details=stdout.strip() or None,
                warning=bool(stdout.strip()),
            )
        )

        for name, expression in (("good anchor", self.config.good), ("bad anchor", self.config.bad)):
            if not expression:
                continue
            try:
                revision = repository.resolve(expression)
                results.append(
                    CheckResult(
                        category=category,
                        name=name,
                        passed=True,
                        message=f"{expression} -> {revision.short} {revision.subject or ''}".rstrip(),
                    )
                )
            except WalkerError as exc:
                results.append(CheckResult(category=category, name=name, passed=False, message=str(exc)))

        ret, _, _ = repository.git("bisect log", check=False)
        if ret == 0:
            results.append(
                CheckResult(
                    category=category,
                    name="bisection state",
                    passed=True,
                    message="git bisection in progress (will be resumed or reset)",
                    warning=True,
                )
            )

        return results

    def run_all_checks(self) -> bool:
        """Run all system checks and collect results.

        Returns:
            True if all checks passed, False otherwise
        """
        self.results = []

        logger.info("Checking local tools...")
        self.results.extend(self.check_local_tools())

        logger.info("Validating configuration...")
        self.results.extend(self.check_config_validity())

        logger.info("Checking history working copy...")
        self.results.extend(self.check_history())

        return all(r.passed for r in self.results)

    def print_results(self):
        """Print formatted check results to console."""
        if not self.results:
            print("No checks performed.")
            return

        print("\nRunning regbisect system checks...\n")

        categories = {}
        for result in self.results:
            categories.setdefault(result.category, []).append(result)

        for category, results in categories.items():
            print(f"[{category}]")
            for result in results:
                symbol = ("⚠" if result.warning else "✓") if result.passed else "✗"

                print(f"{symbol} {result.name}: {result.message}")
                if result.details:
                    print(f"  {result.details}")
            print()

        passed = sum(1 for r in self.results if r.passed and not r.warning)
        failed = sum(1 for r in self.results if not r.passed)
        warnings = sum(1 for r in self.results if r.warning)

        print(f"Summary: {passed} passed, {failed} failed, {warnings} warning(s)")

        if failed > 0:
            print(
                "\n⚠ Some checks failed. Please address the issues above before running bisection."
            )
