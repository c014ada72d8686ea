#!/usr/bin/env python3
"""regbisect - Regression Bisection CLI Tool.

Main command-line interface for measurement-driven regression bisection.
"""

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from regbisect.config.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_METRIC_PATTERN,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RESTORE_COMMAND,
    BisectConfig,
    CommandStep,
    InstallFallback,
    OracleConfig,
)
from regbisect.core.checker import SystemChecker
from regbisect.core.oracle import CommandOracle
from regbisect.core.orchestrator import BisectDriver
from regbisect.core.session import CulpritFound, SearchExhausted, session_state
from regbisect.exceptions import (
    BisectAbortedError,
    ConfigError,
    InfrastructureError,
)
from regbisect.history import (
    GitRepository,
    SequenceWalker,
    create_walker,
    load_revision_list,
)
from regbisect.persistence import StateManager, load_transcript
from regbisect.persistence.state_manager import STATUS_ABANDONED
from regbisect.shell import LocalCommandRunner


# Constants
ENV_HISTORY_PATH = "REGBISECT_HISTORY_PATH"
ENV_TARGET_PATH = "REGBISECT_TARGET_PATH"
EXIT_EXHAUSTED = 2
EXIT_INTERRUPTED = 130

PATH_KEYS = ("history_path", "target_path", "output_dir", "db_path", "revisions_file")

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, enable DEBUG level logging
        log_file: Optional file receiving a copy of the log
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(message)s", handlers=handlers
    )


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file (None for the default file)

    Returns:
        Configuration dictionary (empty when the default file does not exist)

    Raises:
        ConfigError: If an explicitly named file is missing or the YAML is invalid
    """
    explicit = config_path is not None
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if not path.exists():
        if explicit:
            raise ConfigError(
                f"Config file not found: {path}. Create one with: regbisect init-config"
            )
        logger.debug(f"No config file at {path}, using defaults and command-line options")
        return {}

    try:
        with path.open() as f:
            config_dict = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(config_dict, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    # Resolve relative paths in config relative to config file location
    config_dir = path.parent.resolve()
    sweep = config_dict.get("sweep") or {}
    for container, key in [(config_dict, k) for k in PATH_KEYS] + [(sweep, "revisions_file")]:
        value = container.get(key)
        if value and not Path(value).is_absolute():
            resolved_path = (config_dir / value).resolve()
            container[key] = str(resolved_path)
            logger.debug(f"Resolved {key}: {value} -> {resolved_path}")

    return config_dict


def _parse_steps(raw: Any, kind: str) -> List[CommandStep]:
    if raw is None:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, list):
        raise ConfigError(f"oracle.{kind} must be a list of commands")

    steps = []
    for index, item in enumerate(raw, 1):
        if isinstance(item, str):
            steps.append(CommandStep(name=f"{kind}-{index}", command=item))
        elif isinstance(item, dict) and item.get("command"):
            steps.append(
                CommandStep(
                    name=item.get("name", f"{kind}-{index}"),
                    command=item["command"],
                    timeout=item.get("timeout"),
                )
            )
        else:
            raise ConfigError(f"oracle.{kind} entry {index} needs a 'command'")
    return steps


def create_oracle_config(oracle_dict: Dict[str, Any]) -> OracleConfig:
    """Create OracleConfig from the 'oracle' section of the config file.

    Raises:
        ConfigError: If a section has the wrong shape
    """
    label = oracle_dict.get("label") or {}
    check = oracle_dict.get("check") or {}
    measure = oracle_dict.get("measure") or {}
    if isinstance(label, str):
        label = {"command": label}
    if isinstance(check, str):
        check = {"command": check}
    if isinstance(measure, str):
        measure = {"command": measure}

    return OracleConfig(
        build=_parse_steps(oracle_dict.get("build"), "build"),
        install=_parse_steps(oracle_dict.get("install"), "install"),
        label_command=label.get("command"),
        label_pattern=label.get("pattern"),
        check_command=check.get("command"),
        run_check=check.get("enabled", True),
        measure_command=measure.get("command"),
        metric_pattern=measure.get("pattern", DEFAULT_METRIC_PATTERN),
        inconclusive_patterns=list(oracle_dict.get("inconclusive_patterns") or []),
        clean_paths=list(measure.get("clean_paths") or []),
        timeout=oracle_dict.get("timeout"),
        install_fallbacks=_parse_fallbacks(oracle_dict.get("install_fallbacks")),
        restore_command=oracle_dict.get("restore", DEFAULT_RESTORE_COMMAND),
    )


def _parse_fallbacks(raw: Any) -> List[InstallFallback]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("oracle.install_fallbacks must be a list")

    fallbacks = []
    for index, item in enumerate(raw, 1):
        if not isinstance(item, dict) or not item.get("name"):
            raise ConfigError(f"oracle.install_fallbacks entry {index} needs a 'name'")
        fallbacks.append(
            InstallFallback(
                name=str(item["name"]),
                build=_parse_steps(item.get("build"), "build"),
                install=_parse_steps(item.get("install"), "install"),
            )
        )
    return fallbacks


def create_bisect_config(config_dict: Dict[str, Any], args: Any) -> BisectConfig:
    """Create BisectConfig from config dict, environment and CLI args.

    Later sources win: config file, then REGBISECT_HISTORY_PATH and
    REGBISECT_TARGET_PATH, then command-line options.

    Args:
        config_dict: Configuration dictionary from YAML
        args: Parsed command-line arguments

    Returns:
        BisectConfig object

    Raises:
        ConfigError: If a value has the wrong type or the history path is missing
    """

    def arg(name: str) -> Any:
        return getattr(args, name, None)

    def pick(name: str, default: Any = None) -> Any:
        value = arg(name)
        if value is not None:
            return value
        return config_dict.get(name, default)

    sweep = config_dict.get("sweep") or {}
    oracle = create_oracle_config(config_dict.get("oracle") or {})
    if arg("skip_check"):
        oracle.run_check = False
    if arg("timeout") is not None:
        oracle.timeout = arg("timeout")

    history_path = arg("history_path") or os.environ.get(ENV_HISTORY_PATH) or config_dict.get("history_path")
    target_path = arg("target_path") or os.environ.get(ENV_TARGET_PATH) or config_dict.get("target_path")
    if not history_path:
        raise ConfigError(
            f"No history path: set history_path in the config file, {ENV_HISTORY_PATH}, or --history-path"
        )

    try:
        good_ref = pick("good_ref")
        bad_ref = pick("bad_ref")
        max_skips = pick("max_skips")
        config = BisectConfig(
            history_path=str(history_path),
            target_path=str(target_path) if target_path else None,
            good=pick("good"),
            bad=pick("bad"),
            policy=pick("policy", "threshold"),
            good_ref=float(good_ref) if good_ref is not None else None,
            bad_ref=float(bad_ref) if bad_ref is not None else None,
            walker=pick("walker", "git"),
            revisions_file=arg("revisions_file") or config_dict.get("revisions_file") or sweep.get("revisions_file"),
            max_skips=int(max_skips) if max_skips is not None else None,
            verify_anchors=bool(arg("verify_anchors") or config_dict.get("verify_anchors", False)),
            output_dir=pick("output_dir", DEFAULT_OUTPUT_DIR),
            db_path=pick("db_path"),
            oracle=oracle,
            sweep_step=int(arg("step") or sweep.get("step", 1)),
            sweep_reverse=bool(arg("reverse") or sweep.get("reverse", False)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    return config


def _prepare(args: argparse.Namespace, require_anchors: bool, require_policy: bool = True) -> BisectConfig:
    config = create_bisect_config(load_config(args.config), args)
    config.validate(require_anchors=require_anchors, require_policy=require_policy)
    return config


def _database_path(args: argparse.Namespace) -> str:
    """Locate the state database without requiring a complete configuration."""
    config_dict = load_config(args.config)
    if args.db_path:
        return args.db_path
    if config_dict.get("db_path"):
        return config_dict["db_path"]
    output_dir = args.output_dir or config_dict.get("output_dir", DEFAULT_OUTPUT_DIR)
    return str(Path(output_dir) / "bisect.db")


def _abandon_active_session(state: StateManager, walker: Any, config: BisectConfig) -> None:
    good = walker.resolve(config.good)
    bad = walker.resolve(config.bad)
    existing = state.find_active_session(good.id, bad.id)
    if existing:
        state.close_session(existing.session_id, STATUS_ABANDONED)
        state.add_log(existing.session_id, "reset", "Abandoned by --reinit")
        print(f"Abandoned session {existing.session_id}")
    walker.reset()


def cmd_bisect(args: argparse.Namespace) -> int:
    """Run regression search to completion.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 culprit found, 1 failure, 2 search exhausted)
    """
    print("=== Starting Regression Bisection ===\n")
    config = _prepare(args, require_anchors=True)

    runner = LocalCommandRunner()
    walker = create_walker(config, runner)
    oracle = CommandOracle.from_config(config, runner)
    state = StateManager(config.database_path)

    try:
        if args.reinit:
            _abandon_active_session(state, walker, config)

        driver = BisectDriver(config, walker, oracle, state)
        try:
            outcome = driver.run()
        except BisectAbortedError as exc:
            print(f"\n✗ Bisection aborted during {exc.step}")
            print(f"  Last recorded revision: {exc.last_revision or 'none'}")
            print(f"  Cause: {exc.cause}")
            print("  Fix the problem and run the same command again to resume.")
            return 1

        if isinstance(outcome, CulpritFound):
            culprit = outcome.revision
            print("\n✓ Bisection complete!")
            print(f"First bad revision: {culprit.id} {culprit.subject or ''}".rstrip())
            print(f"Run log:    {config.summary_path}")
            print(f"Transcript: {config.transcript_path}")
            return 0

        print(f"\n⚠ Search exhausted: {outcome.reason}")
        print("Possible first bad revisions:")
        for candidate in outcome.candidates:
            print(f"  {candidate.id}")
        return EXIT_EXHAUSTED
    finally:
        state.close()


def cmd_sweep(args: argparse.Namespace) -> int:
    """Measure every Nth revision of an explicit list without bisecting.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    print("=== Starting Range Sweep ===\n")
    config = _prepare(args, require_anchors=False, require_policy=False)

    runner = LocalCommandRunner()
    repository = GitRepository(config.history_path, runner)

    if config.revisions_file:
        revisions = load_revision_list(config.revisions_file, reverse=config.sweep_reverse)
    elif config.good and config.bad:
        revisions = repository.revisions_between(
            repository.resolve(config.good), repository.resolve(config.bad)
        )
    else:
        raise ConfigError("Sweep needs a revisions file or both good and bad anchors")

    if not revisions:
        print("No revisions to sweep")
        return 1

    walker = SequenceWalker(revisions, repository)
    oracle = CommandOracle.from_config(config, runner)
    state = StateManager(config.database_path)
    try:
        driver = BisectDriver(config, walker, oracle, state)
        try:
            result = driver.sweep(revisions, step=config.sweep_step, resume=args.resume)
        except BisectAbortedError as exc:
            print(f"\n✗ Sweep aborted during {exc.step}")
            print(f"  Last recorded revision: {exc.last_revision or 'none'}")
            print(f"  Cause: {exc.cause}")
            print("  Run again with --resume to continue.")
            return 1
    finally:
        state.close()

    print(f"\n✓ Sweep complete: {len(result.measured)} measured, {len(result.skipped)} already in log")
    print(f"Sweep log: {config.sweep_summary_path}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show bisection status.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    state = StateManager(_database_path(args))
    try:
        session = state.get_latest_session()

        if not session:
            print("No bisection session found")
            return 0

        view = session_state(state, session.session_id)

        print("=== Bisection Status ===\n")
        print(f"Session ID:   {session.session_id}")
        print(f"Status:       {session.status} ({view.phase.value})")
        print(f"Good anchor:  {session.good_commit}")
        print(f"Bad anchor:   {session.bad_commit}")
        print(f"Policy:       {session.policy}")
        if session.good_ref is not None and session.bad_ref is not None:
            print(f"References:   {session.good_ref:g} / {session.bad_ref:g}")
        print(f"Started:      {session.start_time}")

        if session.end_time:
            print(f"Ended:        {session.end_time}")

        if session.result_commit:
            print(f"\nFirst bad revision: {session.result_commit}")

        if view.pending_revision:
            print(f"\nInterrupted step on: {view.pending_revision.id}")

        print(f"\nVerdicts applied: {len(view.history)}")
        iterations = state.get_iterations(session.session_id)
        if iterations:
            print("\nRecent iterations:")
            for it in iterations[-5:]:
                result = it.final_result or it.phase
                metric = f"{it.metric:g}" if it.metric is not None else "-"
                print(
                    f"  {it.iteration_num:3d}. {it.commit_sha[:8]} | {result:9s} | "
                    f"{metric:>8s} | {(it.commit_message or '')[:50]}"
                )
        return 0
    finally:
        state.close()


def cmd_report(args: argparse.Namespace) -> int:
    """Generate bisection report.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    state = StateManager(_database_path(args))
    try:
        session_id = args.session_id
        if not session_id:
            session = state.get_latest_session()
            if session:
                session_id = session.session_id
            else:
                print("No bisection session found")
                return 1

        report = state.export_report(session_id, format=args.format)

        if args.output:
            output_path = Path(args.output)
            with output_path.open("w") as f:
                f.write(report)
            print(f"Report saved to: {args.output}")
        else:
            print(report)
        return 0
    finally:
        state.close()


def cmd_replay(args: argparse.Namespace) -> int:
    """Reconstruct a search from a saved transcript without measuring.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 culprit reproduced, 1 failure, 2 search exhausted)
    """
    config = _prepare(args, require_anchors=False, require_policy=False)
    transcript_path = args.transcript or str(config.transcript_path)
    transcript = load_transcript(transcript_path)

    runner = LocalCommandRunner()
    walker = create_walker(config, runner)
    oracle = CommandOracle.from_config(config, runner)
    state = StateManager(config.database_path)
    try:
        outcome = BisectDriver(config, walker, oracle, state).replay(transcript)
    finally:
        state.close()

    if isinstance(outcome, SearchExhausted):
        print(f"Replay ends exhausted: {outcome.reason}")
        return EXIT_EXHAUSTED

    print(f"Replay reproduces first bad revision: {outcome.revision.id}")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Abandon the active session and reset the history's bisection state.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    config = create_bisect_config(load_config(args.config), args)
    walker = create_walker(config, LocalCommandRunner())

    state = StateManager(config.database_path)
    try:
        session = state.find_active_session()
        if session:
            state.close_session(session.session_id, STATUS_ABANDONED)
            state.add_log(session.session_id, "reset", "Abandoned by operator")
            print(f"Abandoned session {session.session_id}")
        else:
            print("No active bisection session")
    finally:
        state.close()

    walker.reset()
    print(f"Reset bisection state in {config.history_path}")
    return 0


def cmd_init_config(args: argparse.Namespace) -> int:
    """Generate example configuration file.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    config_dir = Path(__file__).parent / "config"
    source_file = config_dir / "bisect.yaml.example"

    if not source_file.exists():
        print(f"Error: Example config file not found at {source_file}")
        print("This might indicate a corrupted installation.")
        return 1

    output_file = Path(args.output) if args.output else Path(DEFAULT_CONFIG_PATH)

    if output_file.exists() and not args.force:
        response = input(f"File '{output_file}' already exists. Overwrite? [y/N]: ")
        if response.lower() not in ["y", "yes"]:
            print("Aborted.")
            return 1

    try:
        shutil.copy(source_file, output_file)
    except OSError as exc:
        print(f"Error copying config file: {exc}")
        return 1

    print(f"✓ Example configuration created: {output_file}")
    print("\nNext steps:")
    print(f"  1. Edit {output_file} with your history, target and oracle commands")
    print("  2. Run: regbisect check")
    print("  3. Run: regbisect bisect <good> <bad>")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Check system dependencies and configuration.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 if all checks passed, 1 if any check failed)
    """
    logger.info("Running system health checks...")

    config = create_bisect_config(load_config(args.config), args)
    checker = SystemChecker(config)

    all_passed = checker.run_all_checks()
    checker.print_results()

    if all_passed:
        logger.info("✓ All checks passed - ready for bisection")
        return 0

    logger.error("✗ Some checks failed - please address issues before running bisection")
    return 1


def _add_source_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--history-path", dest="history_path", help="Working copy of the bisected history")
    parser.add_argument("--target-path", dest="target_path", help="Consumer of the built artifact")
    parser.add_argument("--timeout", type=int, help="Default per-step oracle timeout in seconds")
    parser.add_argument(
        "--skip-check",
        dest="skip_check",
        action="store_true",
        help="Do not run the auxiliary structural check step",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        description="Measurement-driven regression bisection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c", "--config", default=None, help=f"Configuration file path (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--log-file", dest="log_file", help="Also write the log to this file")
    parser.add_argument("--output-dir", dest="output_dir", help="Directory for logs, artifacts and transcript")
    parser.add_argument("--db", dest="db_path", help="Session database path")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # bisect command
    parser_bisect = subparsers.add_parser("bisect", help="Run regression search to completion")
    parser_bisect.add_argument("good", nargs="?", help="Good anchor (older, fast or working)")
    parser_bisect.add_argument("bad", nargs="?", help="Bad anchor (newer, slow or broken)")
    _add_source_options(parser_bisect)
    parser_bisect.add_argument("--policy", choices=["binary", "threshold"], help="Verdict policy")
    parser_bisect.add_argument("--good-ref", dest="good_ref", type=float, help="Metric of the good anchor")
    parser_bisect.add_argument("--bad-ref", dest="bad_ref", type=float, help="Metric of the bad anchor")
    parser_bisect.add_argument("--walker", choices=["git", "sequence"], help="Revision walker")
    parser_bisect.add_argument("--revisions-file", dest="revisions_file", help="JSON revision list (sequence walker)")
    parser_bisect.add_argument("--max-skips", dest="max_skips", type=int, help="Skip budget")
    parser_bisect.add_argument(
        "--verify-anchors",
        dest="verify_anchors",
        action="store_true",
        help="Measure both anchors first (calibrates missing references)",
    )
    parser_bisect.add_argument("--reinit", action="store_true", help="Abandon the active session and start over")

    # sweep command
    parser_sweep = subparsers.add_parser("sweep", help="Measure every Nth revision of a list")
    parser_sweep.add_argument("revisions_file", nargs="?", help="JSON array of revision ids")
    _add_source_options(parser_sweep)
    parser_sweep.add_argument("--step", type=int, help="Measure every Nth revision (default: 1)")
    parser_sweep.add_argument("--reverse", action="store_true", help="Reverse the revision list first")
    parser_sweep.add_argument("--good", help="Start of the range when no list is given")
    parser_sweep.add_argument("--bad", help="End of the range when no list is given")
    parser_sweep.add_argument("--resume", action="store_true", help="Keep the sweep log and skip measured revisions")

    # status command
    subparsers.add_parser("status", help="Show bisection status")

    # report command
    parser_report = subparsers.add_parser("report", help="Generate bisection report")
    parser_report.add_argument("--session-id", type=int, help="Session ID (default: latest)")
    parser_report.add_argument(
        "--format", choices=["text", "json"], default="text", help="Report format"
    )
    parser_report.add_argument("--output", "-o", help="Output file (default: stdout)")

    # replay command
    parser_replay = subparsers.add_parser("replay", help="Reproduce a search from its transcript")
    parser_replay.add_argument("transcript", nargs="?", help="Transcript file (default: output dir)")
    parser_replay.add_argument("--history-path", dest="history_path", help="Working copy of the bisected history")
    parser_replay.add_argument("--walker", choices=["git", "sequence"], help="Revision walker")
    parser_replay.add_argument("--revisions-file", dest="revisions_file", help="JSON revision list (sequence walker)")

    # reset command
    parser_reset = subparsers.add_parser("reset", help="Abandon the active session")
    parser_reset.add_argument("--history-path", dest="history_path", help="Working copy of the bisected history")
    parser_reset.add_argument("--walker", choices=["git", "sequence"], help="Revision walker")
    parser_reset.add_argument("--revisions-file", dest="revisions_file", help="JSON revision list (sequence walker)")

    # init-config command
    parser_init_config = subparsers.add_parser(
        "init-config", help="Generate example configuration file"
    )
    parser_init_config.add_argument(
        "--output", "-o", help=f"Output file path (default: {DEFAULT_CONFIG_PATH})"
    )
    parser_init_config.add_argument(
        "--force", "-f", action="store_true", help="Overwrite existing file without asking"
    )

    # check command
    parser_check = subparsers.add_parser("check", help="Check system dependencies and configuration")
    _add_source_options(parser_check)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (default: sys.argv)

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_file)

    try:
        if args.command == "bisect":
            return cmd_bisect(args)
        if args.command == "sweep":
            return cmd_sweep(args)
        if args.command == "status":
            return cmd_status(args)
        if args.command == "report":
            return cmd_report(args)
        if args.command == "replay":
            return cmd_replay(args)
        if args.command == "reset":
            return cmd_reset(args)
        if args.command == "init-config":
            return cmd_init_config(args)
        if args.command == "check":
            return cmd_check(args)

        parser.print_help()
        return 1

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return EXIT_INTERRUPTED
    except ConfigError as exc:
        logger.error(f"Configuration error: {exc}")
        return 1
    except InfrastructureError as exc:
        logger.error(f"Fatal error: {exc}")
        return 1
    except Exception as exc:
        logger.error(f"Fatal error: {exc}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
