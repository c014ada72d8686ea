"""Revision walkers over version histories."""

from typing import Optional

from regbisect.config.config import BisectConfig
from regbisect.exceptions import ConfigError
from regbisect.history.base import (
    MarkResult,
    MarkStatus,
    Revision,
    RevisionWalker,
    Verdict,
    WalkerState,
)
from regbisect.history.git import GitBisectWalker, GitRepository
from regbisect.history.sequence import SequenceWalker, load_revision_list
from regbisect.shell.base import CommandRunner
from regbisect.shell.local import LocalCommandRunner


__all__ = [
    "GitBisectWalker",
    "GitRepository",
    "MarkResult",
    "MarkStatus",
    "Revision",
    "RevisionWalker",
    "SequenceWalker",
    "Verdict",
    "WalkerState",
    "create_walker",
    "load_revision_list",
]


def create_walker(config: BisectConfig, runner: Optional[CommandRunner] = None) -> RevisionWalker:
    """Create revision walker instance based on configuration.

    Args:
        config: Bisection configuration
        runner: Command runner for git (defaults to a local runner)

    Returns:
        RevisionWalker instance

    Raises:
        ConfigError: If the walker kind is unknown or lacks its revision source
    """
    repository = GitRepository(config.history_path, runner or LocalCommandRunner())

    if config.walker == "git":
        return GitBisectWalker(repository)

    if config.walker == "sequence":
        if config.revisions_file:
            revisions = load_revision_list(config.revisions_file)
        else:
            if not config.good or not config.bad:
                raise ConfigError("Sequence walker needs a revisions_file or both anchors")
            revisions = repository.revisions_between(
                repository.resolve(config.good), repository.resolve(config.bad)
            )
        return SequenceWalker(revisions, repository)

    raise ConfigError(f"Unknown walker type '{config.walker}'. Valid types: 'git', 'sequence'")
