"""Tests for GitRepository and GitBisectWalker."""

import shutil

import pytest

from conftest import FakeRunner
from regbisect.config.config import BisectConfig, OracleConfig
from regbisect.core.oracle import CommandOracle
from regbisect.core.orchestrator import BisectDriver
from regbisect.core.session import CulpritFound
from regbisect.exceptions import ConfigError, IllPosedSearchError, WalkerError
from regbisect.history import create_walker
from regbisect.history.base import MarkStatus, Revision, Verdict, WalkerState
from regbisect.history.git import GitBisectWalker, GitRepository
from regbisect.persistence.recorder import load_transcript
from regbisect.persistence.state_manager import StateManager
from regbisect.shell.local import LocalCommandRunner


GOOD = Revision("1" * 40, "Release 5.5")
BAD = Revision("2" * 40, "Release 5.6")
MID = Revision("3" * 40, "Refactor emitter")
OTHER = Revision("4" * 40, "Update baselines")

BISECTING = f"Bisecting: 3 revisions left to test after this (roughly 2 steps)\n[{MID.id}] {MID.subject}\n"


def make_walker(*script):
    runner = FakeRunner(
        list(script)
        + [
            ("merge-base --is-ancestor", (0, "", "")),
            ("log -1 --format=%s", (0, "some subject\n", "")),
            ("rev-parse HEAD", (0, MID.id + "\n", "")),
        ]
    )
    return GitBisectWalker(GitRepository("/repo", runner)), runner


def test_start_offers_checked_out_commit():
    walker, runner = make_walker(("bisect start", (0, BISECTING, "")))

    result = walker.start(GOOD, BAD)

    assert result.status == MarkStatus.CONTINUE
    assert walker.state == WalkerState.RUNNING
    assert walker.next().id == MID.id
    assert f"git bisect start {BAD.id} {GOOD.id}" in runner.commands
    assert all(cwd == "/repo" for _, cwd, _ in runner.calls)


def test_culprit_reply():
    reply = f"{MID.id} is the first bad commit\ncommit {MID.id}\nAuthor: dev\n\n    Refactor emitter\n"
    walker, _ = make_walker(("bisect start", (0, BISECTING, "")), ("bisect bad", (0, reply, "")))
    walker.start(GOOD, BAD)

    result = walker.mark(MID, Verdict.BAD)

    assert result.status == MarkStatus.CULPRIT
    assert result.revision.id == MID.id
    assert walker.culprit.id == MID.id
    assert walker.next() is None


def test_only_skipped_reply():
    reply = (
        "There are only 'skip'ped commits left to test.\n"
        "The first bad commit could be any of:\n"
        f"{MID.id}\n{OTHER.id}\n"
        "We cannot bisect more!\n"
    )
    walker, _ = make_walker(("bisect start", (0, BISECTING, "")), ("bisect skip", (2, reply, "")))
    walker.start(GOOD, BAD)

    result = walker.mark(MID, Verdict.SKIP)

    assert result.status == MarkStatus.EXHAUSTED
    assert [r.id for r in result.candidates] == [MID.id, OTHER.id]
    assert walker.state == WalkerState.EXHAUSTED


def test_open_candidates_lists_skipped_and_lowest_bad():
    walker, _ = make_walker(
        ("bisect start", (0, BISECTING, "")),
        ("bisect skip", (0, BISECTING, "")),
        ("bisect bad", (0, BISECTING, "")),
    )
    walker.start(GOOD, BAD)
    assert [r.id for r in walker.open_candidates()] == [BAD.id]

    walker.mark(OTHER, Verdict.SKIP)
    walker.mark(MID, Verdict.BAD)

    assert [r.id for r in walker.open_candidates()] == [OTHER.id, MID.id]
    assert GOOD.id not in [r.id for r in walker.open_candidates()]


def test_merge_base_reply_needs_disambiguation():
    reply = f"Bisecting: a merge base must be tested\n[{MID.id}] {MID.subject}\n"
    walker, _ = make_walker(("bisect start", (0, reply, "")))

    result = walker.start(GOOD, BAD)

    assert result.status == MarkStatus.AMBIGUOUS
    assert walker.state == WalkerState.NEEDS_DISAMBIGUATION
    assert walker.next().id == MID.id


def test_inverted_range_reply():
    reply = f"The merge base {GOOD.id} is bad.\nThis means the bug has been fixed between {GOOD.id} and [{BAD.id}].\n"
    walker, _ = make_walker(("bisect start", (1, "", reply)))

    with pytest.raises(IllPosedSearchError):
        walker.start(GOOD, BAD)


def test_unexpected_failure_reply():
    walker, _ = make_walker(("bisect start", (128, "", "fatal: not a git repository\n")))

    with pytest.raises(WalkerError):
        walker.start(GOOD, BAD)


def test_swapped_anchors_rejected():
    walker, _ = make_walker(
        (f"--is-ancestor {GOOD.id} {BAD.id}", (1, "", "")),
        (f"--is-ancestor {BAD.id} {GOOD.id}", (0, "", "")),
    )
    with pytest.raises(IllPosedSearchError, match="swapped"):
        walker.start(GOOD, BAD)


def test_identical_anchors_rejected():
    walker, _ = make_walker()
    with pytest.raises(IllPosedSearchError):
        walker.start(GOOD, GOOD)


def test_resolve():
    walker, _ = make_walker(("rev-parse --verify", (0, GOOD.id + "\n", "")))
    revision = walker.resolve("v5.5.4")

    assert revision.id == GOOD.id
    assert revision.subject == "some subject"

    walker, _ = make_walker(("rev-parse --verify", (1, "", "")))
    with pytest.raises(WalkerError):
        walker.resolve("no-such-tag")


def test_replay_applies_only_missing_marks():
    log = (
        f"git bisect start '{BAD.id}' '{GOOD.id}'\n"
        f"# bad: [{BAD.id}] Release 5.6\n"
        f"git bisect bad {BAD.id}\n"
        f"# good: [{GOOD.id}] Release 5.5\n"
        f"git bisect good {GOOD.id}\n"
        f"# good: [{MID.id}] Refactor emitter\n"
        f"git bisect good {MID.id}\n"
    )
    walker, runner = make_walker(("bisect log", (0, log, "")), ("bisect bad", (0, BISECTING, "")))

    walker.replay(GOOD, BAD, [(MID, Verdict.GOOD), (OTHER, Verdict.BAD)])

    assert not any("bisect start" in c for c in runner.commands)
    assert not any(f"bisect good {MID.id}" in c for c in runner.commands)
    assert f"git bisect bad {OTHER.id}" in runner.commands
    assert walker.transcript_marks() == [(MID, Verdict.GOOD), (OTHER, Verdict.BAD)]


def test_replay_rebuilds_on_divergence():
    log = f"git bisect bad {BAD.id}\ngit bisect good {GOOD.id}\ngit bisect bad {MID.id}\n"
    walker, runner = make_walker(
        ("bisect log", (0, log, "")), ("bisect start", (0, BISECTING, "")), ("bisect good", (0, BISECTING, ""))
    )

    walker.replay(GOOD, BAD, [(MID, Verdict.GOOD)])

    assert f"git bisect start {BAD.id} {GOOD.id}" in runner.commands
    assert f"git bisect good {MID.id}" in runner.commands


def test_replay_without_bisection_in_progress_starts_over():
    walker, runner = make_walker(("bisect log", (1, "", "We are not bisecting.\n")), ("bisect start", (0, BISECTING, "")))

    walker.replay(GOOD, BAD, [])

    assert f"git bisect start {BAD.id} {GOOD.id}" in runner.commands


def test_working_copy_restores_on_failure():
    walker, runner = make_walker()

    with pytest.raises(RuntimeError):
        with walker.working_copy(OTHER):
            raise RuntimeError("build exploded")

    assert f"git checkout --quiet {OTHER.id}" in runner.commands
    assert runner.commands[-1] == "git restore ."


def test_create_walker():
    config = BisectConfig(history_path="/repo", walker="git")
    assert isinstance(create_walker(config, FakeRunner()), GitBisectWalker)

    config.walker = "svn"
    with pytest.raises(ConfigError):
        create_walker(config, FakeRunner())

    config.walker = "sequence"
    with pytest.raises(ConfigError):
        create_walker(config, FakeRunner())


@pytest.mark.skipif(shutil.which("git") is None, reason="git not available")
def test_bisect_real_repository(tmp_path):
    """End to end over a real git history: timing jumps at commit 5."""
    repo = tmp_path / "repo"
    repo.mkdir()
    runner = LocalCommandRunner(default_timeout=60)

    def sh(command):
        ret, stdout, stderr = runner.run_command(command, cwd=str(repo))
        assert ret == 0, stderr
        return stdout.strip()

    sh("git init -q")
    sh("git config user.email dev@example.com")
    sh("git config user.name dev")
    sh("git config advice.detachedHead false")
    for i in range(8):
        (repo / "timing").write_text("600\n" if i >= 5 else "300\n")
        sh(f"git add timing && git commit -q --allow-empty -m 'change {i}'")
        sh(f"git tag c{i}")

    config = BisectConfig(
        history_path=str(repo),
        good="c0",
        bad="c7",
        policy="threshold",
        good_ref=300.0,
        bad_ref=600.0,
        walker="git",
        output_dir=str(tmp_path / "out"),
        oracle=OracleConfig(measure_command='echo "Build time: $(cat timing)s"'),
    )
    config.validate()
    state = StateManager(config.database_path)
    try:
        walker = create_walker(config, runner)
        oracle = CommandOracle.from_config(config, runner)
        outcome = BisectDriver(config, walker, oracle, state).run()

        assert isinstance(outcome, CulpritFound)
        assert outcome.revision.id == sh("git rev-parse c5")
        assert outcome.revision.subject == "change 5"
        assert walker.bisect_log() is None

        replayed = BisectDriver(config, create_walker(config, runner), oracle, state).replay(
            load_transcript(config.transcript_path)
        )
        assert replayed.revision.id == outcome.revision.id
    finally:
        state.close()
