"""Tests for SequenceWalker and revision list loading."""

import json

import pytest

from regbisect.exceptions import IllPosedSearchError, WalkerError
from regbisect.history.base import MarkStatus, Revision, Verdict, WalkerState
from regbisect.history.sequence import SequenceWalker, load_revision_list


def run_search(walker, revisions, first_bad, skipped=()):
    """Drive the walker with a perfect oracle; return offered revisions and final result."""
    offered = []
    result = walker.start(revisions[0], revisions[-1])
    while walker.state == WalkerState.RUNNING:
        revision = walker.next()
        offered.append(revision.id)
        index = int(revision.id[1:])
        if revision.id in skipped:
            verdict = Verdict.SKIP
        else:
            verdict = Verdict.BAD if index >= first_bad else Verdict.GOOD
        result = walker.mark(revision, verdict)
    return offered, result


def test_finds_first_bad(walker, revisions):
    offered, result = run_search(walker, revisions, first_bad=5)

    assert result.status == MarkStatus.CULPRIT
    assert result.revision.id == "v5"
    assert walker.culprit.id == "v5"
    assert walker.state == WalkerState.COMPLETE
    assert len(offered) <= 3


@pytest.mark.parametrize("first_bad", range(1, 9))
def test_never_offers_a_revision_twice(revisions, first_bad):
    walker = SequenceWalker(revisions)
    offered, result = run_search(walker, revisions, first_bad)

    assert len(offered) == len(set(offered))
    assert result.revision.id == f"v{first_bad}"


def test_first_offer_is_midpoint(walker, revisions):
    walker.start(revisions[0], revisions[-1])
    assert walker.next().id == "v4"


def test_skipped_revision_offers_neighbour(walker, revisions):
    """After a skip the closest untested neighbour comes next, not the skipped one."""
    walker.start(revisions[0], revisions[-1])
    walker.mark(Revision("v4"), Verdict.SKIP)

    assert walker.next().id == "v3"


def test_adjacent_anchors_complete_immediately(revisions):
    walker = SequenceWalker(revisions[:2])
    result = walker.start(revisions[0], revisions[1])

    assert result.status == MarkStatus.CULPRIT
    assert result.revision.id == "v1"
    assert walker.next() is None


def test_only_skipped_left_is_exhausted(revisions):
    walker = SequenceWalker(revisions[:4])
    walker.start(revisions[0], revisions[3])

    walker.mark(Revision("v1"), Verdict.SKIP)
    result = walker.mark(Revision("v2"), Verdict.SKIP)

    assert result.status == MarkStatus.EXHAUSTED
    assert [r.id for r in result.candidates] == ["v1", "v2", "v3"]
    assert walker.state == WalkerState.EXHAUSTED


def test_inverted_anchors_are_ill_posed(walker, revisions):
    with pytest.raises(IllPosedSearchError):
        walker.start(revisions[5], revisions[2])


def test_mark_outside_range_raises(walker, revisions):
    walker.start(revisions[0], revisions[-1])
    walker.mark(Revision("v4"), Verdict.BAD)

    with pytest.raises(WalkerError):
        walker.mark(Revision("v6"), Verdict.GOOD)


def test_double_mark_raises(walker, revisions):
    walker.start(revisions[0], revisions[-1])
    walker.mark(Revision("v4"), Verdict.SKIP)

    with pytest.raises(WalkerError):
        walker.mark(Revision("v4"), Verdict.GOOD)


def test_mark_before_start_raises(walker):
    with pytest.raises(WalkerError):
        walker.mark(Revision("v4"), Verdict.GOOD)


def test_replay_reaches_same_state(revisions):
    marks = [(Revision("v4"), Verdict.BAD), (Revision("v2"), Verdict.GOOD), (Revision("v3"), Verdict.BAD)]

    walker = SequenceWalker(revisions)
    result = walker.replay(revisions[0], revisions[-1], marks)

    assert result.status == MarkStatus.CULPRIT
    assert result.revision.id == "v3"
    assert walker.transcript_marks() == marks


def test_replay_past_terminal_raises(revisions):
    marks = [(Revision("v4"), Verdict.BAD), (Revision("v2"), Verdict.GOOD), (Revision("v3"), Verdict.BAD)]
    walker = SequenceWalker(revisions)

    with pytest.raises(WalkerError):
        walker.replay(revisions[0], revisions[-1], marks + [(Revision("v1"), Verdict.GOOD)])


def test_remaining_range_tracks_bounds(walker, revisions):
    walker.start(revisions[0], revisions[-1])
    walker.mark(Revision("v4"), Verdict.GOOD)
    walker.mark(Revision("v6"), Verdict.BAD)

    low, high = walker.remaining_range
    assert (low.id, high.id) == ("v4", "v6")
    assert [r.id for r in walker.open_candidates()] == ["v5", "v6"]


def test_resolve_by_prefix():
    walker = SequenceWalker([Revision("abc123"), Revision("abd456"), Revision("ffe789")])

    assert walker.resolve("abd").id == "abd456"
    assert walker.resolve("ffe789").id == "ffe789"
    with pytest.raises(WalkerError):
        walker.resolve("ab")


def test_duplicates_rejected():
    with pytest.raises(WalkerError):
        SequenceWalker([Revision("a"), Revision("b"), Revision("a")])


def test_reset_clears_search(walker, revisions):
    walker.start(revisions[0], revisions[-1])
    walker.mark(Revision("v4"), Verdict.GOOD)
    walker.reset()

    assert walker.state == WalkerState.NOT_STARTED
    assert walker.transcript_marks() == []
    assert walker.next() is None


def test_load_revision_list(tmp_path):
    path = tmp_path / "commits.json"
    path.write_text(json.dumps(["c3", "c2", " c1 ", ""]))

    assert [r.id for r in load_revision_list(path)] == ["c3", "c2", "c1"]
    assert [r.id for r in load_revision_list(path, reverse=True)] == ["c1", "c2", "c3"]


def test_load_revision_list_rejects_bad_input(tmp_path):
    path = tmp_path / "commits.json"
    path.write_text(json.dumps({"commits": ["a"]}))
    with pytest.raises(WalkerError):
        load_revision_list(path)

    with pytest.raises(WalkerError):
        load_revision_list(tmp_path / "missing.json")
