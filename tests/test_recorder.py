"""Tests for the run log, artifacts and replay transcript."""

import csv

import pytest

from regbisect.exceptions import RecorderError
from regbisect.history.base import Revision, Verdict
from regbisect.persistence.recorder import (
    RunRecorder,
    VerdictRecord,
    artifact_name,
    format_transcript,
    load_transcript,
    parse_transcript,
    save_transcript,
    write_artifact,
)


GOOD = Revision("a" * 40, "Release 5.5.4")
BAD = Revision("b" * 40, "Release 5.6.2")
MID = Revision("c" * 40, "Refactor emitter")
CULPRIT = Revision("d" * 40, "Cache module resolution")


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


def test_run_log_header_and_rows(tmp_path):
    recorder = RunRecorder(tmp_path / "out" / "summary.csv")
    recorder.start(reset=True)
    recorder.record(VerdictRecord.now(MID, "5.6.0-dev", "bad", 612.25))
    recorder.record(VerdictRecord.now(GOOD, None, "skip"))

    rows = read_rows(recorder.path)
    assert rows[0] == ["timestamp", "revision", "label", "verdict", "metric"]
    assert rows[1][1:] == [MID.id, "5.6.0-dev", "bad", "612.25"]
    assert rows[2][1:] == [GOOD.id, "unknown", "skip", ""]


def test_sweep_log_uses_status_column(tmp_path):
    recorder = RunRecorder(tmp_path / "sweep.csv", outcome_column="status")
    recorder.start(reset=True)
    assert read_rows(recorder.path)[0][3] == "status"


def test_start_without_reset_keeps_rows(tmp_path):
    recorder = RunRecorder(tmp_path / "summary.csv")
    recorder.start(reset=True)
    recorder.record(VerdictRecord.now(MID, "x", "good", 1.0))

    recorder.start(reset=False)
    assert [r.revision for r in recorder.read_records()] == [MID.id]

    recorder.start(reset=True)
    assert recorder.read_records() == []


def test_read_records_parses_metric(tmp_path):
    recorder = RunRecorder(tmp_path / "summary.csv")
    recorder.start(reset=True)
    recorder.record(VerdictRecord.now(MID, "x", "bad", 612.25))
    recorder.record_culprit(CULPRIT, "5.6.0")

    records = recorder.read_records()
    assert records[0].metric == 612.25
    assert records[1].outcome == "culprit"
    assert records[1].metric is None


def test_record_into_missing_directory_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    recorder = RunRecorder(blocker / "summary.csv")

    with pytest.raises(RecorderError):
        recorder.start(reset=True)


def test_artifact_name_is_deterministic():
    assert artifact_name("5.6.0-dev.20240601", MID) == "5.6.0-dev.20240601-cccccccc.txt"
    assert artifact_name("weird label/../x", MID) == "weird_label_.._x-cccccccc.txt"
    assert artifact_name(None, MID) == "unknown-cccccccc.txt"


def test_write_artifact(tmp_path):
    path = write_artifact(tmp_path / "artifacts", "5.6.0", MID, "details\n")
    assert path.read_text() == "details\n"


def test_transcript_format():
    text = format_transcript(GOOD, BAD, [(MID, Verdict.BAD)], CULPRIT)
    lines = text.splitlines()

    assert lines[0] == "git bisect start"
    assert f"git bisect bad {BAD.id}" in lines
    assert f"git bisect good {GOOD.id}" in lines
    assert f"# bad: [{MID.id}] Refactor emitter" in lines
    assert lines[-1] == f"# first bad commit: [{CULPRIT.id}] Cache module resolution"


def test_transcript_round_trip_keeps_order(tmp_path):
    marks = [(MID, Verdict.GOOD), (CULPRIT, Verdict.SKIP), (Revision("e" * 40), Verdict.BAD)]
    path = save_transcript(tmp_path / "bisect-replay.log", format_transcript(GOOD, BAD, marks, CULPRIT))

    transcript = load_transcript(path)
    assert transcript.good.id == GOOD.id
    assert transcript.bad.id == BAD.id
    assert [(r.id, v) for r, v in transcript.marks] == [(r.id, v) for r, v in marks]
    assert transcript.culprit.id == CULPRIT.id
    assert not (tmp_path / "bisect-replay.log.tmp").exists()


def test_parse_git_bisect_log():
    """Native git bisect log output is accepted too."""
    log = (
        f"git bisect start '{BAD.id}' '{GOOD.id}'\n"
        "# status: waiting for both good and bad commits\n"
        f"# bad: [{BAD.id}] Release 5.6.2\n"
        f"git bisect bad {BAD.id}\n"
        f"# good: [{GOOD.id}] Release 5.5.4\n"
        f"git bisect good {GOOD.id}\n"
        f"# skip: [{MID.id}] Refactor emitter\n"
        f"git bisect skip {MID.id}\n"
    )
    transcript = parse_transcript(log)

    assert transcript.good.id == GOOD.id
    assert transcript.bad.id == BAD.id
    assert [(r.id, v) for r, v in transcript.marks] == [(MID.id, Verdict.SKIP)]
    assert transcript.culprit is None


def test_parse_transcript_needs_anchors():
    with pytest.raises(RecorderError):
        parse_transcript(f"git bisect start\ngit bisect bad {BAD.id}\n")

    with pytest.raises(RecorderError):
        load_transcript("/nonexistent/bisect-replay.log")
