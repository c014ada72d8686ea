"""Tests for configuration assembly and the command-line entry point."""

import argparse
import json
import shutil
from pathlib import Path

import pytest

from regbisect import cli
from regbisect.config.config import DEFAULT_METRIC_PATTERN, DEFAULT_RESTORE_COMMAND
from regbisect.exceptions import ConfigError
from regbisect.persistence.state_manager import STATUS_ABANDONED, STATUS_RUNNING, StateManager
from regbisect.shell.local import LocalCommandRunner


EXAMPLE_CONFIG = Path(cli.__file__).parent / "config" / "bisect.yaml.example"


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(cli.ENV_HISTORY_PATH, raising=False)
    monkeypatch.delenv(cli.ENV_TARGET_PATH, raising=False)


def namespace(**kwargs):
    return argparse.Namespace(**kwargs)


def test_load_config_resolves_relative_paths(tmp_path):
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    config_file = config_dir / "bisect.yaml"
    config_file.write_text(
        "history_path: ./TypeScript\n"
        "target_path: /abs/app\n"
        "output_dir: results\n"
        "sweep:\n"
        "  revisions_file: commits.json\n"
    )

    config_dict = cli.load_config(str(config_file))

    assert config_dict["history_path"] == str(config_dir.resolve() / "TypeScript")
    assert config_dict["target_path"] == "/abs/app"
    assert config_dict["output_dir"] == str(config_dir.resolve() / "results")
    assert config_dict["sweep"]["revisions_file"] == str(config_dir.resolve() / "commits.json")


def test_load_config_missing_files(tmp_path):
    assert cli.load_config(None) == {}

    with pytest.raises(ConfigError):
        cli.load_config(str(tmp_path / "missing.yaml"))


def test_load_config_rejects_invalid_yaml(tmp_path):
    config_file = tmp_path / "bisect.yaml"
    config_file.write_text("oracle: [unclosed\n")
    with pytest.raises(ConfigError):
        cli.load_config(str(config_file))

    config_file.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        cli.load_config(str(config_file))


def test_environment_and_arguments_override_file(monkeypatch):
    config_dict = {"history_path": "/from-file", "target_path": "/target-file", "good": "v1", "policy": "binary"}

    config = cli.create_bisect_config(config_dict, namespace())
    assert config.history_path == "/from-file"
    assert config.good == "v1"

    monkeypatch.setenv(cli.ENV_HISTORY_PATH, "/from-env")
    monkeypatch.setenv(cli.ENV_TARGET_PATH, "/target-env")
    config = cli.create_bisect_config(config_dict, namespace())
    assert config.history_path == "/from-env"
    assert config.target_path == "/target-env"

    config = cli.create_bisect_config(config_dict, namespace(history_path="/from-args", good="v2", policy=None))
    assert config.history_path == "/from-args"
    assert config.good == "v2"
    assert config.policy == "binary"


def test_oracle_section_parsing():
    config_dict = {
        "history_path": "/repo",
        "oracle": {
            "timeout": 900,
            "build": ["npm ci", {"name": "pack", "command": "npm pack", "timeout": 60}],
            "install": {"command": "npm install ../pkg.tgz"},
            "label": "tsc --version",
            "check": {"command": "test -f tsconfig.json", "enabled": False},
            "measure": {"command": "tsc --extendedDiagnostics", "clean_paths": ["out"]},
            "inconclusive_patterns": ["TS5057"],
        },
    }

    oracle = cli.create_bisect_config(config_dict, namespace()).oracle

    assert [(s.name, s.command, s.timeout) for s in oracle.build] == [
        ("build-1", "npm ci", None),
        ("pack", "npm pack", 60),
    ]
    assert oracle.install[0].name == "install-1"
    assert oracle.label_command == "tsc --version"
    assert oracle.run_check is False
    assert oracle.metric_pattern == DEFAULT_METRIC_PATTERN
    assert oracle.clean_paths == ["out"]
    assert oracle.inconclusive_patterns == ["TS5057"]
    assert oracle.timeout == 900


def test_install_fallbacks_parsing():
    config_dict = {
        "history_path": "/repo",
        "oracle": {
            "build": ["npm ci"],
            "install_fallbacks": [
                {"name": "5.5.0", "build": ["npm install typescript@5.5.0", "npm ci"]},
                {"name": 5.6, "install": "npm install --force ../pkg.tgz"},
            ],
        },
    }

    oracle = cli.create_bisect_config(config_dict, namespace()).oracle

    assert oracle.restore_command == DEFAULT_RESTORE_COMMAND
    assert [f.name for f in oracle.install_fallbacks] == ["5.5.0", "5.6"]
    assert [s.command for s in oracle.install_fallbacks[0].build] == ["npm install typescript@5.5.0", "npm ci"]
    assert oracle.install_fallbacks[0].install == []
    assert oracle.install_fallbacks[1].install[0].command == "npm install --force ../pkg.tgz"

    config_dict["oracle"]["install_fallbacks"] = [{"build": ["npm ci"]}]
    with pytest.raises(ConfigError):
        cli.create_bisect_config(config_dict, namespace())

    config_dict["oracle"]["install_fallbacks"] = {"name": "5.5.0"}
    with pytest.raises(ConfigError):
        cli.create_bisect_config(config_dict, namespace())


def test_command_line_toggles():
    config_dict = {"history_path": "/repo", "oracle": {"check": "structural-check", "timeout": 900}}
    config = cli.create_bisect_config(config_dict, namespace(skip_check=True, timeout=30, max_skips=4))

    assert config.oracle.run_check is False
    assert config.oracle.timeout == 30
    assert config.max_skips == 4


def test_config_errors():
    with pytest.raises(ConfigError):
        cli.create_bisect_config({}, namespace())

    with pytest.raises(ConfigError):
        cli.create_bisect_config({"history_path": "/repo", "good_ref": "fast"}, namespace())

    with pytest.raises(ConfigError):
        cli.create_bisect_config({"history_path": "/repo", "oracle": {"build": [{"name": "x"}]}}, namespace())


def test_example_config_is_valid():
    config = cli.create_bisect_config(cli.load_config(str(EXAMPLE_CONFIG)), namespace())
    config.validate()

    assert config.policy == "threshold"
    assert Path(config.history_path).is_absolute()
    assert [step.name for step in config.oracle.build] == ["deps", "build", "pack"]
    assert config.oracle.label_pattern == r"Version (\S+)"
    assert [f.name for f in config.oracle.install_fallbacks] == ["5.5.0", "5.5.2", "5.6.2"]


def test_init_config(tmp_path):
    output = tmp_path / "bisect.yaml"

    assert cli.main(["init-config", "--output", str(output)]) == 0
    assert output.read_text() == EXAMPLE_CONFIG.read_text()

    output.write_text("edited")
    assert cli.main(["init-config", "--output", str(output), "--force"]) == 0
    assert output.read_text() != "edited"


def test_status_without_session(tmp_path, capsys):
    assert cli.main(["--db", str(tmp_path / "bisect.db"), "status"]) == 0
    assert "No bisection session found" in capsys.readouterr().out


def test_status_and_report(tmp_path, capsys):
    db_path = str(tmp_path / "bisect.db")
    state = StateManager(db_path)
    session_id = state.create_session("a" * 40, "b" * 40, "threshold", 300.0, 600.0)
    iteration_id = state.create_iteration(session_id, 1, "c" * 40, "Refactor emitter")
    state.update_iteration(iteration_id, phase="marked", final_result="bad", metric=590.0)
    state.close()

    assert cli.main(["--db", db_path, "status"]) == 0
    out = capsys.readouterr().out
    assert "Verdicts applied: 1" in out
    assert "References:   300 / 600" in out

    assert cli.main(["--db", db_path, "report", "--format", "json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["session_id"] == session_id
    assert report["results"]["bad"] == 1

    report_file = tmp_path / "report.txt"
    assert cli.main(["--db", db_path, "report", "-o", str(report_file)]) == 0
    assert "REGRESSION BISECTION REPORT" in report_file.read_text()


def test_report_without_session(tmp_path):
    assert cli.main(["--db", str(tmp_path / "bisect.db"), "report"]) == 1


def test_reset_abandons_active_session(tmp_path):
    db_path = str(tmp_path / "bisect.db")
    state = StateManager(db_path)
    session_id = state.create_session("a" * 40, "b" * 40, "binary")

    assert cli.main(["--db", db_path, "reset", "--history-path", str(tmp_path)]) == 0

    assert state.get_session(session_id).status == STATUS_ABANDONED
    state.close()


def test_reset_with_bad_configuration_keeps_session(tmp_path):
    db_path = str(tmp_path / "bisect.db")
    state = StateManager(db_path)
    session_id = state.create_session("a" * 40, "b" * 40, "binary")

    assert cli.main(["--db", db_path, "reset"]) == 1
    assert cli.main(["--db", db_path, "reset", "--history-path", str(tmp_path), "--walker", "sequence"]) == 1

    assert state.get_session(session_id).status == STATUS_RUNNING
    state.close()


def test_reset_uses_configured_walker(tmp_path):
    revisions_file = tmp_path / "commits.json"
    revisions_file.write_text('["v0", "v1", "v2"]')
    db_path = str(tmp_path / "bisect.db")
    state = StateManager(db_path)
    session_id = state.create_session("v0", "v2", "binary")

    args = ["--db", db_path, "reset", "--history-path", str(tmp_path), "--walker", "sequence"]
    assert cli.main(args + ["--revisions-file", str(revisions_file)]) == 0

    assert state.get_session(session_id).status == STATUS_ABANDONED
    state.close()


def test_unknown_walker_is_a_configuration_error(tmp_path):
    config_file = tmp_path / "bisect.yaml"
    config_file.write_text(f"history_path: {tmp_path}\nwalker: svn\n")

    assert cli.main(["-c", str(config_file), "reset"]) == 1


def test_bisect_without_history_fails():
    assert cli.main(["bisect", "v1", "v2"]) == 1


def test_bisect_with_missing_anchor_fails(tmp_path):
    assert cli.main(["bisect", "v1", "--history-path", str(tmp_path), "--policy", "binary"]) == 1


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_parser():
    args = cli.create_parser().parse_args(
        ["-v", "bisect", "v5.5.4", "v5.6.2", "--policy", "binary", "--max-skips", "3", "--skip-check"]
    )

    assert args.verbose
    assert (args.good, args.bad) == ("v5.5.4", "v5.6.2")
    assert args.max_skips == 3
    assert args.skip_check

    args = cli.create_parser().parse_args(["sweep", "commits.json", "--step", "10", "--reverse", "--resume"])
    assert (args.revisions_file, args.step, args.reverse, args.resume) == ("commits.json", 10, True, True)


@pytest.mark.skipif(shutil.which("git") is None, reason="git not available")
def test_bisect_command_end_to_end(tmp_path, capsys):
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
    for i in range(6):
        (repo / "timing").write_text("610\n" if i >= 2 else "290\n")
        sh(f"git add timing && git commit -q --allow-empty -m 'change {i}'")
        sh(f"git tag c{i}")

    config_file = tmp_path / "bisect.yaml"
    config_file.write_text(
        "history_path: repo\n"
        "good: c0\n"
        "bad: c5\n"
        "policy: threshold\n"
        "good_ref: 300\n"
        "bad_ref: 600\n"
        "output_dir: out\n"
        "oracle:\n"
        "  measure:\n"
        "    command: 'echo \"Build time: $(cat timing)s\"'\n"
    )

    assert cli.main(["-c", str(config_file), "bisect"]) == 0
    assert sh("git rev-parse c2") in capsys.readouterr().out
    assert (tmp_path / "out" / "summary.csv").exists()
    assert (tmp_path / "out" / "bisect-replay.log").exists()

    assert cli.main(["-c", str(config_file), "replay"]) == 0
    assert cli.main(["-c", str(config_file), "status"]) == 0
    assert "completed" in capsys.readouterr().out
