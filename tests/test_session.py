"""Tests for session state, system facts and the shell runner."""

import os

import pytest

from errors import FilesystemError
from session import SHELL_NOT_FOUND_STATUS, SessionState, ShellRunner, shell_argv
from system_facts import SystemFacts

posix_only = pytest.mark.skipif(os.name == "nt", reason="uses /bin/sh")


def test_update_after_command():
    session = SessionState(cwd="/tmp")
    assert session.last_command is None and session.last_status is None

    session.update_after_command("false", 1)
    assert session.last_command == "false"
    assert session.last_status == 1

    session.update_after_command("exit 300", 300)
    assert session.last_status == 300 & 0xFF


def test_change_directory_commits_on_success(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "sub").mkdir()
    session = SessionState(cwd=str(tmp_path))

    session.change_directory("sub")

    assert session.cwd == os.getcwd()
    assert os.path.samefile(session.cwd, tmp_path / "sub")


def test_change_directory_failure_keeps_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    session = SessionState(cwd=str(tmp_path))

    with pytest.raises(FilesystemError):
        session.change_directory("does-not-exist")

    assert session.cwd == str(tmp_path)
    assert os.path.samefile(os.getcwd(), tmp_path)


def test_change_directory_expands_home(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    (tmp_path / "docs").mkdir()
    session = SessionState(cwd="/")

    session.change_directory("~/docs")
    assert os.path.samefile(session.cwd, tmp_path / "docs")

    session.change_directory("")
    assert os.path.samefile(session.cwd, tmp_path)


def test_session_render():
    session = SessionState(cwd="/srv")
    session.update_after_command("ls", 0)
    assert session.render() == (
        "Session Information:\nCurrent directory: /srv\nLast command: ls\nStatus: 0"
    )


def test_from_process_snapshots_environment(monkeypatch):
    monkeypatch.setenv("BONDSMAN_TEST_VAR", "1")
    session = SessionState.from_process()
    assert session.cwd == os.getcwd()
    assert session.env["BONDSMAN_TEST_VAR"] == "1"


# ============================================================
# Shell argv selection
# ============================================================

@pytest.mark.parametrize("shell,expected_flag", [
    ("/bin/bash", "-c"),
    ("/usr/bin/zsh", "-c"),
    ("C:\\Windows\\System32\\cmd.exe", "/c"),
    ("powershell.exe", "-Command"),
    ("/usr/local/bin/pwsh", "-Command"),
])
def test_shell_argv(shell, expected_flag):
    assert shell_argv(shell, "echo hi") == [shell, expected_flag, "echo hi"]


@posix_only
def test_shell_argv_unknown_shell_falls_back_to_sh():
    assert shell_argv("unknown", "ls") == ["/bin/sh", "-c", "ls"]


# ============================================================
# Runner
# ============================================================

@posix_only
def test_runner_captures_output_and_status(tmp_path):
    runner = ShellRunner("/bin/sh")
    result = runner.run("echo out; echo err >&2; exit 3", str(tmp_path), dict(os.environ))

    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.exit_status == 3


@posix_only
def test_runner_uses_session_cwd_and_env(tmp_path):
    env = dict(os.environ, GREETING="hello")
    result = ShellRunner("/bin/sh").run('pwd; echo "$GREETING"', str(tmp_path), env)

    lines = result.stdout.splitlines()
    assert os.path.samefile(lines[0], tmp_path)
    assert lines[1] == "hello"


@posix_only
def test_runner_signal_death_is_status_1(tmp_path):
    result = ShellRunner("/bin/sh").run("kill -9 $$", str(tmp_path), dict(os.environ))
    assert result.exit_status == 1


def test_runner_missing_shell(tmp_path):
    runner = ShellRunner(str(tmp_path / "no-such-shell"))
    result = runner.run("ls", str(tmp_path), dict(os.environ))

    assert result.exit_status == SHELL_NOT_FOUND_STATUS
    assert result.stdout == ""
    assert result.stderr


# ============================================================
# System facts
# ============================================================

def test_facts_prefer_environment():
    facts = SystemFacts.collect({
        "SHELL": "/bin/fish",
        "USER": "sam",
        "HOSTNAME": "devbox",
    })
    assert facts.shell_path == "/bin/fish"
    assert facts.username == "sam"
    assert facts.hostname == "devbox"
    assert facts.cpu_count >= 1


def test_facts_windows_style_environment():
    facts = SystemFacts.collect({
        "COMSPEC": "C:\\Windows\\System32\\cmd.exe",
        "USERNAME": "sam",
        "COMPUTERNAME": "DESKTOP-1",
    })
    assert facts.shell_path.endswith("cmd.exe")
    assert facts.username == "sam"
    assert facts.hostname == "DESKTOP-1"


def test_facts_missing_values_are_unknown():
    facts = SystemFacts.collect({})
    assert facts.shell_path == "unknown"
    assert facts.username == "unknown"


def test_facts_are_immutable():
    facts = SystemFacts.collect({})
    with pytest.raises(AttributeError):
        facts.username = "root"


def test_facts_render_labels():
    facts = SystemFacts("linux", "aarch64", "/bin/zsh", 4, "pi", "sam")
    assert facts.render().splitlines() == [
        "System Information:",
        "OS: linux",
        "Architecture: aarch64",
        "Shell: /bin/zsh",
        "CPU Count: 4",
        "Hostname: pi",
        "Username: sam",
    ]
