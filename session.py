#!/usr/bin/env python3
"""
Session - Mutable shell session state and the command runner

SessionState tracks the working directory, the last command and its exit
status. ShellRunner executes one command line through the user's shell and
captures its output; it never raises for a failing command, the failure is
the command's own status.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Optional, NamedTuple

from errors import FilesystemError

logger = logging.getLogger(__name__)

# Exit status reported when the shell binary itself cannot be executed
SHELL_NOT_FOUND_STATUS = 127


class CommandResult(NamedTuple):
    stdout: str
    stderr: str
    exit_status: int


class SessionState:
    """Current directory, last command and environment of the interactive session."""

    def __init__(self, cwd: str, env: Dict[str, str] = None):
        self.cwd = cwd
        self.last_command: Optional[str] = None
        self.last_status: Optional[int] = None
        self.env: Dict[str, str] = dict(env) if env is not None else {}

    @classmethod
    def from_process(cls) -> "SessionState":
        return cls(cwd=os.getcwd(), env=dict(os.environ))

    def update_after_command(self, command: str, exit_status: int) -> None:
        self.last_command = command
        self.last_status = exit_status & 0xFF

    def change_directory(self, path: str) -> str:
        """
        Change the process working directory and commit it to the session.

        Relative paths resolve against the session cwd. The stored cwd is only
        replaced after the OS accepted the change.
        """
        target = Path(os.path.expanduser(path or "~"))
        if not target.is_absolute():
            target = Path(self.cwd) / target
        try:
            os.chdir(target)
            new_cwd = os.getcwd()
        except OSError as e:
            raise FilesystemError(f"cd: {path}: {e.strerror or e}") from e

        logger.debug("cwd %s -> %s", self.cwd, new_cwd)
        self.cwd = new_cwd
        return new_cwd

    def render(self) -> str:
        """Labeled lines for the LLM prompt."""
        status = "none" if self.last_status is None else str(self.last_status)
        return "\n".join([
            "Session Information:",
            f"Current directory: {self.cwd}",
            f"Last command: {self.last_command or 'none'}",
            f"Status: {status}",
        ])


def shell_argv(shell_path: str, command: str) -> list:
    """Build the argv that makes `shell_path` run one command line."""
    if not shell_path or shell_path == "unknown":
        if os.name == "nt":
            shell_path = os.environ.get("COMSPEC", "cmd.exe")
        else:
            shell_path = "/bin/sh"

    # Windows paths may reach us on any platform; split on both separators
    name = shell_path.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if "powershell" in name or name.startswith("pwsh"):
        return [shell_path, "-Command", command]
    if name.startswith("cmd"):
        return [shell_path, "/c", command]
    return [shell_path, "-c", command]


class ShellRunner:
    """Runs a command line through the user's shell, capturing stdout/stderr."""

    def __init__(self, shell_path: str):
        self.shell_path = shell_path

    def run(self, command: str, cwd: str, env: Dict[str, str]) -> CommandResult:
        argv = shell_argv(self.shell_path, command)
        logger.debug("run %r in %s", argv, cwd)
        try:
            proc = subprocess.run(
                argv,
                cwd=cwd,
                env=env or None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            return CommandResult("", f"{argv[0]}: {e.strerror or e}\n", SHELL_NOT_FOUND_STATUS)

        # Negative return codes mean the command died from a signal
        status = proc.returncode if proc.returncode >= 0 else 1
        return CommandResult(proc.stdout, proc.stderr, status & 0xFF)
