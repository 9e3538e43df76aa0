#!/usr/bin/env python3
"""
System Facts - Host information gathered once at startup

The facts are a read-only snapshot handed to the chat engine so answers can be
tailored to the user's OS and shell. Nothing here is refreshed after startup.
"""

import os
import platform
from typing import NamedTuple

# Map platform.system() → short OS name used in prompts
_OS_MAP = {
    "linux": "linux",
    "darwin": "macos",
    "windows": "windows",
}

# Map platform.machine() spellings → canonical architecture name
_ARCH_MAP = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "arm",
    "arm": "arm",
}


class SystemFacts(NamedTuple):
    os_name: str
    arch: str
    shell_path: str
    cpu_count: int
    hostname: str
    username: str

    @classmethod
    def collect(cls, environ=None) -> "SystemFacts":
        """Gather facts from the running host (environment first, platform second)."""
        env = os.environ if environ is None else environ

        shell_path = env.get("SHELL") or env.get("COMSPEC") or "unknown"
        os_name = _OS_MAP.get(platform.system().lower(), "unknown")
        arch = _ARCH_MAP.get(platform.machine().lower(), "unknown")
        hostname = env.get("COMPUTERNAME") or env.get("HOSTNAME") or platform.node() or "unknown"
        username = env.get("USERNAME") or env.get("USER") or "unknown"

        return cls(
            os_name=os_name,
            arch=arch,
            shell_path=shell_path,
            cpu_count=os.cpu_count() or 1,
            hostname=hostname,
            username=username,
        )

    def render(self) -> str:
        """Labeled lines for the LLM prompt."""
        return "\n".join([
            "System Information:",
            f"OS: {self.os_name}",
            f"Architecture: {self.arch}",
            f"Shell: {self.shell_path}",
            f"CPU Count: {self.cpu_count}",
            f"Hostname: {self.hostname}",
            f"Username: {self.username}",
        ])
