#!/usr/bin/env python3
"""
Ollama Service - Brings the local inference daemon to "ready, model loaded"

    UNKNOWN → PROBING ──ok──────────────────────────→ MODEL_MISSING check
                 │ fail                                   │ present → READY
                 ▼                                        │ absent
              STARTING (spawn `ollama serve`)             ▼
                 ▼                                    DOWNLOADING (`ollama pull`)
              POLLING (1 probe/s, 30 attempts)            │ exit 0 → READY
                 │ timeout → FAILED (daemon left running) │ else   → FAILED

Every failure is terminal for the call; callers decide whether to abort.
"""

import enum
import logging
import os
import subprocess
import time
from typing import Callable, Optional

import requests

from errors import (
    DaemonNotInstalled,
    ModelDownloadFailed,
    StartupError,
    StartupTimeout,
)

logger = logging.getLogger(__name__)

# Daemon configuration
OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_EXECUTABLE = "ollama"
DEFAULT_MODEL_NAME = "qwen2.5-coder:1.5b"

READY_POLL_ATTEMPTS = 30
READY_POLL_INTERVAL = 1.0  # seconds between readiness probes
HEALTH_TIMEOUT = 2.0       # seconds per health / model probe

ProgressCallback = Callable[["ServiceState", str], None]


class ServiceState(enum.Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    STARTING = "starting"
    POLLING = "polling"
    MODEL_MISSING = "model_missing"
    DOWNLOADING = "downloading"
    READY = "ready"
    FAILED = "failed"


class OllamaService:
    """
    Lifecycle manager for the local Ollama daemon.

    Owns the daemon process it spawned (if any). A readiness timeout leaves that
    process running and referenced in `self.process`; only close() stops it.
    """

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        executable: str = OLLAMA_EXECUTABLE,
        poll_attempts: int = READY_POLL_ATTEMPTS,
        poll_interval: float = READY_POLL_INTERVAL,
        health_timeout: float = HEALTH_TIMEOUT,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.executable = executable
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.health_timeout = health_timeout
        self.http = http or requests.Session()
        self._sleep = sleep
        self.progress_callback = progress_callback

        self.state = ServiceState.UNKNOWN
        self.failure_reason: Optional[str] = None
        self.process: Optional[subprocess.Popen] = None
        self.ready_model: Optional[str] = None

    # ── State bookkeeping ──────────────────────────────────────────────────

    def _enter(self, state: ServiceState, detail: str = "") -> None:
        logger.debug("ollama state %s -> %s %s", self.state.value, state.value, detail)
        self.state = state
        if self.progress_callback:
            self.progress_callback(state, detail)

    def _fail(self, error: StartupError) -> StartupError:
        self.failure_reason = str(error)
        self.ready_model = None
        self._enter(ServiceState.FAILED, self.failure_reason)
        return error

    # ── Probes ─────────────────────────────────────────────────────────────

    def is_running(self) -> bool:
        """Health probe against /api/tags. Never raises."""
        try:
            response = self.http.get(f"{self.base_url}/api/tags", timeout=self.health_timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug("health probe failed: %s", e)
            return False

    def has_model(self, model_name: str) -> bool:
        """
        Ask /api/show for the model. Anything other than HTTP 200, transport
        errors included, counts as "model absent".
        """
        try:
            response = self.http.post(
                f"{self.base_url}/api/show",
                json={"name": model_name},
                timeout=self.health_timeout,
            )
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug("model check for %s failed: %s", model_name, e)
            return False

    # ── Transitions ────────────────────────────────────────────────────────

    def _spawn_daemon(self) -> None:
        kwargs = {}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0)
        else:
            kwargs["start_new_session"] = True
        try:
            self.process = subprocess.Popen(
                [self.executable, "serve"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise self._fail(DaemonNotInstalled(f"{self.executable} not found in PATH")) from e
        except OSError as e:
            raise self._fail(StartupError(f"Cannot start {self.executable}: {e}")) from e
        logger.debug("spawned %s serve (pid %s)", self.executable, self.process.pid)

    def _wait_until_running(self) -> None:
        for attempt in range(1, self.poll_attempts + 1):
            self._sleep(self.poll_interval)
            self._enter(ServiceState.POLLING, f"{attempt}/{self.poll_attempts}")
            if self.is_running():
                return
        raise self._fail(StartupTimeout(
            f"Ollama server did not answer after {self.poll_attempts} attempts"
        ))

    def start(self) -> None:
        """Probe the daemon; spawn and wait for it when it is not answering."""
        self._enter(ServiceState.PROBING)
        if self.is_running():
            return
        if self.process is not None and self.process.poll() is None:
            # Still booting from an earlier attempt; keep waiting on that one
            logger.debug("reusing ollama serve (pid %s)", self.process.pid)
        else:
            self._enter(ServiceState.STARTING)
            self._spawn_daemon()
        self._wait_until_running()

    def pull_model(self, model_name: str) -> None:
        """Run `ollama pull` attached to the terminal so its progress is visible."""
        self._enter(ServiceState.DOWNLOADING, model_name)
        try:
            result = subprocess.run(
                [self.executable, "pull", model_name],
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise self._fail(DaemonNotInstalled(f"{self.executable} not found in PATH")) from e
        except OSError as e:
            raise self._fail(ModelDownloadFailed(f"Cannot run {self.executable} pull: {e}")) from e

        if result.returncode != 0:
            raise self._fail(ModelDownloadFailed(
                f"{self.executable} pull {model_name} exited with status {result.returncode}"
            ))

    def ensure_ready(self, model_name: str = DEFAULT_MODEL_NAME) -> None:
        """
        Drive the daemon to READY with `model_name` available.

        Raises DaemonNotInstalled, StartupTimeout, ModelDownloadFailed or
        StartupError. Calling again for a model that is already ready only
        re-probes the daemon.
        """
        if self.state is ServiceState.READY and self.ready_model == model_name:
            if self.is_running():
                return
            logger.debug("daemon stopped answering, restarting lifecycle")

        self.failure_reason = None
        self.ready_model = None
        self.start()

        self._enter(ServiceState.MODEL_MISSING, model_name)
        if not self.has_model(model_name):
            logger.info("model %s not present, pulling", model_name)
            self.pull_model(model_name)

        self.ready_model = model_name
        self._enter(ServiceState.READY, model_name)

    def close(self) -> None:
        """Terminate a daemon this manager spawned."""
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        logger.debug("terminating ollama serve (pid %s)", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
