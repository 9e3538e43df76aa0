#!/usr/bin/env python3
"""
Errors - Exception taxonomy shared by the Bondsman components

Startup failures abort the readiness call; everything else aborts only the
user operation that raised it. Shell commands exiting non-zero are never
errors of the assistant and do not appear here.
"""


class BondsmanError(Exception):
    """Base class for assistant-internal failures."""


class StartupError(BondsmanError):
    """The inference daemon could not be brought to the ready state."""


class DaemonNotInstalled(StartupError):
    """The daemon executable was not found on PATH."""


class StartupTimeout(StartupError):
    """The spawned daemon never answered the health probe."""


class ModelDownloadFailed(StartupError):
    """The model pull subprocess exited unsuccessfully."""


class NetworkError(BondsmanError):
    """Transport-level failure talking to the daemon."""


class DecodeError(BondsmanError):
    """A line of the NDJSON response stream could not be decoded."""


class FilesystemError(BondsmanError):
    """Directory change or history file I/O failed."""
