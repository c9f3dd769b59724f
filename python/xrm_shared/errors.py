"""xrm_shared.errors: failure signals reported back to the platform."""

from __future__ import annotations


class InvalidPluginExecutionError(Exception):
    """Fatal plugin failure; the host aborts the operation and shows the message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PluginConfigurationError(InvalidPluginExecutionError):
    """The plugin class is declared in a way that cannot run."""
