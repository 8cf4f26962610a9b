"""Error hierarchy raised by the injection pipeline.

Every stage raises a dedicated subclass of :class:`InjectError`. The classes
carry the failing ``stage`` and the CLI exit status (``cli_status``) so
callers can report the failure without inspecting the message text.
"""

from __future__ import annotations

__all__ = [
    "ComposeError",
    "ConfigError",
    "FetchError",
    "InjectError",
    "IntegrityError",
    "VerifyError",
]


class InjectError(RuntimeError):
    """Base class for every pipeline failure."""

    stage = "Injection"
    cli_status = 1


class ConfigError(InjectError):
    """Raised when the manifest or image specification is invalid."""

    stage = "Configuration"
    cli_status = 2


class FetchError(InjectError):
    """Raised when an artefact cannot be downloaded or extracted."""

    stage = "Fetch"
    cli_status = 3

    def __init__(self, artifact: str, reason: str) -> None:
        self.artifact = artifact
        self.reason = reason
        super().__init__(f"Failed to fetch artefact '{artifact}': {reason}")


class IntegrityError(InjectError):
    """Raised when a fetched artefact is missing or empty."""

    stage = "Integrity"
    cli_status = 4

    def __init__(self, artifact: str, reason: str) -> None:
        self.artifact = artifact
        self.reason = reason
        super().__init__(f"Artefact '{artifact}' failed integrity check: {reason}")


class ComposeError(InjectError):
    """Raised when the container image build fails."""

    stage = "Compose"
    cli_status = 5

    def __init__(self, reason: str, exit_code: int | None = None) -> None:
        self.reason = reason
        self.exit_code = exit_code
        suffix = f" (exit {exit_code})" if exit_code is not None else ""
        super().__init__(f"Image build failed{suffix}: {reason}")


class VerifyError(InjectError):
    """Raised when an injected artefact fails its smoke test."""

    stage = "Verify"
    cli_status = 6

    def __init__(self, artifact: str, exit_code: int, detail: str = "") -> None:
        self.artifact = artifact
        self.exit_code = exit_code
        self.detail = detail
        message = f"Artefact '{artifact}' exited with status {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
