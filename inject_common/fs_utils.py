"""Filesystem helpers for the staging directory.

A staging directory is laid out as::

    <staging>/
        .inject-staging          marker written by create_staging_dir
        Dockerfile.injected
        artifacts/<name>         build context; nothing else is written here
        checksums/<name>.<alg>

Keeping the build context free of the tool's own files means an artefact name
can never shadow a checksum sidecar or the Dockerfile.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from .errors import ConfigError, IntegrityError

__all__ = [
    "ARTIFACT_DIR",
    "CHECKSUM_DIR",
    "DOCKERFILE_NAME",
    "STAGING_MARKER",
    "artifact_dir",
    "checksum_dir",
    "create_staging_dir",
    "ensure_non_empty",
    "make_executable",
    "remove_staging_dir",
    "safe_destination_path",
]

ARTIFACT_DIR = "artifacts"
CHECKSUM_DIR = "checksums"
DOCKERFILE_NAME = "Dockerfile.injected"
STAGING_MARKER = ".inject-staging"

_OWNED_ENTRIES = (ARTIFACT_DIR, CHECKSUM_DIR, DOCKERFILE_NAME, STAGING_MARKER)


def artifact_dir(staging_dir: Path) -> Path:
    """Return the build-context directory of ``staging_dir``."""
    return staging_dir / ARTIFACT_DIR


def checksum_dir(staging_dir: Path) -> Path:
    """Return the directory holding checksum sidecars."""
    return staging_dir / CHECKSUM_DIR


def create_staging_dir(requested: Path | None, *, workspace: Path | None = None) -> Path:
    """Return a clean staging directory ready to receive artefacts.

    A fresh temporary directory is created when ``requested`` is ``None``.
    A caller-supplied directory must be empty, missing, or left behind by an
    earlier run; only the entries this module writes are cleared from it.

    Raises
    ------
    ConfigError
        Raised when ``requested`` is a file, contains ``workspace``, or holds
        files that were not written by a previous run.

    Examples
    --------
    >>> staging_dir = create_staging_dir(None)
    >>> sorted(path.name for path in staging_dir.iterdir())
    ['.inject-staging', 'artifacts', 'checksums']
    """

    if requested is None:
        staging_dir = Path(tempfile.mkdtemp(prefix="inject-"))
    else:
        staging_dir = _reset_requested_dir(Path(requested), workspace)
    (staging_dir / STAGING_MARKER).touch()
    artifact_dir(staging_dir).mkdir()
    checksum_dir(staging_dir).mkdir()
    return staging_dir


def _reset_requested_dir(requested: Path, workspace: Path | None) -> Path:
    resolved = requested.resolve()
    if workspace is not None and workspace.resolve().is_relative_to(resolved):
        message = f"Staging directory {requested} must not contain the workspace"
        raise ConfigError(message)
    if not resolved.exists():
        resolved.mkdir(parents=True)
        return requested
    if not resolved.is_dir():
        message = f"Staging directory {requested} is not a directory"
        raise ConfigError(message)
    if any(resolved.iterdir()) and not (resolved / STAGING_MARKER).is_file():
        message = (
            f"Refusing to use non-empty staging directory {requested}: "
            "it was not created by a previous run"
        )
        raise ConfigError(message)
    for name in _OWNED_ENTRIES:
        entry = resolved / name
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        elif entry.exists() or entry.is_symlink():
            entry.unlink()
    return requested


def remove_staging_dir(staging_dir: Path) -> None:
    """Delete ``staging_dir`` and everything below it."""
    shutil.rmtree(staging_dir)


def safe_destination_path(staging_dir: Path, destination: str) -> Path:
    """Return ``destination`` resolved beneath ``staging_dir``.

    Parameters
    ----------
    staging_dir : Path
        Root directory under which artefacts must reside.
    destination : str
        Relative artefact filename supplied by configuration.

    Returns
    -------
    Path
        Absolute destination located below ``staging_dir``.

    Raises
    ------
    ConfigError
        Raised when ``destination`` resolves outside ``staging_dir``.
    """

    target = (staging_dir / destination).resolve()
    staging_root = staging_dir.resolve()
    if not target.is_relative_to(staging_root) or target == staging_root:
        message = f"Destination escapes staging directory: {destination}"
        raise ConfigError(message)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def make_executable(path: Path, mode: int) -> None:
    """Apply ``mode`` to ``path``."""
    path.chmod(mode)


def ensure_non_empty(path: Path, artifact: str) -> int:
    """Return the size of ``path`` or raise :class:`IntegrityError`."""
    if not path.is_file():
        message = f"expected staged file at {path}"
        raise IntegrityError(artifact, message)
    size = path.stat().st_size
    if size <= 0:
        message = f"staged file {path.name} is empty"
        raise IntegrityError(artifact, message)
    return size
