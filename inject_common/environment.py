"""Environment helpers shared by the injection toolchain."""

from __future__ import annotations

import os
from pathlib import Path

__all__ = [
    "DEFAULT_ENGINE",
    "container_engine",
    "optional_env_path",
]

DEFAULT_ENGINE = "podman"


def optional_env_path(name: str) -> Path | None:
    """Return ``Path`` value for ``name`` or ``None`` when unset or empty."""
    value = os.environ.get(name)
    return Path(value) if value else None


def container_engine(override: str | None = None) -> str:
    """Return the container engine binary to invoke.

    ``override`` wins when given; otherwise the ``ENGINE`` environment variable
    is consulted, falling back to :data:`DEFAULT_ENGINE`.
    """
    if override and override.strip():
        return override.strip()
    value = os.environ.get("ENGINE", "").strip()
    return value or DEFAULT_ENGINE
