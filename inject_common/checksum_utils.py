"""Digests of staged artefacts and the provenance records derived from them."""

from __future__ import annotations

import hashlib
from pathlib import Path

__all__ = ["LABEL_PREFIX", "digest_file", "provenance_label", "record_checksum"]

LABEL_PREFIX = "inject.artifact"


def digest_file(path: Path, algorithm: str) -> str:
    """Return the hex digest of ``path``."""
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, algorithm).hexdigest()


def record_checksum(
    checksum_dir: Path, name: str, staged: Path, algorithm: str
) -> str:
    """Hash ``staged`` and record it as ``checksum_dir/<name>.<algorithm>``.

    The sidecar uses the ``sha256sum`` layout (``<digest>  <name>``), so
    ``sha256sum --check`` accepts it when run from the artefact directory.

    Returns
    -------
    str
        The digest written to the sidecar.
    """

    digest = digest_file(staged, algorithm)
    checksum_dir.mkdir(parents=True, exist_ok=True)
    sidecar = checksum_dir / f"{name}.{algorithm}"
    sidecar.write_text(f"{digest}  {name}\n", encoding="utf-8")
    return digest


def provenance_label(name: str, algorithm: str, digest: str) -> tuple[str, str]:
    """Return the image label recording ``digest`` for artefact ``name``.

    Examples
    --------
    >>> provenance_label("node", "sha256", "abc")
    ('inject.artifact.node.sha256', 'abc')
    """
    return f"{LABEL_PREFIX}.{name}.{algorithm}", digest
