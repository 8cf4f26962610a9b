"""Line-oriented artefact manifests.

A line manifest lists one artefact per line as ``name source [target]``.
Blank lines are ignored, as is everything from a ``#`` that starts a line or
follows whitespace (so URL fragments survive)::

    # name          source                              target
    node            https://example.invalid/node        /usr/bin/node
    node-worker     target/release/node-worker

The comma separated ``BINARY=a,b,c`` form used by older build scripts is
handled by :func:`split_binary_list`.
"""

from __future__ import annotations

import dataclasses
import re
import typing as typ
from pathlib import Path

from .errors import ConfigError

__all__ = [
    "ManifestEntry",
    "parse_manifest_lines",
    "read_line_manifest",
    "split_binary_list",
]

_COMMENT = re.compile(r"(?:^|\s)#.*$")


@dataclasses.dataclass(slots=True, frozen=True)
class ManifestEntry:
    """Single artefact line parsed from a manifest."""

    name: str
    source: str
    target: str | None = None
    line: int = 0


def parse_manifest_lines(text: str, origin: Path | str) -> list[ManifestEntry]:
    """Return the entries described by ``text``.

    Parameters
    ----------
    text : str
        Manifest contents.
    origin : Path | str
        Manifest location used in error messages.

    Raises
    ------
    ConfigError
        Raised when a line holds fewer than two or more than three fields.

    Examples
    --------
    >>> parse_manifest_lines("node http://example/node\\n", "inline")
    [ManifestEntry(name='node', source='http://example/node', target=None, line=1)]
    """
    entries: list[ManifestEntry] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        line = _COMMENT.sub("", raw).strip()
        if not line:
            continue
        fields = line.split()
        if len(fields) not in (2, 3):
            message = (
                f"Expected 'name source [target]' on line {number} of {origin}, "
                f"got {raw.strip()!r}"
            )
            raise ConfigError(message)
        name, source, *rest = fields
        entries.append(
            ManifestEntry(
                name=name,
                source=source,
                target=rest[0] if rest else None,
                line=number,
            )
        )
    return entries


def read_line_manifest(path: Path) -> list[ManifestEntry]:
    """Read and parse the line manifest stored at ``path``."""
    return parse_manifest_lines(path.read_text(encoding="utf-8"), path)


def split_binary_list(values: typ.Iterable[str]) -> list[str]:
    """Return unique binary names from comma or whitespace separated values.

    Examples
    --------
    >>> split_binary_list(["kvp,kvp-execute-worker", "kvp-prepare-worker kvp"])
    ['kvp', 'kvp-execute-worker', 'kvp-prepare-worker']
    """
    names: list[str] = []
    for value in values:
        for token in value.replace(",", " ").split():
            if token and token not in names:
                names.append(token)
    return names
