"""Source template rendering and local path resolution."""

from __future__ import annotations

import dataclasses
import glob
import typing as typ
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

from .errors import ConfigError

if typ.TYPE_CHECKING:
    from .config import ArtifactConfig

__all__ = [
    "RenderAttempt",
    "is_remote_source",
    "match_candidate_path",
    "render_template",
    "resolve_local_source",
]

_REMOTE_SCHEMES = frozenset({"http", "https"})


@dataclasses.dataclass(slots=True)
class RenderAttempt:
    """Template render attempted when locating an artefact."""

    template: str
    rendered: str


def render_template(template: str, context: dict[str, typ.Any]) -> str:
    """Return ``template`` formatted with ``context``.

    Examples
    --------
    >>> render_template("{workspace}/bin/{name}", {"workspace": "/w", "name": "node"})
    '/w/bin/node'
    """

    try:
        return template.format(**context)
    except (KeyError, IndexError, ValueError) as exc:
        message = f"Invalid template key {exc} in '{template}'"
        raise ConfigError(message) from exc


def is_remote_source(rendered: str) -> bool:
    """Return ``True`` when ``rendered`` is an HTTP(S) URL."""
    return urlsplit(rendered).scheme.lower() in _REMOTE_SCHEMES


def resolve_local_source(
    workspace: Path, artifact: ArtifactConfig, context: dict[str, typ.Any]
) -> tuple[Path | None, list[RenderAttempt]]:
    """Return the first local path matching ``artifact``'s templates.

    ``artifact.source`` is tried first, then each alternative in order. Glob
    patterns resolve to their most recently modified match.
    """

    attempts: list[RenderAttempt] = []
    patterns = [artifact.source, *artifact.alternatives]
    for pattern in patterns:
        rendered = render_template(pattern, context)
        attempts.append(RenderAttempt(pattern, rendered))
        if (candidate := match_candidate_path(workspace, rendered)) is not None:
            return candidate, attempts
    return None, attempts


def match_candidate_path(workspace: Path, rendered: str) -> Path | None:
    """Return the newest path matching ``rendered`` relative to ``workspace``.

    Example:
        >>> workspace = Path("/tmp/work")
        >>> (workspace / "bin").mkdir(parents=True, exist_ok=True)
        >>> target = workspace / "bin" / "node"
        >>> _ = target.write_bytes(b"payload")
        >>> match_candidate_path(workspace, "bin/n*") == target
        True
    """

    if rendered.startswith("file://"):
        rendered = unquote(urlsplit(rendered).path)
    candidate = Path(rendered)
    resolver = (
        _resolve_glob_pattern if glob.has_magic(rendered) else _resolve_direct_path
    )
    return resolver(workspace, rendered, candidate)


def _resolve_glob_pattern(
    workspace: Path, rendered: str, candidate: Path
) -> Path | None:
    if candidate.is_absolute():
        root = Path(candidate.anchor or "/")
        relative_parts = candidate.parts[1:]
        pattern = PurePosixPath(*relative_parts).as_posix() if relative_parts else "*"
        matches = root.glob(pattern)
    else:
        matches = workspace.glob(rendered)
    return _newest_file(matches)


def _resolve_direct_path(
    workspace: Path, rendered: str, candidate: Path
) -> Path | None:
    base = candidate if candidate.is_absolute() else workspace / candidate
    return base if base.is_file() else None


def _newest_file(candidates: typ.Iterable[Path]) -> Path | None:
    """Return the newest file from ``candidates``."""

    best_path: Path | None = None
    best_key: tuple[int, str] | None = None
    for candidate in candidates:
        path = Path(candidate)
        if not path.is_file():
            continue
        try:
            key = (int(path.stat().st_mtime_ns), path.as_posix())
        except OSError:  # pragma: no cover - filesystem race guard.
            key = (0, path.as_posix())
        if best_key is None or key > best_key:
            best_key = key
            best_path = path
    return best_path
