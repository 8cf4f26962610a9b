"""Artefact fetcher: the first stage of the injection pipeline.

Each artefact is retrieved into the staging directory under its manifest
name, made executable, checked for content and hashed. Three kinds of source
are understood:

* HTTP(S) URLs, streamed with :mod:`httpx` (redirects followed, proxies taken
  from the environment);
* absolute paths inside an existing container image (``image = "..."``),
  copied out of a throwaway container;
* local files, relative to the workspace, optionally through glob patterns and
  fallback alternatives.

The stage is fail-fast: the first failure raises and nothing is cleaned up.
"""

from __future__ import annotations

import contextlib
import dataclasses
import shutil
import sys
import typing as typ
from pathlib import Path

import httpx

from .checksum_utils import record_checksum
from .engine import CommandNotFound, ContainerEngine
from .errors import FetchError
from .fs_utils import (
    artifact_dir,
    checksum_dir,
    ensure_non_empty,
    make_executable,
    safe_destination_path,
)
from .resolution import is_remote_source, render_template, resolve_local_source

if typ.TYPE_CHECKING:
    from .config import ArtifactConfig, InjectionConfig
    from .engine import Engine

__all__ = ["FetchedArtifact", "fetch_artifacts"]


@dataclasses.dataclass(slots=True, frozen=True)
class FetchedArtifact:
    """Describe an artefact written to the staging directory."""

    artifact: ArtifactConfig
    path: Path
    origin: str
    size: int
    checksum: str

    @property
    def name(self) -> str:
        return self.artifact.name


def fetch_artifacts(
    config: InjectionConfig,
    staging_dir: Path,
    *,
    engine: Engine | None = None,
    client: httpx.Client | None = None,
) -> list[FetchedArtifact]:
    """Fetch every artefact of ``config`` into ``staging_dir``.

    Parameters
    ----------
    config : InjectionConfig
        Validated configuration listing the artefacts in order.
    staging_dir : Path
        Existing, exclusively owned staging directory.
    engine : Engine | None, optional
        Container engine used for image sources. Defaults to
        :class:`ContainerEngine`.
    client : httpx.Client | None, optional
        HTTP client used for remote sources. A client following redirects with
        no timeout is created (and closed) when omitted.

    Returns
    -------
    list[FetchedArtifact]
        One entry per artefact, in manifest order.

    Raises
    ------
    FetchError
        Raised when a download, extraction or copy fails.
    IntegrityError
        Raised when a fetched artefact is missing or empty.
    """

    engine = engine or ContainerEngine()
    context = config.as_template_context()
    fetched: list[FetchedArtifact] = []
    with contextlib.ExitStack() as stack:
        if client is None:
            client = stack.enter_context(
                httpx.Client(follow_redirects=True, timeout=None)
            )
        for artifact in config.manifest:
            fetched.append(
                _fetch_single(
                    config,
                    artifact,
                    staging_dir,
                    context | {"name": artifact.name},
                    engine=engine,
                    client=client,
                )
            )
    return fetched


def _fetch_single(
    config: InjectionConfig,
    artifact: ArtifactConfig,
    staging_dir: Path,
    context: dict[str, typ.Any],
    *,
    engine: Engine,
    client: httpx.Client,
) -> FetchedArtifact:
    destination = safe_destination_path(artifact_dir(staging_dir), artifact.name)
    if destination.exists():
        destination.unlink()

    if artifact.image is not None:
        image = render_template(artifact.image, context)
        source = render_template(artifact.source, context)
        _extract_from_image(engine, artifact.name, image, source, destination)
        origin = f"{image}:{source}"
    else:
        rendered = render_template(artifact.source, context)
        if is_remote_source(rendered):
            _download(client, artifact.name, rendered, destination)
            origin = rendered
        else:
            origin = _copy_local(config, artifact, context, destination)

    size = ensure_non_empty(destination, artifact.name)
    try:
        make_executable(destination, artifact.mode)
        digest = record_checksum(
            checksum_dir(staging_dir),
            artifact.name,
            destination,
            config.checksum_algorithm,
        )
    except OSError as exc:
        message = f"cannot finalise staged file {destination}: {exc}"
        raise FetchError(artifact.name, message) from exc
    print(f"Fetched '{origin}' -> '{destination.name}' ({size} bytes)")
    return FetchedArtifact(artifact, destination, origin, size, digest)


def _download(client: httpx.Client, name: str, url: str, destination: Path) -> None:
    try:
        with client.stream("GET", url) as response:
            if not response.is_success:
                message = f"HTTP {response.status_code} from {url}"
                raise FetchError(name, message)
            with destination.open("wb") as handle:
                for chunk in response.iter_bytes():
                    handle.write(chunk)
    except httpx.HTTPError as exc:
        message = f"{type(exc).__name__} while downloading {url}: {exc}"
        raise FetchError(name, message) from exc
    except OSError as exc:
        message = f"cannot write {destination}: {exc}"
        raise FetchError(name, message) from exc


def _extract_from_image(
    engine: Engine, name: str, image: str, source: str, destination: Path
) -> None:
    try:
        created = engine.create(image)
    except CommandNotFound as exc:
        message = f"container engine '{engine.binary}' not found"
        raise FetchError(name, message) from exc
    if not created.ok:
        message = f"cannot create a container from {image}: {created.stderr_tail()}"
        raise FetchError(name, message)

    if not (lines := created.stdout.strip().splitlines()):
        message = f"engine reported no container ID for {image}"
        raise FetchError(name, message)
    container = lines[-1].strip()
    try:
        copied = engine.copy_out(container, source, destination)
    finally:
        removed = engine.remove(container)
        if not removed.ok:
            print(
                "::warning title=Container Cleanup::Failed to remove "
                f"container {container}: {removed.stderr_tail(3)}",
                file=sys.stderr,
            )
    if not copied.ok:
        message = f"cannot copy {source} out of {image}: {copied.stderr_tail()}"
        raise FetchError(name, message)


def _copy_local(
    config: InjectionConfig,
    artifact: ArtifactConfig,
    context: dict[str, typ.Any],
    destination: Path,
) -> str:
    source_path, attempts = resolve_local_source(config.workspace, artifact, context)
    if source_path is None:
        attempt_lines = ", ".join(
            f"{attempt.template!r} -> {attempt.rendered!r}" for attempt in attempts
        )
        message = (
            "no local file matched. "
            f"Workspace={config.workspace.as_posix()} "
            f"Attempts=[{attempt_lines}]"
        )
        raise FetchError(artifact.name, message)
    try:
        shutil.copy2(source_path, destination)
    except OSError as exc:
        message = f"cannot copy {source_path}: {exc}"
        raise FetchError(artifact.name, message) from exc
    return source_path.as_posix()
