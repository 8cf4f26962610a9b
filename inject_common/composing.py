"""Image composer: renders a Dockerfile for the staged artefacts and builds it."""

from __future__ import annotations

import dataclasses
import itertools
import json
import shlex
import typing as typ
from pathlib import Path

from .checksum_utils import provenance_label
from .engine import CommandNotFound
from .errors import ComposeError
from .fs_utils import DOCKERFILE_NAME, artifact_dir

if typ.TYPE_CHECKING:
    from .config import ImageSpec, InjectionConfig
    from .engine import Engine
    from .fetching import FetchedArtifact

__all__ = [
    "DOCKERFILE_NAME",
    "ComposedImage",
    "compose_image",
    "render_dockerfile",
]


@dataclasses.dataclass(slots=True, frozen=True)
class ComposedImage:
    """Outcome of :func:`compose_image`."""

    tag: str
    image_id: str | None
    dockerfile: Path
    artifacts: list[FetchedArtifact]


def render_dockerfile(
    config: InjectionConfig, fetched: typ.Sequence[FetchedArtifact]
) -> str:
    """Return the Dockerfile injecting ``fetched`` into the configured base image.

    The output depends only on the configuration and on the staged artefacts'
    names and digests, so identical inputs render identical Dockerfiles.

    Examples
    --------
    >>> print(render_dockerfile(config, fetched))  # doctest: +SKIP
    FROM docker.io/library/debian:bookworm-slim
    ...
    ENTRYPOINT ["/usr/local/bin/node"]
    """
    image = config.image
    lines = [f"FROM {image.base_image}"]

    labels = dict(image.labels)
    labels.update(
        provenance_label(item.name, config.checksum_algorithm, item.checksum)
        for item in fetched
    )
    if labels:
        rendered = [f"{json.dumps(key)}={json.dumps(value)}" for key, value in labels.items()]
        lines.append("LABEL " + " \\\n      ".join(rendered))

    lines.extend(["", "USER root", f"RUN {_account_setup(image)}", ""])

    for item in fetched:
        lines.append(f"COPY {json.dumps([item.name, item.artifact.target_path])}")
    by_mode = itertools.groupby(
        sorted(fetched, key=lambda item: item.artifact.mode),
        key=lambda item: item.artifact.mode,
    )
    for mode, group in by_mode:
        targets = " ".join(shlex.quote(item.artifact.target_path) for item in group)
        lines.append(f"RUN chmod {mode:04o} {targets}")

    lines.extend(["", f"USER {image.user}"])
    if image.ports:
        lines.append("EXPOSE " + " ".join(str(port) for port in image.ports))
    if image.volumes:
        lines.append(f"VOLUME {json.dumps(list(image.volumes))}")
    lines.append(f"ENTRYPOINT {json.dumps([config.entrypoint.target_path])}")
    return "\n".join(lines) + "\n"


def compose_image(
    config: InjectionConfig,
    staging_dir: Path,
    fetched: typ.Sequence[FetchedArtifact],
    *,
    engine: Engine,
) -> ComposedImage:
    """Build the image described by ``config`` from ``staging_dir``.

    Parameters
    ----------
    config : InjectionConfig
        Validated configuration; provides the image specification and tag.
    staging_dir : Path
        Staging directory; its artefact directory is the build context and
        the Dockerfile is written beside it, outside the context.
    fetched : Sequence[FetchedArtifact]
        Artefacts returned by the fetcher, in manifest order.
    engine : Engine
        Container engine performing the build.

    Returns
    -------
    ComposedImage
        Tag, image ID (when the engine reports one) and rendered Dockerfile.

    Raises
    ------
    ComposeError
        Raised when the staged artefacts do not match the manifest, when the
        engine is missing, or when the build exits non-zero (for example
        because the base image is unreachable).
    """

    staged_names = [item.name for item in fetched]
    if staged_names != config.manifest.names():
        message = (
            "Staged artefacts do not match the manifest: "
            f"staged={staged_names} manifest={config.manifest.names()}"
        )
        raise ComposeError(message)
    context_dir = artifact_dir(staging_dir)
    context_root = context_dir.resolve()
    for item in fetched:
        if item.path.resolve() != context_root / item.name:
            message = f"Artefact {item.path} is not staged in {context_dir}"
            raise ComposeError(message)

    dockerfile = staging_dir / DOCKERFILE_NAME
    try:
        dockerfile.write_text(render_dockerfile(config, fetched), encoding="utf-8")
    except OSError as exc:
        message = f"cannot write {dockerfile}: {exc}"
        raise ComposeError(message) from exc

    tag = config.image.tag
    try:
        result = engine.build(context_dir, dockerfile, tag)
    except CommandNotFound as exc:
        message = f"container engine '{engine.binary}' not found"
        raise ComposeError(message) from exc
    if not result.ok:
        raise ComposeError(result.stderr_tail(), result.returncode)

    image_id = engine.image_id(tag)
    print(f"Built image '{tag}' with {len(fetched)} artefact(s).")
    return ComposedImage(tag, image_id, dockerfile, list(fetched))


def _account_setup(image: ImageSpec) -> str:
    """Return the shell command creating the runtime account and volumes.

    Examples
    --------
    >>> from inject_common.config import ImageSpec
    >>> spec = ImageSpec("debian", "t", user="node", uid=1000, volumes=["/data"])
    >>> _account_setup(spec)  # doctest: +NORMALIZE_WHITESPACE
    'groupadd --gid 1000 node && useradd --uid 1000 --gid node --create-home
     --home-dir /home/node --shell /bin/sh node && mkdir -p /data && chown -R
     node:node /data'
    """
    group = shlex.quote(image.user_group)
    user = shlex.quote(image.user)
    groupadd = ["groupadd"]
    useradd = ["useradd"]
    if image.uid is not None:
        groupadd.extend(["--gid", str(image.uid)])
        useradd.extend(["--uid", str(image.uid)])
    groupadd.append(group)
    useradd.extend(
        [
            "--gid",
            group,
            "--create-home",
            "--home-dir",
            shlex.quote(image.home_dir),
            "--shell",
            "/bin/sh",
            user,
        ]
    )
    commands = [" ".join(groupadd), " ".join(useradd)]
    if image.volumes:
        volumes = " ".join(shlex.quote(volume) for volume in image.volumes)
        commands.append(f"mkdir -p {volumes}")
        commands.append(f"chown -R {user}:{group} {volumes}")
    return " && ".join(commands)
