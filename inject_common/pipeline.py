"""Fetch -> compose -> verify pipeline driving an injection run."""

from __future__ import annotations

import dataclasses
import typing as typ
from pathlib import Path

from .composing import compose_image
from .engine import ContainerEngine
from .fetching import fetch_artifacts
from .fs_utils import create_staging_dir, remove_staging_dir
from .output import prepare_output_data, write_github_output
from .verifying import verify_image

if typ.TYPE_CHECKING:
    import httpx

    from .config import InjectionConfig
    from .engine import Engine
    from .fetching import FetchedArtifact
    from .verifying import VerifiedArtifact

__all__ = ["InjectResult", "inject_artifacts"]


@dataclasses.dataclass(slots=True)
class InjectResult:
    """Outcome of :func:`inject_artifacts`."""

    tag: str
    image_id: str | None
    staging_dir: Path | None
    artifacts: list[FetchedArtifact]
    verified: list[VerifiedArtifact]
    dockerfile: str


def inject_artifacts(
    config: InjectionConfig,
    *,
    engine: Engine | None = None,
    client: httpx.Client | None = None,
    verify: bool = True,
    github_output: Path | None = None,
) -> InjectResult:
    """Fetch, compose and verify the image described by ``config``.

    Parameters
    ----------
    config : InjectionConfig
        Validated configuration. Building it already rejected a missing
        entrypoint, so no network or build work happens for such input.
    engine : Engine | None, optional
        Container engine; defaults to :class:`ContainerEngine` (``$ENGINE``).
    client : httpx.Client | None, optional
        HTTP client for remote sources.
    verify : bool, default=True
        Run the verifier after the build.
    github_output : Path | None, optional
        When given, workflow outputs describing the run are appended here.

    Returns
    -------
    InjectResult
        Image tag and ID, staged artefacts and verification results.
        ``staging_dir`` is ``None`` when the directory was removed.

    Raises
    ------
    ConfigError
        Raised when a caller-supplied staging directory cannot be used.
    FetchError, IntegrityError, ComposeError, VerifyError
        Raised by the failing stage; later stages do not run.
    """

    engine = engine or ContainerEngine()
    staging_dir = create_staging_dir(config.staging_dir, workspace=config.workspace)
    remove_after = config.staging_dir is None and not config.keep_staging
    try:
        print(f"Staging {len(config.manifest)} artefact(s) in '{staging_dir}'.")
        fetched = fetch_artifacts(config, staging_dir, engine=engine, client=client)
        composed = compose_image(config, staging_dir, fetched, engine=engine)
        dockerfile = composed.dockerfile.read_text(encoding="utf-8")
        verified = verify_image(config, composed, engine=engine) if verify else []
    finally:
        if remove_after:
            remove_staging_dir(staging_dir)

    result = InjectResult(
        tag=composed.tag,
        image_id=composed.image_id,
        staging_dir=None if remove_after else staging_dir,
        artifacts=fetched,
        verified=verified,
        dockerfile=dockerfile,
    )
    if github_output is not None:
        write_github_output(github_output, prepare_output_data(result))
    return result
