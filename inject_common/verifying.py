"""Verifier: smoke-tests every injected artefact inside the built image."""

from __future__ import annotations

import dataclasses
import typing as typ

from .engine import CommandNotFound
from .errors import VerifyError

if typ.TYPE_CHECKING:
    from .composing import ComposedImage
    from .config import ArtifactConfig, InjectionConfig
    from .engine import Engine

__all__ = ["VerifiedArtifact", "verification_args", "verify_image"]

# Shell convention for "command not found".
_ENGINE_MISSING_STATUS = 127


@dataclasses.dataclass(slots=True, frozen=True)
class VerifiedArtifact:
    """Successful smoke test of one artefact."""

    name: str
    args: tuple[str, ...]
    output: str


def verification_args(config: InjectionConfig, artifact: ArtifactConfig) -> list[str]:
    """Return the arguments used to smoke-test ``artifact``."""
    if artifact.verify_args is not None:
        return list(artifact.verify_args)
    return list(config.image.verify_args)


def verify_image(
    config: InjectionConfig, composed: ComposedImage, *, engine: Engine
) -> list[VerifiedArtifact]:
    """Run each artefact inside ``composed`` and require a zero exit status.

    Artefacts are checked in manifest order; those with ``verify = false`` are
    skipped. The first failure raises and the remaining checks do not run.

    Raises
    ------
    VerifyError
        Raised for the first artefact exiting non-zero, or with status 127
        when the container engine cannot be found.
    """

    verified: list[VerifiedArtifact] = []
    for artifact in config.manifest:
        if not artifact.verify:
            print(f"Skipping verification of '{artifact.name}'.")
            continue
        args = verification_args(config, artifact)
        try:
            result = engine.run(composed.tag, artifact.target_path, args)
        except CommandNotFound as exc:
            detail = f"container engine '{engine.binary}' not found"
            raise VerifyError(artifact.name, _ENGINE_MISSING_STATUS, detail) from exc
        if not result.ok:
            raise VerifyError(artifact.name, result.returncode, result.stderr_tail(5))
        output = result.stdout.strip()
        print(f"Verified '{artifact.name}': {output.splitlines()[0] if output else 'ok'}")
        verified.append(VerifiedArtifact(artifact.name, tuple(args), output))
    return verified
