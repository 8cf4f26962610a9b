"""Public interface for the binary-injection helper package."""

from .composing import ComposedImage, compose_image, render_dockerfile
from .config import (
    ArtifactConfig,
    ArtifactManifest,
    ConfigOverrides,
    ImageSpec,
    InjectionConfig,
    load_config,
)
from .engine import ContainerEngine, EngineResult
from .environment import container_engine, optional_env_path
from .errors import (
    ComposeError,
    ConfigError,
    FetchError,
    InjectError,
    IntegrityError,
    VerifyError,
)
from .fetching import FetchedArtifact, fetch_artifacts
from .pipeline import InjectResult, inject_artifacts
from .verifying import VerifiedArtifact, verify_image

__all__ = [
    "ArtifactConfig",
    "ArtifactManifest",
    "ComposedImage",
    "ComposeError",
    "ConfigError",
    "ConfigOverrides",
    "ContainerEngine",
    "EngineResult",
    "FetchedArtifact",
    "FetchError",
    "ImageSpec",
    "InjectError",
    "InjectionConfig",
    "InjectResult",
    "IntegrityError",
    "VerifiedArtifact",
    "VerifyError",
    "compose_image",
    "container_engine",
    "fetch_artifacts",
    "inject_artifacts",
    "load_config",
    "optional_env_path",
    "render_dockerfile",
    "verify_image",
]
