"""Configuration models and loader for the injection pipeline.

This module provides dataclasses describing the artefacts to inject and the
image that receives them, plus a loader that assembles an
:class:`InjectionConfig` from TOML documents, line-oriented manifests and CLI
overrides.

Usage
-----
Load a configuration from a TOML document that carries both the artefacts and
the ``[image]`` table::

    from pathlib import Path
    from inject_common.config import load_config

    config = load_config(Path(".github/image-injection.toml"))
    print(f"Entrypoint: {config.entrypoint.target_path}")
"""

from __future__ import annotations

import dataclasses
import hashlib
import re
import typing as typ
from pathlib import Path, PurePosixPath

import tomllib

from .environment import optional_env_path
from .errors import ConfigError
from .manifest import read_line_manifest, split_binary_list

__all__ = [
    "DEFAULT_TARGET_DIR",
    "DEFAULT_VERIFY_ARGS",
    "ArtifactConfig",
    "ArtifactManifest",
    "ConfigOverrides",
    "ImageSpec",
    "InjectionConfig",
    "load_config",
    "load_toml",
    "make_artifacts",
]

DEFAULT_TARGET_DIR = "/usr/local/bin"
DEFAULT_VERIFY_ARGS = ("--version",)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_ACCOUNT_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")


@dataclasses.dataclass(slots=True)
class ArtifactConfig:
    """Describe a single artefact to be injected.

    Parameters
    ----------
    name : str
        Unique artefact name; also the staged filename.
    source : str
        ``str.format`` template pointing at the artefact. HTTP(S) and
        ``file://`` URLs, workspace-relative paths, globs, or (with
        :attr:`image`) an absolute path inside a container image.
    target : str | None, optional
        Absolute path inside the output image. Defaults to
        ``/usr/local/bin/<name>``.
    mode : int, default=0o755
        Permission bits applied to the staged file and the injected copy.
    image : str | None, optional
        Container image reference the artefact is extracted from.
    alternatives : list[str], optional
        Fallback templates probed when a local :attr:`source` is absent.
    verify : bool, default=True
        When ``False`` the verifier skips this artefact.
    verify_args : list[str] | None, optional
        Arguments overriding :attr:`ImageSpec.verify_args` for this artefact.

    Examples
    --------
    >>> cfg = ArtifactConfig(name="node", source="https://example.invalid/node")
    >>> cfg.target_path
    '/usr/local/bin/node'
    """

    name: str
    source: str
    target: str | None = None
    mode: int = 0o755
    image: str | None = None
    alternatives: list[str] = dataclasses.field(default_factory=list)
    verify: bool = True
    verify_args: list[str] | None = None

    @property
    def target_path(self) -> str:
        """Absolute path of the artefact inside the output image."""
        return self.target or f"{DEFAULT_TARGET_DIR}/{self.name}"


@dataclasses.dataclass(slots=True)
class ArtifactManifest:
    """Ordered, validated collection of artefacts.

    Raises
    ------
    ConfigError
        Raised when the manifest is empty, when names or target paths repeat,
        or when an entry is malformed.
    """

    artifacts: list[ArtifactConfig]

    def __post_init__(self) -> None:
        if not self.artifacts:
            message = "No artefacts configured to inject."
            raise ConfigError(message)
        seen_names: set[str] = set()
        seen_targets: dict[str, str] = {}
        for artifact in self.artifacts:
            _validate_artifact(artifact)
            if artifact.name in seen_names:
                message = f"Duplicate artefact name in manifest: {artifact.name}"
                raise ConfigError(message)
            seen_names.add(artifact.name)
            target = artifact.target_path
            if previous := seen_targets.get(target):
                message = (
                    f"Artefacts '{previous}' and '{artifact.name}' share the "
                    f"target path {target}"
                )
                raise ConfigError(message)
            seen_targets[target] = artifact.name

    def __iter__(self) -> typ.Iterator[ArtifactConfig]:
        return iter(self.artifacts)

    def __len__(self) -> int:
        return len(self.artifacts)

    def names(self) -> list[str]:
        """Return artefact names in manifest order."""
        return [artifact.name for artifact in self.artifacts]

    def get(self, name: str) -> ArtifactConfig | None:
        """Return the artefact called ``name`` or ``None``."""
        return next(
            (artifact for artifact in self.artifacts if artifact.name == name),
            None,
        )


@dataclasses.dataclass(slots=True)
class ImageSpec:
    """Describe the image composed around the injected artefacts.

    Parameters
    ----------
    base_image : str
        Reference of the minimal base image (``FROM`` line).
    tag : str
        Tag applied to the produced image.
    user : str, default="app"
        Unprivileged account created for the runtime.
    group : str | None, optional
        Group of :attr:`user`; defaults to the user name.
    uid : int | None, optional
        Deterministic UID/GID. ``None`` lets the base image assign one.
    home : str | None, optional
        Home directory of :attr:`user`; defaults to ``/home/<user>``.
    ports : list[int], optional
        Network ports declared with ``EXPOSE``.
    volumes : list[str], optional
        Absolute mount points declared with ``VOLUME`` and owned by the user.
    entrypoint : str | None, optional
        Name of the artefact used as entrypoint; defaults to the first one.
    labels : dict[str, str], optional
        Extra ``LABEL`` values.
    verify_args : list[str], optional
        Arguments passed to each artefact by the verifier.
    """

    base_image: str
    tag: str
    user: str = "app"
    group: str | None = None
    uid: int | None = None
    home: str | None = None
    ports: list[int] = dataclasses.field(default_factory=list)
    volumes: list[str] = dataclasses.field(default_factory=list)
    entrypoint: str | None = None
    labels: dict[str, str] = dataclasses.field(default_factory=dict)
    verify_args: list[str] = dataclasses.field(
        default_factory=lambda: list(DEFAULT_VERIFY_ARGS)
    )

    def __post_init__(self) -> None:
        for label, value in (("base_image", self.base_image), ("tag", self.tag)):
            if not isinstance(value, str) or not value.strip():
                message = f"Image specification requires a non-empty '{label}'"
                raise ConfigError(message)
        for label, account in (("user", self.user), ("group", self.user_group)):
            if not isinstance(account, str) or not _ACCOUNT_PATTERN.match(account):
                message = f"Invalid {label} name for image: {account!r}"
                raise ConfigError(message)
        if self.uid is not None and (
            isinstance(self.uid, bool) or not isinstance(self.uid, int) or self.uid < 0
        ):
            message = f"UID must be a non-negative integer, got {self.uid!r}"
            raise ConfigError(message)
        if self.user == "root" or self.uid == 0:
            message = "The runtime user must be unprivileged (not root or UID 0)"
            raise ConfigError(message)
        for port in self.ports:
            if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
                message = f"Invalid port in image specification: {port!r}"
                raise ConfigError(message)
        for volume in [*self.volumes, self.home_dir]:
            if not isinstance(volume, str) or not PurePosixPath(volume).is_absolute():
                message = f"Image paths must be absolute: {volume!r}"
                raise ConfigError(message)

    @property
    def user_group(self) -> str:
        """Group owning the runtime user and its volumes."""
        return self.group or self.user

    @property
    def home_dir(self) -> str:
        """Home directory of the runtime user."""
        return self.home or f"/home/{self.user}"


@dataclasses.dataclass(slots=True)
class InjectionConfig:
    """Concrete configuration consumed by the pipeline.

    Construction fails with :class:`ConfigError` when the entrypoint does not
    name an artefact in the manifest, so no network or build operation starts
    for an invalid configuration.

    Examples
    --------
    >>> from pathlib import Path
    >>> config = InjectionConfig(
    ...     workspace=Path("/tmp/workspace"),
    ...     manifest=ArtifactManifest([ArtifactConfig("node", "http://example/node")]),
    ...     image=ImageSpec(base_image="debian:bookworm-slim", tag="node:local"),
    ... )
    >>> config.entrypoint.name
    'node'
    """

    workspace: Path
    manifest: ArtifactManifest
    image: ImageSpec
    checksum_algorithm: str = "sha256"
    staging_dir: Path | None = None
    keep_staging: bool = False

    def __post_init__(self) -> None:
        self.checksum_algorithm = _validate_checksum(self.checksum_algorithm)
        name = self.image.entrypoint or self.manifest.names()[0]
        if self.manifest.get(name) is None:
            message = (
                f"Entrypoint artefact '{name}' is not present in the manifest "
                f"(artefacts: {', '.join(self.manifest.names())})"
            )
            raise ConfigError(message)

    @property
    def entrypoint(self) -> ArtifactConfig:
        """Artefact used as the image entrypoint."""
        name = self.image.entrypoint or self.manifest.names()[0]
        return typ.cast(ArtifactConfig, self.manifest.get(name))

    def as_template_context(self) -> dict[str, typ.Any]:
        """Return a mapping suitable for rendering ``str.format`` templates."""
        return {
            "workspace": self.workspace.as_posix(),
            "base_image": self.image.base_image,
            "tag": self.image.tag,
            "user": self.image.user,
            "group": self.image.user_group,
            "home": self.image.home_dir,
            "entrypoint": self.entrypoint.name,
            "checksum_algorithm": self.checksum_algorithm,
        }


@dataclasses.dataclass(slots=True)
class ConfigOverrides:
    """Values supplied on the command line that take precedence over files."""

    base_image: str | None = None
    tag: str | None = None
    binaries: list[str] = dataclasses.field(default_factory=list)
    bin_folder: Path | None = None
    workspace: Path | None = None
    staging_dir: Path | None = None
    keep_staging: bool = False


def load_config(
    manifest_file: Path | None,
    image_spec_file: Path | None = None,
    overrides: ConfigOverrides | None = None,
) -> InjectionConfig:
    """Assemble an :class:`InjectionConfig` from files and overrides.

    Parameters
    ----------
    manifest_file : Path | None
        TOML document or line-oriented manifest listing the artefacts. May be
        ``None`` when ``overrides.binaries`` names them instead.
    image_spec_file : Path | None, optional
        TOML document holding the image specification. When omitted the
        ``[image]`` table of a TOML ``manifest_file`` is used.
    overrides : ConfigOverrides | None, optional
        Command-line values that win over file contents.

    Returns
    -------
    InjectionConfig
        Validated configuration ready for :func:`inject_artifacts`.

    Raises
    ------
    FileNotFoundError
        Raised when a referenced file does not exist.
    ConfigError
        Raised when required keys are missing or values are invalid.
    """
    overrides = overrides or ConfigOverrides()
    document: dict[str, typ.Any] = {}
    artifacts: list[ArtifactConfig] = []

    if manifest_file is not None:
        manifest_file = Path(manifest_file)
        if not manifest_file.is_file():
            message = f"Manifest file not found at {manifest_file}"
            raise FileNotFoundError(message)
        if manifest_file.suffix == ".toml":
            document = load_toml(manifest_file)
            artifacts.extend(
                make_artifacts(document.get("artifacts", []), manifest_file)
            )
        else:
            artifacts.extend(
                ArtifactConfig(name=entry.name, source=entry.source, target=entry.target)
                for entry in read_line_manifest(manifest_file)
            )

    if overrides.binaries:
        if overrides.bin_folder is None:
            message = "A binary folder is required when binaries are listed."
            raise ConfigError(message)
        artifacts.extend(_folder_artifacts(overrides.binaries, overrides.bin_folder))

    image_section = document.get("image", {})
    image_origin = manifest_file
    if image_spec_file is not None:
        image_spec_file = Path(image_spec_file)
        if not image_spec_file.is_file():
            message = f"Image specification not found at {image_spec_file}"
            raise FileNotFoundError(message)
        image_document = load_toml(image_spec_file)
        image_section = image_document.get("image", image_document)
        image_origin = image_spec_file

    workspace = (
        overrides.workspace
        or optional_env_path("GITHUB_WORKSPACE")
        or (manifest_file.resolve().parent if manifest_file is not None else Path.cwd())
    )

    return InjectionConfig(
        workspace=Path(workspace),
        manifest=ArtifactManifest(artifacts),
        image=_make_image_spec(image_section, image_origin, overrides),
        checksum_algorithm=document.get("checksum_algorithm", "sha256"),
        staging_dir=overrides.staging_dir,
        keep_staging=overrides.keep_staging,
    )


def load_toml(path: Path) -> dict[str, typ.Any]:
    """Parse ``path`` as TOML, translating syntax errors to :class:`ConfigError`."""
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        message = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(message) from exc


def make_artifacts(entries: object, config_path: Path) -> list[ArtifactConfig]:
    """Return :class:`ArtifactConfig` objects for the TOML ``artifacts`` array."""
    if not isinstance(entries, list):
        message = f"'artifacts' must be an array of tables in {config_path}"
        raise ConfigError(message)
    artifacts: list[ArtifactConfig] = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            message = (
                "Artefact entries must be tables of key/value pairs "
                f"(entry #{index} in {config_path})"
            )
            raise ConfigError(message)
        _require_keys(entry, {"name", "source"}, f"artifacts #{index}", config_path)
        artifacts.append(
            ArtifactConfig(
                name=entry["name"],
                source=entry["source"],
                target=entry.get("target"),
                mode=_parse_mode(entry.get("mode", 0o755), index, config_path),
                image=entry.get("image"),
                alternatives=_normalise_strings(
                    entry.get("alternatives", []), "Alternatives", index, config_path
                ),
                verify=entry.get("verify", True),
                verify_args=(
                    _normalise_strings(
                        entry["verify_args"], "Verify arguments", index, config_path
                    )
                    if "verify_args" in entry
                    else None
                ),
            )
        )
    return artifacts


def _make_image_spec(
    section: object, origin: Path | None, overrides: ConfigOverrides
) -> ImageSpec:
    if not isinstance(section, dict):
        message = f"The [image] section must be a table in {origin}"
        raise ConfigError(message)
    values = dict(section)
    if overrides.base_image:
        values["base_image"] = overrides.base_image
    if overrides.tag:
        values["tag"] = overrides.tag
    _require_keys(values, {"base_image", "tag"}, "image", origin)
    unknown = sorted(set(values) - {field.name for field in dataclasses.fields(ImageSpec)})
    if unknown:
        message = f"Unknown key(s) {', '.join(unknown)} in [image] section of {origin}"
        raise ConfigError(message)
    for key in ("ports", "volumes", "verify_args"):
        if key in values and not isinstance(values[key], list):
            message = f"'{key}' must be an array in [image] section of {origin}"
            raise ConfigError(message)
    if "labels" in values:
        labels = values["labels"]
        if not isinstance(labels, dict):
            message = f"'labels' must be a table in [image] section of {origin}"
            raise ConfigError(message)
        values["labels"] = {str(key): str(value) for key, value in labels.items()}
    return ImageSpec(**values)


def _validate_artifact(artifact: ArtifactConfig) -> None:
    if not isinstance(artifact.name, str) or not _NAME_PATTERN.match(artifact.name):
        message = f"Invalid artefact name: {artifact.name!r}"
        raise ConfigError(message)
    if not isinstance(artifact.source, str) or not artifact.source:
        message = f"Artefact '{artifact.name}' requires a non-empty source"
        raise ConfigError(message)
    if not PurePosixPath(artifact.target_path).is_absolute():
        message = (
            f"Artefact '{artifact.name}' target must be an absolute path, "
            f"got {artifact.target_path!r}"
        )
        raise ConfigError(message)
    if artifact.image is not None and not PurePosixPath(artifact.source).is_absolute():
        message = (
            f"Artefact '{artifact.name}' is extracted from {artifact.image}; "
            f"its source must be an absolute path inside the image"
        )
        raise ConfigError(message)
    if not 0 <= artifact.mode <= 0o7777:
        message = f"Artefact '{artifact.name}' has an invalid mode: {artifact.mode!r}"
        raise ConfigError(message)
    if not isinstance(artifact.verify, bool):
        message = (
            f"Artefact '{artifact.name}' verify flag must be true or false, "
            f"got {artifact.verify!r}"
        )
        raise ConfigError(message)


def _validate_checksum(name: str | None) -> str:
    algorithm = (name or "sha256").lower()
    # SHAKE digests need an explicit length.
    supported = {
        item.lower()
        for item in hashlib.algorithms_guaranteed
        if not item.startswith("shake_")
    }
    if algorithm not in supported:
        message = f"Unsupported checksum algorithm: {algorithm}"
        raise ConfigError(message)
    return algorithm


def _parse_mode(value: object, index: int, config_path: Path) -> int:
    """Return ``value`` as permission bits.

    Examples
    --------
    >>> _parse_mode("0755", 1, Path("cfg"))
    493
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value, 8)
        except ValueError as exc:
            message = f"Invalid octal mode {value!r} (entry #{index} in {config_path})"
            raise ConfigError(message) from exc
    message = f"Mode must be an integer or octal string (entry #{index} in {config_path})"
    raise ConfigError(message)


def _require_keys(
    section: dict[str, typ.Any], keys: set[str], label: str, config_path: Path | None
) -> None:
    """Ensure ``section`` defines ``keys``.

    Examples
    --------
    >>> _require_keys({'tag': 1}, {'tag'}, 'image', Path('cfg'))
    """
    if missing := sorted(key for key in keys if key not in section):
        joined = ", ".join(missing)
        message = (
            "Missing required key(s) "
            f"{joined} in [{label}] section of {config_path}"
        )
        raise ConfigError(message)


def _normalise_strings(
    value: object, label: str, index: int, config_path: Path
) -> list[str]:
    """Return ``value`` as a list of non-empty strings."""

    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, list):
        message = (
            f"{label} must be a list of strings "
            f"(entry #{index} in {config_path})"
        )
        raise ConfigError(message)
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            message = f"{label} must be strings (entry #{index} in {config_path})"
            raise ConfigError(message)
        if item:
            items.append(item)
    return items


def _folder_artifacts(binaries: typ.Iterable[str], bin_folder: Path) -> list[ArtifactConfig]:
    """Return artefacts for ``binaries`` sourced from ``bin_folder``.

    Examples
    --------
    >>> [a.source for a in _folder_artifacts(["kvp,kvp-worker"], Path("/tmp/bin"))]
    ['/tmp/bin/kvp', '/tmp/bin/kvp-worker']
    """
    return [
        ArtifactConfig(name=name, source=(Path(bin_folder) / name).as_posix())
        for name in split_binary_list(binaries)
    ]
