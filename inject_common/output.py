"""Utilities for preparing and writing workflow outputs."""

from __future__ import annotations

import json
import re
import typing as typ
import uuid
from pathlib import Path

from .errors import ConfigError

if typ.TYPE_CHECKING:
    from .pipeline import InjectResult

__all__ = ["prepare_output_data", "write_github_output"]

_OUTPUT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


def prepare_output_data(result: InjectResult) -> dict[str, str | list[str]]:
    """Assemble workflow outputs describing an injection run.

    Returns
    -------
    dict[str, str | list[str]]
        Mapping ready for :func:`write_github_output`. ``artifact_map`` maps
        artefact names to their path inside the image and ``checksum_map``
        maps them to their digests; both are JSON with sorted keys.

    Examples
    --------
    >>> sorted(prepare_output_data(result))  # doctest: +SKIP
    ['artifact_map', 'checksum_map', 'image_id', 'image_tag', 'injected_files',
     'staging_dir']
    """

    artifact_map = {
        item.name: item.artifact.target_path
        for item in sorted(result.artifacts, key=lambda item: item.name)
    }
    checksum_map = {
        item.name: item.checksum
        for item in sorted(result.artifacts, key=lambda item: item.name)
    }
    return {
        "image_tag": result.tag,
        "image_id": result.image_id or "",
        "staging_dir": result.staging_dir.as_posix() if result.staging_dir else "",
        "injected_files": [item.artifact.target_path for item in result.artifacts],
        "artifact_map": json.dumps(artifact_map),
        "checksum_map": json.dumps(checksum_map),
    }


def write_github_output(file: Path, values: typ.Mapping[str, str | list[str]]) -> None:
    """Append ``values`` to the workflow output ``file``.

    Strings are percent-escaped onto one line. Lists become multiline values
    framed by a random delimiter, so no artefact path can end the block early.

    Raises
    ------
    ConfigError
        Raised when an output name is not a valid workflow output identifier.
    """

    if invalid := sorted(key for key in values if not _OUTPUT_NAME.match(key)):
        message = f"Invalid workflow output name(s): {', '.join(invalid)}"
        raise ConfigError(message)

    records: list[str] = []
    for key, value in values.items():
        if isinstance(value, str):
            records.append(f"{key}={_escape(value)}\n")
            continue
        delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
        body = "".join(f"{line}\n" for line in value)
        records.append(f"{key}<<{delimiter}\n{body}{delimiter}\n")

    file.parent.mkdir(parents=True, exist_ok=True)
    with file.open("a", encoding="utf-8") as handle:
        handle.writelines(records)


def _escape(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
