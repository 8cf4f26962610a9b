"""Command-line entry point for the binary-injection helper.

Examples
--------
Inject a node binary downloaded over HTTP into a slim Debian image::

    compose-image --manifest node.manifest \
        --base-image docker.io/library/debian:bookworm-slim \
        --output-tag example/node:local

Reproduce the ``BINARY=a,b,c BIN_FOLDER=dir`` interface of the older build
script, picking the container engine from ``$ENGINE``::

    ENGINE=docker compose-image --image-spec .github/image-injection.toml \
        --binary kvp,kvp-execute-worker,kvp-prepare-worker --bin-folder ./bin
"""

from __future__ import annotations

import sys
from pathlib import Path

from inject_common import (
    ConfigError,
    ConfigOverrides,
    ContainerEngine,
    InjectError,
    inject_artifacts,
    load_config,
    optional_env_path,
)

import cyclopts

app = cyclopts.App(
    name="compose-image",
    help="Inject prebuilt artefacts into a minimal container image.",
)


@app.default
def main(
    *,
    manifest: Path | None = None,
    image_spec: Path | None = None,
    base_image: str | None = None,
    output_tag: str | None = None,
    binary: list[str] | None = None,
    bin_folder: Path | None = None,
    engine: str | None = None,
    staging_dir: Path | None = None,
    keep_staging: bool = False,
    skip_verify: bool = False,
    github_output: Path | None = None,
) -> None:
    """Fetch, compose and verify an image for the configured artefacts.

    Parameters
    ----------
    manifest:
        TOML document or line manifest (``name source [target]``).
    image_spec:
        TOML document holding the ``[image]`` table when the manifest has none.
    base_image:
        Base image reference; overrides the image specification.
    output_tag:
        Tag of the produced image; overrides the image specification.
    binary:
        Comma separated artefact names sourced from ``bin_folder``.
    bin_folder:
        Directory holding the binaries named by ``binary``.
    engine:
        Container engine binary. Defaults to ``$ENGINE`` or ``podman``.
    staging_dir:
        Use (and keep) this staging directory instead of a temporary one.
    keep_staging:
        Keep the temporary staging directory after the run.
    skip_verify:
        Do not smoke-test the injected artefacts.
    github_output:
        File receiving workflow outputs. Defaults to ``$GITHUB_OUTPUT``.
    """
    try:
        if manifest is None and not binary:
            message = "Provide --manifest or --binary to name the artefacts."
            raise ConfigError(message)
        config = load_config(
            manifest,
            image_spec,
            ConfigOverrides(
                base_image=base_image,
                tag=output_tag,
                binaries=list(binary or []),
                bin_folder=bin_folder,
                staging_dir=staging_dir,
                keep_staging=keep_staging,
            ),
        )
        result = inject_artifacts(
            config,
            engine=ContainerEngine(engine),
            verify=not skip_verify,
            github_output=github_output or optional_env_path("GITHUB_OUTPUT"),
        )
    except FileNotFoundError as exc:
        print(f"::error title=Configuration Failure::{exc}", file=sys.stderr)
        raise SystemExit(ConfigError.cli_status) from exc
    except OSError as exc:
        print(f"::error title={InjectError.stage} Failure::{exc}", file=sys.stderr)
        raise SystemExit(InjectError.cli_status) from exc
    except InjectError as exc:
        print(f"::error title={exc.stage} Failure::{exc}", file=sys.stderr)
        raise SystemExit(exc.cli_status) from exc

    print(
        f"Injected {len(result.artifacts)} artefact(s) into '{result.tag}'.",
        file=sys.stderr,
    )


if __name__ == "__main__":
    app()
