"""Shared helpers for the injection test suites."""

from __future__ import annotations

import typing as typ
from pathlib import Path

from plumbum.commands import CommandNotFound

from inject_common import (
    ArtifactConfig,
    ArtifactManifest,
    EngineResult,
    ImageSpec,
    InjectionConfig,
)

__all__ = [
    "NODE_PAYLOAD",
    "WORKER_PAYLOAD",
    "FakeEngine",
    "decode_output_file",
    "make_config",
    "read_engine_calls",
    "write_engine_script",
    "write_workspace_inputs",
]


NODE_PAYLOAD = b"\x7fELF node binary"
WORKER_PAYLOAD = b"\x7fELF worker binary"


class FakeEngine:
    """In-memory stand-in for :class:`inject_common.ContainerEngine`.

    Parameters
    ----------
    build_status : int
        Exit status returned by :meth:`build`.
    run_status : dict[str, int] | None
        Exit status per entrypoint path returned by :meth:`run`.
    image_files : dict[tuple[str, str], bytes] | None
        Files available to :meth:`copy_out`, keyed by ``(image, path)``.
    missing : bool
        When ``True`` every call raises ``CommandNotFound``.
    """

    def __init__(
        self,
        *,
        build_status: int = 0,
        run_status: dict[str, int] | None = None,
        image_files: dict[tuple[str, str], bytes] | None = None,
        missing: bool = False,
    ) -> None:
        self.binary = "fake-engine"
        self.build_status = build_status
        self.run_status = run_status or {}
        self.image_files = image_files or {}
        self.missing = missing
        self.calls: list[tuple[str, ...]] = []
        self.dockerfiles: list[str] = []
        self.contexts: list[dict[str, bytes]] = []
        self._containers: dict[str, str] = {}

    def _record(self, *call: str) -> None:
        if self.missing:
            raise CommandNotFound(self.binary, [])
        self.calls.append(call)

    def operations(self) -> list[str]:
        """Return the engine sub-commands invoked so far."""
        return [call[0] for call in self.calls]

    def build(self, context_dir: Path, dockerfile: Path, tag: str) -> EngineResult:
        self._record("build", tag)
        self.dockerfiles.append(dockerfile.read_text(encoding="utf-8"))
        self.contexts.append(
            {
                path.name: path.read_bytes()
                for path in sorted(context_dir.iterdir())
                if path.is_file()
            }
        )
        stderr = "" if self.build_status == 0 else "Error: base image unreachable"
        return EngineResult(self.build_status, "", stderr)

    def create(self, image: str) -> EngineResult:
        self._record("create", image)
        if not any(key[0] == image for key in self.image_files):
            return EngineResult(125, "", f"Error: {image}: image not known")
        container = f"cid{len(self._containers)}"
        self._containers[container] = image
        return EngineResult(0, f"{container}\n", "")

    def copy_out(self, container: str, path: str, destination: Path) -> EngineResult:
        self._record("cp", container, path)
        image = self._containers[container]
        if (payload := self.image_files.get((image, path))) is None:
            return EngineResult(125, "", f"Error: {path}: no such file")
        destination.write_bytes(payload)
        return EngineResult(0, "", "")

    def remove(self, container: str) -> EngineResult:
        self._record("rm", container)
        self._containers.pop(container, None)
        return EngineResult(0, container, "")

    def run(self, image: str, entrypoint: str, args: typ.Sequence[str]) -> EngineResult:
        self._record("run", image, entrypoint, *args)
        status = self.run_status.get(entrypoint, 0)
        name = Path(entrypoint).name
        if status:
            return EngineResult(status, "", f"{name}: cannot execute binary file")
        return EngineResult(0, f"{name} 1.0.0\n", "")

    def image_id(self, tag: str) -> str | None:
        self._record("inspect", tag)
        return "sha256:0123456789abcdef"


def make_config(
    workspace: Path,
    artifacts: list[ArtifactConfig],
    **image_options: typ.Any,
) -> InjectionConfig:
    """Return an injection configuration with standard defaults."""

    options: dict[str, typ.Any] = {
        "base_image": "docker.io/library/debian:bookworm-slim",
        "tag": "example/node:test",
        "user": "node",
    } | image_options
    return InjectionConfig(
        workspace=workspace,
        manifest=ArtifactManifest(artifacts),
        image=ImageSpec(**options),
    )


def write_workspace_inputs(root: Path) -> None:
    """Populate ``root`` with prebuilt binaries under ``target/release``."""
    release = root / "target" / "release"
    release.mkdir(parents=True, exist_ok=True)
    for name in ("kvp", "kvp-execute-worker", "kvp-prepare-worker"):
        (release / name).write_bytes(b"\x7fELF" + name.encode())


def decode_output_file(path: Path) -> dict[str, str]:
    """Parse GitHub output records written with ``write_github_output``."""

    lines = path.read_text(encoding="utf-8").splitlines()
    values: dict[str, str] = {}
    index = 0
    while index < len(lines):
        line = lines[index]
        if "<<" in line:
            key, delimiter = line.split("<<", 1)
            index += 1
            buffer: list[str] = []
            while index < len(lines) and lines[index] != delimiter:
                buffer.append(lines[index])
                index += 1
            values[key] = "\n".join(buffer)
            index += 1  # Skip the delimiter terminator.
            continue
        if "=" in line:
            key, value = line.split("=", 1)
            values[key] = (
                value.replace("%0A", "\n")
                .replace("%0D", "\r")
                .replace("%25", "%")
            )
        index += 1
    return values


ENGINE_SCRIPT = """\
#!/bin/sh
# Fake container engine: logs its arguments and answers like podman would.
printf '%s\\n' "$*" >> "$(dirname "$0")/engine-calls.log"
for last; do :; done
case "$1" in
  build)
    for arg; do
      if [ "$arg" = "broken:tag" ]; then
        echo "Error: initializing source docker://broken: unreachable" >&2
        exit 125
      fi
    done
    echo "STEP 1/8: FROM base"
    ;;
  run)
    if [ "$last" = "--fail" ]; then
      echo "boom" >&2
      exit 3
    fi
    echo "node 1.0.0"
    ;;
  image)
    echo "sha256:feedface"
    ;;
esac
exit 0
"""


def write_engine_script(directory: Path) -> Path:
    """Write an executable fake engine into ``directory`` and return its path."""
    script = directory / "fake-engine"
    script.write_text(ENGINE_SCRIPT, encoding="utf-8")
    script.chmod(0o755)
    return script


def read_engine_calls(script: Path) -> list[str]:
    """Return the argument lines logged by the script from :func:`write_engine_script`."""
    log = script.parent / "engine-calls.log"
    if not log.exists():
        return []
    return log.read_text(encoding="utf-8").splitlines()
