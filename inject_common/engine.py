"""Thin wrapper around the container engine command line.

The wrapper shells out through :mod:`plumbum` so the same code drives
``podman`` and ``docker``. Calls never raise on a non-zero exit; callers
inspect :class:`EngineResult` and translate failures into the error of
their stage. A missing engine binary surfaces as
:class:`plumbum.commands.CommandNotFound`.
"""

from __future__ import annotations

import dataclasses
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands import CommandNotFound

from .environment import container_engine

if typ.TYPE_CHECKING:
    from plumbum.commands.base import BaseCommand

__all__ = [
    "CommandNotFound",
    "ContainerEngine",
    "Engine",
    "EngineResult",
]


@dataclasses.dataclass(slots=True, frozen=True)
class EngineResult:
    """Outcome of a single engine invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, lines: int = 20) -> str:
        """Return the last ``lines`` lines of stderr (or stdout when empty)."""
        text = (self.stderr or self.stdout).strip()
        return "\n".join(text.splitlines()[-lines:])


class Engine(typ.Protocol):
    """Operations the pipeline needs from a container engine."""

    binary: str

    def build(self, context_dir: Path, dockerfile: Path, tag: str) -> EngineResult: ...

    def create(self, image: str) -> EngineResult: ...

    def copy_out(self, container: str, path: str, destination: Path) -> EngineResult: ...

    def remove(self, container: str) -> EngineResult: ...

    def run(self, image: str, entrypoint: str, args: typ.Sequence[str]) -> EngineResult: ...

    def image_id(self, tag: str) -> str | None: ...


class ContainerEngine:
    """Drive ``podman``/``docker`` through :data:`plumbum.local`.

    Parameters
    ----------
    binary : str | None, optional
        Engine executable name or path. Defaults to ``$ENGINE`` or ``podman``.

    Examples
    --------
    >>> engine = ContainerEngine("docker")  # doctest: +SKIP
    >>> engine.run("node:local", "/usr/bin/node", ["--version"]).ok  # doctest: +SKIP
    True
    """

    def __init__(self, binary: str | None = None) -> None:
        self.binary = container_engine(binary)
        self._command: BaseCommand | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.binary!r})"

    def _invoke(self, *args: str) -> EngineResult:
        if self._command is None:
            self._command = local[self.binary]
        print(f"-> {self.binary} {' '.join(args)}")
        returncode, stdout, stderr = self._command[args].run(retcode=None)
        return EngineResult(int(returncode), stdout, stderr)

    def build(self, context_dir: Path, dockerfile: Path, tag: str) -> EngineResult:
        return self._invoke(
            "build",
            "--tag",
            tag,
            "--file",
            dockerfile.as_posix(),
            context_dir.as_posix(),
        )

    def create(self, image: str) -> EngineResult:
        # The container is never started; the command only satisfies images
        # without a default CMD.
        return self._invoke("create", image, "true")

    def copy_out(self, container: str, path: str, destination: Path) -> EngineResult:
        return self._invoke("cp", f"{container}:{path}", destination.as_posix())

    def remove(self, container: str) -> EngineResult:
        return self._invoke("rm", "--force", container)

    def run(self, image: str, entrypoint: str, args: typ.Sequence[str]) -> EngineResult:
        return self._invoke("run", "--rm", "--entrypoint", entrypoint, image, *args)

    def image_id(self, tag: str) -> str | None:
        """Return the ID of ``tag`` or ``None`` when the engine cannot inspect it."""
        result = self._invoke("image", "inspect", "--format", "{{.Id}}", tag)
        if not result.ok:
            return None
        return result.stdout.strip() or None
