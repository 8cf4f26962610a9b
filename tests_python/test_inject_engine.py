"""Tests for the plumbum-backed container engine wrapper."""

from __future__ import annotations

from pathlib import Path

import pytest
from inject_test_helpers import read_engine_calls, write_engine_script
from plumbum.commands import CommandNotFound

from inject_common import ContainerEngine, EngineResult
from inject_common.environment import DEFAULT_ENGINE, container_engine


class TestContainerEngineSelection:
    """Tests for engine binary selection."""

    def test_defaults_to_podman(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without ``ENGINE`` the default engine is used."""
        monkeypatch.delenv("ENGINE", raising=False)
        assert container_engine() == DEFAULT_ENGINE == "podman"

    def test_reads_engine_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """``ENGINE`` selects the binary."""
        monkeypatch.setenv("ENGINE", "docker")
        assert ContainerEngine().binary == "docker"

    def test_override_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An explicit binary beats the environment."""
        monkeypatch.setenv("ENGINE", "docker")
        assert container_engine(" nerdctl ") == "nerdctl"


class TestContainerEngineCommands:
    """Drive a shell-script engine through plumbum."""

    def test_build_passes_tag_file_and_context(self, tmp_path: Path) -> None:
        """``build`` forwards the tag, Dockerfile and context directory."""
        script = write_engine_script(tmp_path)
        engine = ContainerEngine(str(script))
        context = tmp_path / "stage"
        context.mkdir()

        result = engine.build(context, context / "Dockerfile.injected", "node:test")

        assert result.ok
        assert read_engine_calls(script) == [
            f"build --tag node:test --file {context}/Dockerfile.injected {context}"
        ]

    def test_non_zero_exit_is_returned(self, tmp_path: Path) -> None:
        """Failures are reported through the result, not raised."""
        script = write_engine_script(tmp_path)
        engine = ContainerEngine(str(script))

        result = engine.run("node:test", "/usr/bin/node", ["--fail"])

        assert result.returncode == 3
        assert result.stderr_tail() == "boom"
        assert read_engine_calls(script) == [
            "run --rm --entrypoint /usr/bin/node node:test --fail"
        ]

    def test_image_id(self, tmp_path: Path) -> None:
        """``image_id`` returns the inspected ID."""
        engine = ContainerEngine(str(write_engine_script(tmp_path)))
        assert engine.image_id("node:test") == "sha256:feedface"

    def test_missing_binary_raises(self) -> None:
        """A binary that is not on ``PATH`` raises ``CommandNotFound``."""
        engine = ContainerEngine("definitely-not-a-container-engine")
        with pytest.raises(CommandNotFound):
            engine.run("node:test", "/usr/bin/node", ["--version"])


def test_stderr_tail_falls_back_to_stdout() -> None:
    """Engines that log errors on stdout still produce a useful tail."""
    result = EngineResult(1, "line 1\nline 2\nline 3\n", "")
    assert result.stderr_tail(2) == "line 2\nline 3"
