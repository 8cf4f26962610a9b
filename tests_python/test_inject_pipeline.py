"""End-to-end tests for the fetch -> compose -> verify pipeline."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import httpx
import pytest
from inject_test_helpers import (
    NODE_PAYLOAD,
    WORKER_PAYLOAD,
    FakeEngine,
    decode_output_file,
    make_config,
    write_workspace_inputs,
)

from inject_common import (
    ArtifactConfig,
    ComposeError,
    ConfigError,
    ConfigOverrides,
    FetchError,
    VerifyError,
    inject_artifacts,
    load_config,
)

REPO_ROOT = Path(__file__).resolve().parent.parent


def test_single_http_artifact_scenario(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """A one-artefact manifest yields an image whose entrypoint is that artefact."""
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )

    result = inject_artifacts(config, engine=engine, client=http_client)

    assert result.tag == "example/node:test"
    assert result.image_id == "sha256:0123456789abcdef"
    assert 'ENTRYPOINT ["/usr/local/bin/node"]' in result.dockerfile
    assert [item.name for item in result.verified] == ["node"]
    assert engine.calls[-1] == (
        "run",
        "example/node:test",
        "/usr/local/bin/node",
        "--version",
    )
    assert result.staging_dir is None, "Temporary staging should be removed"
    assert not result.artifacts[0].path.exists()


def test_every_artifact_is_copied_and_made_executable(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """N artefacts produce N ``COPY`` lines and ``chmod`` coverage."""
    config = make_config(
        workspace,
        [
            ArtifactConfig(name="node", source="http://example/node"),
            ArtifactConfig(name="worker", source="http://example/worker"),
        ],
    )

    result = inject_artifacts(config, engine=engine, client=http_client)

    copies = [line for line in result.dockerfile.splitlines() if line.startswith("COPY")]
    assert copies == [
        'COPY ["node", "/usr/local/bin/node"]',
        'COPY ["worker", "/usr/local/bin/worker"]',
    ]
    assert "RUN chmod 0755 /usr/local/bin/node /usr/local/bin/worker" in result.dockerfile
    assert set(engine.contexts[0]) >= {"node", "worker"}


def test_fetch_failure_prevents_build(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """A 404 aborts the run before any image build is attempted."""
    config = make_config(
        workspace,
        [
            ArtifactConfig(name="node", source="http://example/node"),
            ArtifactConfig(name="missing", source="http://example/missing"),
        ],
    )

    with pytest.raises(FetchError) as exc:
        inject_artifacts(config, engine=engine, client=http_client)

    assert exc.value.artifact == "missing"
    assert "build" not in engine.operations()


def test_compose_failure_skips_verification(
    workspace: Path, http_client: httpx.Client
) -> None:
    """A failed build stops the pipeline before verification."""
    engine = FakeEngine(build_status=1)
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )

    with pytest.raises(ComposeError):
        inject_artifacts(config, engine=engine, client=http_client)

    assert "run" not in engine.operations()


def test_verify_failure_propagates(
    workspace: Path, http_client: httpx.Client
) -> None:
    """Verification failures surface the artefact and exit status."""
    engine = FakeEngine(run_status={"/usr/local/bin/node": 2})
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )

    with pytest.raises(VerifyError) as exc:
        inject_artifacts(config, engine=engine, client=http_client)

    assert (exc.value.artifact, exc.value.exit_code) == ("node", 2)


def test_skip_verification(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """``verify=False`` stops after the build."""
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )

    result = inject_artifacts(config, engine=engine, client=http_client, verify=False)

    assert result.verified == []
    assert "run" not in engine.operations()


def test_rebuild_is_idempotent(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """Unchanged inputs produce the same Dockerfile and build context."""
    config = make_config(
        workspace,
        [
            ArtifactConfig(name="node", source="http://example/node"),
            ArtifactConfig(name="worker", source="http://example/worker"),
        ],
        uid=1000,
        volumes=["/data"],
    )

    first = inject_artifacts(config, engine=engine, client=http_client)
    second = inject_artifacts(config, engine=engine, client=http_client)

    assert first.dockerfile == second.dockerfile
    assert engine.dockerfiles[0] == engine.dockerfiles[1]
    assert engine.contexts[0] == engine.contexts[1]


def test_explicit_staging_dir_is_kept(
    workspace: Path, tmp_path: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """Caller supplied staging directories are left in place and reusable."""
    staging_dir = tmp_path / "stage"
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )
    config.staging_dir = staging_dir

    first = inject_artifacts(config, engine=engine, client=http_client)
    (staging_dir / "notes.txt").write_text("kept", encoding="utf-8")
    second = inject_artifacts(config, engine=engine, client=http_client)

    assert first.staging_dir == second.staging_dir == staging_dir
    assert (staging_dir / "artifacts" / "node").read_bytes() == NODE_PAYLOAD
    assert (staging_dir / "checksums" / "node.sha256").is_file()
    assert (staging_dir / "notes.txt").read_text(encoding="utf-8") == "kept"
    assert engine.contexts[1] == {"node": NODE_PAYLOAD}


def test_refuses_foreign_staging_dir(workspace: Path, engine: FakeEngine) -> None:
    """A non-empty directory the tool did not create is never cleared."""
    write_workspace_inputs(workspace)
    bin_folder = workspace / "target" / "release"
    config = load_config(
        None,
        REPO_ROOT / ".github" / "image-injection.toml",
        ConfigOverrides(binaries=["kvp"], bin_folder=bin_folder, staging_dir=bin_folder),
    )

    with pytest.raises(ConfigError, match="non-empty staging directory"):
        inject_artifacts(config, engine=engine)

    assert (bin_folder / "kvp").is_file(), "Source binaries must survive"
    assert engine.calls == []


def test_refuses_staging_dir_containing_workspace(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """The workspace cannot live inside the staging directory."""
    config = make_config(
        workspace, [ArtifactConfig(name="node", source="http://example/node")]
    )
    config.staging_dir = workspace.parent

    with pytest.raises(ConfigError, match="must not contain the workspace"):
        inject_artifacts(config, engine=engine, client=http_client)

    assert workspace.is_dir()


@pytest.mark.parametrize(
    "shadow",
    [
        pytest.param("worker.sha256", id="checksum_sidecar_name"),
        pytest.param("Dockerfile.injected", id="dockerfile_name"),
    ],
)
def test_artifact_names_cannot_shadow_staging_files(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client, shadow: str
) -> None:
    """Artefacts named like the tool's own files keep their fetched bytes."""
    config = make_config(
        workspace,
        [
            ArtifactConfig(name=shadow, source="http://example/worker"),
            ArtifactConfig(name="worker", source="http://example/worker"),
        ],
    )

    inject_artifacts(config, engine=engine, client=http_client)

    assert engine.contexts[0] == {shadow: WORKER_PAYLOAD, "worker": WORKER_PAYLOAD}
    assert engine.dockerfiles[0].startswith("FROM ")


def test_failed_run_removes_temporary_staging(
    workspace: Path,
    engine: FakeEngine,
    http_client: httpx.Client,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """The temporary staging directory is removed even when a stage fails."""
    temp_root = tmp_path / "tmp"
    temp_root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(temp_root))
    config = make_config(
        workspace, [ArtifactConfig(name="missing", source="http://example/missing")]
    )

    with pytest.raises(FetchError):
        inject_artifacts(config, engine=engine, client=http_client)

    assert list(temp_root.iterdir()) == []


def test_exports_github_outputs(
    workspace: Path, engine: FakeEngine, http_client: httpx.Client
) -> None:
    """Workflow outputs describe the image and the injected artefacts."""
    config = make_config(
        workspace,
        [
            ArtifactConfig(name="node", source="http://example/node", target="/usr/bin/node"),
            ArtifactConfig(name="worker", source="http://example/worker"),
        ],
    )
    github_output = workspace / "outputs.txt"

    result = inject_artifacts(
        config, engine=engine, client=http_client, github_output=github_output
    )

    outputs = decode_output_file(github_output)
    assert outputs["image_tag"] == "example/node:test"
    assert outputs["image_id"] == "sha256:0123456789abcdef"
    assert outputs["injected_files"].splitlines() == [
        "/usr/bin/node",
        "/usr/local/bin/worker",
    ]
    assert json.loads(outputs["artifact_map"]) == {
        "node": "/usr/bin/node",
        "worker": "/usr/local/bin/worker",
    }
    checksum_map = json.loads(outputs["checksum_map"])
    assert checksum_map == {item.name: item.checksum for item in result.artifacts}


def test_repository_configuration_end_to_end(
    workspace: Path, engine: FakeEngine
) -> None:
    """The shipped configuration injects the three prebuilt binaries."""
    write_workspace_inputs(workspace)
    config = load_config(REPO_ROOT / ".github" / "image-injection.toml")

    result = inject_artifacts(config, engine=engine)

    assert [item.name for item in result.verified] == [
        "kvp",
        "kvp-execute-worker",
        "kvp-prepare-worker",
    ]
    assert "EXPOSE 30333 9933 9944 9615" in result.dockerfile
    assert 'ENTRYPOINT ["/usr/bin/kvp"]' in result.dockerfile
