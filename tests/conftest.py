"""Shared test fixtures for pkgforge.

The fakes themselves live in ``helpers`` so test modules can import them
directly.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from helpers import AUTH_TOKEN, ENDPOINT, FakeRunner, FakeTransport, script_happy_path
from pkgforge.config import ForgeSettings
from pkgforge.core.orchestrator import Orchestrator
from pkgforge.models.config import BuildOptions, PipelineConfig, SourceSpec
from pkgforge.stages.credentials import FileKeyStore

@pytest.fixture
def fake_runner() -> FakeRunner:
    """A runner where every tool succeeds and leaves realistic files behind."""
    return script_happy_path(FakeRunner())


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def patch_file(tmp_path: Path) -> Path:
    path = tmp_path / "add-file.patch"
    path.write_text(
        "--- /dev/null\n"
        "+++ b/data/added-by-patch.txt\n"
        "@@ -0,0 +1 @@\n"
        "+patched\n"
    )
    return path


@pytest.fixture
def settings() -> ForgeSettings:
    return ForgeSettings(
        _env_file=None,
        token_endpoint=ENDPOINT,
        auth_token=AUTH_TOKEN,
    )


@pytest.fixture
def pipeline_config(tmp_path: Path, patch_file: Path) -> PipelineConfig:
    return PipelineConfig(
        package_name="spot",
        work_root=tmp_path / "work",
        source=SourceSpec(
            repository_url="https://github.com/xou816/spot.git",
            revision="0.4.1",
            patch_files=[patch_file],
        ),
        build_options=BuildOptions(
            prefix="/usr", build_type="release", lto=True, pie=True, offline=False
        ),
    )


@pytest.fixture
def key_store(pipeline_config: PipelineConfig) -> FileKeyStore:
    return FileKeyStore(pipeline_config.key_store_path)


@pytest.fixture
def make_orchestrator(
    pipeline_config: PipelineConfig,
    settings: ForgeSettings,
    fake_runner: FakeRunner,
    fake_transport: FakeTransport,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to the fakes.

    Each call builds a fresh instance over the same work root, the way
    separate CLI invocations would.
    """

    def _factory(**overrides: Any) -> Orchestrator:
        config = pipeline_config.model_copy(update=overrides.pop("config", {}))
        return Orchestrator(
            config,
            settings=overrides.pop("settings", settings),
            runner=overrides.pop("runner", fake_runner),
            transport=overrides.pop("transport", fake_transport),
            **overrides,
        )

    return _factory


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., Orchestrator]) -> Orchestrator:
    return make_orchestrator()

