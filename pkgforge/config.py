"""Environment-driven settings.

Centralized config using pydantic-settings. Reads from a .env file and
PKGFORGE_* environment variables; CLI options override both.

Examples
--------
Override via environment::

    export PKGFORGE_PREFIX=/usr
    export PKGFORGE_BUILD_TYPE=release
    export PKGFORGE_LTO=true
    export PKGFORGE_AUTH_TOKEN=...        # never pass the token on argv

Or via .env file::

    PKGFORGE_REPOSITORY_URL=https://github.com/xou816/spot
    PKGFORGE_REVISION=0.4.1
    PKGFORGE_TOKEN_ENDPOINT=https://keys.example.org/deploy-key
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from pkgforge.models.config import (
    BuildOptions,
    BuildType,
    PipelineConfig,
    SourceSpec,
    TimeoutPolicy,
    WrapMode,
)


class ForgeSettings(BaseSettings):
    """Settings with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PKGFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Layout
    package_name: str = "spot"
    workdir: Path = Path("work")
    builddir: Path | None = None
    destdir: Path | None = None
    license_file: Path | None = None

    # Source
    repository_url: str = ""
    revision: str = ""
    patch_files: list[Path] = []

    # Credential endpoint. The token only ever comes from the environment.
    token_endpoint: str = ""
    auth_token: SecretStr = SecretStr("")
    token_param: str = "token"
    require_https: bool = False
    ssh_host: str = "github.com"
    ssh_hostname: str | None = None
    ssh_user: str = "git"

    # meson options
    prefix: str = "/usr"
    lib_dir: str = "lib"
    sbin_dir: str = "bin"
    build_type: BuildType = BuildType.RELEASE
    wrap_mode: WrapMode = WrapMode.NO_DOWNLOAD
    lto: bool = True
    pie: bool = True
    offline: bool = False

    # Verification and timeouts
    test_timeout: str = "1"
    run_tests: bool = True
    verification_fatal: bool = True
    pipeline_timeout: float | None = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def enforce_https(self) -> bool:
        """Production never sends the token over plain http."""
        return self.require_https or self.is_production

    def build_options(self) -> BuildOptions:
        return BuildOptions(
            prefix=self.prefix,
            lib_dir=self.lib_dir,
            sbin_dir=self.sbin_dir,
            build_type=self.build_type,
            wrap_mode=self.wrap_mode,
            lto=self.lto,
            pie=self.pie,
            offline=self.offline,
        )

    def pipeline_config(self, **overrides: Any) -> PipelineConfig:
        """Resolve a PipelineConfig; *overrides* win over settings."""
        source = None
        if self.repository_url:
            source = SourceSpec(
                repository_url=self.repository_url,
                revision=self.revision or "HEAD",
                patch_files=self.patch_files,
            )
        values: dict[str, Any] = {
            "package_name": self.package_name,
            "work_root": self.workdir,
            "build_root": self.builddir,
            "staging_root": self.destdir,
            "license_file": self.license_file,
            "source": source,
            "build_options": self.build_options(),
            "timeout_policy": TimeoutPolicy.parse(self.test_timeout),
            "run_tests": self.run_tests,
            "verification_fatal": self.verification_fatal,
            "pipeline_timeout": self.pipeline_timeout,
            "ssh_host": self.ssh_host,
            "ssh_user": self.ssh_user,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return PipelineConfig(**values)
