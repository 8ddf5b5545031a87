"""Pipeline and build configuration models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildType(str, Enum):
    DEBUG = "debug"
    RELEASE = "release"
    PLAIN = "plain"


class WrapMode(str, Enum):
    """Whether meson may download subproject wraps."""

    ALLOW_DOWNLOAD = "allow-download"
    NO_DOWNLOAD = "no-download"

    @property
    def meson_value(self) -> str:
        return "default" if self is WrapMode.ALLOW_DOWNLOAD else "nodownload"


def _flag(value: bool) -> str:
    return "true" if value else "false"


class BuildOptions(BaseModel):
    """The fixed option set handed to ``meson setup``."""

    model_config = ConfigDict(frozen=True)

    prefix: str = "/usr"
    lib_dir: str = "lib"
    sbin_dir: str = "bin"
    build_type: BuildType = BuildType.RELEASE
    wrap_mode: WrapMode = WrapMode.NO_DOWNLOAD
    lto: bool = True
    pie: bool = True
    offline: bool = False

    @field_validator("prefix")
    @classmethod
    def _prefix_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"prefix must be an absolute path, got {value!r}")
        return value

    def as_mapping(self) -> dict[str, str]:
        """Option name -> value, exactly as meson receives them."""
        return {
            "prefix": self.prefix,
            "libdir": self.lib_dir,
            "sbindir": self.sbin_dir,
            "buildtype": self.build_type.value,
            "wrap_mode": self.wrap_mode.meson_value,
            "b_lto": _flag(self.lto),
            "b_pie": _flag(self.pie),
            "offline": _flag(self.offline),
        }

    def meson_arguments(self) -> list[str]:
        mapping = self.as_mapping()
        return [
            f"--prefix={mapping['prefix']}",
            f"--libdir={mapping['libdir']}",
            f"--sbindir={mapping['sbindir']}",
            f"--buildtype={mapping['buildtype']}",
            f"--wrap-mode={mapping['wrap_mode']}",
            f"-Db_lto={mapping['b_lto']}",
            f"-Db_pie={mapping['b_pie']}",
            f"-Doffline={mapping['offline']}",
        ]


class TimeoutPolicy(BaseModel):
    """Per-test timeout multiplier for ``meson test``.

    A multiplier of 0 means unbounded: meson disables timeouts entirely.
    """

    model_config = ConfigDict(frozen=True)

    multiplier: float = Field(default=1.0, ge=0)

    @classmethod
    def parse(cls, value: str | float | None) -> "TimeoutPolicy":
        if value is None:
            return cls()
        if isinstance(value, str):
            text = value.strip().lower()
            if text in ("unbounded", "none", "infinite"):
                return cls(multiplier=0)
            try:
                multiplier = float(text)
            except ValueError:
                raise ValueError(
                    f"timeout multiplier must be a number or 'unbounded', got {value!r}"
                ) from None
            return cls(multiplier=multiplier)
        return cls(multiplier=value)

    @property
    def unbounded(self) -> bool:
        return self.multiplier == 0

    def meson_argument(self) -> str:
        # meson wants an int for whole multipliers, e.g. "0" not "0.0"
        value = self.multiplier
        return str(int(value)) if value == int(value) else str(value)


class SourceSpec(BaseModel):
    """Where the source comes from and what is applied on top."""

    model_config = ConfigDict(frozen=True)

    repository_url: str
    revision: str
    patch_files: list[Path] = []


class PipelineConfig(BaseModel):
    """Everything one pipeline run needs, resolved from settings and CLI."""

    model_config = ConfigDict(frozen=True)

    package_name: str = "spot"
    work_root: Path = Path("work")
    build_root: Path | None = None
    staging_root: Path | None = None
    source: SourceSpec | None = None
    build_options: BuildOptions = BuildOptions()
    timeout_policy: TimeoutPolicy = TimeoutPolicy()
    run_tests: bool = True
    verification_fatal: bool = True
    pipeline_timeout: float | None = None
    license_file: Path | None = None

    # Credential routing
    ssh_host: str = "github.com"
    ssh_user: str = "git"

    @property
    def control_dir(self) -> Path:
        return self.work_root / ".pkgforge"

    @property
    def state_path(self) -> Path:
        return self.control_dir / "state.json"

    @property
    def key_store_path(self) -> Path:
        return self.control_dir / "keys"

    @property
    def source_dir(self) -> Path:
        return self.work_root / self.package_name

    @property
    def build_dir(self) -> Path:
        return self.build_root or self.work_root / "build"

    @property
    def staging_dir(self) -> Path:
        return self.staging_root or self.work_root / "pkg"
