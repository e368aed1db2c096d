import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import SettingsConfigDict

from nomad_bootstrap.lib.linux_helpers import SUDOERS_DIRECTORY
from nomad_bootstrap.lib.model_helpers import BootstrapSettings

NOMAD_RELEASES_URL = "https://releases.hashicorp.com/nomad"
DEFAULT_CONFIG_ARCHIVE_URL = (
    "https://github.com/Quok-it/nomadClientConfig/archive/refs/tags/awsless.zip"
)


class InstallSpec(BootstrapSettings):
    """Desired end state of a Nomad agent installation on a single host.

    Values are read from ``NOMAD_BOOTSTRAP_*`` environment variables and may be
    overridden by keyword arguments (which is how the command line populates
    it). Instances are immutable.
    """

    model_config = SettingsConfigDict(env_prefix="nomad_bootstrap_", frozen=True)

    version: str = "1.9.6"
    download_url_template: str = (
        NOMAD_RELEASES_URL + "/{version}/nomad_{version}_linux_{arch}.zip"
    )
    checksums_url_template: str = (
        NOMAD_RELEASES_URL + "/{version}/nomad_{version}_SHA256SUMS"
    )
    verify_checksum: bool = False
    arch: str | None = None
    binary_path: Path = Path("/usr/local/bin/nomad")
    configuration_directory: Path = Path("/etc/nomad.d")
    data_directory: Path = Path("/opt/nomad")
    scratch_directory: Path = Path("/tmp/nomad_install")  # noqa: S108
    service_name: str = "nomad"
    unit_path: Path = Path("/etc/systemd/system/nomad.service")
    service_user: str = "nomad"
    run_as_root: bool = True
    grant_passwordless_sudo: bool = False
    network_interface: str = "wt0"
    servers: list[str] = Field(default_factory=list)
    config_source: Literal["inline", "archive"] = "inline"
    config_archive_url: str = DEFAULT_CONFIG_ARCHIVE_URL
    enable_docker_plugin: bool = True
    enable_raw_exec_plugin: bool = True
    cni_version: str | None = None
    cni_url_template: str = (
        "https://github.com/containernetworking/plugins/releases/download/"
        "v{version}/cni-plugins-linux-{arch}-v{version}.tgz"
    )
    cni_directory: Path = Path("/opt/cni/bin")

    @field_validator("servers")
    @classmethod
    def strip_blank_servers(cls, servers: list[str]) -> list[str]:
        return [server.strip() for server in servers if server.strip()]

    @property
    def unit_user(self) -> str:
        return "root" if self.run_as_root else self.service_user

    @property
    def sudoers_path(self) -> Path:
        return SUDOERS_DIRECTORY.joinpath(self.service_user)

    def archive_name(self, arch: str) -> str:
        return Path(self.download_url(arch)).name

    def download_url(self, arch: str) -> str:
        return self.download_url_template.format(version=self.version, arch=arch)

    def checksums_url(self) -> str:
        return self.checksums_url_template.format(version=self.version)

    def cni_download_url(self, arch: str) -> str:
        return self.cni_url_template.format(version=self.cni_version, arch=arch)


class StepStatus(str, enum.Enum):
    already_satisfied = "already-satisfied"
    applied = "applied"
    failed = "failed"


@dataclass(frozen=True)
class StepResult:
    step: str
    status: StepStatus
    detail: str = ""
    error: Exception | None = None

    @classmethod
    def satisfied(cls, step: str, detail: str = "") -> "StepResult":
        return cls(step, StepStatus.already_satisfied, detail)

    @classmethod
    def applied(cls, step: str, detail: str = "") -> "StepResult":
        return cls(step, StepStatus.applied, detail)

    @classmethod
    def failed(cls, step: str, error: Exception) -> "StepResult":
        return cls(step, StepStatus.failed, str(error), error)

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.failed


class ServiceUnitDescriptor(BaseModel):
    """A rendered systemd unit and the commands that activate it once written."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    content: str

    @property
    def lifecycle_commands(self) -> list[list[str]]:
        return [
            ["systemctl", "daemon-reload"],
            ["systemctl", "enable", self.name],
            ["systemctl", "start", self.name],
        ]
