from pathlib import Path

import pytest
from pydantic import ValidationError

from nomad_bootstrap.models import (
    InstallSpec,
    ServiceUnitDescriptor,
    StepResult,
    StepStatus,
)


def test_defaults_match_original_layout():
    spec = InstallSpec()
    assert spec.version == "1.9.6"
    assert spec.binary_path == Path("/usr/local/bin/nomad")
    assert spec.configuration_directory == Path("/etc/nomad.d")
    assert spec.data_directory == Path("/opt/nomad")
    assert spec.unit_path == Path("/etc/systemd/system/nomad.service")
    assert spec.network_interface == "wt0"
    assert spec.unit_user == "root"
    assert not spec.grant_passwordless_sudo
    assert not spec.verify_checksum


def test_download_urls():
    spec = InstallSpec(version="1.10.0", cni_version="1.6.2")
    assert spec.download_url("amd64") == (
        "https://releases.hashicorp.com/nomad/1.10.0/nomad_1.10.0_linux_amd64.zip"
    )
    assert spec.archive_name("arm64") == "nomad_1.10.0_linux_arm64.zip"
    assert spec.checksums_url().endswith("/1.10.0/nomad_1.10.0_SHA256SUMS")
    assert spec.cni_download_url("amd64").endswith(
        "/v1.6.2/cni-plugins-linux-amd64-v1.6.2.tgz"
    )


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("NOMAD_BOOTSTRAP_VERSION", "1.8.0")
    monkeypatch.setenv("NOMAD_BOOTSTRAP_NETWORK_INTERFACE", "eth1")
    spec = InstallSpec()
    assert spec.version == "1.8.0"
    assert spec.network_interface == "eth1"
    assert InstallSpec(version="1.10.0").version == "1.10.0"


def test_spec_is_immutable():
    spec = InstallSpec()
    with pytest.raises(ValidationError):
        spec.version = "2.0.0"


def test_blank_servers_are_dropped():
    assert InstallSpec(servers=[" 10.0.0.1 ", "  "]).servers == ["10.0.0.1"]


def test_unit_user_when_not_root():
    assert InstallSpec(run_as_root=False, service_user="agent").unit_user == "agent"


def test_step_results():
    error = RuntimeError("boom")
    assert StepResult.applied("x").ok
    assert StepResult.satisfied("x").status is StepStatus.already_satisfied
    failed = StepResult.failed("x", error)
    assert not failed.ok
    assert failed.error is error
    assert failed.detail == "boom"


def test_unit_lifecycle_commands_are_ordered():
    descriptor = ServiceUnitDescriptor(
        name="nomad", path=Path("/etc/systemd/system/nomad.service"), content=""
    )
    assert descriptor.lifecycle_commands == [
        ["systemctl", "daemon-reload"],
        ["systemctl", "enable", "nomad"],
        ["systemctl", "start", "nomad"],
    ]
