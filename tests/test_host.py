import os

import pytest
from pyinfra.api import FactBase

from nomad_bootstrap.host import LocalHost


class Lines(FactBase):
    @staticmethod
    def default():
        return ["<default>"]

    def command(self, status=0):
        return f"echo first; echo second; exit {status}"

    def process(self, output):
        return list(output)


@pytest.fixture
def local_host():
    return LocalHost()


def test_get_fact_processes_output(local_host):
    assert local_host.get_fact(Lines) == ["first", "second"]


def test_get_fact_falls_back_to_default(local_host):
    assert local_host.get_fact(Lines, status=3) == ["<default>"]


def test_run_reports_exit_status(local_host):
    result = local_host.run(["sh", "-c", "echo out; echo err >&2; exit 4"])
    assert result.returncode == 4
    assert not result.ok
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"


def test_run_missing_command(local_host):
    result = local_host.run(["nomad-bootstrap-no-such-command"])
    assert result.returncode == 127


def test_is_root_matches_effective_uid(local_host):
    assert local_host.is_root() == (os.geteuid() == 0)


def test_filesystem_operations(local_host, tmp_path):
    directory = tmp_path / "etc" / "nomad.d"
    local_host.make_directory(directory, mode=0o700)
    assert local_host.exists(directory)
    assert directory.stat().st_mode & 0o777 == 0o700

    config = directory / "nomad.hcl"
    local_host.write_text(config, "data_dir = \"/opt/nomad\"\n", mode=0o600)
    assert local_host.read_text(config) == "data_dir = \"/opt/nomad\"\n"
    assert config.stat().st_mode & 0o777 == 0o600

    moved = tmp_path / "nomad.hcl"
    local_host.move(config, moved)
    assert not local_host.exists(config)
    assert local_host.read_bytes(moved).startswith(b"data_dir")

    local_host.remove(moved)
    local_host.remove(moved)
    assert not local_host.exists(moved)

    local_host.remove_tree(tmp_path / "etc")
    local_host.remove_tree(tmp_path / "etc")
    assert not local_host.exists(tmp_path / "etc")
