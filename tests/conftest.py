"""Shared pytest fixtures for nomad-bootstrap tests.

Provisioning runs against ``FakeHost``, an in-memory stand in for a Linux
machine, and downloads are answered by an ``httpx.MockTransport`` so that no
test touches the real filesystem, service manager or network.
"""

import io
import os
import zipfile
from pathlib import Path

import httpx
import pytest

from nomad_bootstrap.facts.system import CpuArch, InterfaceIPv4Addresses, ServiceState
from nomad_bootstrap.host import CommandResult, Host
from nomad_bootstrap.models import InstallSpec

RELEASES = "https://releases.hashicorp.com/nomad"


class FakeHost(Host):
    """In-memory host.

    Installed binaries "run" by echoing their own contents, so an archive whose
    ``nomad`` entry holds ``Nomad v1.10.0`` answers ``nomad version`` correctly.
    """

    def __init__(self):
        self.root = True
        self.tools = {"systemctl", "useradd", "ip"}
        self.machine = "x86_64"
        self.interfaces: dict[str, list[str]] = {}
        self.services: dict[str, dict[str, bool]] = {}
        self.users: set[str] = set()
        self.files: dict[Path, bytes] = {}
        self.modes: dict[Path, int] = {}
        self.owners: dict[Path, str] = {}
        self.directories: set[Path] = set()
        self.commands: list[list[str]] = []
        self.failing_commands: set[tuple[str, ...]] = set()
        for directory in ("/etc", "/opt", "/tmp", "/usr/local/bin"):  # noqa: S108
            self.make_directory(Path(directory))

    def bind_address(self, interface: str, cidr: str, index: int = 3) -> None:
        self.interfaces.setdefault(interface, []).append(
            f"{index}: {interface}    inet {cidr} brd 10.0.0.255 scope global "
            f"{interface}\\       valid_lft forever preferred_lft forever"
        )

    def is_root(self) -> bool:
        return self.root

    def which(self, command: str) -> bool:
        return command in self.tools

    def run(self, args: list[str]) -> CommandResult:
        args = [str(arg) for arg in args]
        self.commands.append(args)
        if tuple(args) in self.failing_commands:
            return CommandResult(args, 1, "", f"{args[0]}: simulated failure")
        if args[0] == "systemctl":
            return self._systemctl(args)
        if args[0] == "useradd":
            self.users.add(args[-1])
            return CommandResult(args, 0)
        path = Path(args[0])
        if path in self.files:
            return CommandResult(args, 0, self.files[path].decode())
        return CommandResult(args, 127, "", f"{args[0]}: command not found")

    def _systemctl(self, args: list[str]) -> CommandResult:
        action = args[1]
        if action == "daemon-reload":
            return CommandResult(args, 0)
        name = args[2]
        state = self.services.setdefault(name, {"active": False, "enabled": False})
        unit_exists = any(path.name == f"{name}.service" for path in self.files)
        if action in {"enable", "start", "restart"} and not unit_exists:
            return CommandResult(args, 5, "", f"Unit {name}.service not found.")
        if action == "enable":
            state["enabled"] = True
        elif action == "disable":
            state["enabled"] = False
        elif action in {"start", "restart"}:
            state["active"] = True
        elif action == "stop":
            state["active"] = False
        elif action == "status":
            status = "active (running)" if state["active"] else "inactive (dead)"
            return CommandResult(
                args, 0, f"{name}.service - Nomad\n   Active: {status}"
            )
        return CommandResult(args, 0)

    def get_fact(self, fact_cls, **kwargs):
        fact = fact_cls()
        if fact_cls is InterfaceIPv4Addresses:
            output = self.interfaces.get(kwargs["interface"])
        elif fact_cls is ServiceState:
            state = self.services.get(
                kwargs["service"], {"active": False, "enabled": False}
            )
            output = [
                f"active={'active' if state['active'] else 'inactive'}",
                f"enabled={'enabled' if state['enabled'] else 'disabled'}",
            ]
        elif fact_cls is CpuArch:
            output = [self.machine]
        else:
            output = None
        if output is None:
            return fact.default()
        return fact.process(output)

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def exists(self, path: Path) -> bool:
        path = Path(path)
        return path in self.files or path in self.directories

    def read_bytes(self, path: Path) -> bytes:
        try:
            return self.files[Path(path)]
        except KeyError:
            raise FileNotFoundError(str(path)) from None

    def write_bytes(self, path: Path, data: bytes, mode: int | None = None) -> None:
        path = Path(path)
        if path.parent not in self.directories:
            raise FileNotFoundError(str(path.parent))
        self.files[path] = data
        if mode is not None:
            self.modes[path] = mode

    def make_directory(self, path: Path, mode: int | None = None) -> None:
        path = Path(path)
        self.directories.update([path, *path.parents])
        if mode is not None:
            self.modes[path] = mode

    def chmod(self, path: Path, mode: int) -> None:
        self.modes[Path(path)] = mode

    def chown(self, path: Path, owner: str, recursive: bool = False) -> None:  # noqa: ARG002, FBT001, FBT002
        self.owners[Path(path)] = owner

    def move(self, source: Path, destination: Path) -> None:
        self.write_bytes(destination, self.files.pop(Path(source)))

    def remove(self, path: Path) -> None:
        self.files.pop(Path(path), None)

    def remove_tree(self, path: Path) -> None:
        path = Path(path)
        for candidate in list(self.files):
            if candidate == path or path in candidate.parents:
                del self.files[candidate]
        self.directories = {
            directory
            for directory in self.directories
            if directory != path and path not in directory.parents
        }


def make_zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, contents in entries.items():
            archive.writestr(name, contents)
    return buffer.getvalue()


class ReleaseServer:
    """Serves canned responses by URL and records every request made."""

    def __init__(self):
        self.responses: dict[str, tuple[int, bytes]] = {}
        self.requests: list[str] = []

    def add(self, url: str, content: bytes, status_code: int = 200) -> None:
        self.responses[url] = (status_code, content)

    def add_nomad(self, version: str, arch: str = "amd64") -> bytes:
        archive = make_zip({"nomad": f"Nomad v{version}\n".encode()})
        self.add(f"{RELEASES}/{version}/nomad_{version}_linux_{arch}.zip", archive)
        return archive

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        status_code, content = self.responses.get(url, (404, b"Not Found"))
        return httpx.Response(status_code, content=content)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for name in list(os.environ):
        if name.lower().startswith("nomad_bootstrap_"):
            monkeypatch.delenv(name)


@pytest.fixture
def fake_host() -> FakeHost:
    host = FakeHost()
    host.bind_address("wt0", "10.0.0.5/24")
    return host


@pytest.fixture
def release_server() -> ReleaseServer:
    server = ReleaseServer()
    server.add_nomad("1.10.0")
    return server


@pytest.fixture
def http_client(release_server):
    with httpx.Client(transport=httpx.MockTransport(release_server.handler)) as client:
        yield client


@pytest.fixture
def install_spec() -> InstallSpec:
    return InstallSpec(version="1.10.0", servers=["10.0.0.1"])
