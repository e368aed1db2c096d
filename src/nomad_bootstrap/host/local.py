import logging
import os
import pwd
import shutil
import subprocess
from pathlib import Path

from nomad_bootstrap.host.base import CommandResult, Host

log = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


class LocalHost(Host):
    """Host implementation acting on the machine the tool is running on."""

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def which(self, command: str) -> bool:
        return shutil.which(command) is not None

    def run(self, args: list[str]) -> CommandResult:
        log.debug("Running %s", args)
        try:
            completed = subprocess.run(  # noqa: S603
                args, capture_output=True, text=True, check=False
            )
        except FileNotFoundError as exc:
            return CommandResult(args, COMMAND_NOT_FOUND, "", str(exc))
        return CommandResult(
            args, completed.returncode, completed.stdout, completed.stderr
        )

    def get_fact(self, fact_cls, **kwargs):
        fact = fact_cls()
        command = fact.command(**kwargs)
        result = self.run(["sh", "-c", command])
        if not result.ok:
            log.debug(
                "Fact %s returned %s: %s",
                fact_cls.__name__,
                result.returncode,
                result.stderr.strip(),
            )
            return fact.default()
        return fact.process(result.stdout.splitlines())

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write_bytes(self, path: Path, data: bytes, mode: int | None = None) -> None:
        Path(path).write_bytes(data)
        if mode is not None:
            self.chmod(path, mode)

    def make_directory(self, path: Path, mode: int | None = None) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)
        if mode is not None:
            self.chmod(path, mode)

    def chmod(self, path: Path, mode: int) -> None:
        Path(path).chmod(mode)

    def chown(self, path: Path, owner: str, recursive: bool = False) -> None:  # noqa: FBT001, FBT002
        shutil.chown(path, user=owner, group=owner)
        if recursive and Path(path).is_dir():
            for root, dirs, files in os.walk(path):
                for name in dirs + files:
                    shutil.chown(Path(root, name), user=owner, group=owner)

    def move(self, source: Path, destination: Path) -> None:
        shutil.move(str(source), str(destination))

    def remove(self, path: Path) -> None:
        Path(path).unlink(missing_ok=True)

    def remove_tree(self, path: Path) -> None:
        if Path(path).exists():
            shutil.rmtree(path)
