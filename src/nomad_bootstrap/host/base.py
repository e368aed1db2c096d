import abc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Host(abc.ABC):
    """Every side effect a provisioning run has on a machine goes through a Host.

    The provisioner assumes it has exclusive control of the host for the
    duration of a run.
    """

    @abc.abstractmethod
    def is_root(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def which(self, command: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def run(self, args: list[str]) -> CommandResult:
        raise NotImplementedError

    @abc.abstractmethod
    def get_fact(self, fact_cls, **kwargs):
        """Gather a pyinfra style fact from the host.

        The fact's command is executed and its output lines handed to the
        fact's ``process`` method. A failing command yields ``fact.default()``.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def user_exists(self, name: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def exists(self, path: Path) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def read_bytes(self, path: Path) -> bytes:
        raise NotImplementedError

    @abc.abstractmethod
    def write_bytes(self, path: Path, data: bytes, mode: int | None = None) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def make_directory(self, path: Path, mode: int | None = None) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def chmod(self, path: Path, mode: int) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def chown(self, path: Path, owner: str, recursive: bool = False) -> None:  # noqa: FBT001, FBT002
        raise NotImplementedError

    @abc.abstractmethod
    def move(self, source: Path, destination: Path) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def remove(self, path: Path) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def remove_tree(self, path: Path) -> None:
        raise NotImplementedError

    def read_text(self, path: Path) -> str:
        return self.read_bytes(path).decode("utf8")

    def write_text(self, path: Path, text: str, mode: int | None = None) -> None:
        self.write_bytes(path, text.encode("utf8"), mode=mode)

    def check_run(self, args: list[str], error_cls) -> CommandResult:
        result = self.run(args)
        if not result.ok:
            raise error_cls(args, result.returncode, result.stderr)
        return result
