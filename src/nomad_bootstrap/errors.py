"""Exceptions raised while provisioning or removing the Nomad agent.

Every error aborts the run. Nothing is rolled back, so a failure part way
through an install can leave the host partially configured.
"""


class BootstrapError(Exception):
    """Base class for every error surfaced to the command line."""


class PreconditionError(BootstrapError):
    """The host is not fit for provisioning (not root, missing tooling)."""


class CommandFailed(BootstrapError):
    """An external command run on the host exited non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"`{' '.join(self.command)}` exited with status {returncode}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class FetchError(BootstrapError):
    pass


class NetworkError(FetchError):
    pass


class ExtractError(FetchError):
    pass


class ChecksumMismatch(FetchError):
    pass


class ConfigError(BootstrapError):
    pass


class MissingRequiredVar(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Required configuration value '{name}' is empty")


class InterfaceNotFound(ConfigError):
    def __init__(self, interface: str):
        self.interface = interface
        super().__init__(
            f"Could not detect an IPv4 address bound to network interface "
            f"'{interface}'"
        )


class ServiceError(BootstrapError):
    pass


class ManagerRejected(CommandFailed, ServiceError):
    """The service manager refused a lifecycle command."""


class ProvisionError(BootstrapError):
    """A provisioning step failed and the run was aborted."""

    def __init__(self, step: str, cause: BootstrapError, results=None):
        self.step = step
        self.cause = cause
        self.results = list(results or [])
        super().__init__(f"Step '{step}' failed: {cause}")
