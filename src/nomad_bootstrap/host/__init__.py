from nomad_bootstrap.host.base import CommandResult, Host
from nomad_bootstrap.host.local import LocalHost

__all__ = ["CommandResult", "Host", "LocalHost"]
