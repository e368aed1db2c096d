import shlex

from pyinfra.api import FactBase

from nomad_bootstrap.lib.linux_helpers import normalize_cpu_arch, strip_cidr_suffix


class CpuArch(FactBase):
    def command(self):
        return "uname -m"

    def process(self, output):
        arch = "".join(output).strip()
        try:
            return normalize_cpu_arch(arch)
        except KeyError:
            return arch


class InterfaceIPv4Addresses(FactBase):
    """IPv4 addresses bound to a network interface, in the order ``ip`` lists them.

    Each line of ``ip -o -4 addr show dev <iface>`` looks like::

        3: wt0    inet 10.0.0.5/24 brd 10.0.0.255 scope global wt0\\       valid_lft ...

    The CIDR suffix is stripped from every address.
    """

    @staticmethod
    def default():
        return []

    def command(self, interface):
        return f"ip -o -4 addr show dev {shlex.quote(interface)}"

    def process(self, output):
        addresses = []
        for line in output:
            tokens = line.split()
            for index, token in enumerate(tokens[:-1]):
                if token == "inet":
                    addresses.append(strip_cidr_suffix(tokens[index + 1]))
                    break
        return addresses


class ServiceState(FactBase):
    """Whether a systemd unit is active and whether it is enabled."""

    @staticmethod
    def default():
        return {"active": False, "enabled": False}

    def command(self, service):
        return (
            f"echo active=$(systemctl is-active {shlex.quote(service)}); "
            f"echo enabled=$(systemctl is-enabled {shlex.quote(service)})"
        )

    def process(self, output):
        state = self.default()
        for line in output:
            key, _, value = line.strip().partition("=")
            if key == "active":
                state["active"] = value == "active"
            elif key == "enabled":
                state["enabled"] = value in {"enabled", "enabled-runtime"}
        return state
