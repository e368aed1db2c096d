import logging
from pathlib import Path

from nomad_bootstrap.configuration import load_template, render
from nomad_bootstrap.errors import ManagerRejected
from nomad_bootstrap.facts.system import ServiceState
from nomad_bootstrap.host import Host
from nomad_bootstrap.models import InstallSpec, ServiceUnitDescriptor, StepResult

log = logging.getLogger(__name__)

UNIT_TEMPLATE = "nomad.service.j2"
UNIT_FILE_MODE = 0o644
REGISTER_STEP = "register-service"
DEREGISTER_STEP = "deregister-service"


def render_unit(spec: InstallSpec) -> ServiceUnitDescriptor:
    content = render(
        load_template(UNIT_TEMPLATE),
        {
            "user": spec.unit_user,
            "group": spec.unit_user,
            "binary_path": str(spec.binary_path),
            "configuration_directory": str(spec.configuration_directory),
        },
    )
    return ServiceUnitDescriptor(
        name=spec.service_name, path=spec.unit_path, content=content
    )


class ServiceRegistrar:
    """Install systemd units and drive them through the service manager."""

    def __init__(self, host: Host):
        self.host = host

    def _systemctl(self, *args: str) -> None:
        command = ["systemctl", *args]
        log.info("Running %s", " ".join(command))
        self.host.check_run(command, ManagerRejected)

    def register(
        self,
        descriptor: ServiceUnitDescriptor,
        restart: bool = False,  # noqa: FBT001, FBT002
    ) -> StepResult:
        """Write the unit, then reload the manager, enable and start the service.

        A service that is already running is restarted when ``restart`` is set
        (new binary or configuration) or when its unit changed.
        """
        unit_changed = not self.host.exists(descriptor.path) or (
            self.host.read_text(descriptor.path) != descriptor.content
        )
        state = self.host.get_fact(ServiceState, service=descriptor.name)
        if not (unit_changed or restart) and state["active"] and state["enabled"]:
            return StepResult.satisfied(
                REGISTER_STEP, f"{descriptor.name} is enabled and running"
            )

        if unit_changed:
            log.info("Writing service definition %s", descriptor.path)
            self.host.make_directory(Path(descriptor.path).parent)
            self.host.write_text(
                descriptor.path, descriptor.content, mode=UNIT_FILE_MODE
            )
        for command in descriptor.lifecycle_commands:
            self._systemctl(*command[1:])
        if (restart or unit_changed) and state["active"]:
            self._systemctl("restart", descriptor.name)
        return StepResult.applied(REGISTER_STEP, f"{descriptor.name} started")

    def deregister(self, name: str, unit_path: Path) -> StepResult:
        state = self.host.get_fact(ServiceState, service=name)
        unit_present = self.host.exists(unit_path)
        if not (unit_present or state["active"] or state["enabled"]):
            return StepResult.satisfied(DEREGISTER_STEP, f"{name} is not installed")

        if state["active"]:
            self._systemctl("stop", name)
        if state["enabled"]:
            self._systemctl("disable", name)
        if unit_present:
            log.info("Removing service definition %s", unit_path)
            self.host.remove(unit_path)
        self._systemctl("daemon-reload")
        return StepResult.applied(DEREGISTER_STEP, f"{name} removed")

    def status(self, name: str) -> str:
        return self.host.run(["systemctl", "status", name, "--no-pager"]).stdout
