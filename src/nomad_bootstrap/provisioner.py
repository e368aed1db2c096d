"""Ordered, idempotent installation and removal of the Nomad agent.

Each step inspects the host first and reports ``already-satisfied`` when there
is nothing to do. The first failing step aborts the run and no later step is
attempted. Nothing that was already changed is rolled back.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from nomad_bootstrap.artifacts import ArtifactFetcher
from nomad_bootstrap.configuration import ConfigSource, config_source_for
from nomad_bootstrap.errors import (
    BootstrapError,
    CommandFailed,
    PreconditionError,
    ProvisionError,
)
from nomad_bootstrap.facts.system import CpuArch
from nomad_bootstrap.host import Host
from nomad_bootstrap.lib.linux_helpers import PRIVATE_DIRECTORY_MODE
from nomad_bootstrap.models import InstallSpec, StepResult
from nomad_bootstrap.service import ServiceRegistrar, render_unit

log = logging.getLogger(__name__)

INSTALL_TOOLS = ("systemctl", "useradd", "ip")
UNINSTALL_TOOLS = ("systemctl",)
DEFAULT_ARCH = "amd64"
CONFIG_FILE_MODE = 0o600
SUDOERS_FILE_MODE = 0o440
CNI_VERSION_MARKER = ".nomad-bootstrap-version"
VERSION_PATTERN = re.compile(r"Nomad v(\S+)")


@dataclass
class RunContext:
    spec: InstallSpec
    arch: str = DEFAULT_ARCH
    configuration_changed: bool = False
    binary_changed: bool = False


Step = tuple[str, Callable[[RunContext], StepResult]]


class Provisioner:
    def __init__(
        self,
        host: Host,
        fetcher: ArtifactFetcher,
        registrar: ServiceRegistrar | None = None,
        config_source: ConfigSource | None = None,
    ):
        self.host = host
        self.fetcher = fetcher
        self.registrar = registrar or ServiceRegistrar(host)
        self.config_source = config_source

    def install(
        self,
        spec: InstallSpec,
        clean: bool = False,  # noqa: FBT001, FBT002
    ) -> list[StepResult]:
        """Bring the host to a running Nomad agent matching ``spec``.

        :param clean: Remove any previous installation before installing.

        :raises ProvisionError: When a step fails. The run stops at that step.
        """
        steps: list[Step] = [("preflight", self._preflight_install)]
        if clean:
            steps.extend(self._removal_steps(purge=False))
        steps.extend(
            [
                ("fetch-artifact", self._fetch_artifact),
                ("system-user", self._system_user),
            ]
        )
        if spec.cni_version:
            steps.append(("cni-plugins", self._cni_plugins))
        steps.extend(
            [
                ("configure", self._configure),
                ("register-service", self._register_service),
            ]
        )
        return self._run(RunContext(spec), steps)

    def uninstall(
        self,
        spec: InstallSpec,
        purge: bool = False,  # noqa: FBT001, FBT002
    ) -> list[StepResult]:
        """Stop and remove the agent. ``purge`` also deletes the data directory."""
        steps: list[Step] = [("preflight", self._preflight_uninstall)]
        steps.extend(self._removal_steps(purge=purge))
        return self._run(RunContext(spec), steps)

    def _run(self, context: RunContext, steps: list[Step]) -> list[StepResult]:
        results: list[StepResult] = []
        for name, step in steps:
            log.info("=== %s ===", name)
            try:
                result = step(context)
            except (BootstrapError, OSError) as exc:
                result = StepResult.failed(name, exc)
            results.append(result)
            if not result.ok:
                log.error("Step %s failed: %s", name, result.detail)
                raise ProvisionError(name, result.error, results)
            log.info("%s: %s %s", name, result.status.value, result.detail)
        return results

    def _removal_steps(self, purge: bool) -> list[Step]:  # noqa: FBT001
        steps: list[Step] = [
            ("deregister-service", self._deregister_service),
            ("remove-binary", self._remove_binary),
            ("remove-configuration", self._remove_configuration),
            ("remove-sudoers", self._remove_sudoers),
        ]
        if purge:
            steps.append(("remove-data", self._remove_data))
        return steps

    def _check_preconditions(self, tools: tuple[str, ...]) -> None:
        if not self.host.is_root():
            msg = "This tool must be run as root. Use sudo."
            raise PreconditionError(msg)
        missing = [tool for tool in tools if not self.host.which(tool)]
        if missing:
            msg = (
                f"Required tools are not installed: {', '.join(missing)}. "
                "Please install them and rerun."
            )
            raise PreconditionError(msg)

    def _preflight_install(self, context: RunContext) -> StepResult:
        self._check_preconditions(INSTALL_TOOLS)
        context.arch = (
            context.spec.arch or self.host.get_fact(CpuArch) or DEFAULT_ARCH
        )
        return StepResult.satisfied(
            "preflight", f"running as root on {context.arch}"
        )

    def _preflight_uninstall(self, context: RunContext) -> StepResult:  # noqa: ARG002
        self._check_preconditions(UNINSTALL_TOOLS)
        return StepResult.satisfied("preflight", "running as root")

    def installed_version(self, binary_path: Path) -> str | None:
        if not self.host.exists(binary_path):
            return None
        result = self.host.run([str(binary_path), "version"])
        match = VERSION_PATTERN.search(result.stdout) if result.ok else None
        return match.group(1) if match else None

    def _fetch_artifact(self, context: RunContext) -> StepResult:
        spec = context.spec
        installed = self.installed_version(spec.binary_path)
        if installed == spec.version:
            return StepResult.satisfied(
                "fetch-artifact", f"nomad {installed} already at {spec.binary_path}"
            )
        sha256sum = None
        if spec.verify_checksum:
            sha256sum = self.fetcher.published_checksum(
                spec.checksums_url(), spec.archive_name(context.arch)
            )
        self.fetcher.fetch(
            spec.version,
            spec.download_url_template,
            spec.binary_path,
            member="nomad",
            arch=context.arch,
            sha256sum=sha256sum,
        )
        context.binary_changed = True
        return StepResult.applied(
            "fetch-artifact",
            f"nomad {spec.version} installed to {spec.binary_path}"
            + (f" (replaced {installed})" if installed else ""),
        )

    def _system_user(self, context: RunContext) -> StepResult:
        spec = context.spec
        changes = []
        if not self.host.user_exists(spec.service_user):
            log.info("Creating %s system user", spec.service_user)
            self.host.check_run(
                [
                    "useradd",
                    "--system",
                    "--home",
                    str(spec.configuration_directory),
                    "--shell",
                    "/bin/false",
                    spec.service_user,
                ],
                CommandFailed,
            )
            changes.append(f"created user {spec.service_user}")
        for directory, mode in (
            (spec.data_directory, None),
            (spec.configuration_directory, PRIVATE_DIRECTORY_MODE),
        ):
            if not self.host.exists(directory):
                changes.append(f"created {directory}")
            self.host.make_directory(directory, mode=mode)
        self.host.chown(spec.data_directory, spec.service_user, recursive=True)
        if not spec.run_as_root:
            self.host.chown(
                spec.configuration_directory, spec.service_user, recursive=True
            )
        if spec.grant_passwordless_sudo:
            grant = f"{spec.service_user} ALL=(ALL) NOPASSWD:ALL\n"
            if not self._file_matches(spec.sudoers_path, grant.encode()):
                log.warning(
                    "Granting %s passwordless root access through %s",
                    spec.service_user,
                    spec.sudoers_path,
                )
                self.host.make_directory(spec.sudoers_path.parent)
                self.host.write_text(spec.sudoers_path, grant, mode=SUDOERS_FILE_MODE)
                changes.append(f"wrote {spec.sudoers_path}")
        if changes:
            return StepResult.applied("system-user", ", ".join(changes))
        return StepResult.satisfied(
            "system-user", f"user {spec.service_user} and directories exist"
        )

    def _cni_plugins(self, context: RunContext) -> StepResult:
        spec = context.spec
        marker = spec.cni_directory.joinpath(CNI_VERSION_MARKER)
        if self._file_matches(marker, spec.cni_version.encode()):
            return StepResult.satisfied(
                "cni-plugins", f"CNI plugins {spec.cni_version} present"
            )
        installed = self.fetcher.fetch_bundle(
            spec.cni_download_url(context.arch), spec.cni_directory
        )
        self.host.write_text(marker, spec.cni_version)
        return StepResult.applied(
            "cni-plugins",
            f"installed {len(installed)} CNI plugins to {spec.cni_directory}",
        )

    def _configure(self, context: RunContext) -> StepResult:
        spec = context.spec
        source = self.config_source or config_source_for(spec, self.fetcher)
        written = []
        for path, contents in source.files(spec, self.host):
            if self._file_matches(path, contents):
                continue
            log.info("Writing configuration file %s", path)
            self.host.write_bytes(path, contents, mode=CONFIG_FILE_MODE)
            written.append(str(path))
        context.configuration_changed = bool(written)
        if written:
            return StepResult.applied("configure", f"wrote {', '.join(written)}")
        return StepResult.satisfied(
            "configure", f"{source.name} configuration is current"
        )

    def _register_service(self, context: RunContext) -> StepResult:
        return self.registrar.register(
            render_unit(context.spec),
            restart=context.configuration_changed or context.binary_changed,
        )

    def _deregister_service(self, context: RunContext) -> StepResult:
        return self.registrar.deregister(
            context.spec.service_name, context.spec.unit_path
        )

    def _remove_path(self, step: str, path: Path, tree: bool = False) -> StepResult:  # noqa: FBT001, FBT002
        if not self.host.exists(path):
            return StepResult.satisfied(step, f"{path} does not exist")
        log.info("Removing %s", path)
        if tree:
            self.host.remove_tree(path)
        else:
            self.host.remove(path)
        return StepResult.applied(step, f"removed {path}")

    def _remove_binary(self, context: RunContext) -> StepResult:
        return self._remove_path("remove-binary", context.spec.binary_path)

    def _remove_configuration(self, context: RunContext) -> StepResult:
        return self._remove_path(
            "remove-configuration", context.spec.configuration_directory, tree=True
        )

    def _remove_sudoers(self, context: RunContext) -> StepResult:
        return self._remove_path("remove-sudoers", context.spec.sudoers_path)

    def _remove_data(self, context: RunContext) -> StepResult:
        return self._remove_path(
            "remove-data", context.spec.data_directory, tree=True
        )

    def _file_matches(self, path: Path, contents: bytes) -> bool:
        return self.host.exists(path) and self.host.read_bytes(path) == contents

    def service_status(self, spec: InstallSpec) -> str:
        return self.registrar.status(spec.service_name)
