import abc
import logging
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, UndefinedError

from nomad_bootstrap.artifacts import ArtifactFetcher
from nomad_bootstrap.errors import InterfaceNotFound, MissingRequiredVar
from nomad_bootstrap.facts.system import InterfaceIPv4Addresses
from nomad_bootstrap.host import Host
from nomad_bootstrap.models import InstallSpec

log = logging.getLogger(__name__)

TEMPLATES_DIRECTORY = Path(__file__).resolve().parent.joinpath("templates")
REQUIRED_CONFIG_VARIABLES = ("advertise_address", "servers", "data_dir")

_environment = Environment(  # noqa: S701
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def load_template(name: str) -> str:
    return TEMPLATES_DIRECTORY.joinpath(name).read_text()


def render(
    template: str,
    variables: Mapping[str, Any],
    required: Iterable[str] = (),
) -> str:
    """Interpolate ``variables`` into the jinja ``template`` source.

    :param template: The template source text.
    :param variables: Values available to the template.
    :param required: Names that must be present and non-empty in ``variables``.

    :raises MissingRequiredVar: When a required value is empty, or the template
        references a name that was not supplied.
    """
    for name in required:
        if not variables.get(name):
            raise MissingRequiredVar(name)
    try:
        return _environment.from_string(template).render(**variables)
    except UndefinedError as exc:
        match = re.search(r"'(\w+)' is undefined", str(exc))
        raise MissingRequiredVar(match.group(1) if match else str(exc)) from exc


def detect_advertise_address(host: Host, interface: str) -> str:
    """Return the first IPv4 address bound to ``interface``, without CIDR suffix."""
    addresses = host.get_fact(InterfaceIPv4Addresses, interface=interface)
    if not addresses:
        raise InterfaceNotFound(interface)
    log.info("Detected address %s on interface %s", addresses[0], interface)
    return addresses[0]


def template_variables(spec: InstallSpec, advertise_address: str) -> dict[str, Any]:
    return {
        "advertise_address": advertise_address,
        "servers": list(spec.servers),
        "data_dir": str(spec.data_directory),
        "network_interface": spec.network_interface,
        "enable_docker": spec.enable_docker_plugin,
        "enable_raw_exec": spec.enable_raw_exec_plugin,
        "cni_path": str(spec.cni_directory) if spec.cni_version else None,
    }


class ConfigSource(abc.ABC):
    """A strategy producing the files that belong in the agent's config directory."""

    name: str

    @abc.abstractmethod
    def files(self, spec: InstallSpec, host: Host) -> list[tuple[Path, bytes]]:
        raise NotImplementedError


class InlineConfigSource(ConfigSource):
    """Render ``nomad.hcl`` from the template shipped with this package."""

    name = "inline"
    template_name = "nomad.hcl.j2"
    file_name = "nomad.hcl"

    def files(self, spec: InstallSpec, host: Host) -> list[tuple[Path, bytes]]:
        advertise_address = detect_advertise_address(host, spec.network_interface)
        contents = render(
            load_template(self.template_name),
            template_variables(spec, advertise_address),
            required=REQUIRED_CONFIG_VARIABLES,
        )
        return [
            (spec.configuration_directory.joinpath(self.file_name), contents.encode())
        ]


class ArchiveConfigSource(ConfigSource):
    """Take the configuration files from a zip archive published elsewhere.

    Every file in the archive lands directly in the configuration directory.
    """

    name = "archive"

    def __init__(self, fetcher: ArtifactFetcher):
        self.fetcher = fetcher

    def files(self, spec: InstallSpec, host: Host) -> list[tuple[Path, bytes]]:  # noqa: ARG002
        if not spec.config_archive_url:
            raise MissingRequiredVar("config_archive_url")
        archive = self.fetcher.download(spec.config_archive_url)
        return [
            (spec.configuration_directory.joinpath(name), contents)
            for name, contents in self.fetcher.read_zip_entries(
                archive, spec.config_archive_url
            )
        ]


def config_source_for(spec: InstallSpec, fetcher: ArtifactFetcher) -> ConfigSource:
    if spec.config_source == ArchiveConfigSource.name:
        return ArchiveConfigSource(fetcher)
    return InlineConfigSource()
