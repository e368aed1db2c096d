import argparse
import logging
import sys

import httpx
from pydantic import ValidationError

from nomad_bootstrap.artifacts import ArtifactFetcher
from nomad_bootstrap.errors import BootstrapError
from nomad_bootstrap.host import Host, LocalHost
from nomad_bootstrap.models import InstallSpec
from nomad_bootstrap.provisioner import Provisioner

log = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def add_log_level_argument(
    target: argparse.ArgumentParser, default: str = argparse.SUPPRESS
) -> None:
    target.add_argument(
        "-l",
        "--log-level",
        default=default,
        choices=LOG_LEVELS,
        help="Verbosity of the progress written to stderr",
    )


parser = argparse.ArgumentParser(
    prog="nomad-bootstrap",
    description="Install or remove the HashiCorp Nomad agent as a systemd service",
)
add_log_level_argument(parser, default="INFO")
# Sub-commands accept the option too; unset there it keeps the top level value.
log_level_parser = argparse.ArgumentParser(add_help=False)
add_log_level_argument(log_level_parser)
subparsers = parser.add_subparsers(dest="command", required=True)

install_parser = subparsers.add_parser(
    "install",
    parents=[log_level_parser],
    help="Install, configure and start the Nomad agent",
    description=(
        "Downloads Nomad, creates its system user and directories, writes the agent "
        "configuration and a systemd unit, then starts the service. Steps that are "
        "already satisfied are skipped. Release archives are NOT checksum verified "
        "unless --verify-checksum is passed."
    ),
)
install_parser.add_argument(
    "peer_address", help="Address of the Nomad server the client joins"
)
install_parser.add_argument("--version", dest="version", help="Nomad version")
install_parser.add_argument(
    "--interface",
    dest="network_interface",
    help="Network interface whose IPv4 address is advertised",
)
install_parser.add_argument(
    "--config-source",
    choices=["inline", "archive"],
    help="Render the configuration locally or download it as a zip archive",
)
install_parser.add_argument(
    "--config-archive-url", help="Zip archive used with --config-source archive"
)
install_parser.add_argument(
    "--cni-version", help="Also install this version of the CNI reference plugins"
)
install_parser.add_argument("--arch", help="Override the detected CPU architecture")
install_parser.add_argument(
    "--no-docker",
    dest="enable_docker_plugin",
    action="store_false",
    default=None,
    help="Leave the docker task driver unconfigured",
)
install_parser.add_argument(
    "--no-raw-exec",
    dest="enable_raw_exec_plugin",
    action="store_false",
    default=None,
    help="Leave the raw_exec task driver disabled",
)
install_parser.add_argument(
    "--run-as-service-user",
    dest="run_as_root",
    action="store_false",
    default=None,
    help="Run the agent as the service user instead of root",
)
install_parser.add_argument(
    "--grant-sudo",
    dest="grant_passwordless_sudo",
    action="store_true",
    default=None,
    help="Give the service user passwordless root sudo (security sensitive)",
)
install_parser.add_argument(
    "--verify-checksum",
    action="store_true",
    default=None,
    help="Verify the release archive against the published SHA256SUMS",
)
install_parser.add_argument(
    "--clean",
    action="store_true",
    help="Remove any previous installation before installing",
)

uninstall_parser = subparsers.add_parser(
    "uninstall",
    parents=[log_level_parser],
    help="Stop the Nomad agent and remove its binary, unit and configuration",
)
uninstall_parser.add_argument(
    "--purge", action="store_true", help="Also delete the Nomad data directory"
)

SPEC_OPTIONS = (
    "version",
    "network_interface",
    "config_source",
    "config_archive_url",
    "cni_version",
    "arch",
    "enable_docker_plugin",
    "enable_raw_exec_plugin",
    "run_as_root",
    "grant_passwordless_sudo",
    "verify_checksum",
)


def build_spec(args: argparse.Namespace) -> InstallSpec:
    overrides = {
        option: getattr(args, option)
        for option in SPEC_OPTIONS
        if getattr(args, option, None) is not None
    }
    if getattr(args, "peer_address", None) is not None:
        overrides["servers"] = [args.peer_address]
    return InstallSpec(**overrides)


def main(argv: list[str] | None = None, host: Host | None = None, client=None) -> int:
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    try:
        spec = build_spec(args)
    except ValidationError as exc:
        log.error("Invalid settings: %s", exc)  # noqa: TRY400
        return 1

    host = host or LocalHost()
    http_client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
    try:
        provisioner = Provisioner(
            host, ArtifactFetcher(host, http_client, spec.scratch_directory)
        )
        if args.command == "install":
            provisioner.install(spec, clean=args.clean)
            log.info("Nomad installation and setup complete")
            print(provisioner.service_status(spec))  # noqa: T201
        else:
            provisioner.uninstall(spec, purge=args.purge)
            log.info("Nomad has been removed")
    except BootstrapError as exc:
        log.error("Error: %s", exc)  # noqa: TRY400
        return 1
    finally:
        if client is None:
            http_client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
