from pathlib import Path

DEFAULT_DIRECTORY_MODE = 0o755
PRIVATE_DIRECTORY_MODE = 0o700
EXECUTABLE_MODE = 0o755
SUDOERS_DIRECTORY = Path("/etc/sudoers.d")


def normalize_cpu_arch(arch_specifier: str) -> str:
    """Normalize the string used for the CPU kernel architecture.

    Different systems will report the CPU architecture differently and the
    HashiCorp release archives expect the Go naming.  This function allows us to
    have a single location for being able to map back and forth.

    :param arch_specifier: The CPU architecture string returned from commands such as
        `uname -m`
    :type arch_specifier: str

    :returns: The common specifier used for the given architecture.

    :rtype: str
    """
    return {
        "amd64": "amd64",
        "x86_64": "amd64",
        "i386": "386",
        "i686": "386",
        "aarch64": "arm64",
        "arm64": "arm64",
    }[arch_specifier.strip()]


def strip_cidr_suffix(address: str) -> str:
    return address.split("/", 1)[0]
