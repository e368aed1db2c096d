import hashlib
import io
import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

import httpx

from nomad_bootstrap.errors import (
    ChecksumMismatch,
    ExtractError,
    FetchError,
    NetworkError,
)
from nomad_bootstrap.host import Host
from nomad_bootstrap.lib.linux_helpers import DEFAULT_DIRECTORY_MODE, EXECUTABLE_MODE

log = logging.getLogger(__name__)

DEFAULT_SCRATCH_DIRECTORY = Path("/tmp/nomad_install")  # noqa: S108


def parse_checksums(checksums: str) -> dict[str, str]:
    """Map file names to hashes from a HashiCorp style ``SHA256SUMS`` document."""
    file_hash_map = {}
    for line in checksums.strip("\n").split("\n"):
        fields = line.split()
        if len(fields) == 2:  # noqa: PLR2004
            file_hash_map[fields[1]] = fields[0]
    return file_hash_map


class ArtifactFetcher:
    """Download release archives and unpack their binaries onto a host.

    Downloads happen in this process through ``client``. Everything written
    lands on ``host``, staged through ``scratch_directory`` which is removed
    once the binary is in place.
    """

    def __init__(
        self,
        host: Host,
        client: httpx.Client,
        scratch_directory: Path = DEFAULT_SCRATCH_DIRECTORY,
    ):
        self.host = host
        self.client = client
        self.scratch_directory = Path(scratch_directory)

    def download(self, url: str) -> bytes:
        log.info("Downloading %s", url)
        try:
            response = self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            msg = f"Failed to download {url}: {exc}"
            raise NetworkError(msg) from exc
        return response.content

    def published_checksum(self, checksums_url: str, file_name: str) -> str:
        file_hash_map = parse_checksums(self.download(checksums_url).decode("utf8"))
        try:
            return file_hash_map[file_name]
        except KeyError:
            msg = f"No checksum for {file_name} is published at {checksums_url}"
            raise FetchError(msg) from None

    def fetch(  # noqa: PLR0913
        self,
        version: str,
        url_template: str,
        dest_path: Path,
        member: str = "nomad",
        arch: str = "amd64",
        sha256sum: str | None = None,
    ) -> Path:
        """Install ``member`` of the release archive for ``version`` at ``dest_path``.

        :param version: The release version substituted into ``url_template``.
        :param url_template: Download URL with ``{version}`` and ``{arch}`` fields.
        :param dest_path: Where the extracted binary is installed.
        :param member: Name of the archive entry holding the binary.
        :param arch: CPU architecture substituted into ``url_template``.
        :param sha256sum: Expected SHA-256 of the archive. No verification happens
            when this is omitted.

        :returns: The path of the installed binary.
        """
        url = url_template.format(version=version, arch=arch)
        archive = self.download(url)
        if sha256sum is not None:
            digest = hashlib.sha256(archive).hexdigest()
            if digest != sha256sum:
                msg = f"Checksum mismatch for {url}: expected {sha256sum}, got {digest}"
                raise ChecksumMismatch(msg)
        else:
            log.warning("Installing %s without checksum verification", url)

        scratch = self.scratch_directory
        self.host.make_directory(scratch, mode=DEFAULT_DIRECTORY_MODE)
        try:
            archive_path = scratch.joinpath(PurePosixPath(urlsplit(url).path).name)
            self.host.write_bytes(archive_path, archive)
            log.info("Extracting %s from %s", member, archive_path)
            extracted = scratch.joinpath(member)
            self.host.write_bytes(extracted, self._read_zip_member(archive, member))
            log.info("Installing %s to %s", member, dest_path)
            self.host.make_directory(Path(dest_path).parent)
            self.host.move(extracted, dest_path)
            self.host.chmod(dest_path, EXECUTABLE_MODE)
        finally:
            self.host.remove_tree(scratch)
        return Path(dest_path)

    def fetch_bundle(self, url: str, dest_dir: Path) -> list[Path]:
        """Unpack every regular file of a gzipped tarball into ``dest_dir``."""
        archive = self.download(url)
        self.host.make_directory(dest_dir, mode=DEFAULT_DIRECTORY_MODE)
        installed = []
        try:
            with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as bundle:
                for entry in bundle.getmembers():
                    if not entry.isfile():
                        continue
                    contents = bundle.extractfile(entry)
                    destination = Path(dest_dir).joinpath(
                        PurePosixPath(entry.name).name
                    )
                    self.host.write_bytes(
                        destination, contents.read(), mode=EXECUTABLE_MODE
                    )
                    installed.append(destination)
        except tarfile.TarError as exc:
            msg = f"Failed to extract {url}: {exc}"
            raise ExtractError(msg) from exc
        if not installed:
            msg = f"Archive {url} contains no files"
            raise ExtractError(msg)
        return installed

    def read_zip_entries(self, archive: bytes, source: str) -> list[tuple[str, bytes]]:
        """Return ``(basename, contents)`` for every file in a zip archive.

        Directory structure is discarded, the way ``unzip -j -o`` does, so when
        two entries share a basename the later one wins.
        """
        entries: dict[str, bytes] = {}
        try:
            with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
                for info in bundle.infolist():
                    name = PurePosixPath(info.filename).name
                    if not info.is_dir() and name:
                        entries[name] = bundle.read(info)
        except zipfile.BadZipFile as exc:
            msg = f"Failed to extract {source}: {exc}"
            raise ExtractError(msg) from exc
        return list(entries.items())

    @staticmethod
    def _read_zip_member(archive: bytes, member: str) -> bytes:
        try:
            with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
                return bundle.read(member)
        except zipfile.BadZipFile as exc:
            msg = f"Downloaded archive is not a valid zip file: {exc}"
            raise ExtractError(msg) from exc
        except KeyError:
            msg = f"Archive does not contain the expected entry '{member}'"
            raise ExtractError(msg) from None
