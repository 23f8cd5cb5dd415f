"""Download, verify and unpack component artifacts.

Verification is not optional: an archive whose sha256 does not match the
pinned value is deleted and never unpacked.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Any, Iterator, Optional
from urllib.parse import unquote, urlparse

import requests

from .components import ComponentSpec
from .errors import FetchError, IntegrityError
from .lib.assets import remove_tree

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = 120

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar")


def archive_name(url: str) -> str:
    name = os.path.basename(unquote(urlparse(url).path))
    if not name:
        raise FetchError(f"Cannot derive a file name from {url}")
    return name


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def _local_path(url: str) -> Optional[Path]:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "":
        return Path(url)
    return None


def _discard(path: Path) -> None:
    if path.is_file() or path.is_symlink():
        path.unlink()


def _is_within(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def _unpack_tar(archive: Path, dest: Path) -> None:
    with tarfile.open(archive, "r:*") as tf:
        for member in tf.getmembers():
            if not _is_within(dest, dest / member.name):
                raise FetchError(f"Archive member escapes destination: {member.name}")
            if member.islnk() and not _is_within(dest, dest / member.linkname):
                raise FetchError(f"Archive hard link escapes destination: {member.name}")
        if hasattr(tarfile, "data_filter"):
            tf.extractall(dest, filter="data")
        else:
            tf.extractall(dest)


def _unpack_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            if not _is_within(dest, dest / info.filename):
                raise FetchError(f"Archive member escapes destination: {info.filename}")
        zf.extractall(dest)
        # zipfile drops unix permissions; restore them so bundled scripts stay executable.
        for info in zf.infolist():
            mode = (info.external_attr >> 16) & 0o777
            if mode:
                os.chmod(dest / info.filename, mode)


def unpack_archive(archive: Path, dest: Path) -> None:
    name = archive.name.lower()
    try:
        if name.endswith(".zip"):
            _unpack_zip(archive, dest)
        elif name.endswith(_TAR_SUFFIXES):
            _unpack_tar(archive, dest)
        else:
            raise FetchError(f"Unsupported archive format: {archive.name}")
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise FetchError(f"Failed to unpack {archive}: {e}") from e


class ArtifactFetcher:
    """Fetch component archives into ``<work_dir>/<component id>/``."""

    def __init__(self, work_dir: str, *, session: Any = None) -> None:
        self.work_dir = Path(work_dir)
        self._session = session

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def component_dir(self, component_id: str) -> Path:
        return self.work_dir / component_id

    def _chunks(self, url: str) -> Iterator[bytes]:
        local = _local_path(url)
        if local is not None:
            try:
                with open(local, "rb") as f:
                    for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                        yield chunk
            except OSError as e:
                raise FetchError(f"Cannot read {url}: {e}") from e
            return

        try:
            response = self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Download failed for {url}: {e}") from e

    def download(self, url: str, sha256: str, dest: Path) -> Path:
        """Stream ``url`` to ``dest``; the file only appears once its hash matches."""

        partial = dest.with_name(dest.name + ".part")
        logger.info("Downloading %s", url)

        h = hashlib.sha256()
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as f:
                for chunk in self._chunks(url):
                    h.update(chunk)
                    f.write(chunk)
        except OSError as e:
            _discard(partial)
            raise FetchError(f"Cannot write {partial}: {e}") from e
        except BaseException:
            _discard(partial)
            raise

        actual = h.hexdigest()
        if actual.lower() != sha256.lower():
            _discard(partial)
            _discard(dest)
            raise IntegrityError(url, sha256, actual)

        try:
            os.replace(partial, dest)
        except OSError as e:
            raise FetchError(f"Cannot move {partial} into place: {e}") from e
        logger.info("Verified %s (sha256=%s)", dest.name, actual)
        return dest

    def download_file(self, url: str, sha256: str, dest: str) -> Path:
        """Single pinned file (no unpacking), replacing whatever ``dest`` held."""

        target = Path(dest)
        if target.is_dir() and not target.is_symlink():
            raise FetchError(f"Refusing to replace directory {dest} with {url}")
        return self.download(url, sha256, target)

    def fetch(self, spec: ComponentSpec) -> Path:
        """Return the freshly unpacked source tree for ``spec``.

        Re-fetching replaces the previous tree instead of merging into it.
        """

        root = self.component_dir(spec.id)
        archive = root / "download" / archive_name(spec.url)
        src = root / "src"
        unpacking = root / "src.partial"

        try:
            remove_tree(str(src))
            remove_tree(str(unpacking))
            _discard(archive)
        except OSError as e:
            raise FetchError(f"[{spec.id}] cannot clear {root}: {e}") from e

        self.download(spec.url, spec.sha256, archive)

        try:
            unpacking.mkdir(parents=True)
            unpack_archive(archive, unpacking)
            os.replace(unpacking, src)
        except OSError as e:
            shutil.rmtree(unpacking, ignore_errors=True)
            raise FetchError(f"[{spec.id}] cannot unpack into {root}: {e}") from e
        except BaseException:
            shutil.rmtree(unpacking, ignore_errors=True)
            raise

        logger.info("[%s] unpacked into %s", spec.id, str(src))
        return src
