from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path

import pytest
import requests

from autopsy_installer.errors import FetchError, IntegrityError
from autopsy_installer.fetcher import ArtifactFetcher, archive_name

from conftest import sha256_of, spec, toolkit_files


class FakeResponse:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self.body = body
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.requested = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        outcome = self.responses[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_fetch_unpacks_verified_archive(tmp_path: Path, make_archive):
    url, sha = make_archive("sleuthkit-4.11.1.tar.gz", toolkit_files())
    fetcher = ArtifactFetcher(str(tmp_path / "work"))

    src = fetcher.fetch(spec("sleuthkit", url, sha, kind="compile"))

    assert src == tmp_path / "work" / "sleuthkit" / "src"
    configure = src / "sleuthkit-4.11.1" / "configure"
    assert configure.is_file()
    assert configure.stat().st_mode & 0o111


def test_tampered_archive_never_unpacks(tmp_path: Path, make_archive):
    url, sha = make_archive("sleuthkit-4.11.1.tar.gz", toolkit_files())
    wrong = "0" * 64
    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    component = spec("sleuthkit", url, wrong, kind="compile")

    for _ in range(2):
        with pytest.raises(IntegrityError) as exc:
            fetcher.fetch(component)
        assert exc.value.expected == wrong
        assert exc.value.actual == sha

    root = tmp_path / "work" / "sleuthkit"
    assert not (root / "src").exists()
    assert not (root / "src.partial").exists()
    assert list((root / "download").iterdir()) == []


def test_tampering_after_good_fetch_removes_previous_tree(tmp_path: Path, make_archive):
    url, sha = make_archive("sleuthkit-4.11.1.tar.gz", toolkit_files())
    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    fetcher.fetch(spec("sleuthkit", url, sha))

    Path(url.replace("file://", "")).write_bytes(b"not the release")
    with pytest.raises(IntegrityError):
        fetcher.fetch(spec("sleuthkit", url, sha))
    assert not (tmp_path / "work" / "sleuthkit" / "src").exists()


def test_refetch_replaces_instead_of_merging(tmp_path: Path, make_archive):
    url, sha = make_archive("sleuthkit-4.11.1.tar.gz", toolkit_files())
    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    component = spec("sleuthkit", url, sha)

    src = fetcher.fetch(component)
    (src / "leftover.o").write_text("stale", encoding="utf-8")

    src = fetcher.fetch(component)
    assert not (src / "leftover.o").exists()
    assert (src / "sleuthkit-4.11.1" / "README").is_file()


def test_zip_keeps_executable_bits(tmp_path: Path, make_archive):
    url, sha = make_archive(
        "autopsy-4.19.2.zip",
        {"autopsy-4.19.2/bin/autopsy": ("#!/bin/sh\n", 0o755), "autopsy-4.19.2/README": "x"},
    )
    src = ArtifactFetcher(str(tmp_path / "work")).fetch(spec("autopsy", url, sha))
    assert (src / "autopsy-4.19.2" / "bin" / "autopsy").stat().st_mode & 0o100


def test_unsupported_format(tmp_path: Path):
    artifact = tmp_path / "tool.rar"
    artifact.write_bytes(b"rar!")
    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    with pytest.raises(FetchError, match="Unsupported"):
        fetcher.fetch(spec("tool", artifact.as_uri(), sha256_of(artifact)))
    assert not (tmp_path / "work" / "tool" / "src").exists()


def test_member_escaping_destination_is_rejected(tmp_path: Path):
    artifact = tmp_path / "evil.tar.gz"
    with tarfile.open(artifact, "w:gz") as tf:
        info = tarfile.TarInfo("../../escaped")
        info.size = 1
        tf.addfile(info, io.BytesIO(b"x"))

    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    with pytest.raises(FetchError, match="escapes"):
        fetcher.fetch(spec("evil", artifact.as_uri(), sha256_of(artifact)))
    assert not (tmp_path / "escaped").exists()


def test_missing_local_file_is_fetch_error(tmp_path: Path):
    fetcher = ArtifactFetcher(str(tmp_path / "work"))
    with pytest.raises(FetchError):
        fetcher.fetch(spec("gone", (tmp_path / "gone.tar.gz").as_uri(), "c" * 64))


def test_http_download_through_session(tmp_path: Path):
    body = b"#!/bin/sh\necho patched\n"
    url = "https://example.invalid/autopsy/unix_setup.sh"
    session = FakeSession({url: FakeResponse(body)})
    fetcher = ArtifactFetcher(str(tmp_path / "work"), session=session)

    dest = fetcher.download_file(url, hashlib.sha256(body).hexdigest(), str(tmp_path / "out" / "unix_setup.sh"))

    assert dest.read_bytes() == body
    assert session.requested == [url]
    assert not (tmp_path / "out" / "unix_setup.sh.part").exists()


@pytest.mark.parametrize(
    "outcome",
    [FakeResponse(b"", status=404), requests.exceptions.ConnectionError("unreachable")],
)
def test_http_failures_are_fetch_errors(tmp_path: Path, outcome):
    url = "https://example.invalid/sleuthkit-4.11.1.tar.gz"
    fetcher = ArtifactFetcher(str(tmp_path / "work"), session=FakeSession({url: outcome}))
    with pytest.raises(FetchError):
        fetcher.fetch(spec("sleuthkit", url, "d" * 64))
    assert not (tmp_path / "work" / "sleuthkit" / "download" / "sleuthkit-4.11.1.tar.gz.part").exists()


def test_archive_name_from_url():
    assert archive_name("https://download.bell-sw.com/java/8u345+1/bellsoft-jdk8u345+1-linux-amd64-full.tar.gz") == (
        "bellsoft-jdk8u345+1-linux-amd64-full.tar.gz"
    )
    with pytest.raises(FetchError):
        archive_name("https://example.invalid/")


def test_unwritable_work_dir_is_fetch_error(tmp_path: Path, make_archive):
    url, sha = make_archive("sleuthkit-4.11.1.tar.gz", toolkit_files())
    blocker = tmp_path / "work"
    blocker.write_text("not a directory\n", encoding="utf-8")
    fetcher = ArtifactFetcher(str(blocker))

    with pytest.raises(FetchError):
        fetcher.fetch(spec("sleuthkit", url, sha))


def test_download_file_will_not_replace_a_directory(tmp_path: Path):
    body = b"#!/bin/sh\n"
    url = "https://example.invalid/autopsy/unix_setup.sh"
    session = FakeSession({url: FakeResponse(body)})
    (tmp_path / "out" / "unix_setup.sh").mkdir(parents=True)
    fetcher = ArtifactFetcher(str(tmp_path / "work"), session=session)

    with pytest.raises(FetchError):
        fetcher.download_file(url, hashlib.sha256(body).hexdigest(), str(tmp_path / "out" / "unix_setup.sh"))
    assert session.requested == []
