from __future__ import annotations

import hashlib
import io
import os
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, Tuple, Union

import pytest

from autopsy_installer.components import ComponentSpec
from autopsy_installer.config import InstallerConfig

FileContent = Union[str, Tuple[str, int]]

CONFIGURE_SCRIPT = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    --prefix=*) echo "${arg#--prefix=}" > .prefix ;;
  esac
done
echo "configured"
"""

MAKE_SCRIPT = """#!/bin/sh
if [ "$1" = "install" ]; then
  dest="${2#DESTDIR=}"
  prefix="$(cat .prefix)"
  mkdir -p "$dest$prefix/lib" "$dest$prefix/share/java"
  touch "$dest$prefix/lib/marker"
  echo "$MAKEFLAGS" > "$dest$prefix/makeflags"
fi
exit 0
"""

FAILING_MAKE_SCRIPT = """#!/bin/sh
echo "make: *** [all] Error 1" >&2
exit 1
"""


def sha256_of(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def write_archive(path: Path, files: Dict[str, FileContent]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.name.endswith(".zip"):
        with zipfile.ZipFile(path, "w") as zf:
            for name, content in files.items():
                text, mode = content if isinstance(content, tuple) else (content, 0o644)
                info = zipfile.ZipInfo(name)
                info.external_attr = mode << 16
                zf.writestr(info, text)
        return

    with tarfile.open(path, "w:gz") as tf:
        for name, content in files.items():
            text, mode = content if isinstance(content, tuple) else (content, 0o644)
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tf.addfile(info, io.BytesIO(data))


@pytest.fixture
def make_archive(tmp_path: Path) -> Callable[..., Tuple[str, str]]:
    """Build an archive under tmp_path/artifacts; returns (file:// url, sha256)."""

    def _make(name: str, files: Dict[str, FileContent]) -> Tuple[str, str]:
        path = tmp_path / "artifacts" / name
        write_archive(path, files)
        return path.as_uri(), sha256_of(path)

    return _make


@pytest.fixture
def fake_bin(tmp_path: Path) -> Callable[[str, str], str]:
    def _write(name: str, body: str) -> str:
        p = tmp_path / "fakebin" / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(body, encoding="utf-8")
        p.chmod(0o755)
        return str(p)

    return _write


@pytest.fixture
def installer_config(tmp_path: Path) -> Callable[..., InstallerConfig]:
    def _cfg(**extra: object) -> InstallerConfig:
        raw = {
            "install_root": str(tmp_path / "install"),
            "bin_dir": str(tmp_path / "bin"),
            "work_dir": str(tmp_path / "work"),
            "smoke_test": True,
        }
        raw.update(extra)
        return InstallerConfig(raw=raw)

    return _cfg


@pytest.fixture
def base_env() -> Dict[str, str]:
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


def toolkit_files() -> Dict[str, FileContent]:
    return {
        "sleuthkit-4.11.1/configure": (CONFIGURE_SCRIPT, 0o755),
        "sleuthkit-4.11.1/README": "tsk\n",
    }


def jvm_files() -> Dict[str, FileContent]:
    return {
        "jdk8u345-full/bin/java": ("#!/bin/sh\necho java\n", 0o755),
        "jdk8u345-full/release": 'JAVA_VERSION="1.8.0_345"\n',
    }


def app_files(*, launcher_exit: int = 0) -> Dict[str, FileContent]:
    return {
        "autopsy-4.19.2/bin/autopsy": (f"#!/bin/sh\necho usage: autopsy\nexit {launcher_exit}\n", 0o755),
        "autopsy-4.19.2/etc/autopsy.conf": 'default_userdir="${HOME}/.autopsy"\njdkhome=""\n',
        "autopsy-4.19.2/unix_setup.sh": (
            '#!/bin/sh\necho "$@" > setup-args\necho "$TSK_JAVA_LIB_PATH" > setup-tsk\n',
            0o644,
        ),
    }


def spec(cid: str, url: str, sha: str, kind: str = "prebuilt-stage", **kwargs: object) -> ComponentSpec:
    return ComponentSpec(id=cid, url=url, sha256=sha, kind=kind, **kwargs)  # type: ignore[arg-type]
