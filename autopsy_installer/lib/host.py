from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostFacts:
    os: str
    arch: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.os, self.arch)

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


def normalize_os(system: str) -> str:
    s = system.lower()
    return {
        "darwin": "macos",
        "macos": "macos",
        "osx": "macos",
        "linux": "linux",
    }.get(s, s)


def normalize_arch(machine: str) -> str:
    m = machine.lower()
    return {
        "x86_64": "x86_64",
        "amd64": "x86_64",
        "intel": "x86_64",
        "aarch64": "arm64",
        "arm64": "arm64",
        "arm": "arm64",
    }.get(m, m)


def detect_host(*, os_name: Optional[str] = None, arch: Optional[str] = None) -> HostFacts:
    """Detect OS family and CPU architecture, honouring explicit overrides."""

    facts = HostFacts(
        os=normalize_os(os_name or platform.system()),
        arch=normalize_arch(arch or platform.machine()),
    )
    logger.info("Host: os=%s arch=%s", facts.os, facts.arch)
    return facts
