"""Per-(OS, arch) facts the planner and the environment composer consult."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .errors import UnsupportedPlatformError
from .lib.host import HostFacts


@dataclass(frozen=True)
class PlatformProfile:
    # Dynamic loader variable the JVM and GStreamer honour on this OS.
    library_path_var: str
    # Prefix holding system/package-manager provided libraries (gstreamer, libewf, ...).
    system_prefix: str
    # Libraries the OS ships, so no component is staged for them.
    system_libraries: Tuple[str, ...] = ()


PLATFORM_PROFILES: Dict[Tuple[str, str], PlatformProfile] = {
    ("linux", "x86_64"): PlatformProfile(
        library_path_var="LD_LIBRARY_PATH",
        system_prefix="/home/linuxbrew/.linuxbrew",
    ),
    ("linux", "arm64"): PlatformProfile(
        library_path_var="LD_LIBRARY_PATH",
        system_prefix="/home/linuxbrew/.linuxbrew",
    ),
    ("macos", "x86_64"): PlatformProfile(
        library_path_var="DYLD_FALLBACK_LIBRARY_PATH",
        system_prefix="/usr/local",
        system_libraries=("sqlite",),
    ),
    ("macos", "arm64"): PlatformProfile(
        library_path_var="DYLD_FALLBACK_LIBRARY_PATH",
        system_prefix="/opt/homebrew",
        system_libraries=("sqlite",),
    ),
}


def profile_for(host: HostFacts) -> PlatformProfile:
    try:
        return PLATFORM_PROFILES[host.key]
    except KeyError:
        raise UnsupportedPlatformError(f"No platform profile for {host}") from None
