from __future__ import annotations

from typing import Sequence


class InstallerError(RuntimeError):
    """Base class for every failure the orchestrator reports as ``Failed``."""


class ConfigError(InstallerError):
    pass


class PlanError(InstallerError):
    pass


class UnsupportedPlatformError(PlanError):
    pass


class IntegrityError(InstallerError):
    """Downloaded content does not match the pinned sha256. Never bypassed."""

    def __init__(self, url: str, expected: str, actual: str) -> None:
        super().__init__(f"sha256 mismatch for {url}: expected {expected}, got {actual}")
        self.url = url
        self.expected = expected
        self.actual = actual


class FetchError(InstallerError):
    """Network or unpack failure. The caller may retry the whole fetch."""


class AmbiguousArtifactError(InstallerError):
    def __init__(self, parent: str, pattern: str, matches: Sequence[str]) -> None:
        if matches:
            detail = f"{len(matches)} candidates: {', '.join(matches)}"
        else:
            detail = "no candidates"
        super().__init__(f"Expected exactly one directory matching {pattern!r} in {parent} ({detail})")
        self.parent = parent
        self.pattern = pattern
        self.matches = list(matches)


class BuildError(InstallerError):
    def __init__(
        self,
        component: str,
        phase: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(f"[{component}] {phase} failed ({exit_code})\n{stderr}".rstrip())
        self.component = component
        self.phase = phase
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class StagingError(InstallerError):
    pass


class AlreadyInstalledError(InstallerError):
    pass


class LauncherError(InstallerError):
    pass
