from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

DEFAULT_INSTALL_ROOT = "/usr/local/opt/autopsy4/install"
DEFAULT_BIN_DIR = "/usr/local/bin"


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def install_root(self) -> str:
        return str(self.raw.get("install_root") or DEFAULT_INSTALL_ROOT)

    @property
    def bin_dir(self) -> str:
        return str(self.raw.get("bin_dir") or DEFAULT_BIN_DIR)

    @property
    def work_dir(self) -> str:
        return str(self.raw.get("work_dir") or (Path(self.install_root).parent / "work"))

    @property
    def components_path(self) -> Optional[str]:
        value = self.raw.get("components")
        return str(value) if value else None

    @property
    def deparallelize(self) -> bool:
        # Some toolkits do not build reliably with parallel make.
        return bool(self.raw.get("deparallelize", True))

    @property
    def jobs(self) -> int:
        return int(self.raw.get("jobs") or 1)

    @property
    def make(self) -> str:
        return str(self.raw.get("make") or "make")

    @property
    def ant(self) -> Optional[str]:
        value = self.raw.get("ant")
        return str(value) if value else None

    @property
    def smoke_test(self) -> bool:
        return bool(self.raw.get("smoke_test", True))

    @property
    def launcher_name(self) -> str:
        return str(self.raw.get("launcher_name") or "autopsy")

    def with_overrides(self, **overrides: Any) -> "InstallerConfig":
        merged = dict(self.raw)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return InstallerConfig(raw=merged)


def load_installer_config(path: Optional[str]) -> InstallerConfig:
    if not path:
        return InstallerConfig()

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Installer config not found: {path}")
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("Installer config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Installer config must contain a mapping/object")

    return InstallerConfig(raw=raw)
