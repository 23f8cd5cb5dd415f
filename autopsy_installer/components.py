"""Component table: what gets fetched, and how each piece is built or staged."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .lib.host import HostFacts

logger = logging.getLogger(__name__)

DEFAULT_COMPONENTS_PATH = str(Path(__file__).resolve().parent / "data" / "components.yaml")

KIND_PREBUILT = "prebuilt-stage"
KIND_COMPILE = "compile"
KINDS = {KIND_PREBUILT, KIND_COMPILE}

ROLES = {"jvm", "toolkit", "media", "library", "application"}

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class ScriptOverride:
    """Replace a file shipped inside a staged component with a pinned download."""

    path: str
    url: str
    sha256: str


@dataclass(frozen=True)
class SetupScript:
    script: str
    args: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ComponentSpec:
    id: str
    url: str
    sha256: str
    kind: str
    role: Optional[str] = None
    platforms: Tuple[Tuple[str, str], ...] = ()
    requires: Tuple[str, ...] = ()
    # Library this component supplies; skipped where the OS already ships it.
    provides: Optional[str] = None
    dir_pattern: str = "*"
    home_subdir: Optional[str] = None
    setup: Optional[SetupScript] = None
    overrides: Tuple[ScriptOverride, ...] = ()
    runtime_config: str = "etc/autopsy.conf"
    launcher: str = "bin/autopsy"
    build_tools: Tuple[str, ...] = ()

    @property
    def is_compiled(self) -> bool:
        return self.kind == KIND_COMPILE

    def matches(self, host: HostFacts) -> bool:
        """Platform predicate: no entries means every host."""

        if not self.platforms:
            return True
        for os_name, arch in self.platforms:
            if os_name in {"*", host.os} and arch in {"*", host.arch}:
                return True
        return False


def _str_tuple(value: Any, *, where: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list")
    return tuple(str(v) for v in value)


def _require_sha(value: Any, *, where: str) -> str:
    sha = str(value or "").strip().lower()
    if not _SHA256_RE.match(sha):
        raise ConfigError(f"{where}: sha256 must be 64 hex characters")
    return sha


def _parse_platforms(value: Any, *, where: str) -> Tuple[Tuple[str, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{where}.platforms must be a list of [os, arch] pairs")
    pairs: List[Tuple[str, str]] = []
    for item in value:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ConfigError(f"{where}.platforms entries must be [os, arch] pairs, got {item!r}")
        pairs.append((str(item[0]).lower(), str(item[1]).lower()))
    return tuple(pairs)


def _parse_setup(value: Any, *, where: str) -> Optional[SetupScript]:
    if value is None:
        return None
    if not isinstance(value, dict) or not value.get("script"):
        raise ConfigError(f"{where}.setup must be a mapping with a 'script' key")
    env = value.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(f"{where}.setup.env must be a mapping")
    return SetupScript(
        script=str(value["script"]),
        args=_str_tuple(value.get("args"), where=f"{where}.setup.args"),
        env=tuple((str(k), str(v)) for k, v in env.items()),
    )


def _parse_overrides(value: Any, *, where: str) -> Tuple[ScriptOverride, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{where}.overrides must be a list")
    out: List[ScriptOverride] = []
    for i, item in enumerate(value):
        loc = f"{where}.overrides[{i}]"
        if not isinstance(item, dict) or not item.get("path") or not item.get("url"):
            raise ConfigError(f"{loc} needs 'path', 'url' and 'sha256'")
        out.append(
            ScriptOverride(
                path=str(item["path"]),
                url=str(item["url"]),
                sha256=_require_sha(item.get("sha256"), where=loc),
            )
        )
    return tuple(out)


def parse_component(raw: Mapping[str, Any]) -> ComponentSpec:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Component entry must be a mapping, got {type(raw)}")

    cid = str(raw.get("id") or "").strip()
    if not cid:
        raise ConfigError("Component entry missing 'id'")
    where = f"components[{cid}]"

    url = str(raw.get("url") or "").strip()
    if not url:
        raise ConfigError(f"{where}: missing 'url'")

    kind = str(raw.get("kind") or "")
    if kind not in KINDS:
        raise ConfigError(f"{where}: kind must be one of {sorted(KINDS)}, got {kind!r}")

    role = raw.get("role")
    if role is not None and role not in ROLES:
        raise ConfigError(f"{where}: role must be one of {sorted(ROLES)}, got {role!r}")

    return ComponentSpec(
        id=cid,
        url=url,
        sha256=_require_sha(raw.get("sha256"), where=where),
        kind=kind,
        role=role,
        platforms=_parse_platforms(raw.get("platforms"), where=where),
        requires=_str_tuple(raw.get("requires"), where=f"{where}.requires"),
        provides=str(raw["provides"]) if raw.get("provides") else None,
        dir_pattern=str(raw.get("dir_pattern") or "*"),
        home_subdir=raw.get("home_subdir"),
        setup=_parse_setup(raw.get("setup"), where=where),
        overrides=_parse_overrides(raw.get("overrides"), where=where),
        runtime_config=str(raw.get("runtime_config") or "etc/autopsy.conf"),
        launcher=str(raw.get("launcher") or "bin/autopsy"),
        build_tools=_str_tuple(raw.get("build_tools"), where=f"{where}.build_tools"),
    )


def parse_component_table(raw: Any) -> List[ComponentSpec]:
    if not isinstance(raw, dict):
        raise ConfigError("Component table must contain a mapping/object")
    entries = raw.get("components")
    if not isinstance(entries, list) or not entries:
        raise ConfigError("Component table needs a non-empty 'components' list")

    specs: List[ComponentSpec] = []
    for entry in entries:
        spec = parse_component(entry)
        # The same id may appear once per platform variant; an id without
        # platforms must be unique.
        for other in specs:
            if other.id == spec.id and not (other.platforms and spec.platforms):
                raise ConfigError(f"Duplicate component id: {spec.id}")
        specs.append(spec)
    return specs


def load_component_table(path: str = DEFAULT_COMPONENTS_PATH) -> List[ComponentSpec]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Component table not found: {path}")
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("Component table must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    specs = parse_component_table(raw)
    logger.info("Loaded %d component(s) from %s", len(specs), path)
    return specs

