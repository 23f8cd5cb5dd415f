"""Runtime environment for the staged application.

The application finds the native toolkit, the JNA libraries and the
GStreamer plugins through variables exported from its own config file.
Which directories those are depends on the (OS, arch) profile and on what
was staged, never on the caller's shell.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .components import ComponentSpec
from .errors import StagingError
from .lib.host import HostFacts
from .platforms import profile_for

logger = logging.getLogger(__name__)

PLUGIN_PATH_VAR = "GST_PLUGIN_SYSTEM_PATH"
PLUGIN_SCANNER_VAR = "GST_PLUGIN_SCANNER"
JRE_FLAGS_VAR = "jreflags"


@dataclass(frozen=True)
class ConfigPatch:
    path: str
    text: str


@dataclass(frozen=True)
class RuntimeEnvironment:
    variables: Tuple[Tuple[str, str], ...]
    patches: Tuple[ConfigPatch, ...]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.variables)


def export_line(name: str, value: str) -> str:
    quoted = value.replace('"', '\\"')
    return f'export {name}="{quoted}"'


class EnvironmentComposer:
    def __init__(self, components: Sequence[ComponentSpec]) -> None:
        self._by_role = {c.role: c for c in components if c.role}
        self._libraries = [c for c in components if c.role == "library"]

    def _role_path(self, layout: Mapping[str, str], role: str) -> Optional[str]:
        spec = self._by_role.get(role)
        if spec is None:
            return None
        try:
            return layout[spec.id]
        except KeyError:
            raise StagingError(f"{spec.id} ({role}) has no staging layout entry") from None

    def compose(self, layout: Mapping[str, str], host: HostFacts) -> RuntimeEnvironment:
        profile = profile_for(host)

        lib_dirs: List[str] = []
        toolkit = self._role_path(layout, "toolkit")
        if toolkit:
            lib_dirs.append(str(Path(toolkit) / "lib"))
        for lib in self._libraries:
            if lib.id not in layout:
                raise StagingError(f"{lib.id} (library) has no staging layout entry")
            lib_dirs.append(str(Path(layout[lib.id]) / "lib"))
        lib_dirs.append(str(Path(profile.system_prefix) / "lib"))
        lib_path = ":".join(lib_dirs)

        # The media stack is reused from the system prefix unless a component staged it.
        media = self._role_path(layout, "media") or profile.system_prefix

        variables: List[Tuple[str, str]] = [
            (profile.library_path_var, lib_path),
            (JRE_FLAGS_VAR, f"-Djna.library.path={lib_path} ${JRE_FLAGS_VAR}"),
            (PLUGIN_PATH_VAR, str(Path(media) / "lib" / "gstreamer-1.0")),
            (PLUGIN_SCANNER_VAR, str(Path(media) / "libexec" / "gstreamer-1.0" / "gst-plugin-scanner")),
        ]

        patches: List[ConfigPatch] = []
        application = self._role_path(layout, "application")
        if application:
            spec = self._by_role["application"]
            block = "".join(export_line(k, v) + "\n" for k, v in variables)
            patches.append(ConfigPatch(path=str(Path(application) / spec.runtime_config), text=block))

        logger.info("Composed runtime environment for %s: %s", host, ", ".join(k for k, _ in variables))
        return RuntimeEnvironment(variables=tuple(variables), patches=tuple(patches))

    def apply(self, runtime_env: RuntimeEnvironment) -> List[Path]:
        """Append each patch to its file; existing lines are never rewritten."""

        written: List[Path] = []
        for patch in runtime_env.patches:
            p = Path(patch.path)
            existing = p.read_text(encoding="utf-8") if p.exists() else ""
            if existing.endswith(patch.text):
                logger.info("Runtime config %s already carries the export block", str(p))
                continue

            p.parent.mkdir(parents=True, exist_ok=True)
            with open(p, "a", encoding="utf-8") as f:
                if existing and not existing.endswith("\n"):
                    f.write("\n")
                f.write(patch.text)
            written.append(p)
            logger.info("Appended %d export line(s) to %s", patch.text.count("\n"), str(p))
        return written
