from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

from .errors import BuildError
from .lib.command import CmdResult, run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    component: str
    prefix: str
    destdir: str
    phases: Tuple[CmdResult, ...]


def _prepend(base: Mapping[str, str], name: str, values: Sequence[str], sep: str) -> str:
    existing = base.get(name)
    return sep.join([*values, existing] if existing else values)


def build_environment(
    base: Mapping[str, str],
    *,
    java_home: Optional[str] = None,
    ant: Optional[str] = None,
    toolkit_prefix: Optional[str] = None,
    library_prefixes: Sequence[str] = (),
    make_flags: Optional[str] = None,
) -> Mapping[str, str]:
    """Fresh, read-only environment for one component build.

    Nothing here is written back to ``os.environ``; a later component gets
    its own copy built from the same base. Libraries staged by this install
    are put ahead of anything the base environment points configure at.
    """

    env = dict(base)
    if library_prefixes:
        env["CPPFLAGS"] = _prepend(base, "CPPFLAGS", [f"-I{os.path.join(p, 'include')}" for p in library_prefixes], " ")
        env["LDFLAGS"] = _prepend(base, "LDFLAGS", [f"-L{os.path.join(p, 'lib')}" for p in library_prefixes], " ")
        env["PKG_CONFIG_PATH"] = _prepend(
            base, "PKG_CONFIG_PATH", [os.path.join(p, "lib", "pkgconfig") for p in library_prefixes], os.pathsep
        )
    if java_home:
        env["JAVA_HOME"] = java_home
        env["PATH"] = os.pathsep.join(p for p in (os.path.join(java_home, "bin"), base.get("PATH", "")) if p)
    if ant:
        env["ANT_FOUND"] = ant
    if toolkit_prefix:
        env["TSK_JAVA_LIB_PATH"] = os.path.join(toolkit_prefix, "share", "java")
    if make_flags:
        env["MAKEFLAGS"] = make_flags
    return MappingProxyType(env)


class ComponentBuilder:
    """configure / compile / install, each phase aborting the rest on failure."""

    def __init__(
        self,
        *,
        make: str = "make",
        deparallelize: bool = True,
        jobs: int = 1,
    ) -> None:
        self.make = make
        self.deparallelize = deparallelize
        self.jobs = max(1, jobs)

    @property
    def make_flags(self) -> str:
        return "-j1" if self.deparallelize else f"-j{self.jobs}"

    def phases(self, target_prefix: str, destdir: str) -> List[Tuple[str, List[str]]]:
        return [
            ("configure", ["./configure", "--disable-dependency-tracking", f"--prefix={target_prefix}"]),
            ("compile", [self.make]),
            ("install", [self.make, "install", f"DESTDIR={destdir}"]),
        ]

    def check_tools(self, component: str, tools: Sequence[str], env: Mapping[str, str]) -> None:
        missing = [t for t in tools if shutil.which(t, path=env.get("PATH")) is None]
        if missing:
            raise BuildError(component, "prerequisites", 127, stderr=f"missing build tools: {', '.join(missing)}")

    def _run_phase(
        self,
        component: str,
        phase: str,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
    ) -> CmdResult:
        logger.info("[%s] %s", component, phase)
        try:
            r = run_cmd(argv, check=False, env=env, cwd=str(cwd))
        except OSError as e:
            raise BuildError(component, phase, 127, stderr=str(e)) from e
        if r.returncode != 0:
            raise BuildError(component, phase, r.returncode, stdout=r.stdout, stderr=r.stderr)
        return r

    def build(
        self,
        source_tree: str,
        target_prefix: str,
        build_env: Mapping[str, str],
        *,
        component: str,
        destdir: str,
        build_tools: Sequence[str] = (),
    ) -> BuildResult:
        """Build ``source_tree`` for ``target_prefix``, installing under ``destdir``.

        Files end up at ``<destdir>/<target_prefix>``; the stager moves them
        into place so paths baked in at configure time stay valid.
        """

        src = Path(source_tree)
        self.check_tools(component, build_tools, build_env)

        dest = Path(destdir)
        try:
            if dest.exists():
                shutil.rmtree(dest)
            dest.mkdir(parents=True)
        except OSError as e:
            raise BuildError(component, "prepare", 1, stderr=f"cannot prepare {dest}: {e}") from e

        results = [
            self._run_phase(component, phase, argv, cwd=src, env=build_env)
            for phase, argv in self.phases(target_prefix, destdir)
        ]
        logger.info("[%s] built for prefix %s", component, target_prefix)
        return BuildResult(component=component, prefix=target_prefix, destdir=destdir, phases=tuple(results))
