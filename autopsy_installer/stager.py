from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from .components import ComponentSpec, ScriptOverride
from .errors import AmbiguousArtifactError, BuildError, ConfigError, StagingError
from .fetcher import ArtifactFetcher
from .lib.assets import copy_tree, remove_tree
from .lib.command import run_cmd
from .layout import mark_complete, mark_incomplete

logger = logging.getLogger(__name__)


def locate_single_dir(parent: str, pattern: str) -> Path:
    """The one directory directly under ``parent`` whose name matches ``pattern``."""

    p = Path(parent)
    matches = sorted(c.name for c in p.iterdir() if c.is_dir() and fnmatch.fnmatch(c.name, pattern)) if p.is_dir() else []
    if len(matches) != 1:
        raise AmbiguousArtifactError(str(p), pattern, matches)
    return p / matches[0]


def expand(template: str, context: Mapping[str, str]) -> str:
    try:
        return template.format_map(context)
    except KeyError as e:
        raise ConfigError(f"Unknown placeholder {e} in {template!r}") from None


class RuntimeStager:
    """Places each component in its own directory under ``install_root``."""

    def __init__(self, install_root: str, fetcher: ArtifactFetcher) -> None:
        self.install_root = Path(install_root).resolve()
        self.fetcher = fetcher

    def component_path(self, spec: ComponentSpec) -> Path:
        return self.install_root / spec.id

    def home_path(self, spec: ComponentSpec) -> Path:
        path = self.component_path(spec)
        return path / spec.home_subdir if spec.home_subdir else path

    def locate_source(self, spec: ComponentSpec, unpacked: str) -> Path:
        return locate_single_dir(unpacked, spec.dir_pattern)

    def _relocate_build(self, spec: ComponentSpec, destdir: str, dest: Path) -> None:
        # make install DESTDIR=<destdir> puts files at <destdir>/<prefix>.
        built = Path(destdir) / str(dest).lstrip(os.sep)
        if not built.is_dir():
            raise StagingError(f"[{spec.id}] install phase produced nothing under {built}")
        copy_tree(str(built), str(dest))

    def replace_file(self, spec: ComponentSpec, dest: Path, override: ScriptOverride) -> Path:
        target = (dest / override.path).resolve()
        try:
            target.relative_to(dest.resolve())
        except ValueError:
            raise StagingError(f"[{spec.id}] override path escapes component: {override.path}") from None

        logger.info("[%s] replacing %s with %s", spec.id, override.path, override.url)
        self.fetcher.download_file(override.url, override.sha256, str(target))
        target.chmod(0o755)
        return target

    def run_setup(
        self,
        spec: ComponentSpec,
        dest: Path,
        env: Mapping[str, str],
        context: Mapping[str, str],
    ) -> None:
        assert spec.setup is not None
        script = dest / spec.setup.script
        if not script.is_file():
            raise StagingError(f"[{spec.id}] setup script missing: {script}")
        script.chmod(0o755)

        argv = [str(script), *(expand(a, context) for a in spec.setup.args)]
        setup_env = dict(env)
        setup_env.update({k: expand(v, context) for k, v in spec.setup.env})

        try:
            r = run_cmd(argv, check=False, env=setup_env, cwd=str(dest))
        except OSError as e:
            raise BuildError(spec.id, "setup", 127, stderr=str(e)) from e
        if r.returncode != 0:
            raise BuildError(spec.id, "setup", r.returncode, stdout=r.stdout, stderr=r.stderr)

    def stage(
        self,
        spec: ComponentSpec,
        source: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> Path:
        """Stage ``spec`` and return its installed path.

        ``source`` is the located source tree for prebuilt components and the
        build's DESTDIR for compiled ones. The directory carries the
        incomplete marker until every step below has succeeded.
        """

        dest = self.component_path(spec)
        try:
            remove_tree(str(dest))
            mark_incomplete(dest)

            if spec.is_compiled:
                self._relocate_build(spec, source, dest)
            else:
                copy_tree(source, str(dest))

            for override in spec.overrides:
                self.replace_file(spec, dest, override)

            if spec.setup is not None:
                self.run_setup(spec, dest, env or {}, context or {})

            mark_complete(dest)
        except OSError as e:
            raise StagingError(f"[{spec.id}] cannot stage into {dest}: {e}") from e
        logger.info("[%s] staged at %s", spec.id, str(dest))
        return dest
