from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .builder import ComponentBuilder, build_environment
from .components import ComponentSpec
from .config import InstallerConfig
from .environment import EnvironmentComposer, RuntimeEnvironment
from .errors import AlreadyInstalledError, InstallerError, LauncherError
from .fetcher import ArtifactFetcher
from .layout import StagingLayout, scan_layout
from .lib.assets import remove_tree
from .lib.command import run_cmd
from .lib.host import HostFacts
from .plan import InstallPlan, derive_plan
from .receipt import load_receipt, receipt_path, save_receipt
from .stager import RuntimeStager

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INIT = "init"
    FETCHING = "fetching"
    BUILDING = "building"
    STAGING = "staging"
    COMPOSING_ENVIRONMENT = "composing-environment"
    LINKING = "linking"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Failure:
    stage: Stage
    component: Optional[str]
    cause: InstallerError

    def __str__(self) -> str:
        where = f"{self.stage.value}/{self.component}" if self.component else self.stage.value
        return f"Failed({where}): {self.cause}"


@dataclass(frozen=True)
class InstallResult:
    state: Stage
    layout: Dict[str, str]
    launcher: Optional[str] = None
    failure: Optional[Failure] = None
    runtime_env: Optional[RuntimeEnvironment] = None
    history: Tuple[Tuple[Stage, Optional[str]], ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.state is Stage.DONE


class InstallOrchestrator:
    """Drive one install run: Init -> Fetching -> Building -> Staging ->
    ComposingEnvironment -> Linking -> Done, or Failed(stage, cause).

    Failures are terminal; nothing is retried. A run that failed can be
    started again over the same install root (partial directories are
    overwritten). A run that succeeded leaves a receipt, and a second run
    over it refuses to start unless ``force`` clears that install first.
    """

    def __init__(
        self,
        specs: Sequence[ComponentSpec],
        host: HostFacts,
        config: InstallerConfig,
        *,
        fetcher: Optional[ArtifactFetcher] = None,
        builder: Optional[ComponentBuilder] = None,
        base_env: Optional[Mapping[str, str]] = None,
        log_path: Optional[str] = None,
    ) -> None:
        self.specs = list(specs)
        self.host = host
        self.config = config
        self.install_root = Path(config.install_root).resolve()
        self.work_dir = Path(config.work_dir).resolve()
        self.fetcher = fetcher or ArtifactFetcher(str(self.work_dir))
        self.builder = builder or ComponentBuilder(
            make=config.make,
            deparallelize=config.deparallelize,
            jobs=config.jobs,
        )
        self.stager = RuntimeStager(str(self.install_root), self.fetcher)
        self.base_env: Dict[str, str] = dict(base_env if base_env is not None else os.environ)
        self.log_path = log_path

        self.stage = Stage.INIT
        self.component: Optional[str] = None
        self._history: List[Tuple[Stage, Optional[str]]] = []

    def _enter(self, stage: Stage, component: Optional[str] = None) -> None:
        self.stage = stage
        self.component = component
        self._history.append((stage, component))
        if component:
            logger.info("=== %s: %s ===", stage.value, component)
        else:
            logger.info("=== %s ===", stage.value)

    def plan(self) -> InstallPlan:
        return derive_plan(self.specs, self.host)

    def _owned_dirs(self, prior: Mapping[str, Any]) -> List[Path]:
        """Component directories a previous run put directly under the install root."""

        names = set(prior.get("plan") or [])
        names.update(Path(p).name for p in (prior.get("layout") or {}).values())
        _, incomplete = scan_layout(str(self.install_root))
        names.update(incomplete)
        return [self.install_root / n for n in sorted(names) if n and n == Path(n).name]

    def clear(self) -> None:
        """Remove what a previous completed run installed, and nothing else.

        Only a root holding our receipt is touched, and inside it only the
        component directories, their work directories and our launcher.
        """

        receipt = receipt_path(str(self.install_root))
        if not receipt.is_file():
            logger.info("No install receipt in %s; nothing to clear", str(self.install_root))
            return

        prior = load_receipt(str(receipt))
        owned = self._owned_dirs(prior)
        logger.info("Clearing previous install in %s: %s", str(self.install_root), ", ".join(p.name for p in owned))

        link = Path(self.config.bin_dir) / self.config.launcher_name
        if link.is_symlink() and self._points_into_root(link):
            link.unlink()
        for path in owned:
            remove_tree(str(path))
            remove_tree(str(self.fetcher.component_dir(path.name)))
        receipt.unlink()

    def _points_into_root(self, link: Path) -> bool:
        target = Path(os.path.realpath(link))
        try:
            target.relative_to(self.install_root)
            return True
        except ValueError:
            return False

    def _check_not_installed(self) -> None:
        receipt = receipt_path(str(self.install_root))
        if receipt.exists():
            prior = load_receipt(str(receipt))
            raise AlreadyInstalledError(
                f"{self.install_root} already holds a completed install "
                f"({', '.join(prior.get('plan') or [])}); clear it first"
            )

    def _java_home(self, plan: InstallPlan, layout: StagingLayout) -> Optional[str]:
        jvm = plan.with_role("jvm")
        if jvm is None or jvm.id not in layout:
            return None
        return str(self.stager.home_path(jvm))

    def _toolkit_prefix(self, plan: InstallPlan, layout: StagingLayout) -> Optional[str]:
        toolkit = plan.with_role("toolkit")
        if toolkit is None or toolkit.id not in layout:
            return None
        return layout[toolkit.id]

    def build_env(self, plan: InstallPlan, layout: StagingLayout) -> Mapping[str, str]:
        """Environment for the next component, derived only from what is staged so far."""

        ant = self.config.ant or shutil.which("ant", path=self.base_env.get("PATH"))
        return build_environment(
            self.base_env,
            java_home=self._java_home(plan, layout),
            ant=ant,
            toolkit_prefix=self._toolkit_prefix(plan, layout),
            library_prefixes=[layout[c.id] for c in plan if c.role == "library" and c.id in layout],
            make_flags=self.builder.make_flags,
        )

    def _placeholders(self, plan: InstallPlan, layout: StagingLayout) -> Dict[str, str]:
        context = {"install_root": str(self.install_root), "java_home": self._java_home(plan, layout) or ""}
        context.update(layout.as_dict())
        return context

    def _install_component(self, spec: ComponentSpec, plan: InstallPlan, layout: StagingLayout) -> None:
        self._enter(Stage.FETCHING, spec.id)
        unpacked = self.fetcher.fetch(spec)

        env = self.build_env(plan, layout)
        context = self._placeholders(plan, layout)

        if spec.is_compiled:
            self._enter(Stage.BUILDING, spec.id)
            source = self.stager.locate_source(spec, str(unpacked))
            destdir = self.work_dir / spec.id / "destdir"
            self.builder.build(
                str(source),
                str(self.stager.component_path(spec)),
                env,
                component=spec.id,
                destdir=str(destdir),
                build_tools=spec.build_tools,
            )
            self._enter(Stage.STAGING, spec.id)
            staged = self.stager.stage(spec, str(destdir), env=env, context=context)
        else:
            self._enter(Stage.STAGING, spec.id)
            source = self.stager.locate_source(spec, str(unpacked))
            staged = self.stager.stage(spec, str(source), env=env, context=context)

        layout.record(spec.id, str(staged))

    def _link(self, plan: InstallPlan, layout: StagingLayout) -> Optional[str]:
        app = plan.with_role("application")
        if app is None:
            logger.info("No application component in plan; no launcher to create")
            return None

        target = Path(layout[app.id]) / app.launcher
        if not target.exists():
            raise LauncherError(f"Launcher target missing: {target}")

        link = Path(self.config.bin_dir) / self.config.launcher_name
        if link.is_symlink() or link.exists():
            if not (link.is_symlink() and self._points_into_root(link)):
                raise LauncherError(f"{link} already exists and does not belong to this install")
            link.unlink()

        link.parent.mkdir(parents=True, exist_ok=True)
        link.symlink_to(target)
        logger.info("Linked %s -> %s", str(link), str(target))

        if self.config.smoke_test:
            r = run_cmd([str(link), "--help"], check=False, env=self.base_env)
            if r.returncode != 0:
                link.unlink()
                raise LauncherError(f"{link} --help exited with {r.returncode}\n{r.stderr}".rstrip())
        return str(link)

    def _result(self, layout: StagingLayout, **kwargs: Any) -> InstallResult:
        return InstallResult(
            state=self.stage,
            layout=layout.as_dict(),
            history=tuple(self._history),
            **kwargs,
        )

    def run(self, *, force: bool = False) -> InstallResult:
        layout = StagingLayout()
        self._history = []

        try:
            self._enter(Stage.INIT)
            if force:
                self.clear()
            self._check_not_installed()
            plan = self.plan()

            for spec in plan:
                self._install_component(spec, plan, layout)

            self._enter(Stage.COMPOSING_ENVIRONMENT)
            composer = EnvironmentComposer(plan.components)
            runtime_env = composer.compose(layout, self.host)
            composer.apply(runtime_env)

            self._enter(Stage.LINKING)
            launcher = self._link(plan, layout)

            save_receipt(
                str(receipt_path(str(self.install_root))),
                {
                    "host": {"os": self.host.os, "arch": self.host.arch},
                    "plan": plan.ids,
                    "layout": layout.as_dict(),
                    "launcher": launcher,
                    "log_path": self.log_path,
                },
            )
            self._enter(Stage.DONE)
            return self._result(layout, launcher=launcher, runtime_env=runtime_env)
        except InstallerError as e:
            return self._fail(layout, e)
        except OSError as e:
            cause = InstallerError(f"{type(e).__name__}: {e}")
            cause.__cause__ = e
            return self._fail(layout, cause)

    def _fail(self, layout: StagingLayout, cause: InstallerError) -> InstallResult:
        failure = Failure(stage=self.stage, component=self.component, cause=cause)
        logger.exception("Install failed: %s", failure)
        self._enter(Stage.FAILED, self.component)
        return self._result(layout, failure=failure)
