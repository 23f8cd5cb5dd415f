from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence, Tuple

from .components import ComponentSpec
from .errors import PlanError, UnsupportedPlatformError
from .lib.host import HostFacts
from .platforms import PLATFORM_PROFILES, profile_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallPlan:
    host: HostFacts
    components: Tuple[ComponentSpec, ...]

    def __iter__(self) -> Iterator[ComponentSpec]:
        return iter(self.components)

    def __len__(self) -> int:
        return len(self.components)

    @property
    def ids(self) -> List[str]:
        return [c.id for c in self.components]

    def with_role(self, role: str) -> ComponentSpec | None:
        for c in self.components:
            if c.role == role:
                return c
        return None


def _order(selected: Sequence[ComponentSpec]) -> List[ComponentSpec]:
    """Topological order over ``requires``; declaration order breaks ties."""

    by_id = {c.id: c for c in selected}
    ordered: List[ComponentSpec] = []
    done: set[str] = set()
    visiting: set[str] = set()

    def visit(c: ComponentSpec, chain: Tuple[str, ...]) -> None:
        if c.id in done:
            return
        if c.id in visiting:
            raise PlanError(f"Dependency cycle: {' -> '.join(chain + (c.id,))}")
        visiting.add(c.id)
        for dep in c.requires:
            # Requirements the OS satisfies have no entry to order against.
            if dep in by_id:
                visit(by_id[dep], chain + (c.id,))
        visiting.discard(c.id)
        done.add(c.id)
        ordered.append(c)

    for c in selected:
        visit(c, ())
    return ordered


def derive_plan(specs: Sequence[ComponentSpec], host: HostFacts) -> InstallPlan:
    """Select the components for ``host`` and order them by dependency."""

    profile = profile_for(host)

    known = {s.id for s in specs}
    for s in specs:
        for dep in s.requires:
            if dep not in known:
                raise PlanError(f"{s.id} requires unknown component {dep!r}")

    selected: List[ComponentSpec] = []
    from_system: set[str] = set()
    for s in specs:
        if not s.matches(host):
            continue
        if s.provides and s.provides in profile.system_libraries:
            logger.info("Using system %s on %s instead of staging %s", s.provides, host, s.id)
            from_system.add(s.id)
            continue
        selected.append(s)

    selected_ids: set[str] = set()
    for s in selected:
        if s.id in selected_ids:
            raise PlanError(f"More than one variant of {s.id} matches {host}")
        selected_ids.add(s.id)
    for s in selected:
        missing = [dep for dep in s.requires if dep not in selected_ids and dep not in from_system]
        if missing:
            raise UnsupportedPlatformError(
                f"{s.id} requires {', '.join(missing)}, which is not available for {host}"
            )

    plan = InstallPlan(host=host, components=tuple(_order(selected)))
    logger.info("Install plan for %s: %s", host, ", ".join(plan.ids) or "(empty)")
    return plan


def plan_matrix(specs: Sequence[ComponentSpec]) -> Dict[Tuple[str, str], List[str]]:
    """Component ids per known (os, arch); empty when the table cannot install there."""

    out: Dict[Tuple[str, str], List[str]] = {}
    for os_name, arch in PLATFORM_PROFILES:
        host = HostFacts(os=os_name, arch=arch)
        try:
            out[(os_name, arch)] = derive_plan(specs, host).ids
        except UnsupportedPlatformError:
            out[(os_name, arch)] = []
    return out
