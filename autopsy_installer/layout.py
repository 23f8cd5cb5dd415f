from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Tuple

logger = logging.getLogger(__name__)

INCOMPLETE_MARKER = ".install-incomplete"


class StagingLayout(Mapping[str, str]):
    """component id -> absolute installed path; each key is written once."""

    def __init__(self) -> None:
        self._paths: Dict[str, str] = {}

    def __getitem__(self, component_id: str) -> str:
        return self._paths[component_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def record(self, component_id: str, path: str) -> None:
        if component_id in self._paths:
            raise ValueError(f"Layout entry for {component_id} already written")
        self._paths[component_id] = str(Path(path).resolve())
        logger.info("Layout: %s -> %s", component_id, self._paths[component_id])

    def as_dict(self) -> Dict[str, str]:
        return dict(self._paths)


def mark_incomplete(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    (path / INCOMPLETE_MARKER).write_text("staging in progress\n", encoding="utf-8")


def mark_complete(path: Path) -> None:
    (path / INCOMPLETE_MARKER).unlink(missing_ok=True)


def is_incomplete(path: Path) -> bool:
    return (path / INCOMPLETE_MARKER).exists()


def scan_layout(install_root: str) -> Tuple[List[str], List[str]]:
    """Return (complete, incomplete) component directory names under ``install_root``."""

    root = Path(install_root)
    complete: List[str] = []
    incomplete: List[str] = []
    if not root.is_dir():
        return complete, incomplete
    for child in sorted(root.iterdir()):
        if not child.is_dir() or child.is_symlink():
            continue
        (incomplete if is_incomplete(child) else complete).append(child.name)
    return complete, incomplete
