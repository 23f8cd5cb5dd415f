from __future__ import annotations

import argparse
import logging
from typing import Optional

from .components import DEFAULT_COMPONENTS_PATH, load_component_table
from .config import load_installer_config
from .errors import InstallerError
from .lib.host import detect_host
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .orchestrator import InstallOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="autopsy-installer",
        description="Fetch, build and stage Autopsy with The Sleuth Kit and a bundled JVM.",
    )
    p.add_argument("--config", default=None, help="Installer config (yaml)")
    p.add_argument("--components", default=None, help="Component table (yaml)")
    p.add_argument("--prefix", default=None, help="Install root holding one directory per component")
    p.add_argument("--bin-dir", default=None, help="Directory for the launcher symlink")
    p.add_argument("--work-dir", default=None, help="Scratch directory for downloads and builds")
    p.add_argument("--os", dest="os_name", default=None, help="Override detected OS (linux|macos)")
    p.add_argument("--arch", default=None, help="Override detected CPU architecture (x86_64|arm64)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--plan-only", action="store_true", help="Print the install plan and exit")
    p.add_argument("--no-smoke-test", action="store_true", help="Skip running '<launcher> --help'")
    p.add_argument("--force", action="store_true", help="Clear a previous install before running")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    log_path = configure_logging(log_path=args.log, level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        cfg = load_installer_config(args.config).with_overrides(
            install_root=args.prefix,
            bin_dir=args.bin_dir,
            work_dir=args.work_dir,
            components=args.components,
            smoke_test=False if args.no_smoke_test else None,
        )
        specs = load_component_table(cfg.components_path or DEFAULT_COMPONENTS_PATH)
        host = detect_host(os_name=args.os_name, arch=args.arch)
        orchestrator = InstallOrchestrator(specs, host, cfg, log_path=log_path)

        if args.plan_only:
            for spec in orchestrator.plan():
                print(spec.id)
            return 0
    except InstallerError as e:
        logger.error("%s", e)
        return 1

    result = orchestrator.run(force=args.force)
    if not result.ok:
        logger.error("%s", result.failure)
        return 1

    logger.info("Install complete; launcher: %s", result.launcher or "(none)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
