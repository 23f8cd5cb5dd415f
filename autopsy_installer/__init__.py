"""Autopsy installer (state-driven, per-component staging).

Core design goals:
- Every artifact is pinned by sha256 and verified before use
- Components staged in isolated directories under one install root
- Build environment passed explicitly per component, never via os.environ
- Platform/arch differences expressed as data tables
- Centralized logging
"""

__all__ = []
