"""
Build information for the running code.

A wheel built from a git checkout carries a generated ``_build_info.py``
(see setup.py) recording the commit it was built from. Master and workers log
the short commit on startup, so after a reload the log shows which code each
generation runs.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass


@dataclass(frozen=True)
class BuildInfo:
    """Commit information captured at build time."""

    commit: str
    commit_short: str
    message: str = ""
    build_time: str = ""
    modified: bool = False


def get_build_info(package: str = "serverstarter") -> BuildInfo | None:
    """
    Read the generated build info of a package.

    Returns:
        BuildInfo, or None when running from a source tree without one
    """
    try:
        module = importlib.import_module(f"{package}._build_info")
    except ModuleNotFoundError:
        return None

    commit = getattr(module, "COMMIT_HASH", "")
    if not commit:
        return None
    return BuildInfo(
        commit=commit,
        commit_short=getattr(module, "COMMIT_SHORT", commit[:7]),
        message=getattr(module, "COMMIT_MESSAGE", ""),
        build_time=getattr(module, "BUILD_TIME", ""),
        modified=bool(getattr(module, "MODIFIED", False)),
    )


def build_fields(package: str = "serverstarter") -> dict[str, str]:
    """Log fields identifying the build, empty without build info."""
    info = get_build_info(package)
    if info is None:
        return {}
    commit = info.commit_short + ("*" if info.modified else "")
    return {"commit": commit}
