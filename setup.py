"""Build hook writing serverstarter/_build_info.py into the built package.

pyproject.toml holds the project metadata; this script only adds the
build_py step that records the git commit the wheel was built from. The
source tree is never modified, so a checkout runs without build info.
"""

import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path

from setuptools import setup
from setuptools.command.build_py import build_py

PACKAGE = "serverstarter"

_BUILD_INFO_TEMPLATE = '''\
"""Build information - generated by setup.py, do not edit."""

COMMIT_HASH = "{commit}"
COMMIT_SHORT = "{short}"
COMMIT_MESSAGE = "{message}"
BUILD_TIME = "{build_time}"
MODIFIED = {modified}
'''


def _git(*args: str) -> str | None:
    """Run a git command in the project directory, None on any failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=Path(__file__).parent,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def write_build_info(package_dir: Path) -> bool:
    commit = _git("rev-parse", "HEAD")
    if not commit:
        print(f"{PACKAGE}: no git commit, skipping _build_info.py", file=sys.stderr)
        return False

    message = (_git("log", "-1", "--format=%s") or "").replace("\\", "\\\\")
    status = _git("status", "--porcelain")

    (package_dir / "_build_info.py").write_text(
        _BUILD_INFO_TEMPLATE.format(
            commit=commit,
            short=commit[:7],
            message=message.replace('"', '\\"'),
            build_time=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            modified=bool(status),
        )
    )
    print(f"{PACKAGE}: wrote _build_info.py ({commit[:7]})", file=sys.stderr)
    return True


class BuildPyWithBuildInfo(build_py):
    """build_py that adds _build_info.py to the build directory."""

    def run(self):
        super().run()
        if self.build_lib:
            package_dir = Path(self.build_lib) / PACKAGE
            if package_dir.is_dir():
                write_build_info(package_dir)


setup(cmdclass={"build_py": BuildPyWithBuildInfo})
