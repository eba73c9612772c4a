"""
Custom setup.py to optionally exclude pygame-dependent files from the wheel.

viewer.py and controls.py require pygame, which headless server
deployments do not install. Build with NCA_HEADLESS=1 to leave them out;
regular builds keep them for the "viewer" extra.
"""

import os

from setuptools import setup
from setuptools.command.build_py import build_py as _build_py


# Modules that require pygame and are dropped from headless wheels.
_EXCLUDE_MODULES = {"viewer", "controls"}


class BuildPy(_build_py):
    """Custom build_py that excludes pygame-dependent modules when headless."""

    def find_package_modules(self, package, package_dir):
        modules = super().find_package_modules(package, package_dir)
        if os.environ.get("NCA_HEADLESS") != "1":
            return modules
        return [
            (pkg, mod, path)
            for (pkg, mod, path) in modules
            if mod not in _EXCLUDE_MODULES
        ]


setup(
    cmdclass={"build_py": BuildPy},
)
