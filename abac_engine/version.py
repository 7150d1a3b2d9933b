# abac-engine/abac_engine/version.py
"""Version information for the ABAC engine."""

from typing import Tuple

__version__ = "0.1.0"

VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0
VERSION_PRE_RELEASE = None  # None, "alpha", "beta", "rc"


def get_version() -> str:
    """
    Get the full version string.

    Returns:
        Version string in semver format (e.g., "0.1.0", "0.1.0-beta")
    """
    version = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"
    if VERSION_PRE_RELEASE:
        version += f"-{VERSION_PRE_RELEASE}"
    return version


def get_version_info() -> Tuple[int, int, int, str]:
    """Version as a (major, minor, patch, pre_release) tuple."""
    return (VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH, VERSION_PRE_RELEASE or "")
