"""
Version management for Syncable.
"""

from importlib.metadata import PackageNotFoundError, version

# Base version - used when the package metadata is unavailable
BASE_VERSION = "0.1.0"


def get_version() -> str:
    """Installed distribution version, or the base version from a source checkout."""
    try:
        return version("syncable")
    except PackageNotFoundError:
        return BASE_VERSION


__version__ = get_version()
