"""
Core package for the Smart Group Evaluator.

Kept dependency-free at import time so the CLI, the portal, and the tests can
import the version helper without configuring a store first.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("smart-evaluator")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
