"""
utils package for wflint

YAML composition helpers, workflow file discovery and version information.
"""

from .version import __version__, get_version, get_version_info

__all__ = ["__version__", "get_version", "get_version_info"]
