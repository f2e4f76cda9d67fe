"""
Plugins shipped with Keel and loaded for every project.
"""

from keel.plugins import commits


def builtin_plugins():
    """Return fresh instances of the built-in plugins."""
    return [commits.create_plugin()]


__all__ = ["builtin_plugins"]
