"""
Keel Plugin System - plugin resolution and loading.

This module handles:
- The Plugin contract and API version
- Manifest parsing for packaged plugins
- Resolution from local, GitHub, package index and git sources
- Isolated module loading and transactional registration
"""

from keel.plugin.base import API_VERSION, Plugin

__all__ = ["API_VERSION", "Plugin"]
