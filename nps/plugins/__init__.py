"""
Scanning plugins
"""
from .base import BasePlugin, ResultEmitter, ScanTarget
from .grep import GrepPlugin
from .loader import PLUGIN_REGISTRY, load_plugins, load_rule_sets, register_plugin

__all__ = [
    "BasePlugin",
    "ResultEmitter",
    "ScanTarget",
    "GrepPlugin",
    "PLUGIN_REGISTRY",
    "load_plugins",
    "load_rule_sets",
    "register_plugin",
]
