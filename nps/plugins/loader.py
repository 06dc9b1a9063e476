"""
Plugin registry and rule-set loading

Plugins are looked up by name in an explicit registry; the `plugins` setting
chooses which registered plugins a scanner runs. No code is imported from the
rule directory.
"""
import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Type

from loguru import logger
from pydantic import ValidationError

from nps.common.exceptions import PluginLoadError, RuleParseError
from nps.plugins.base import BasePlugin, ResultEmitter
from nps.plugins.grep import GrepPlugin
from nps.schemas.ruleset import RuleSet

PLUGIN_REGISTRY: Dict[str, Type[BasePlugin]] = {
    GrepPlugin.name: GrepPlugin,
}


def register_plugin(plugin_cls: Type[BasePlugin]) -> Type[BasePlugin]:
    """Add a plugin class to the registry. Usable as a class decorator."""
    PLUGIN_REGISTRY[plugin_cls.name.lower()] = plugin_cls
    return plugin_cls


def parse_rule_set(path: Path) -> RuleSet:
    try:
        return RuleSet.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise RuleParseError("unreadable rule set", path=str(path), error=e) from e


def load_rule_sets(path) -> Dict[str, List[RuleSet]]:
    """
    Read every rule-set document in `path`.

    Returns plugin name (lowercased) -> rule sets, in file name order.
    Documents that fail to parse are logged and skipped.
    """
    rule_sets: Dict[str, List[RuleSet]] = defaultdict(list)
    directory = Path(path)
    if not directory.is_dir():
        logger.warning(f"rules.missing_directory path={directory}")
        return dict(rule_sets)

    for document in sorted(directory.iterdir()):
        if document.name.startswith(".") or not document.is_file():
            continue
        try:
            rule_set = parse_rule_set(document)
        except RuleParseError as e:
            logger.warning(f"rules.skipped {e}")
            continue
        rule_sets[rule_set.plugin_key].append(rule_set)
        logger.debug(f"rules.loaded file={document.name} plugin={rule_set.plugin_key} rules={len(rule_set.rules)}")

    return dict(rule_sets)


def load_plugins(
    settings,
    rule_sets: Dict[str, List[RuleSet]],
    emitter: ResultEmitter,
    registry: Optional[Dict[str, Type[BasePlugin]]] = None,
) -> List[BasePlugin]:
    """Instantiate the configured plugins, in configuration order."""
    registry = PLUGIN_REGISTRY if registry is None else registry
    plugins = []
    for name in settings.plugins:
        plugin_cls = registry.get(name.lower())
        if plugin_cls is None:
            raise PluginLoadError("plugin not registered", plugin=name, available=",".join(sorted(registry)))
        plugins.append(plugin_cls(settings, rule_sets, emitter))
    return plugins
