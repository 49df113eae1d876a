"""
Plugin discovery and sequential registration.

Candidates are the modules of the plugin directory in filename order. When
the directory holds any .py plugin the sources are loaded, otherwise the
sourceless .pyc files are (a compiled deployment). Each plugin is registered
and awaited before the next one is imported, so route order is reproducible.
A plugin that fails is logged and skipped; the rest still load.
"""

import importlib.util
import inspect
import logging
import sys
from collections.abc import Callable
from importlib.machinery import SourcelessFileLoader
from pathlib import Path
from types import ModuleType

from fastapi import FastAPI

from frontdoor.api.types import ApiPlugin, PluginRecord
from frontdoor.config import PluginConfig
from frontdoor.errors import PluginLoadError

logger = logging.getLogger("frontdoor.plugins")

SOURCE_SUFFIX = ".py"
COMPILED_SUFFIX = ".pyc"
EXCLUDED_MODULES = {"loader", "types", "__init__"}
MODULE_NAMESPACE = "frontdoor_plugins"


def _module_name(path: Path) -> str:
    # hello.py, hello.pyc and hello.cpython-312.pyc are all "hello"
    return path.name.split(".", 1)[0]


def discover_plugin_files(directory: Path) -> list[Path]:
    """Plugin files in lexicographic filename order, sources or compiled but not both."""
    candidates = []
    for path in sorted(Path(directory).iterdir(), key=lambda p: p.name):
        if not path.is_file() or path.suffix not in (SOURCE_SUFFIX, COMPILED_SUFFIX):
            continue
        name = _module_name(path)
        if name in EXCLUDED_MODULES or name.startswith("_"):
            continue
        candidates.append(path)

    use_sources = any(path.suffix == SOURCE_SUFFIX for path in candidates)
    wanted = SOURCE_SUFFIX if use_sources else COMPILED_SUFFIX
    return [path for path in candidates if path.suffix == wanted]


def import_plugin_module(path: Path) -> ModuleType:
    module_name = f"{MODULE_NAMESPACE}.{_module_name(path)}"
    loader = SourcelessFileLoader(module_name, str(path)) if path.suffix == COMPILED_SUFFIX else None
    spec = importlib.util.spec_from_file_location(module_name, path, loader=loader)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import plugin from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def resolve_entry_point(module: ModuleType) -> Callable | None:
    """The plugin's register callable: plugin.register for ApiPlugin objects, else module.register."""
    plugin = getattr(module, "plugin", None)
    if isinstance(plugin, ApiPlugin):
        return plugin.register
    entry = getattr(module, "register", None)
    return entry if callable(entry) else None


class PluginRegistry:
    """Loads plugins into an app and remembers what loaded and what failed."""

    def __init__(self):
        self.records: list[PluginRecord] = []
        self.failures: list[PluginLoadError] = []

    async def load(self, directory: Path | str, app: FastAPI, config: PluginConfig) -> int:
        """
        Import and register every plugin in directory, one after another.

        Returns:
            Number of plugins loaded successfully by this call
        """
        directory = Path(directory)
        logger.info("Loading API plugins from %s", directory)
        try:
            files = discover_plugin_files(directory)
        except OSError as e:
            logger.error("Error loading API plugins: %s", e)
            return 0

        loaded = 0
        for path in files:
            name = _module_name(path)
            try:
                module = import_plugin_module(path)
                entry = resolve_entry_point(module)
                if entry is None:
                    logger.warning("Plugin %s does not export a register function, skipping", path.name)
                    continue
                result = entry(app, config)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                error = PluginLoadError(path.name, e)
                self.failures.append(error)
                logger.error("%s", error, exc_info=e)
                continue

            self.records.append(PluginRecord(name=name, path=path))
            loaded += 1
            logger.info("Loaded plugin: %s", path.name)

        logger.info("Successfully loaded %d API plugin(s)", loaded)
        return loaded


async def load_plugins(directory: Path | str, app: FastAPI, config: PluginConfig) -> int:
    return await PluginRegistry().load(directory, app, config)
