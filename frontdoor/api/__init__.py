"""
API plugins.

Every module in this directory other than loader and types is a plugin. A
plugin exposes register(app, config), or a `plugin` object implementing
ApiPlugin, and adds its routes to the app when called. Plugins load in
filename order, which is also the order their routes take precedence.
"""

from pathlib import Path

PLUGIN_DIR = Path(__file__).resolve().parent
