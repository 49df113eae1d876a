"""
Frontdoor - static asset server with plugin routes and reverse-proxy rules
Plugins and proxy rules take precedence over files in the static directory
"""

__version__ = "1.0.0"

from .config import PluginConfig
from .errors import (
    ConfigParseError,
    ConfigShapeError,
    FrontdoorError,
    PluginLoadError,
    ProxyConfigError,
    RateLimitExceeded,
    RuleValidationError,
    UpstreamTransportError,
)

__all__ = [
    "PluginConfig",
    "FrontdoorError",
    "ProxyConfigError",
    "ConfigParseError",
    "ConfigShapeError",
    "RuleValidationError",
    "PluginLoadError",
    "UpstreamTransportError",
    "RateLimitExceeded",
    "__version__",
]
