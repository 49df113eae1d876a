"""Startup configuration shared by plugins, proxy rules and the static server"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

DEFAULT_STATIC_DIR = "public"
DEFAULT_PORT = 3000
PROXY_CONFIG_FILENAME = "proxy.config.json"


def _freeze(values: Mapping | None) -> Mapping:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class PluginConfig:
    """
    Immutable configuration handed to every plugin and proxy rule.

    Fields:
        static_path: absolute path of the directory served as static files
        static_dir: the directory exactly as given on the command line / env
        port: port the server listens on
        proxy_config_path: explicit proxy config file, overrides the default
        extensions: extra read-only values plugins may look up
    """

    static_path: Path
    static_dir: str
    port: int = DEFAULT_PORT
    proxy_config_path: Path | None = None
    extensions: Mapping = field(default_factory=lambda: _freeze(None))

    def __post_init__(self):
        if not isinstance(self.extensions, MappingProxyType):
            object.__setattr__(self, "extensions", _freeze(self.extensions))

    @property
    def proxy_config_file(self) -> Path:
        """Proxy config location: the override, else <static_path>/proxy.config.json."""
        if self.proxy_config_path is not None:
            return self.proxy_config_path
        return self.static_path / PROXY_CONFIG_FILENAME

    @property
    def index_file(self) -> Path:
        return self.static_path / "index.html"

    def get(self, key: str, default=None):
        """Look up an extension value."""
        return self.extensions.get(key, default)

    @classmethod
    def from_sources(
        cls,
        static_dir: str | None = None,
        proxy_config_path: str | None = None,
        port: int | str | None = None,
        environ: Mapping[str, str] | None = None,
        base_dir: Path | None = None,
        extensions: Mapping | None = None,
    ) -> "PluginConfig":
        """
        Build the config from CLI values, falling back to env then defaults.

        Precedence for the static directory: argument, STATIC_DIR, "public".
        Precedence for the port: argument, PORT, 3000.
        Relative paths resolve against base_dir (the working directory by default).

        Raises:
            ValueError: if the port is not an integer in 0..65535
        """
        env = os.environ if environ is None else environ
        base = Path(base_dir or Path.cwd())

        raw_dir = static_dir or env.get("STATIC_DIR") or DEFAULT_STATIC_DIR
        static_path = Path(raw_dir)
        if not static_path.is_absolute():
            static_path = base / static_path

        raw_port = port if port is not None else env.get("PORT", DEFAULT_PORT)
        try:
            port_value = int(raw_port)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid port: {raw_port!r}") from None
        if not 0 <= port_value <= 65535:
            raise ValueError(f"Port out of range: {port_value}")

        override = None
        if proxy_config_path:
            override = Path(proxy_config_path)
            if not override.is_absolute():
                override = base / override

        return cls(
            static_path=static_path.resolve(),
            static_dir=raw_dir,
            port=port_value,
            proxy_config_path=override,
            extensions=_freeze(extensions),
        )
