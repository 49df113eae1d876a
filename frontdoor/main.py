"""Command line entry point for frontdoor"""

import argparse
import os
import socket
import sys

import uvicorn

from . import __version__
from .api import PLUGIN_DIR
from .config import PluginConfig
from .output import print_error, print_info, print_startup_summary
from .router.core import create_app
from .structured_logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="frontdoor",
        description="Serve a static directory with API plugins and reverse-proxy rules in front of it",
    )
    parser.add_argument(
        "static_dir",
        nargs="?",
        default=None,
        help="Directory of static files (default: $STATIC_DIR or ./public)",
    )
    parser.add_argument(
        "--proxy-config",
        default=None,
        help="Proxy rules file (default: <static_dir>/proxy.config.json)",
    )
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: $PORT or 3000)")
    parser.add_argument("--host", default=None, help="Interface to bind (default: $HOST or 0.0.0.0)")
    parser.add_argument("--plugin-dir", default=None, help="Directory of API plugins (default: bundled plugins)")
    parser.add_argument("--log-level", default=None, help="Log level (default: $FRONTDOOR_LOG_LEVEL or INFO)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def port_in_use(host: str, port: int) -> bool:
    """True if nothing can bind host:port right now"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        config = PluginConfig.from_sources(
            static_dir=args.static_dir,
            proxy_config_path=args.proxy_config,
            port=args.port,
        )
    except ValueError as e:
        print_error(str(e))
        return 2

    host = args.host or os.getenv("HOST", "0.0.0.0")
    plugin_dir = args.plugin_dir or PLUGIN_DIR
    app = create_app(config, plugin_dir=plugin_dir)

    if port_in_use(host, config.port):
        print_error(f"Port {config.port} is already in use. Please use a different port.")
        return 1

    print_startup_summary(host, config.port, config.static_dir, str(config.proxy_config_file), str(plugin_dir))

    try:
        uvicorn.run(app, host=host, port=config.port, log_config=None)
    except KeyboardInterrupt:
        print_info("Server stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
