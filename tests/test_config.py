"""Tests for PluginConfig resolution from arguments, environment and defaults."""

import dataclasses
import unittest
from pathlib import Path

from frontdoor.config import PluginConfig


class TestPluginConfig(unittest.TestCase):
    def setUp(self):
        self.base = Path("/srv/app")

    def test_defaults(self):
        config = PluginConfig.from_sources(environ={}, base_dir=self.base)
        self.assertEqual(config.static_dir, "public")
        self.assertEqual(config.static_path, Path("/srv/app/public"))
        self.assertEqual(config.port, 3000)
        self.assertEqual(config.proxy_config_file, Path("/srv/app/public/proxy.config.json"))
        self.assertEqual(config.index_file, Path("/srv/app/public/index.html"))

    def test_environment_used_when_no_arguments(self):
        config = PluginConfig.from_sources(environ={"STATIC_DIR": "dist", "PORT": "8080"}, base_dir=self.base)
        self.assertEqual(config.static_path, Path("/srv/app/dist"))
        self.assertEqual(config.port, 8080)

    def test_arguments_win_over_environment(self):
        config = PluginConfig.from_sources(
            static_dir="/var/www",
            port=9000,
            environ={"STATIC_DIR": "dist", "PORT": "8080"},
            base_dir=self.base,
        )
        self.assertEqual(config.static_path, Path("/var/www"))
        self.assertEqual(config.static_dir, "/var/www")
        self.assertEqual(config.port, 9000)

    def test_proxy_config_override(self):
        config = PluginConfig.from_sources(proxy_config_path="conf/proxies.json", environ={}, base_dir=self.base)
        self.assertEqual(config.proxy_config_file, Path("/srv/app/conf/proxies.json"))

    def test_invalid_port(self):
        with self.assertRaises(ValueError):
            PluginConfig.from_sources(environ={"PORT": "http"}, base_dir=self.base)
        with self.assertRaises(ValueError):
            PluginConfig.from_sources(port=70000, environ={}, base_dir=self.base)

    def test_config_is_read_only(self):
        config = PluginConfig.from_sources(environ={}, base_dir=self.base, extensions={"brand": "acme"})
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.port = 1
        with self.assertRaises(TypeError):
            config.extensions["brand"] = "other"
        self.assertEqual(config.get("brand"), "acme")
        self.assertIsNone(config.get("missing"))


if __name__ == "__main__":
    unittest.main()
