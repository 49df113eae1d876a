"""Serves /app.config.json so a plugin can override the static copy of that file."""

import logging

from fastapi import FastAPI

from frontdoor.config import PluginConfig

logger = logging.getLogger("frontdoor.plugins.app_config")


async def register(app: FastAPI, config: PluginConfig) -> None:
    @app.get("/app.config.json")
    async def app_config():
        return {
            "name": "App Config",
            "version": "1.0.0",
            "description": "App Config Description",
            "staticPath": str(config.static_path),
            "staticDir": config.static_dir,
            "port": config.port,
        }

    logger.info("Registered: GET /app.config.json")
