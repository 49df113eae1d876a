"""Greeting endpoint for the backend-for-frontend."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI

logger = logging.getLogger("frontdoor.plugins.hello")


def register(app: FastAPI, config) -> None:
    @app.get("/bff/hello")
    async def hello():
        return {
            "message": "Hello from BFF!",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    logger.info("Registered: GET /bff/hello")
