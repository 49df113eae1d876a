"""Example plugin with several endpoints, written as an ApiPlugin class."""

import logging
from typing import Any

from fastapi import Body, FastAPI

from frontdoor.api.types import ApiPlugin

logger = logging.getLogger("frontdoor.plugins.example")


class ExamplePlugin(ApiPlugin):
    def register(self, app: FastAPI, config) -> None:
        @app.get("/api/example")
        async def list_examples():
            return {"example": True, "message": "This is an example endpoint"}

        @app.get("/api/example/{item_id}")
        async def get_example(item_id: str):
            return {"id": item_id, "message": f"Example item with ID: {item_id}"}

        @app.post("/api/example")
        async def create_example(payload: Any = Body(default=None)):
            return {"success": True, "received": payload, "message": "Data received successfully"}

        logger.info("Registered: GET /api/example, GET /api/example/{id}, POST /api/example")


plugin = ExamplePlugin()
