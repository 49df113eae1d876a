"""Types shared by the plugin loader and the plugins themselves."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI

from frontdoor.config import PluginConfig


class ApiPlugin(ABC):
    """Base class for class-style plugins. Export an instance as `plugin`."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def register(self, app: FastAPI, config: PluginConfig) -> Awaitable[None] | None:
        """Add this plugin's routes to app. May be a coroutine."""

    def __repr__(self) -> str:
        return f"<ApiPlugin:{self.name}>"


@dataclass(frozen=True)
class PluginRecord:
    name: str
    path: Path


__all__ = ["ApiPlugin", "PluginConfig", "PluginRecord"]
