"""
Static file serving with a single-page-app fallback.

Requests for files that exist are served from the static directory. Anything
else gets index.html so client-side routing works, or a JSON 404 when the
directory has no index.html.
"""

import logging
import os
from pathlib import Path

from fastapi.responses import FileResponse
from starlette.exceptions import HTTPException
from starlette.responses import Response
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from frontdoor.router.responses import error_response

logger = logging.getLogger("frontdoor.router.static")

INDEX_DOCUMENT = "index.html"


class SPAStaticFiles(StaticFiles):
    def __init__(self, directory: Path | str, index_path: Path | None = None):
        super().__init__(directory=directory, html=True, check_dir=False)
        self.index_path = index_path or Path(directory) / INDEX_DOCUMENT

    async def check_config(self) -> None:
        if not os.path.isdir(self.directory):
            logger.warning("Static directory %s does not exist; only the fallback will be served", self.directory)
            return
        await super().check_config()

    async def get_response(self, path: str, scope: Scope) -> Response:
        try:
            return await super().get_response(path, scope)
        except HTTPException as exc:
            # 405 is what StaticFiles answers non-GET requests for unknown paths
            if exc.status_code not in (404, 405):
                raise
        return self.fallback_response(scope)

    def fallback_response(self, scope: Scope) -> Response:
        if self.index_path.is_file():
            return FileResponse(self.index_path)
        return error_response(404, "Not Found", "No route or static file matches this path", scope["path"])
