"""Local web server for exported menu bundles.

Browsers refuse camera access to pages opened from ``file://``, so an
exported bundle has to be served over HTTP to use its AR view. The server
also exposes the manifest as a small JSON API.
"""

import json
import socket
from pathlib import Path
from typing import Optional, Union

from aiohttp import web

from dishcovery.ar.bundle import SiteBundle
from dishcovery.ar.hosts import describe_item
from dishcovery.config import get_settings
from dishcovery.utils import get_logger

logger = get_logger("server")


class BundleServer:
    """
    Serves one exported bundle directory.
    """

    def __init__(
        self,
        bundle: Union[SiteBundle, str, Path],
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        """
        Initialize the server.

        Args:
            bundle: Bundle (or its directory) to serve
            host: Host to bind to (default from settings)
            port: Port to listen on (default from settings)
        """
        settings = get_settings()
        self.bundle = bundle if isinstance(bundle, SiteBundle) else SiteBundle.open(bundle)
        self.host = host or settings.web_host
        self.port = port or settings.web_port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._request_count = 0

    def _get_local_ip(self) -> str:
        """Get the local IP address for LAN access."""
        try:
            # Create a socket to determine local IP
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            s.close()
            return ip
        except OSError:
            return "127.0.0.1"

    @property
    def base_url(self) -> str:
        """Get the base URL for the server."""
        return f"http://{self._get_local_ip()}:{self.port}"

    @property
    def is_running(self) -> bool:
        return self._site is not None

    def build_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/api/items", self._handle_items)
        app.router.add_get("/api/items/{item_id}", self._handle_item)
        app.router.add_get("/api/runtime", self._handle_runtime)

        assets = self.bundle.root / "assets"
        if assets.is_dir():
            app.router.add_static("/assets", assets)
        if self.bundle.runtime_dir.is_dir():
            app.router.add_static("/runtime", self.bundle.runtime_dir)
        return app

    async def start(self) -> None:
        """Start serving."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info(f"Bundle server started at {self.base_url}")

    async def stop(self) -> None:
        """Stop serving."""
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None
        logger.info("Bundle server stopped")

    async def _handle_index(self, request: web.Request) -> web.StreamResponse:
        self._request_count += 1
        index = self.bundle.root / "index.html"
        if not index.exists():
            return web.Response(text="index.html not found", status=404)
        return web.FileResponse(index)

    async def _handle_items(self, request: web.Request) -> web.Response:
        items = self.bundle.items
        if request.query.get("ar") == "1":
            items = [item for item in items if item.ar_ready]
        return web.json_response([describe_item(item) for item in items], dumps=_dumps)

    async def _handle_item(self, request: web.Request) -> web.Response:
        item = self.bundle.get_item(request.match_info["item_id"])
        if item is None:
            return web.json_response({"error": "Item not found"}, status=404)
        return web.json_response(item.to_dict(), dumps=_dumps)

    async def _handle_runtime(self, request: web.Request) -> web.Response:
        return web.json_response({
            "files": self.bundle.manifest.get("runtime", {}),
            "verified": self.bundle.verify_runtime(),
        }, dumps=_dumps)


def _dumps(data) -> str:
    return json.dumps(data, indent=2)
