import logging
from typing import Optional

from aiohttp import web

logger = logging.getLogger("trend_sweep.health")


async def handle_health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


def create_app() -> web.Application:
    app = web.Application()
    app.add_routes([web.get("/health", handle_health)])
    return app


class HealthHttpServer:
    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        try:
            self.runner = web.AppRunner(create_app())
            await self.runner.setup()
            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()
            logger.info(f"Health HTTP server started on port {self.port}")
        except OSError as e:
            logger.warning(f"Failed to start health HTTP server: {e}")

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
