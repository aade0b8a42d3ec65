# copytrader/main.py
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from copytrader.api import router
from copytrader.background import start_background_tasks, stop_background_tasks
from copytrader.config import Settings, settings as default_settings
from copytrader.db import init_db
from copytrader.errors import CopyTraderError
from copytrader.services import Services, build_services
from copytrader.sockets import ConnectionManager, notifications_socket

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None, config: Optional[Settings] = None) -> FastAPI:
    config = config or (services.config if services else default_settings)
    services = services or build_services(config)

    app = FastAPI(title="Kalshi Copytrader")
    app.state.services = services
    app.state.connections = ConnectionManager()
    services.notifier.add_listener(app.state.connections.push)

    app.include_router(router)
    app.add_api_websocket_route("/ws/notifications/{wallet}", notifications_socket)

    @app.exception_handler(CopyTraderError)
    async def copytrader_error(request: Request, exc: CopyTraderError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.on_event("startup")
    async def startup():
        init_db(services.session_factory.kw.get("bind"))
        start_background_tasks(services)
        logger.info(f"Copytrader ready ({config.ENVIRONMENT}, dry_run={config.DRY_RUN})")

    @app.on_event("shutdown")
    async def shutdown():
        await stop_background_tasks(services)

    return app
