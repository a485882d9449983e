import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from .api.routes import slack
from .config import Settings, settings
from .services.relay import BridgeContext, build_bridge_context

logger = logging.getLogger(__name__)


def create_app(
    context_factory: Callable[[Settings], BridgeContext] = build_bridge_context,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = context_factory(settings)
        app.state.bridge_context = context
        logger.info("Slack webhook endpoint: POST /slack/events")
        try:
            yield
        finally:
            await context.aclose()
            app.state.bridge_context = None

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(slack.router)

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "version": settings.app_version}

    return app


app = create_app()
