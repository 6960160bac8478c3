from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import Settings
from backend.app.core.logging_config import configure_logging
from backend.app.db.introspection import SchemaCapabilities
from backend.app.db.session import create_db_engine, create_session_factory
from backend.services.errors import ErrorKind, StoreError
from backend.services.notifications import Notifier, build_notifier
from backend.services.transitions import OrderTransitionEngine

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.no_op: 400,
    ErrorKind.forbidden: 403,
    ErrorKind.not_found: 404,
    ErrorKind.transaction_failed: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)

    engine = create_db_engine(settings)
    session_factory = create_session_factory(engine)
    capabilities = SchemaCapabilities.resolve(engine)

    app.state.db_engine = engine
    app.state.session_factory = session_factory
    app.state.capabilities = capabilities
    app.state.transition_engine = OrderTransitionEngine(
        session_factory,
        capabilities,
        notifier=app.state.notifier,
    )
    logger.info("app.startup", extra={"dialect": engine.dialect.name})
    try:
        yield
    finally:
        engine.dispose()
        logger.info("app.shutdown")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(exc.kind, 400),
        content=jsonable_encoder({"detail": exc.message, "error": exc.as_dict()}),
    )


def create_app(settings: Settings | None = None, notifier: Notifier | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Midwest Grocery API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.notifier = notifier or build_notifier(settings)

    app.add_exception_handler(StoreError, store_error_handler)
    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
