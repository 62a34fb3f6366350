import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
import uvicorn

import config
from endpoints.stops import stop_routes
from endpoints.system import router as system_router
from endpoints.vehicles import vehicle_routes
from services.container import ServiceContainer
from utils.cache_middleware import add_cache_middleware
from utils.error_handling import (
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = ServiceContainer()
    app.state.container = container
    if config.ENABLE_BACKGROUND_JOBS:
        container.start_background_jobs()
    logger.info("Live transit API ready")
    try:
        yield
    finally:
        await container.close()


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title="Oslo Live Transit API", lifespan=lifespan_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_cache_middleware(app)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(vehicle_routes, prefix="/api")
    app.include_router(stop_routes, prefix="/api")
    app.include_router(system_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=config.HOST, port=config.PORT)
