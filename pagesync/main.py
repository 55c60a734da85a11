import logging
import logging.config

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from pagesync.config import settings
from pagesync.routers.feeds import router as feeds_router
from pagesync.routers.pages import router as pages_router
from pagesync.routers.sync import limiter, router as sync_router

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "loggers": {
            # Per-statement and per-request chatter from the drivers
            "sqlalchemy.engine": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
        "root": {"level": settings.log_level.upper(), "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="pagesync – Content Sync & Retrieval API",
    description="Syncs pages from an external content source into a relational store and serves them as HTML, feeds and search results.",
    version="1.0.0",
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


# Literal /api/... routes first so they win over the /{datasource}/... patterns
app.include_router(sync_router)
app.include_router(pages_router)
app.include_router(feeds_router)


@app.get("/", summary="Health check")
def root(request: Request) -> dict:
    services = getattr(request.app.state, "services", None)
    store_ok = services.store.ping() if services is not None else None
    return {"message": "Hello from pagesync", "store": store_ok}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run("pagesync.main:app", host=settings.host, port=settings.port)
