"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models so SQLAlchemy registers every table and FK
import loyalty.models  # noqa: F401
from loyalty.core.config import settings
from loyalty.core.db import close_db, init_db
from loyalty.core.errors import DomainError
from loyalty.routers import admin_accounts, auth, categories, me, merchants, promotions, ratings, redemptions

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.setLevel(settings.LOG_LEVEL.upper())
    await init_db()
    logger.info("database engine ready")

    yield

    await close_db()


def create_app() -> FastAPI:
    app = FastAPI(title="Loyalty API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc) if settings.DEBUG else "Internal server error",
                }
            },
        )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        return {"ok": True}

    # Auth & accounts
    app.include_router(auth.router)
    app.include_router(me.router)
    app.include_router(admin_accounts.router)

    # Catalog
    app.include_router(categories.router)
    app.include_router(categories.admin_router)
    app.include_router(merchants.router)
    app.include_router(merchants.admin_router)
    app.include_router(promotions.router)
    app.include_router(promotions.admin_router)

    # Integrity core
    app.include_router(redemptions.router)
    app.include_router(ratings.router)
    app.include_router(ratings.admin_router)

    return app


app = create_app()
