# app/main.py
from __future__ import annotations

import uuid
from typing import Any, Dict

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from app.config import settings
from app.core.logging import configure_logging, logger
from services.content_resolver import get_content_resolver
from services.db_service import close_pool

from api.routers.content import router as content_router
from api.routers.admin_content import router as admin_content_router

configure_logging(service_name="api")

app = FastAPI(
    title="Culture Content Backend",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.on_event("shutdown")
async def _shutdown_cleanup() -> None:
    # Let pending snapshot writes and resyncs finish before the pool goes away.
    await get_content_resolver().shutdown()
    await close_pool()
    logger.info("api_shutdown_complete")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=req_id)

        logger.info("request_started", method=request.method, path=str(request.url.path))
        try:
            response: StarletteResponse = await call_next(request)
        except Exception as exc:
            logger.error("request_exception", error=str(exc.__class__.__name__))
            structlog.contextvars.clear_contextvars()
            raise
        logger.info("request_ended", status_code=response.status_code)
        response.headers["X-Request-Id"] = req_id
        structlog.contextvars.clear_contextvars()
        return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=dict(exc.headers or {}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# --- Health endpoints ---
@app.get("/")
async def root() -> Dict[str, Any]:
    return {"ok": True, "app": "Culture Content Backend", "version": settings.APP_VERSION}


@app.head("/")
async def root_head() -> Response:
    return Response(status_code=200)


@app.get("/health")
async def health() -> Dict[str, Any]:
    resolver = get_content_resolver()
    stats = await resolver.snapshot_stats()
    return {
        "ok": True,
        "env": settings.APP_ENV,
        "remote_configured": bool(settings.DATABASE_URL),
        "snapshot_exists": stats.exists,
        "snapshot_items": stats.item_count,
    }


# --- API v1 router ---
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(content_router)
api_v1_router.include_router(admin_content_router)
app.include_router(api_v1_router)

logger.info("routers_registered", routers=["api_v1(content,admin_content)"])
