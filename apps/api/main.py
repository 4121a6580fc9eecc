"""
Stakewise API application.

Middleware order (outermost first): request logging, rate limiting,
security headers, CORS. Every error leaves as {"message", "error_code"}.
"""
import logging
import time
from pathlib import Path
from typing import List

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.cache import check_redis_connection
from core.config import settings
from core.database import check_db_connection
from core.exceptions import APIException
from core.logging import setup_logging
from core.rate_limit import RateLimitMiddleware
from core.security_headers import SecurityHeadersMiddleware
from routers import admin, auth, goals, instructor, payments, submissions, users

setup_logging()
logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _cors_origins() -> List[str]:
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return DEV_ORIGINS


def _request_fields(request: Request, **extra) -> dict:
    return {"extra_fields": {"method": request.method, "path": request.url.path, **extra}}


app = FastAPI(
    title="Stakewise API",
    description="Stake money on a goal, post daily evidence, get it back when an instructor signs off",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware, default_limit=settings.RATE_LIMIT_PER_MINUTE, window=60)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra=_request_fields(request, error=str(e)),
        )
        raise

    elapsed = time.perf_counter() - started
    logger.info(
        f"{request.method} {request.url.path} - {response.status_code}",
        extra=_request_fields(
            request,
            status_code=response.status_code,
            process_time_ms=round(elapsed * 1000, 2),
            client_ip=request.client.host if request.client else None,
        ),
    )
    response.headers["X-Process-Time"] = f"{elapsed:.6f}"
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    # Client mistakes are routine; only gateway/server failures are errors
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.INFO,
        f"{exc.error_code}: {exc.detail}",
        extra=_request_fields(request, status_code=exc.status_code, error_code=exc.error_code),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail, "error_code": None},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True, extra=_request_fields(request))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error", "error_code": None},
    )


@app.get("/health")
def health():
    """200 while the database answers; Redis is reported but optional. 503 otherwise."""
    redis_status = "healthy" if check_redis_connection() else "unavailable"
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable", "redis": redis_status},
        )
    return {
        "status": "healthy",
        "database": "healthy",
        "redis": redis_status,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time(),
    }


@app.get("/ping")
async def ping():
    return {"pong": True}


for module in (auth, goals, instructor, submissions, users, admin, payments):
    app.include_router(module.router)

if settings.UPLOAD_BACKEND == "local":
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=str(upload_dir)), name="uploads")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.API_RELOAD)
