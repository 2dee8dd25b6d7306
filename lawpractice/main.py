from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __description__, __version__
from .config import settings
from .database import database_is_healthy, init_db
from .exceptions import PracticeError
from .routers import auth, automation, billing, cases, clients, dependencies, documents, notifications, tasks
from .services.document_processor import document_processor

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

ROUTERS = (auth, clients, cases, tasks, dependencies, automation, documents, billing, notifications)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting law practice service {__version__}")
    init_db()
    yield
    logger.info("Law practice service stopped")

def _error_body(status_code: int, detail, errors=None) -> dict:
    body = {"detail": detail, "status_code": status_code, "timestamp": time.time()}
    if errors:
        body["errors"] = errors
    return body

def register_exception_handlers(app: FastAPI):
    @app.exception_handler(PracticeError)
    async def practice_error_handler(request: Request, exc: PracticeError):
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.status_code, exc.detail, exc.errors))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, exc.detail),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=_error_body(500, "Internal server error"))

app = FastAPI(
    title="Law Practice Management System",
    description=__description__,
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["*"] if settings.debug else settings.allowed_hosts
)

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.4f}"
    return response

register_exception_handlers(app)

for module in ROUTERS:
    app.include_router(module.router, prefix=API_PREFIX)

@app.get("/health")
async def health_check():
    database = "healthy" if database_is_healthy() else "unhealthy"
    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "timestamp": time.time(),
        "version": __version__,
        "services": {
            "database": database,
            "ocr": "enabled" if settings.ocr_enabled else "disabled",
            "email": "enabled" if settings.smtp_host else "disabled"
        }
    }

@app.get("/")
async def root():
    return {
        "message": "Law Practice Management API",
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
        "health": "/health"
    }

@app.get(f"{API_PREFIX}/info")
async def api_info():
    return {
        "name": "Law Practice Management API",
        "version": __version__,
        "description": __description__,
        "modules": [module.router.tags[0] for module in ROUTERS],
        "supported_file_formats": sorted(document_processor.SUPPORTED_FORMATS),
        "currency": settings.currency,
        "vat_rate": settings.vat_rate
    }
