from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api.v1.auth import router as auth_router
from .api.v1.appointments import router as appointments_router
from .core.config import settings
from .core.database import init_db

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

APPOINTMENTS_PATH = "/api/v1/appointments"

# Verb used in the generic 500 message, e.g. "Failed to fetch appointments"
FAILURE_ACTIONS = {"GET": "fetch", "POST": "create", "PATCH": "update"}

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.APP_NAME} {settings.VERSION} ready")
    yield
    logger.info(f"{settings.APP_NAME} shutting down")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Book appointments between patients and doctors without double-booking",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost"]
    )

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )
    return response

def data_access_failure_message(request: Request) -> str:
    """Generic, caller-safe message for a failed database round trip."""
    if not request.url.path.startswith(APPOINTMENTS_PATH):
        return "An unexpected error occurred"
    action = FAILURE_ACTIONS.get(request.method, "process")
    noun = "appointments" if request.method == "GET" else "appointment"
    return f"Failed to {action} {noun}"

@app.exception_handler(SQLAlchemyError)
async def data_access_error_handler(request: Request, exc: SQLAlchemyError):
    # The request's session is closed, and so rolled back, by get_db
    logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": data_access_failure_message(request)}
    )

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    # Keep messages raised by the routes themselves, e.g. "Appointment not found"
    detail = getattr(exc, "detail", None)
    if detail and detail != "Not Found":
        return JSONResponse(status_code=404, content={"detail": detail})
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": "The requested resource was not found",
            "path": str(request.url.path)
        }
    )

app.include_router(auth_router, prefix="/api/v1")
app.include_router(appointments_router, prefix="/api/v1")

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION
    }
