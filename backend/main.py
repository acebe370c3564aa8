import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine, Base
from auth.routes import router as auth_router
from api.episodes import router as episodes_router
from api.medications import router as medications_router
from api.medication_logs import router as medication_logs_router
from api.triggers import router as triggers_router
from api.device_data import router as device_data_router
from api.analytics import router as analytics_router
from api.reports import router as reports_router
from services.telemetry_context import classify_request_group, consume_request_scope, start_request_scope
from store import DependencyError, NotFoundError, ValidationError

logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings.validate_security_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.SECURITY_HEADERS_ENABLED:
        return response
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = settings.SECURITY_CSP
    return response


@app.middleware("http")
async def telemetry_middleware(request: Request, call_next):
    group = classify_request_group(request.url.path)
    started = time.perf_counter()
    status_code = 500
    if group:
        start_request_scope(path=request.url.path, method=request.method, request_group=group)
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        scope = consume_request_scope()
        if scope is not None:
            logger.info(
                "%s %s -> %s in %.1fms (group=%s, db_queries=%s, db_ms=%.1f)",
                scope.method,
                scope.path,
                status_code,
                (time.perf_counter() - started) * 1000.0,
                scope.request_group,
                scope.db_query_count,
                scope.db_query_time_ms,
            )


# Error translation
@app.exception_handler(ValidationError)
async def store_validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "errors": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DependencyError)
async def dependency_error_handler(request: Request, exc: DependencyError):
    logger.error("Storage dependency failed on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Storage is temporarily unavailable"})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(loc) or "request"] = str(err.get("msg", "is invalid"))
    detail = "; ".join(f"{field}: {reason}" for field, reason in errors.items())
    return JSONResponse(status_code=400, content={"detail": f"Invalid request: {detail}", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Routers
app.include_router(auth_router, prefix="/api")
app.include_router(episodes_router, prefix="/api")
app.include_router(medications_router, prefix="/api")
app.include_router(medication_logs_router, prefix="/api")
app.include_router(triggers_router, prefix="/api")
app.include_router(device_data_router, prefix="/api")
app.include_router(analytics_router, prefix="/api")
app.include_router(reports_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}
