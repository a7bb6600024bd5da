"""
FinFlow API - Main Application Entry Point
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from finflow.config import settings
from finflow.database import create_tables, check_database_connection
from finflow.core.error_handler import register_exception_handlers
from finflow.core.logging_config import setup_logging
from finflow.routers import transactions

setup_logging(log_level=os.getenv("LOG_LEVEL", settings.log_level))
logger = logging.getLogger("finflow.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting FinFlow...")
    create_tables()
    yield


app = FastAPI(
    lifespan=lifespan,
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    description="Personal finance tracker: filtered transaction listing with attachment management."
)

register_exception_handlers(app)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    safe_params = {k: v for k, v in request.query_params.items()
                   if k.lower() not in ['password', 'token', 'secret', 'key']}
    logger.info(f"{request.method} {request.url.path} - Query: {safe_params}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
)

# Stored attachments are served from <media_root>/uploads at /uploads
uploads_dir = Path(settings.media_root) / "uploads"
uploads_dir.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=uploads_dir), name="uploads")

app.include_router(transactions.router, prefix="/api")


@app.get("/health")
def health_check():
    db_ok = check_database_connection()
    return {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": settings.version,
        "database": {
            "profile": settings.database_profile,
            "connection": "connected" if db_ok else "disconnected",
        },
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
