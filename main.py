import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from core.config import settings
from core.db import init_db, close_db
from core.celery import celery_app
from core.exceptions import SettlementError
from routes.payments import router as payments_router
from routes.wallet import router as wallet_router

load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure tables exist (for dev/test; in prod use migrations)
    init_db()
    yield
    close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


app.include_router(payments_router)
app.include_router(wallet_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        stats = celery_app.control.inspect().stats()
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    if stats:
        return {"status": "healthy", "workers": len(stats)}
    return {"status": "no_workers", "message": "No Celery workers running"}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
