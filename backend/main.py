"""
Docenti processing API - main entry point.
Creates FastAPI app, sets up lifespan (pipeline wiring + background worker), CORS,
request logging middleware, registers all routes.
"""

import os
import time
import asyncio

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware

from docenti.config import logger, get_version_info
from docenti.container import build_container
from docenti.database import client, db
from docenti.services.background import run_background_worker
from docenti.routes import register_all_routes

# Global reference to the background worker task
_worker_task = None


async def lifespan(app: FastAPI):
    """Application lifespan manager - wires the pipeline, starts/stops the background worker"""
    global _worker_task

    logger.info("🚀 FastAPI app starting up...")
    logger.info("REGISTERED ROUTES: %s", [r.path for r in app.routes])

    container = build_container(db)
    app.state.process_service = container.service
    await container.queue.ensure_indexes()

    logger.info("🔍 Checking system dependencies...")
    try:
        await asyncio.to_thread(container.service.extractor.ensure_fallback_tool)
        logger.info("✅ pdftotext is available")
    except Exception as e:
        logger.error(f"❌ {e}")
        logger.error("⚠️  Scanned PDFs without a text layer will fail to process!")

    logger.info("🔄 Starting integrated background task worker...")
    _worker_task = asyncio.create_task(run_background_worker(container.worker, container.queue))

    yield

    # Shutdown: Cancel the background worker
    logger.info("🛑 FastAPI app shutting down...")
    if _worker_task and not _worker_task.done():
        logger.info("⏹️  Stopping background task worker...")
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            logger.info("✅ Background task worker stopped cleanly")
    client.close()


# Create the main app with lifespan
app = FastAPI(title="Docenti Processing API", lifespan=lifespan)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/version")
async def get_version():
    """Public version endpoint for deployment verification"""
    return get_version_info()


# Register all route modules on the api_router
register_all_routes(api_router)

# Include the api_router on the app
app.include_router(api_router)


# Root-level health check endpoint (for Kubernetes probes)
@app.get("/health")
async def root_health_check():
    """Health check for Kubernetes liveness/readiness probes"""
    return {"status": "healthy", "service": "Docenti Processing API"}


# ============== REQUEST LOGGING MIDDLEWARE ==============

@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Log method, path, status and latency for every request"""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Request failed: {request.method} {request.url.path}: {e}")
        raise
    response_time_ms = int((time.time() - start_time) * 1000)
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({response_time_ms}ms)")
    return response


# ============== CORS ==============

cors_origins_env = os.environ.get("CORS_ORIGINS")
cors_origins = [origin.strip() for origin in cors_origins_env.split(",")] if cors_origins_env else [
    "http://localhost:3000",
    "http://127.0.0.1:3000"
]

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
