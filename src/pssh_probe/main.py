import logging
import os
import time
import warnings
from contextlib import asynccontextmanager
from typing import Optional

import psutil
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from . import __version__
from .api import app as api_app
from .api import init_services
from .services.cache import ResultCache
from .services.fetcher import SegmentFetcher
from .services.pssh_parser import SYSTEM_NAMES

# aiohttp warns on every proxied HTTPS download
warnings.filterwarnings(
    "ignore",
    message="An HTTPS request is being sent through an HTTPS proxy",
    category=RuntimeWarning,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAX_CONCURRENT_DOWNLOADS = int(os.getenv("MAX_CONCURRENT_DOWNLOADS", "10"))
MAX_SEGMENT_SIZE = int(os.getenv("MAX_SEGMENT_SIZE", str(10 * 1024 * 1024)))
CACHE_MAX_SIZE = int(os.getenv("CACHE_MAX_SIZE", "1000"))
CACHE_TTL = int(os.getenv("CACHE_TTL", "300"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared fetcher and result cache for the app's lifetime"""
    fetcher = SegmentFetcher(
        max_concurrent_downloads=MAX_CONCURRENT_DOWNLOADS, max_segment_size=MAX_SEGMENT_SIZE
    )
    result_cache = ResultCache(max_size=CACHE_MAX_SIZE, ttl=CACHE_TTL)
    init_services(fetcher, result_cache)

    app.state.start_time = time.time()
    app.state.fetcher = fetcher
    app.state.cache = result_cache
    logger.info(
        f"PSSH service {__version__} ready: {MAX_CONCURRENT_DOWNLOADS} download slots, "
        f"segments up to {MAX_SEGMENT_SIZE} bytes, cache {CACHE_MAX_SIZE} x {CACHE_TTL}s"
    )

    try:
        yield
    finally:
        await fetcher.close()
        logger.info("Segment fetcher closed")


app = FastAPI(
    title="PSSH Probe",
    description="Extract DRM system ids and CENC key ids from PSSH init data",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.mount("/api", api_app)


def _result_cache() -> Optional[ResultCache]:
    return getattr(app.state, "cache", None)


@app.get("/")
async def root():
    return {
        "name": "PSSH Probe",
        "version": __version__,
        "description": "Extract DRM system ids and CENC key ids from PSSH init data",
        "endpoints": {
            "health": "/api/health",
            "parse": "/api/pssh/parse",
            "parse_direct": "/api/pssh/parse/<base64_init_data>",
            "batch_parse": "/api/pssh/parse/batch",
            "extract": "/api/pssh/extract",
            "batch_extract": "/api/pssh/extract/batch",
            "build": "/api/pssh/build",
            "info": "/info",
            "stats": "/stats",
            "docs": "/docs",
        },
    }


@app.get("/info")
async def get_info():
    """Known DRM systems and the limits this instance runs with"""
    return {
        "known_systems": SYSTEM_NAMES,
        "max_concurrent_downloads": MAX_CONCURRENT_DOWNLOADS,
        "max_segment_size": MAX_SEGMENT_SIZE,
        "cache_enabled": CACHE_MAX_SIZE > 0,
        "cache_size": CACHE_MAX_SIZE,
        "cache_ttl": CACHE_TTL,
        "supported_features": [
            "PSSH version 0 and 1",
            "Concatenated PSSH boxes",
            "Zero-sized trailing boxes",
            "PSSH search in moov/moof containers",
            "HTTP/HTTPS/SOCKS proxy support",
        ],
    }


@app.get("/stats")
async def get_stats():
    """Process, cache and download slot usage"""
    process = psutil.Process(os.getpid())
    result_cache = _result_cache()
    fetcher: Optional[SegmentFetcher] = getattr(app.state, "fetcher", None)

    return {
        "uptime": time.time() - getattr(app.state, "start_time", time.time()),
        "memory_usage_mb": process.memory_info().rss / 1024 / 1024,
        "cpu_percent": process.cpu_percent(),
        "active_tasks": getattr(api_app.state, "active_tasks", 0),
        "cache_stats": result_cache.stats() if result_cache else {},
        "fetcher": {
            "max_concurrent": fetcher.max_concurrent if fetcher else MAX_CONCURRENT_DOWNLOADS,
            "available_slots": fetcher.semaphore._value if fetcher else 0,
        },
    }


@app.get("/cache/clear")
async def clear_cache():
    result_cache = _result_cache()
    if result_cache is None:
        return {"status": "error", "message": "Cache not available"}
    result_cache.clear()
    return {"status": "success", "message": "Cache cleared"}


@app.get("/cache/cleanup")
async def cleanup_cache():
    """Drop expired parse and extract results"""
    result_cache = _result_cache()
    if result_cache is None:
        return {"status": "error", "message": "Cache not available"}
    removed = result_cache.cleanup_expired()
    return {
        "status": "success",
        "message": f"Removed {removed} expired items",
        "removed_count": removed,
    }


def run():
    """Serve the app with uvicorn, configured from HOST, PORT, WORKERS and RELOAD"""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "7775"))
    # Each worker keeps its own cache and download slots
    workers = int(os.getenv("WORKERS", "1"))
    reload = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(f"Serving on {host}:{port} (workers={workers}, reload={reload})")
    uvicorn.run(
        "pssh_probe.main:app",
        host=host,
        port=port,
        workers=workers,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    run()
