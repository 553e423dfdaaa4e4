import logging
import os
import time
from typing import List, Optional

import psutil
from fastapi import Depends, FastAPI, HTTPException

from . import __version__
from .models.schemas import (
    BatchExtractRequest,
    BatchParseRequest,
    BatchParseResponse,
    BuildRequest,
    BuildResponse,
    ExtractRequest,
    HealthResponse,
    ParseRequest,
    ParseResponse,
    PsshBoxInfo,
)
from .services.cache import ResultCache, cache_key
from .services.fetcher import FetchError, SegmentFetcher
from .services.pssh_builder import build_pssh_box
from .services.pssh_parser import ParseResult, parse
from .utils.utils import decode_base64, encode_base64

logger = logging.getLogger(__name__)

app = FastAPI(
    title="PSSH Probe API",
    description="Extract DRM system ids and CENC key ids from PSSH init data",
    version=__version__,
)

# Initialize services (will be injected by main.py)
fetcher: Optional[SegmentFetcher] = None
cache: Optional[ResultCache] = None


def init_services(fetcher_service: SegmentFetcher, cache_service: ResultCache):
    """Inject shared services and reset request counters"""
    global fetcher, cache
    fetcher = fetcher_service
    cache = cache_service

    app.state.start_time = time.time()
    app.state.active_tasks = 0


def get_fetcher() -> SegmentFetcher:
    """Dependency to get fetcher service"""
    if fetcher is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return fetcher


def get_cache() -> ResultCache:
    """Dependency to get cache"""
    if cache is None:
        raise HTTPException(status_code=503, detail="Cache not initialized")
    return cache


def _to_response(
    result: ParseResult,
    start_time: float,
    cached: bool = False,
    pssh_boxes: Optional[List[str]] = None,
) -> ParseResponse:
    return ParseResponse(
        success=True,
        system_ids=list(result.system_ids),
        cenc_key_ids=list(result.cenc_key_ids),
        boxes=[
            PsshBoxInfo(
                version=box.version,
                flags=box.flags,
                system_id=box.system_id,
                system_name=box.system_name,
                key_ids=list(box.key_ids),
                data_size=box.data_size,
                offset=box.start,
                size=box.end - box.start,
            )
            for box in result.boxes
        ],
        pssh_boxes=pssh_boxes,
        processing_time=time.time() - start_time,
        cached=cached,
    )


def _parse_init_data(init_data: str, cache_service: ResultCache) -> ParseResponse:
    start_time = time.time()

    try:
        raw = decode_base64(init_data)
    except ValueError as e:
        logger.warning(f"Rejected init data: {e}")
        return ParseResponse(success=False, error=str(e), processing_time=time.time() - start_time)

    key = cache_key("parse", raw)
    cached = cache_service.get(key)
    if cached is not None:
        return _to_response(cached, start_time, cached=True)

    result = parse(raw)
    cache_service.set(key, result)
    return _to_response(result, start_time)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint with system metrics"""
    process = psutil.Process(os.getpid())
    memory_info = process.memory_info()

    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime=time.time() - getattr(app.state, "start_time", time.time()),
        memory_usage=memory_info.rss / 1024 / 1024,  # MB
        active_tasks=getattr(app.state, "active_tasks", 0),
    )


@app.post("/pssh/parse", response_model=ParseResponse)
async def parse_init_data(
    request: ParseRequest, cache_service: ResultCache = Depends(get_cache)
):
    """
    Parse base64 encoded PSSH init data

    - **init_data**: Base64 encoded concatenation of PSSH boxes
    """
    return _parse_init_data(request.init_data, cache_service)


@app.get("/pssh/parse/{init_data}", response_model=ParseResponse)
async def parse_init_data_direct(
    init_data: str, cache_service: ResultCache = Depends(get_cache)
):
    """Parse init data passed as a URL-safe base64 path segment"""
    return _parse_init_data(init_data, cache_service)


@app.post("/pssh/parse/batch", response_model=BatchParseResponse)
async def batch_parse(
    request: BatchParseRequest, cache_service: ResultCache = Depends(get_cache)
):
    """
    Parse several init data blobs

    - **requests**: List of parse requests (max 100)
    """
    results = [_parse_init_data(req.init_data, cache_service) for req in request.requests]
    total_succeeded = sum(1 for r in results if r.success)

    return BatchParseResponse(
        results=results,
        total_processed=len(results),
        total_succeeded=total_succeeded,
        total_failed=len(results) - total_succeeded,
    )


@app.post("/pssh/extract", response_model=ParseResponse)
async def extract_from_segment(
    request: ExtractRequest,
    fetcher_service: SegmentFetcher = Depends(get_fetcher),
    cache_service: ResultCache = Depends(get_cache),
):
    """
    Download an MP4 init segment and parse the PSSH boxes it contains

    - **url**: URL of the init segment
    - **proxy**: Optional HTTP/HTTPS/SOCKS proxy
    - **user_agent**: Optional User-Agent header
    """
    start_time = time.time()
    url = str(request.url)

    key = cache_key("extract", url)
    cached = cache_service.get(key)
    if cached is not None:
        boxes, result = cached
        return _to_response(result, start_time, cached=True, pssh_boxes=boxes)

    app.state.active_tasks += 1
    try:
        raw_boxes, result = await fetcher_service.extract_pssh(
            url, proxy=request.proxy, user_agent=request.user_agent
        )
    except FetchError as e:
        logger.error(f"PSSH extraction failed for {url}: {e}")
        return ParseResponse(success=False, error=str(e), processing_time=time.time() - start_time)
    finally:
        app.state.active_tasks -= 1

    boxes = [encode_base64(box) for box in raw_boxes]
    cache_service.set(key, (boxes, result))
    return _to_response(result, start_time, pssh_boxes=boxes)


@app.post("/pssh/extract/batch", response_model=BatchParseResponse)
async def batch_extract(
    request: BatchExtractRequest, fetcher_service: SegmentFetcher = Depends(get_fetcher)
):
    """
    Extract PSSH data from several segments in parallel

    - **requests**: List of extract requests (max 20)
    """
    start_time = time.time()

    app.state.active_tasks += 1
    try:
        outcomes = await fetcher_service.extract_batch(
            [
                {"url": str(req.url), "proxy": req.proxy, "user_agent": req.user_agent}
                for req in request.requests
            ]
        )
    finally:
        app.state.active_tasks -= 1

    results: List[ParseResponse] = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            results.append(
                ParseResponse(
                    success=False, error=str(outcome), processing_time=time.time() - start_time
                )
            )
        else:
            raw_boxes, result = outcome
            results.append(
                _to_response(
                    result, start_time, pssh_boxes=[encode_base64(box) for box in raw_boxes]
                )
            )

    total_succeeded = sum(1 for r in results if r.success)
    return BatchParseResponse(
        results=results,
        total_processed=len(results),
        total_succeeded=total_succeeded,
        total_failed=len(results) - total_succeeded,
    )


@app.post("/pssh/build", response_model=BuildResponse)
async def build_pssh(request: BuildRequest):
    """
    Build a PSSH box

    - **system_id**: Hex-encoded DRM system id
    - **key_ids**: Optional hex-encoded key ids (forces version 1)
    - **data**: Optional base64 encoded system-specific data
    - **version**: Optional explicit box version
    """
    try:
        data = decode_base64(request.data) if request.data else b""
        box = build_pssh_box(
            request.system_id, key_ids=request.key_ids, data=data, version=request.version
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return BuildResponse(pssh=encode_base64(box), size=len(box))
