from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class ParseRequest(BaseModel):
    init_data: str = Field(
        ...,
        description="Base64 encoded init data (one or more concatenated PSSH boxes)",
    )


class ExtractRequest(BaseModel):
    url: HttpUrl = Field(..., description="URL of the MP4 init segment to inspect")
    proxy: Optional[str] = Field(
        None,
        description="Proxy URL (e.g., http://proxy.example.com:8080 or socks5://proxy:1080)",
    )
    user_agent: Optional[str] = Field(None, description="Custom User-Agent header")


class BuildRequest(BaseModel):
    system_id: str = Field(..., description="Hex-encoded DRM system id (32 chars)")
    key_ids: List[str] = Field(default_factory=list, description="Hex-encoded key ids")
    data: Optional[str] = Field(None, description="Base64 encoded system-specific data")
    version: Optional[int] = Field(
        default=None, ge=0, le=255, description="Box version (default: 1 with key ids, else 0)"
    )


class PsshBoxInfo(BaseModel):
    version: int
    flags: int
    system_id: str
    system_name: Optional[str] = None
    key_ids: List[str] = Field(default_factory=list)
    data_size: int
    offset: int
    size: int


class ParseResponse(BaseModel):
    success: bool
    system_ids: List[str] = Field(default_factory=list, description="DRM system ids in box order")
    cenc_key_ids: List[str] = Field(
        default_factory=list, description="Key ids of all version 1 boxes, in box order"
    )
    boxes: List[PsshBoxInfo] = Field(default_factory=list)
    pssh_boxes: Optional[List[str]] = Field(
        default=None, description="Raw PSSH boxes found in a segment, base64 encoded"
    )
    error: Optional[str] = None
    processing_time: float
    cached: bool = False

    model_config = ConfigDict(extra="forbid")


class BatchParseRequest(BaseModel):
    requests: List[ParseRequest] = Field(
        ..., description="List of parse requests", max_length=100
    )


class BatchExtractRequest(BaseModel):
    requests: List[ExtractRequest] = Field(
        ..., description="List of extract requests", max_length=20
    )


class BatchParseResponse(BaseModel):
    results: List[ParseResponse]
    total_processed: int
    total_succeeded: int
    total_failed: int


class BuildResponse(BaseModel):
    pssh: str = Field(..., description="Base64 encoded PSSH box")
    size: int


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime: float
    memory_usage: float
    active_tasks: int
