from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class BatchItemModel(BaseModel):
    filename: str = Field(..., description="Original file name")
    media_type: str = Field(default="application/octet-stream", description="Declared media type")
    image_base64: str = Field(..., description="Base64 encoded file contents")


class BatchRequest(BaseModel):
    items: List[BatchItemModel] = Field(default_factory=list)


class BatchAcceptedResponse(BaseModel):
    state: str
    accepted: int
    skipped: int


class ProgressModel(BaseModel):
    processed: int
    total: int
    percent: int
    counts: Dict[str, int]


class ArchiveInfoModel(BaseModel):
    available: bool
    filename: str | None = None
    size: int | None = None
    entries: int = 0


class SessionStatusResponse(BaseModel):
    state: str
    message: str | None = None
    progress: ProgressModel
    archive: ArchiveInfoModel
    diagnostics: Dict[str, str] = Field(default_factory=dict)


__all__ = [
    "ArchiveInfoModel",
    "BatchAcceptedResponse",
    "BatchItemModel",
    "BatchRequest",
    "ProgressModel",
    "SessionStatusResponse",
]
