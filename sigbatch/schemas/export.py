from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExportCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner_id: int = Field(..., ge=1, alias="ownerId", description="Owner of the signatures to export")


class ExportStarted(BaseModel):
    job_id: str
    total: int
    chunks: int
    message: str


class ExportStatus(BaseModel):
    job_id: str
    owner_id: int
    requester_id: int
    status: str
    total_items: int
    items_done: int
    chunk_size: int
    chunks_total: int
    chunks_done: int
    partial_artifacts: List[str] = []
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
