"""Pydantic schemas for file attachments."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class FileAttachmentRead(BaseModel):
    id: int
    todo_id: int
    filename: str
    original_name: str
    file_size: int
    mime_type: str
    file_type: str
    thumbnail_path: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
