"""File service — attachment storage, duplicate names, thumbnails.

Learn: The on-disk name is always uuid + extension, so user input never
reaches the filesystem path. The user's own name is kept as
original_name; when a todo already has "report.pdf" the next upload is
recorded as "report(1).pdf", then "report(2).pdf", and so on.

Disk writes and Pillow run in a worker thread (asyncio.to_thread).
Thumbnailing is best-effort: a corrupt image still uploads, it just has
no thumbnail_path. Only image/* uploads ever get one.
"""

import asyncio
import mimetypes
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

import structlog
from PIL import Image, UnidentifiedImageError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.config import settings
from todolive.db.models import FileAttachment, Todo

logger = structlog.get_logger()

ALLOWED_MIME_TYPES: dict[str, str] = {
    "image/jpeg": "image",
    "image/png": "image",
    "image/gif": "image",
    "image/webp": "image",
    "application/pdf": "document",
    "application/msword": "document",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "document",
    "application/vnd.ms-excel": "document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "document",
    "text/plain": "text",
}

THUMBNAIL_DIR = "thumbnails"


class FileTypeNotAllowedError(Exception):
    pass


class FileTooLargeError(Exception):
    pass


def file_type_for(mime_type: str) -> str:
    return ALLOWED_MIME_TYPES.get(mime_type, "other")


def resolve_duplicate_name(name: str, existing: set[str]) -> str:
    """report.pdf → report(1).pdf → report(2).pdf ... until unused."""
    if name not in existing:
        return name
    path = Path(name)
    stem, suffix = path.stem, path.suffix
    counter = 1
    while f"{stem}({counter}){suffix}" in existing:
        counter += 1
    return f"{stem}({counter}){suffix}"


class FileService:
    def __init__(
        self,
        db: AsyncSession,
        upload_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        thumbnail_size: Optional[int] = None,
    ):
        self.db = db
        self.upload_dir = Path(upload_dir or settings.upload_dir)
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.thumbnail_size = thumbnail_size or settings.thumbnail_size

    # ─── Upload ──────────────────────────────────────────

    async def upload(
        self,
        todo: Todo,
        original_name: str,
        content_type: str,
        data: bytes,
    ) -> FileAttachment:
        if content_type not in ALLOWED_MIME_TYPES:
            raise FileTypeNotAllowedError(f"File type {content_type} is not allowed")
        if len(data) > self.max_bytes:
            raise FileTooLargeError(
                f"File exceeds the {self.max_bytes // (1024 * 1024)} MB limit"
            )

        original_name = Path(original_name or "file").name
        existing = set(
            (await self.db.execute(
                select(FileAttachment.original_name).where(FileAttachment.todo_id == todo.id)
            )).scalars().all()
        )
        display_name = resolve_duplicate_name(original_name, existing)

        extension = Path(original_name).suffix.lower() or mimetypes.guess_extension(content_type) or ""
        stored_name = f"{uuid.uuid4().hex}{extension}"
        await asyncio.to_thread(self._write, stored_name, data)

        thumbnail_path = None
        if content_type.startswith("image/"):
            thumbnail_path = await self._make_thumbnail(stored_name, data)

        attachment = FileAttachment(
            todo_id=todo.id,
            filename=stored_name,
            original_name=display_name,
            file_path=stored_name,
            file_size=len(data),
            mime_type=content_type,
            file_type=file_type_for(content_type),
            thumbnail_path=thumbnail_path,
        )
        self.db.add(attachment)
        todo.attachment_count = (todo.attachment_count or 0) + 1
        await self.db.commit()

        logger.info(
            "file.uploaded",
            file_id=attachment.id,
            todo_id=todo.id,
            size=attachment.file_size,
            mime_type=content_type,
            thumbnail=thumbnail_path is not None,
        )
        return attachment

    def _write(self, stored_name: str, data: bytes) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        (self.upload_dir / stored_name).write_bytes(data)

    async def _make_thumbnail(self, stored_name: str, data: bytes) -> Optional[str]:
        relative = f"{THUMBNAIL_DIR}/thumb_{stored_name}"
        try:
            await asyncio.to_thread(self._render_thumbnail, data, relative)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("file.thumbnail_failed", filename=stored_name, error=str(e))
            return None
        return relative

    def _render_thumbnail(self, data: bytes, relative: str) -> None:
        target = self.upload_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        with Image.open(BytesIO(data)) as img:
            img.thumbnail((self.thumbnail_size, self.thumbnail_size))
            if target.suffix in (".jpg", ".jpeg") and img.mode != "RGB":
                img = img.convert("RGB")
            img.save(target)

    # ─── Read ────────────────────────────────────────────

    async def get(self, file_id: int) -> Optional[FileAttachment]:
        return await self.db.get(FileAttachment, file_id)

    async def list_for_todo(self, todo_id: int) -> list[FileAttachment]:
        result = await self.db.execute(
            select(FileAttachment)
            .where(FileAttachment.todo_id == todo_id)
            .order_by(FileAttachment.created_at.asc(), FileAttachment.id.asc())
        )
        return list(result.scalars().all())

    def absolute_path(self, attachment: FileAttachment) -> Path:
        return self.upload_dir / attachment.file_path

    # ─── Delete ──────────────────────────────────────────

    async def delete(self, attachment: FileAttachment, todo: Optional[Todo] = None) -> None:
        """Delete the row, then the stored file and thumbnail."""
        await self.db.delete(attachment)
        if todo is not None and todo.attachment_count:
            todo.attachment_count -= 1
        await self.db.commit()
        await self.remove_stored_files([attachment])
        logger.info("file.deleted", file_id=attachment.id, todo_id=attachment.todo_id)

    async def remove_stored_files(self, attachments: list[FileAttachment]) -> None:
        """Best-effort removal of files on disk (rows already gone)."""
        paths = []
        for attachment in attachments:
            paths.append(self.upload_dir / attachment.file_path)
            if attachment.thumbnail_path:
                paths.append(self.upload_dir / attachment.thumbnail_path)
        if paths:
            await asyncio.to_thread(self._unlink_all, paths)

    @staticmethod
    def _unlink_all(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("file.unlink_failed", path=str(path), error=str(e))
