"""File attachment API routes.

Learn: Uploads arrive as multipart/form-data (FastAPI UploadFile). The
whole body is read into memory and size-checked by FileService; the
default 10 MB cap keeps that reasonable. Every route re-checks that the
parent todo belongs to the caller.
"""

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.api.errors import api_error
from todolive.api.todos import _events, _todo_svc, load_owned_todo
from todolive.auth.dependencies import CurrentIdentity, get_current_user
from todolive.db.engine import get_db
from todolive.db.models import FileAttachment, Todo
from todolive.schemas.file import FileAttachmentRead
from todolive.services.file_service import (
    FileService,
    FileTooLargeError,
    FileTypeNotAllowedError,
)
from todolive.services.realtime_events import RealtimeEventService
from todolive.services.todo_service import TodoService

router = APIRouter()


def _file_svc(db: AsyncSession = Depends(get_db)) -> FileService:
    return FileService(db)


async def _load_owned_file(
    file_id: int,
    files: FileService,
    todos: TodoService,
    identity: CurrentIdentity,
) -> tuple[FileAttachment, Todo]:
    attachment = await files.get(file_id)
    if attachment is None:
        raise api_error(404, "FILE_NOT_FOUND", f"File {file_id} not found")
    todo = await load_owned_todo(attachment.todo_id, todos, identity)
    return attachment, todo


@router.post("/todos/{todo_id}/files", response_model=FileAttachmentRead, status_code=201)
async def upload_file(
    todo_id: int,
    file: UploadFile = File(...),
    identity: CurrentIdentity = Depends(get_current_user),
    todos: TodoService = Depends(_todo_svc),
    files: FileService = Depends(_file_svc),
    events: RealtimeEventService = Depends(_events),
):
    todo = await load_owned_todo(todo_id, todos, identity)
    data = await file.read()
    try:
        attachment = await files.upload(
            todo, file.filename or "file", file.content_type or "application/octet-stream", data
        )
    except FileTypeNotAllowedError as e:
        raise api_error(415, "FILE_TYPE_NOT_ALLOWED", str(e))
    except FileTooLargeError as e:
        raise api_error(413, "FILE_TOO_LARGE", str(e))

    response = FileAttachmentRead.model_validate(attachment)
    await events.broadcast_file_uploaded(
        identity.user_id, todo.id, response.model_dump(mode="json"), todo_title=todo.title
    )
    return response


@router.get("/todos/{todo_id}/files", response_model=list[FileAttachmentRead])
async def list_files(
    todo_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    todos: TodoService = Depends(_todo_svc),
    files: FileService = Depends(_file_svc),
):
    todo = await load_owned_todo(todo_id, todos, identity)
    return await files.list_for_todo(todo.id)


@router.get("/files/{file_id}", response_model=FileAttachmentRead)
async def get_file(
    file_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    todos: TodoService = Depends(_todo_svc),
    files: FileService = Depends(_file_svc),
):
    attachment, _ = await _load_owned_file(file_id, files, todos, identity)
    return attachment


@router.get("/files/{file_id}/download")
async def download_file(
    file_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    todos: TodoService = Depends(_todo_svc),
    files: FileService = Depends(_file_svc),
):
    attachment, _ = await _load_owned_file(file_id, files, todos, identity)
    path = files.absolute_path(attachment)
    if not path.is_file():
        raise api_error(404, "FILE_NOT_FOUND", "Stored file is missing")
    return FileResponse(path, media_type=attachment.mime_type, filename=attachment.original_name)


@router.delete("/files/{file_id}")
async def delete_file(
    file_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    todos: TodoService = Depends(_todo_svc),
    files: FileService = Depends(_file_svc),
    events: RealtimeEventService = Depends(_events),
):
    attachment, todo = await _load_owned_file(file_id, files, todos, identity)
    name = attachment.original_name
    await files.delete(attachment, todo)
    await events.broadcast_file_deleted(
        identity.user_id, todo.id, file_id, name, todo_title=todo.title
    )
    return {"deleted": True, "id": file_id}
