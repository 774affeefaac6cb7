"""Structured HTTP errors.

Learn: Every domain failure goes out as detail={"code", "message"} so
clients can branch on a stable code instead of parsing English.
"""

from fastapi import HTTPException


def api_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def todo_not_found(todo_id: int) -> HTTPException:
    return api_error(404, "TODO_NOT_FOUND", f"Todo {todo_id} not found")


def access_denied(message: str = "You do not have access to this resource") -> HTTPException:
    return api_error(403, "ACCESS_DENIED", message)
