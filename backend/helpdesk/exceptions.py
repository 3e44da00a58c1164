"""Typed errors raised by the service layer.

All of them are ``HTTPException`` subclasses, so FastAPI turns them into
responses without extra handlers. Background jobs catch them like any other
exception and record the message on the job.
"""
from typing import Any

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, entity: str, key: Any = None):
        detail = f"{entity} {key} not found" if key is not None else f"{entity} not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        self.entity = entity
        self.key = key


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class BusinessError(HTTPException):
    """A request that is well-formed but not allowed in the current state."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ValidationFailed(HTTPException):
    """Per-field validation messages, shaped like FastAPI's own 422 body."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        detail = [
            {"loc": ["body", field], "msg": message, "type": "value_error"}
            for field, messages in errors.items()
            for message in messages
        ]
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls({field: [message]})


class UnsupportedBuiltInRoleError(ValueError):
    pass


class UnsupportedTemplateTypeError(ValueError):
    pass


class UnsupportedPermissionError(ValueError):
    pass
