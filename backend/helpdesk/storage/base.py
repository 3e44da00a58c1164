import abc
import os
import re
import uuid


class StorageError(Exception):
    pass


_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_filename(filename: str | None) -> str:
    """Strip directories and unsafe characters, keeping the extension."""
    name = (filename or "file").replace("\\", "/").split("/")[-1].strip()
    name = _UNSAFE_CHARS.sub("-", name).strip("-.")
    return name or "file"


def build_object_key(*parts: str, filename: str | None = None) -> str:
    """Build a slash-separated key ending in a unique, sanitized file name."""
    leaf = f"{uuid.uuid4().hex}_{sanitize_filename(filename)}"
    return "/".join([*(p.strip("/") for p in parts if p), leaf])


class FileStorage(abc.ABC):
    """Object storage keyed by slash-separated paths."""

    @abc.abstractmethod
    async def save(self, key: str, data: bytes, content_type: str | None = None) -> None:
        ...

    @abc.abstractmethod
    async def read(self, key: str) -> bytes:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object. Missing objects are ignored."""

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @staticmethod
    def content_type_for(key: str) -> str:
        ext = os.path.splitext(key)[1].lower()
        return {
            ".csv": "text/csv",
            ".png": "image/png",
            ".jpg": "image/jpeg",
            ".jpeg": "image/jpeg",
            ".gif": "image/gif",
            ".pdf": "application/pdf",
            ".txt": "text/plain",
        }.get(ext, "application/octet-stream")
