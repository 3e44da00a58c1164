import os

import aiofiles
import aiofiles.os

from helpdesk.storage.base import FileStorage, StorageError


class LocalFileStorage(FileStorage):
    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def _path(self, key: str) -> str:
        path = os.path.realpath(os.path.join(self.root, key))
        # Prevent path traversal via crafted keys
        if not path.startswith(self.root + os.sep):
            raise StorageError(f"Invalid object key: {key}")
        return path

    async def save(self, key: str, data: bytes, content_type: str | None = None) -> None:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

    async def read(self, key: str) -> bytes:
        path = self._path(key)
        if not os.path.isfile(path):
            raise StorageError(f"Object not found: {key}")
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if os.path.isfile(path):
            await aiofiles.os.remove(path)

    async def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))
