from helpdesk.storage.base import FileStorage, StorageError
from helpdesk.storage.factory import get_storage, set_storage

__all__ = ["FileStorage", "StorageError", "get_storage", "set_storage"]
