from helpdesk.config import settings
from helpdesk.storage.base import FileStorage, StorageError

_storage: FileStorage | None = None


def _build_storage() -> FileStorage:
    provider = settings.storage_provider.lower()
    if provider == "local":
        from helpdesk.storage.local import LocalFileStorage

        return LocalFileStorage(settings.upload_dir)
    if provider == "s3":
        from helpdesk.storage.s3 import S3FileStorage

        return S3FileStorage(
            bucket=settings.s3_bucket or "",
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
    if provider == "azure":
        from helpdesk.storage.azure import AzureBlobFileStorage

        return AzureBlobFileStorage(settings.azure_connection_string or "", settings.azure_container)
    raise StorageError(f"Unknown storage provider: {settings.storage_provider}")


def get_storage() -> FileStorage:
    """Return the process-wide storage provider, building it on first use."""
    global _storage
    if _storage is None:
        _storage = _build_storage()
    return _storage


def set_storage(storage: FileStorage | None) -> None:
    global _storage
    _storage = storage
