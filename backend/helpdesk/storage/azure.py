from helpdesk.storage.base import FileStorage, StorageError


class AzureBlobFileStorage(FileStorage):
    """Azure Blob Storage. Requires the ``azure`` extra."""

    def __init__(self, connection_string: str, container: str):
        from azure.storage.blob.aio import BlobServiceClient

        if not connection_string:
            raise StorageError("Azure connection string is not configured (AZURE_CONNECTION_STRING)")
        self.container = container
        self._service = BlobServiceClient.from_connection_string(connection_string)

    def _blob(self, key: str):
        return self._service.get_blob_client(container=self.container, blob=key)

    async def save(self, key: str, data: bytes, content_type: str | None = None) -> None:
        from azure.storage.blob import ContentSettings

        async with self._blob(key) as blob:
            await blob.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type or self.content_type_for(key)),
            )

    async def read(self, key: str) -> bytes:
        from azure.core.exceptions import ResourceNotFoundError

        async with self._blob(key) as blob:
            try:
                downloader = await blob.download_blob()
            except ResourceNotFoundError:
                raise StorageError(f"Object not found: {key}")
            return await downloader.readall()

    async def delete(self, key: str) -> None:
        from azure.core.exceptions import ResourceNotFoundError

        async with self._blob(key) as blob:
            try:
                await blob.delete_blob()
            except ResourceNotFoundError:
                return

    async def exists(self, key: str) -> bool:
        async with self._blob(key) as blob:
            return await blob.exists()
