import logging

from helpdesk.storage.base import FileStorage, StorageError

logger = logging.getLogger(__name__)


class S3FileStorage(FileStorage):
    """S3-compatible storage (AWS, MinIO, R2). Requires the ``s3`` extra."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ):
        import aioboto3

        if not bucket:
            raise StorageError("S3 bucket is not configured (S3_BUCKET)")
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    def _client(self):
        return self._session.client("s3", endpoint_url=self.endpoint_url)

    async def save(self, key: str, data: bytes, content_type: str | None = None) -> None:
        async with self._client() as client:
            await client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or self.content_type_for(key),
            )

    async def read(self, key: str) -> bytes:
        async with self._client() as client:
            try:
                response = await client.get_object(Bucket=self.bucket, Key=key)
            except client.exceptions.NoSuchKey:
                raise StorageError(f"Object not found: {key}")
            async with response["Body"] as stream:
                return await stream.read()

    async def delete(self, key: str) -> None:
        async with self._client() as client:
            await client.delete_object(Bucket=self.bucket, Key=key)

    async def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        async with self._client() as client:
            try:
                await client.head_object(Bucket=self.bucket, Key=key)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                    return False
                raise
            return True
