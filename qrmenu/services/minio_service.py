from minio import Minio
from minio.error import S3Error
from starlette.concurrency import run_in_threadpool
from urllib3.exceptions import HTTPError
import io
import logging
from qrmenu.core.config import Settings
from qrmenu.core.exceptions import AssetHostError
from qrmenu.services.asset_host import AssetHost

logger = logging.getLogger(__name__)

MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "NotFound", "ResourceNotFound"}

class MinIOAssetHost(AssetHost):
    def __init__(self, settings: Settings, client: Minio = None):
        self.client = client or Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
            region=settings.MINIO_REGION  # Explicit region to avoid lookup
        )
        self.bucket = settings.MINIO_BUCKET
        self.base_url = settings.asset_base_url

    def ensure_bucket(self):
        try:
            if not self.client.bucket_exists(bucket_name=self.bucket):
                self.client.make_bucket(bucket_name=self.bucket)
        except (S3Error, HTTPError) as exc:
            logger.warning("MinIO bucket check failed: %s", exc)

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{self.bucket}/{name}"

    async def upload_asset(self, data: bytes, name: str, content_type: str = "image/jpeg") -> str:
        try:
            await run_in_threadpool(
                self.client.put_object,
                bucket_name=self.bucket,
                object_name=name,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except (S3Error, HTTPError) as exc:
            raise AssetHostError(f"Upload of {name} failed: {exc}") from exc
        logger.debug("Uploaded %s (%d bytes)", name, len(data))
        return self.url_for(name)

    async def exists(self, name: str) -> bool:
        try:
            await run_in_threadpool(
                self.client.stat_object, bucket_name=self.bucket, object_name=name
            )
        except S3Error as exc:
            if exc.code in MISSING_OBJECT_CODES:
                return False
            raise AssetHostError(f"Existence check for {name} failed: {exc}") from exc
        except HTTPError as exc:
            raise AssetHostError(f"Existence check for {name} failed: {exc}") from exc
        return True
