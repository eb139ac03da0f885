"""Blob storage for photo files.

Photos are addressed by a locator string (the photo's file_path). Two
backends are provided: S3 for deployments and a local directory for
development and tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """Raised when a blob operation fails."""
    pass


class BlobNotFound(BlobStoreError):
    """Raised when no blob exists at a locator."""
    pass


class BlobStore(ABC):
    """Abstract blob store."""

    def __init__(self, public_base_url: Optional[str] = None):
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @abstractmethod
    def download(self, locator: str) -> bytes:
        """Read a blob.

        Raises:
            BlobNotFound: If the blob does not exist
            BlobStoreError: On any other storage failure
        """

    @abstractmethod
    def upload(self, locator: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Write a blob and return its locator."""

    @abstractmethod
    def delete(self, locator: str) -> bool:
        """Delete a blob. Returns False if it did not exist."""

    def public_url(self, locator: str) -> Optional[str]:
        """Public URL of a blob, if a public base URL is configured."""
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{locator.lstrip('/')}"


class S3BlobStore(BlobStore):
    """Blob store backed by an S3 bucket.

    Usage:
        blobs = S3BlobStore(bucket='event-photos', region='ap-southeast-1')
        data = blobs.download('42/photo.jpg')
    """

    def __init__(
        self,
        bucket: str,
        client: Optional[Any] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None
    ):
        """Initialize S3 blob store.

        Args:
            bucket: Bucket name
            client: Preconfigured boto3 S3 client (created from region if omitted)
            region: AWS region for a new client
            public_base_url: Base URL used to build public photo URLs
        """
        if not bucket:
            raise ValueError("S3 bucket name is required")
        if public_base_url is None:
            public_base_url = f"https://{bucket}.s3.amazonaws.com"
        super().__init__(public_base_url)
        self.bucket = bucket
        self.client = client if client is not None else boto3.client("s3", region_name=region)

    def download(self, locator: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=locator)
            return response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                raise BlobNotFound(f"Object not found: s3://{self.bucket}/{locator}") from e
            raise BlobStoreError(f"Download failed for s3://{self.bucket}/{locator}: {code}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Download failed for s3://{self.bucket}/{locator}: {e}") from e

    def upload(self, locator: str, data: bytes, content_type: str = "image/jpeg") -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=locator,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Upload failed for s3://{self.bucket}/{locator}: {e}") from e

        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{locator}")
        return locator

    def delete(self, locator: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=locator)
        except ClientError as e:
            logger.warning(f"Failed to delete s3://{self.bucket}/{locator}: {e}")
            return False
        logger.debug(f"Deleted s3://{self.bucket}/{locator}")
        return True


class LocalBlobStore(BlobStore):
    """Blob store backed by a local directory."""

    def __init__(self, root: Path, public_base_url: Optional[str] = None):
        super().__init__(public_base_url)
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        path = (self.root / locator.lstrip("/")).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStoreError(f"Locator escapes storage root: {locator}")
        return path

    def download(self, locator: str) -> bytes:
        path = self._path(locator)
        if not path.is_file():
            raise BlobNotFound(f"File not found: {path}")
        return path.read_bytes()

    def upload(self, locator: str, data: bytes, content_type: str = "image/jpeg") -> str:
        path = self._path(locator)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return locator

    def delete(self, locator: str) -> bool:
        path = self._path(locator)
        if not path.exists():
            return False
        path.unlink()
        return True
