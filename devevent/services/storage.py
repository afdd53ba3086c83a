from __future__ import annotations

import asyncio
import hashlib
import logging
import pathlib
import re
import time
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import aiofiles
import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request

from devevent.config import Settings
from devevent.errors import UploadError

logger = logging.getLogger(__name__)

_UPLOAD_FAILED = "Image upload failed."


@dataclass
class StoredImage:
    backend: str
    url: str
    public_id: str
    size: int


def _sanitize_filename(filename: Optional[str]) -> str:
    name = pathlib.Path(filename or "image").name
    return re.sub(r"[^A-Za-z0-9._-]", "_", name).strip("._") or "image"


def _unique_name(filename: Optional[str]) -> str:
    return f"{uuid.uuid4().hex[:12]}_{_sanitize_filename(filename)}"


class ImageStorage:
    """Stores event images and returns an absolute URL for each."""

    backend_name = "base"

    def __init__(self, folder: str = "devEvent") -> None:
        self.folder = folder.strip("/") or "devEvent"

    async def save(self, data: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:  # pragma: no cover
        raise NotImplementedError


class CloudinaryImageStorage(ImageStorage):
    """Signed uploads to the Cloudinary REST API."""

    backend_name = "cloudinary"
    api_base = "https://api.cloudinary.com/v1_1"

    def __init__(
        self,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        *,
        folder: str = "devEvent",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(folder)
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def sign(self, params: dict[str, str]) -> str:
        payload = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1(f"{payload}{self.api_secret}".encode("utf-8")).hexdigest()

    async def save(self, data: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:
        if not self.configured:
            logger.error("Cloudinary credentials are not configured")
            raise UploadError(_UPLOAD_FAILED)

        params = {"folder": self.folder, "timestamp": str(int(time.time()))}
        form = dict(params, api_key=self.api_key, signature=self.sign(params))
        files = {"file": (_sanitize_filename(filename), data, content_type or "application/octet-stream")}
        url = f"{self.api_base}/{self.cloud_name}/image/upload"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, data=form, files=files)
            response.raise_for_status()
            body = response.json()
            secure_url = body["secure_url"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error("Cloudinary upload failed: %s", exc)
            raise UploadError(_UPLOAD_FAILED) from exc

        return StoredImage(
            backend=self.backend_name,
            url=secure_url,
            public_id=body.get("public_id", ""),
            size=int(body.get("bytes", len(data))),
        )


class S3ImageStorage(ImageStorage):
    backend_name = "s3"

    def __init__(
        self,
        bucket: Optional[str],
        *,
        folder: str = "devEvent",
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        public_url: Optional[str] = None,
        client=None,
    ) -> None:
        super().__init__(folder)
        if not bucket:
            raise RuntimeError("IMAGE_S3_BUCKET must be set for S3 image storage")
        self.bucket = bucket
        self.client = client or boto3.client("s3", endpoint_url=endpoint_url, region_name=region)
        if public_url:
            self.public_url = public_url.rstrip("/")
        elif endpoint_url:
            self.public_url = f"{endpoint_url.rstrip('/')}/{bucket}"
        else:
            self.public_url = f"https://{bucket}.s3.{region or 'us-east-1'}.amazonaws.com"

    async def save(self, data: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:
        key = f"{self.folder}/{_unique_name(filename)}"

        def _upload():
            self.client.upload_fileobj(
                BytesIO(data),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type or "application/octet-stream"},
            )

        try:
            await asyncio.to_thread(_upload)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 upload failed: %s", exc)
            raise UploadError(_UPLOAD_FAILED) from exc
        return StoredImage(
            backend=self.backend_name, url=f"{self.public_url}/{key}", public_id=key, size=len(data)
        )


class LocalImageStorage(ImageStorage):
    """Writes images to disk; the app serves them under ``/media``."""

    backend_name = "local"

    def __init__(self, base_path: str, public_base_url: str, *, folder: str = "devEvent") -> None:
        super().__init__(folder)
        self.base_path = pathlib.Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    async def save(self, data: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:
        name = _unique_name(filename)
        directory = self.base_path / self.folder
        path = (directory / name).resolve()
        if not path.is_relative_to(self.base_path):
            raise UploadError(_UPLOAD_FAILED)

        try:
            directory.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as buffer:
                await buffer.write(data)
        except OSError as exc:
            logger.error("Writing image to %s failed: %s", path, exc)
            raise UploadError(_UPLOAD_FAILED) from exc

        relative = f"{self.folder}/{name}"
        return StoredImage(
            backend=self.backend_name,
            url=f"{self.public_base_url}/{relative}",
            public_id=relative,
            size=len(data),
        )


def build_image_storage(settings: Settings) -> ImageStorage:
    backend = settings.image_storage
    if backend == "cloudinary":
        return CloudinaryImageStorage(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            folder=settings.image_folder,
            timeout=settings.upload_timeout,
        )
    if backend == "s3":
        return S3ImageStorage(
            settings.s3_bucket,
            folder=settings.image_folder,
            endpoint_url=settings.s3_endpoint,
            region=settings.s3_region,
            public_url=settings.s3_public_url,
        )
    if backend == "local":
        return LocalImageStorage(
            settings.image_local_path, settings.image_public_base_url, folder=settings.image_folder
        )
    raise RuntimeError(f"Unsupported IMAGE_STORAGE backend: {backend}")


def get_image_storage(request: Request) -> ImageStorage:
    """FastAPI dependency returning the app's image storage."""

    return request.app.state.image_storage
