from __future__ import annotations

import re
import uuid
from functools import lru_cache
from typing import Any

import boto3
from cachetools import TTLCache

from ..settings import settings

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
}


def get_assets_bucket_name() -> str:
    name = (settings.assets_bucket_name or "").strip()
    if not name:
        raise RuntimeError("ASSETS_BUCKET_NAME is not set")
    return name


def file_extension(file_name: str | None) -> str:
    m = re.search(r"\.([a-zA-Z0-9]{1,10})$", (file_name or "").strip())
    return m.group(1).lower() if m else ""


def content_type_for(ext: str, fallback: str | None = None) -> str:
    return CONTENT_TYPES.get((ext or "").lower()) or fallback or "application/octet-stream"


def _safe_segment(value: str | None) -> str:
    safe = (value or "unassigned").strip() or "unassigned"
    return re.sub(r"[^a-zA-Z0-9_-]", "_", safe)[:80]


def make_logo_key(ext: str) -> str:
    return f"logos/{uuid.uuid4()}.{ext.lower()}"


def make_solution_media_key(*, solution_id: str, file_name: str) -> str:
    ext = file_extension(file_name)
    suffix = f".{ext}" if ext else ""
    return f"solutions/{_safe_segment(solution_id)}/{uuid.uuid4()}{suffix}"


def make_proposal_document_key(*, proposal_id: str | None) -> str:
    return f"proposals/{_safe_segment(proposal_id)}/{uuid.uuid4()}.pdf"


def make_proposal_reference_key(*, proposal_id: str, file_name: str) -> str:
    ext = file_extension(file_name)
    suffix = f".{ext}" if ext else ""
    return f"proposals/{_safe_segment(proposal_id)}/references/{uuid.uuid4()}{suffix}"


def make_opportunity_file_key(*, organization_id: str, file_name: str) -> str:
    ext = file_extension(file_name)
    suffix = f".{ext}" if ext else ""
    return f"opportunities/{_safe_segment(organization_id)}/{uuid.uuid4()}{suffix}"


@lru_cache(maxsize=1)
def _s3_client():
    return boto3.client("s3", region_name=settings.aws_region)


def put_object_bytes(*, key: str, data: bytes, content_type: str | None = None) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    params: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data}
    if content_type:
        params["ContentType"] = str(content_type)
    _s3_client().put_object(**params)
    return {"bucket": bucket, "key": key}


def presign_get_object(*, key: str, expires_in: int | None = None) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    ttl = int(expires_in or settings.asset_url_ttl_seconds)
    url = _s3_client().generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": bucket, "Key": key},
        # SigV4 presigned URLs cannot outlive seven days.
        ExpiresIn=max(60, min(7 * 24 * 3600, ttl)),
    )
    return {"bucket": bucket, "key": key, "url": url}


def head_object(*, key: str) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    return _s3_client().head_object(Bucket=bucket, Key=str(key))


def get_object_bytes(*, key: str, max_bytes: int = 25 * 1024 * 1024) -> bytes:
    """
    Download an object into memory, with a safety max to prevent OOM.
    """
    bucket = get_assets_bucket_name()
    meta = head_object(key=str(key))
    size = int(meta.get("ContentLength") or 0)
    if size <= 0:
        return b""
    if size > int(max_bytes):
        raise RuntimeError(f"Object too large ({size} bytes), max is {int(max_bytes)} bytes")

    resp = _s3_client().get_object(Bucket=bucket, Key=str(key))
    body = resp.get("Body")
    if not body:
        return b""
    return body.read() or b""


def delete_object(*, key: str) -> None:
    bucket = get_assets_bucket_name()
    _s3_client().delete_object(Bucket=bucket, Key=key)


def store_bytes(*, key: str, data: bytes, content_type: str | None = None) -> dict[str, Any]:
    """Upload and return {key, url} with a presigned read URL."""
    put_object_bytes(key=key, data=data, content_type=content_type)
    url = presign_get_object(key=key)["url"]
    set_cached_url(key, url)
    return {"key": key, "url": url}


# Presigned URLs are reused for most of their lifetime.
_GET_URL_CACHE: TTLCache[str, str] = TTLCache(maxsize=2048, ttl=55 * 60)


def get_cached_url(key: str) -> str | None:
    return _GET_URL_CACHE.get(key)


def set_cached_url(key: str, url: str) -> None:
    _GET_URL_CACHE[key] = url


def signed_url(key: str) -> str:
    cached = get_cached_url(key)
    if cached:
        return cached
    url = presign_get_object(key=key)["url"]
    set_cached_url(key, url)
    return url
