"""Document storage backend - local filesystem or S3."""

import hashlib
import os
from typing import BinaryIO

import boto3
from botocore.exceptions import ClientError

from willtank.core.config import settings

SIGNED_URL_EXPIRY_SECONDS = 300  # 5 minutes


class StorageError(Exception):
    pass


def _get_s3_client():
    """Get boto3 S3 client."""
    kwargs = {"region_name": settings.S3_REGION}
    if settings.S3_ENDPOINT_URL:
        kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
    if settings.AWS_ACCESS_KEY_ID:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY
    return boto3.client("s3", **kwargs)


def is_s3() -> bool:
    return settings.STORAGE_BACKEND == "s3"


def _local_path(storage_key: str) -> str:
    root = os.path.abspath(settings.LOCAL_STORAGE_PATH)
    path = os.path.abspath(os.path.join(root, storage_key))
    if not path.startswith(root + os.sep):
        raise StorageError("Invalid storage key")
    return path


def calculate_checksum(file: BinaryIO) -> str:
    """Calculate SHA-256 checksum of file."""
    sha256 = hashlib.sha256()
    file.seek(0)
    for chunk in iter(lambda: file.read(8192), b""):
        sha256.update(chunk)
    file.seek(0)
    return sha256.hexdigest()


def store_file(storage_key: str, file: BinaryIO) -> None:
    """Store file to configured backend."""
    file.seek(0)
    if is_s3():
        _get_s3_client().upload_fileobj(file, settings.S3_BUCKET, storage_key)
        return

    path = _local_path(storage_key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(file.read())


def read_file(storage_key: str) -> bytes:
    """Read file content from configured backend."""
    if is_s3():
        try:
            response = _get_s3_client().get_object(Bucket=settings.S3_BUCKET, Key=storage_key)
        except ClientError as e:
            raise StorageError(f"Failed to read {storage_key}") from e
        return response["Body"].read()

    path = _local_path(storage_key)
    if not os.path.exists(path):
        raise StorageError(f"File not found: {storage_key}")
    with open(path, "rb") as f:
        return f.read()


def generate_signed_url(storage_key: str) -> str | None:
    """
    Presigned S3 URL valid for SIGNED_URL_EXPIRY_SECONDS.

    Returns None for local storage; callers serve content themselves.
    """
    if not is_s3():
        return None
    try:
        return _get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.S3_BUCKET, "Key": storage_key},
            ExpiresIn=SIGNED_URL_EXPIRY_SECONDS,
        )
    except ClientError as e:
        raise StorageError("Failed to sign download URL") from e


def delete_file(storage_key: str) -> None:
    """Delete file from storage."""
    if is_s3():
        _get_s3_client().delete_object(Bucket=settings.S3_BUCKET, Key=storage_key)
        return
    path = _local_path(storage_key)
    if os.path.exists(path):
        os.remove(path)
