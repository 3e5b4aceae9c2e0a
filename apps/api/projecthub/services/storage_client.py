"""Helpers for creating storage clients."""

from __future__ import annotations

import boto3
from botocore.client import BaseClient

from projecthub.core.config import settings


def get_s3_client(*, endpoint_url: str | None = None) -> BaseClient:
    """Return a configured S3 client (supports S3-compatible endpoints)."""
    endpoint = (endpoint_url or settings.S3_ENDPOINT_URL or "").rstrip("/") or None
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION or None,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        endpoint_url=endpoint,
    )
