"""Best-effort S3 copy of matrix documents and rendered frames.

Matrix documents live under ``matrices/{matrix_id}.json`` and render outputs
under ``output/`` followed by their path relative to the output root. A failed
S3 call is logged and reported through the return value; it never raises, so
the local store keeps working when the bucket is unreachable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_S3_BUCKET = "creative-matrix-engine"
MATRIX_PREFIX = "matrices/"
OUTPUT_PREFIX = "output/"


def matrix_key(matrix_id: str) -> str:
    return f"{MATRIX_PREFIX}{matrix_id}.json"


class S3Mirror:
    def __init__(self, client: object, bucket: str = DEFAULT_S3_BUCKET) -> None:
        self._client = client
        self.bucket = bucket

    @classmethod
    def from_env(cls) -> S3Mirror | None:
        """Build a mirror from ``AWS_*`` credentials and ``MATRIX_S3_BUCKET``.

        Returns ``None`` when credentials are absent or boto3 is not installed.
        """
        access_key = os.getenv("AWS_ACCESS_KEY_ID")
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY")
        if not access_key or not secret_key:
            logger.debug("S3 mirror off: AWS credentials not set")
            return None

        try:
            import boto3  # type: ignore[import-untyped]
        except ImportError:
            logger.warning("S3 mirror off: boto3 missing, install the [s3] extra to enable it")
            return None

        bucket = os.getenv("MATRIX_S3_BUCKET", DEFAULT_S3_BUCKET)
        region = os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        client = boto3.client(
            "s3",
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        logger.info("Mirroring matrices to s3://%s (%s)", bucket, region)
        return cls(client, bucket=bucket)

    def upload_file(self, local_path: Path, key: str) -> bool:
        try:
            self._client.upload_file(str(local_path), self.bucket, key)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.warning("Could not upload %s to s3://%s/%s: %s", local_path.name, self.bucket, key, exc)
            return False
        return True

    def download_file(self, key: str, local_path: Path) -> bool:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._client.download_file(self.bucket, key, str(local_path))  # type: ignore[attr-defined]
        except Exception as exc:
            logger.debug("No S3 copy of %s: %s", key, exc)
            return False
        return True

    def list_keys(self, prefix: str) -> list[str]:
        """Sorted keys under *prefix*; empty when listing fails."""
        try:
            pages = self._client.get_paginator("list_objects_v2").paginate(  # type: ignore[attr-defined]
                Bucket=self.bucket, Prefix=prefix
            )
            return sorted(item["Key"] for page in pages for item in page.get("Contents", []))
        except Exception as exc:
            logger.warning("Could not list s3://%s/%s: %s", self.bucket, prefix, exc)
            return []

    def upload_matrix(self, local_path: Path, matrix_id: str) -> bool:
        return self.upload_file(local_path, matrix_key(matrix_id))

    def download_matrix(self, matrix_id: str, dest_path: Path) -> bool:
        return self.download_file(matrix_key(matrix_id), dest_path)

    def list_matrix_ids(self) -> list[str]:
        return [
            key[len(MATRIX_PREFIX) : -len(".json")]
            for key in self.list_keys(MATRIX_PREFIX)
            if key.endswith(".json") and "/" not in key[len(MATRIX_PREFIX) :]
        ]

    def upload_output_file(self, local_path: Path, output_root: Path) -> bool:
        try:
            relative = local_path.relative_to(output_root)
        except ValueError:
            logger.warning("Not mirroring %s: outside output root %s", local_path, output_root)
            return False
        return self.upload_file(local_path, OUTPUT_PREFIX + relative.as_posix())
