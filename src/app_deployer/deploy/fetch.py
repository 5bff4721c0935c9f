"""Fetch utilities for downloading release artifacts to the staging area."""

from __future__ import annotations

import hashlib
import os
import time
from pathlib import Path
from typing import Iterable, Optional, Tuple

import httpx
import structlog


logger = structlog.get_logger()


def _parse_s3_url(url: str) -> Tuple[str, str]:
    """Parse s3://bucket/key URL into (bucket, key)."""
    if not url.startswith("s3://"):
        raise ValueError("Not an s3 URL")
    rest = url[len("s3://"):]
    parts = rest.split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError("Invalid s3 URL; expected s3://bucket/key")
    return parts[0], parts[1]


def compute_sha256(file_path: Path) -> str:
    """Lowercase hex SHA256 of a file."""
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(8192), b""):
            hasher.update(block)
    return hasher.hexdigest()


def _write_stream_to_file(stream_iter: Iterable[bytes], dest_path: Path, max_size_bytes: int) -> int:
    """Write streaming bytes to file with max-size enforcement.

    Returns number of bytes written.
    """
    tmp_file = dest_path.with_suffix(dest_path.suffix + ".downloading")
    bytes_written = 0
    try:
        with open(tmp_file, "wb") as f:
            for chunk in stream_iter:
                if not chunk:
                    continue
                bytes_written += len(chunk)
                if bytes_written > max_size_bytes:
                    raise ValueError("Artifact exceeds maximum allowed size")
                f.write(chunk)
    except BaseException:
        if tmp_file.exists():
            tmp_file.unlink()
        raise
    os.replace(tmp_file, dest_path)
    return bytes_written


def fetch_artifact_to_path(
    url: str,
    dest_path: Path,
    *,
    max_size_bytes: int = 200 * 1024 * 1024,
    total_timeout_sec: float = 120.0,
    max_retries: int = 3,
    backoff_base: float = 0.5,
    sha256: Optional[str] = None,
) -> Path:
    """Fetch a release archive to dest_path.

    Supports:
    - http(s):// URLs via httpx streaming
    - s3://bucket/key via boto3 GetObject

    Enforces a maximum size and a total timeout across retries.
    Optionally validates SHA256 if provided.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    s3_bucket: Optional[str] = None
    s3_key: Optional[str] = None
    if url.startswith("s3://"):
        s3_bucket, s3_key = _parse_s3_url(url)

    start = time.time()
    attempt = 0
    last_error: Optional[Exception] = None

    while attempt < max_retries and (time.time() - start) < total_timeout_sec:
        attempt += 1
        try:
            if s3_bucket is None:
                logger.info("Downloading artifact", url=url, dest=str(dest_path), attempt=attempt)
                timeout = httpx.Timeout(total_timeout_sec - (time.time() - start))
                with httpx.Client(timeout=timeout, follow_redirects=True) as client:
                    with client.stream("GET", url) as resp:
                        resp.raise_for_status()
                        bytes_written = _write_stream_to_file(
                            resp.iter_bytes(64 * 1024), dest_path, max_size_bytes
                        )
                logger.info("Downloaded artifact", bytes=bytes_written)
            else:
                logger.info("Downloading artifact from S3", bucket=s3_bucket, key=s3_key, dest=str(dest_path), attempt=attempt)
                import boto3
                s3 = boto3.client("s3")
                obj = s3.get_object(Bucket=s3_bucket, Key=s3_key)
                body = obj["Body"]
                bytes_written = _write_stream_to_file(body.iter_chunks(64 * 1024), dest_path, max_size_bytes)
                logger.info("Downloaded artifact from S3", bytes=bytes_written)

            if sha256:
                actual = compute_sha256(dest_path)
                if actual != sha256.lower():
                    dest_path.unlink()
                    raise ValueError(f"SHA256 mismatch. expected={sha256} actual={actual}")

            return dest_path
        except Exception as e:
            last_error = e
            elapsed = time.time() - start
            remaining = total_timeout_sec - elapsed
            logger.warning("Fetch attempt failed", attempt=attempt, error=str(e), remaining_time_sec=max(0.0, remaining))
            if attempt >= max_retries or remaining <= 0:
                break
            sleep_for = min(backoff_base * (2 ** (attempt - 1)), max(0.0, remaining))
            time.sleep(sleep_for)

    raise RuntimeError(f"Failed to fetch artifact after {attempt} attempts: {last_error}")
