import hashlib
import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app_deployer.deploy.fetch import _parse_s3_url, compute_sha256, fetch_artifact_to_path


class Resp:
    def __init__(self, content: bytes, error: Exception = None):
        self.content = content
        self.error = error

    def raise_for_status(self):
        if self.error:
            raise self.error

    def iter_bytes(self, size):
        for i in range(0, len(self.content), size):
            yield self.content[i:i + size]


def patched_client(*responses):
    """Patch httpx.Client so each stream() call yields the next response."""
    client = MagicMock()
    streams = []
    for resp in responses:
        cm = MagicMock()
        cm.__enter__.return_value = resp
        cm.__exit__.return_value = False
        streams.append(cm)
    client.stream.side_effect = streams
    return client


def test_https_download(tmp_path: Path):
    dest = tmp_path / "release.zip"
    data = b"hello world"

    with patch("httpx.Client") as Client:
        client = patched_client(Resp(data))
        Client.return_value.__enter__.return_value = client
        out = fetch_artifact_to_path("https://example.com/release.zip", dest)

    assert out == dest
    assert out.read_bytes() == data
    client.stream.assert_called_once_with("GET", "https://example.com/release.zip")
    assert not dest.with_suffix(".zip.downloading").exists()


def test_https_download_sha256_match(tmp_path: Path):
    dest = tmp_path / "release.zip"
    data = b"abc"
    digest = hashlib.sha256(data).hexdigest()

    with patch("httpx.Client") as Client:
        Client.return_value.__enter__.return_value = patched_client(Resp(data))
        out = fetch_artifact_to_path("https://example.com/r.zip", dest, sha256=digest.upper())

    assert compute_sha256(out) == digest


def test_https_download_sha256_mismatch(tmp_path: Path):
    dest = tmp_path / "release.zip"

    with patch("httpx.Client") as Client, patch("app_deployer.deploy.fetch.time.sleep"):
        Client.return_value.__enter__.return_value = patched_client(Resp(b"abc"), Resp(b"abc"), Resp(b"abc"))
        with pytest.raises(RuntimeError, match="SHA256 mismatch"):
            fetch_artifact_to_path("https://example.com/r.zip", dest, sha256="deadbeef")

    assert not dest.exists()


def test_size_limit_enforced(tmp_path: Path):
    dest = tmp_path / "release.zip"

    with patch("httpx.Client") as Client:
        Client.return_value.__enter__.return_value = patched_client(Resp(b"x" * 100))
        with pytest.raises(RuntimeError, match="maximum allowed size"):
            fetch_artifact_to_path("https://example.com/r.zip", dest, max_size_bytes=10, max_retries=1)

    assert not dest.exists()
    assert not dest.with_suffix(".zip.downloading").exists()


def test_retries_then_succeeds(tmp_path: Path):
    dest = tmp_path / "release.zip"
    request = httpx.Request("GET", "https://example.com/r.zip")
    failure = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(503, request=request))

    with patch("httpx.Client") as Client, patch("app_deployer.deploy.fetch.time.sleep") as sleep:
        client = patched_client(Resp(b"", error=failure), Resp(b"ok"))
        Client.return_value.__enter__.return_value = client
        out = fetch_artifact_to_path("https://example.com/r.zip", dest, backoff_base=0.5)

    assert out.read_bytes() == b"ok"
    assert client.stream.call_count == 2
    sleep.assert_called_once_with(0.5)


def test_s3_download_via_boto(tmp_path: Path):
    dest = tmp_path / "release.zip"
    data = b"payload"

    class StreamingBody:
        def __init__(self, buf: bytes):
            self._buf = io.BytesIO(buf)

        def iter_chunks(self, size):
            while True:
                chunk = self._buf.read(size)
                if not chunk:
                    break
                yield chunk

    with patch("boto3.client") as boto_client:
        s3 = MagicMock()
        s3.get_object.return_value = {"Body": StreamingBody(data)}
        boto_client.return_value = s3
        out = fetch_artifact_to_path("s3://releases/app/r.zip", dest)

    s3.get_object.assert_called_once_with(Bucket="releases", Key="app/r.zip")
    assert out.read_bytes() == data


@pytest.mark.parametrize("url", ["https://x/y", "s3://", "s3://bucket", "s3://bucket/"])
def test_parse_s3_url_rejects_bad_urls(url):
    with pytest.raises(ValueError):
        _parse_s3_url(url)
