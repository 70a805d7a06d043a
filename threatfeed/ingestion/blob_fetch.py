"""Feed blob download backends.

Every fetcher exposes `fetch(location) -> bytes` and raises NotFoundError for a
missing object and FetchError for anything else that prevents the download.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import requests
from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from threatfeed.errors import FetchError, NotFoundError


@dataclass(frozen=True)
class BlobLocation:
    bucket: str
    name: str

    def __str__(self) -> str:
        return f"{self.bucket}/{self.name}"


class GCSBlobFetcher:
    """Google Cloud Storage objects (the upload bucket)."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def fetch(self, location: BlobLocation) -> bytes:
        try:
            blob = self.client.bucket(location.bucket).blob(location.name)
            return blob.download_as_bytes()
        except gcs_exceptions.NotFound as e:
            raise NotFoundError(f"gs://{location} not found") from e
        except gcs_exceptions.GoogleAPIError as e:
            raise FetchError(f"Failed to download gs://{location}: {e}") from e


@dataclass(frozen=True)
class LocalBlobFetcher:
    """`<root>/<bucket>/<name>` on the local filesystem (dev and tests)."""

    root: str

    def fetch(self, location: BlobLocation) -> bytes:
        base = Path(self.root).resolve()
        path = (base / location.bucket / location.name).resolve()
        if base != path and base not in path.parents:
            raise FetchError(f"{location} escapes blob root {base}")
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"{path} not found") from e
        except OSError as e:
            raise FetchError(f"Failed to read {path}: {e}") from e


@dataclass(frozen=True)
class HttpBlobFetcher:
    """Objects served over HTTP(S) as `<base_url>/<bucket>/<name>`."""

    base_url: str
    timeout: int = 60

    def url_for(self, location: BlobLocation) -> str:
        return f"{self.base_url.rstrip('/')}/{quote(location.bucket)}/{quote(location.name)}"

    def fetch(self, location: BlobLocation) -> bytes:
        url = self.url_for(location)
        try:
            resp = requests.get(url, headers={"User-Agent": "threatfeed/1.0"}, timeout=(5, self.timeout))
        except requests.RequestException as e:
            raise FetchError(f"Failed to download {url}: {e}") from e
        if resp.status_code == 404:
            raise NotFoundError(f"{url} not found")
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise FetchError(f"Failed to download {url}: {e}") from e
        return resp.content


def make_blob_fetcher(backend: str = "gcs", *, local_root: Optional[str] = None, http_base: Optional[str] = None):
    b = (backend or "gcs").strip().lower()
    if b == "gcs":
        return GCSBlobFetcher()
    if b == "local":
        if not local_root:
            raise ValueError("BLOB_LOCAL_ROOT is required for the local blob backend")
        return LocalBlobFetcher(local_root)
    if b == "http":
        if not http_base:
            raise ValueError("BLOB_HTTP_BASE is required for the http blob backend")
        return HttpBlobFetcher(http_base)
    raise ValueError(f"Unknown blob backend {backend!r} (expected gcs, local or http)")
