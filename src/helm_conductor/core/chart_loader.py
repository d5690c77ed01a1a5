"""Fetch index files and chart archives over HTTP(S) or S3."""

from __future__ import annotations

import logging
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from helm_conductor.config.settings import settings
from helm_conductor.errors import AuthError, NetworkError, NotFoundError
from helm_conductor.models.repo import Credential

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "helm-conductor/0.1",
    "Accept": "application/x-yaml, text/yaml, application/gzip, */*;q=0.8",
}

_REGION_PATTERN = re.compile(r"^s3[.-]([a-z0-9-]+)\.[^.]+\.")
_AUTH_ERROR_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
})


@dataclass
class S3Location:
    endpoint: str
    bucket: str
    key: str
    region: str


def parse_s3_url(url: str, default_region: str | None = None) -> S3Location:
    """Split ``s3://host/bucket/path`` into endpoint, bucket, key and region.

    The region is taken from a ``s3.<region>.`` host prefix when present.
    """
    parsed = urlparse(url)
    if parsed.scheme != "s3" or not parsed.netloc:
        raise NetworkError(f"not an s3 url: {url}")
    parts = parsed.path.lstrip("/").split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise NetworkError(f"s3 url must include bucket and key: {url}")
    match = _REGION_PATTERN.match(parsed.netloc)
    region = match.group(1) if match else (default_region or settings.default_s3_region)
    return S3Location(endpoint=f"https://{parsed.netloc}", bucket=parts[0], key=parts[1], region=region)


def resolve_chart_url(url: str, repo_url: str) -> str:
    """Make a chart URL absolute; relative URLs hang off the repository URL."""
    if url.startswith(("http://", "https://", "s3://")):
        return url
    return f"{repo_url.rstrip('/')}/{url.lstrip('/')}"


class ChartLoader:
    """Downloads raw bytes from a chart repository using its credential bundle."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.request_timeout

    def load_index(self, repo_url: str, credential: Credential | None = None) -> bytes:
        """Fetch ``<repo_url>/index.yaml``."""
        return self.load(f"{repo_url.rstrip('/')}/index.yaml", credential)

    def load_chart(self, url: str, credential: Credential | None = None) -> bytes:
        return self.load(url, credential)

    def load(self, url: str, credential: Credential | None = None) -> bytes:
        credential = credential or Credential()
        if url.startswith("s3://"):
            return self._load_s3(url, credential)
        if url.startswith(("http://", "https://")):
            return self._load_http(url, credential)
        raise NetworkError(f"unsupported url scheme: {url}")

    # -- http ------------------------------------------------------------

    def _load_http(self, url: str, credential: Credential) -> bytes:
        logger.debug("GET %s", url)
        with _tls_files(credential) as tls:
            kwargs = {"headers": DEFAULT_HEADERS, "timeout": self.timeout}
            if credential.has_basic_auth:
                kwargs["auth"] = (credential.username, credential.password)
            if credential.insecure_skip_tls_verify:
                kwargs["verify"] = False
            elif tls.ca is not None:
                kwargs["verify"] = str(tls.ca)
            if tls.cert is not None and tls.key is not None:
                kwargs["cert"] = (str(tls.cert), str(tls.key))
            try:
                resp = requests.get(url, **kwargs)
            except requests.exceptions.SSLError as e:
                raise AuthError(f"tls handshake with {url} failed: {e}") from e
            except requests.RequestException as e:
                raise NetworkError(f"fetch {url} failed: {e}") from e

        if resp.status_code in (401, 403):
            raise AuthError(f"fetch {url} failed: {resp.status_code} {resp.reason}")
        if resp.status_code == 404:
            raise NotFoundError(f"fetch {url} failed: 404 {resp.reason}")
        if resp.status_code >= 400:
            raise NetworkError(f"fetch {url} failed: {resp.status_code} {resp.reason}")
        return resp.content

    # -- s3 --------------------------------------------------------------

    def _load_s3(self, url: str, credential: Credential) -> bytes:
        loc = parse_s3_url(url)
        logger.debug("s3 get bucket=%s key=%s endpoint=%s region=%s", loc.bucket, loc.key, loc.endpoint, loc.region)
        client_kwargs = {
            "endpoint_url": loc.endpoint,
            "region_name": loc.region,
            "verify": not credential.insecure_skip_tls_verify,
            "config": BotoConfig(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                s3={"addressing_style": "path"},
            ),
        }
        if credential.has_basic_auth:
            client_kwargs["aws_access_key_id"] = credential.username
            client_kwargs["aws_secret_access_key"] = credential.password
        try:
            client = boto3.client("s3", **client_kwargs)
            obj = client.get_object(Bucket=loc.bucket, Key=loc.key)
            return obj["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _AUTH_ERROR_CODES:
                raise AuthError(f"s3 get {url} denied: {code}") from e
            if code in ("NoSuchKey", "NoSuchBucket", "404"):
                raise NotFoundError(f"s3 object {url} not found") from e
            raise NetworkError(f"s3 get {url} failed: {e}") from e
        except BotoCoreError as e:
            raise NetworkError(f"s3 get {url} failed: {e}") from e


@dataclass
class _TLSFiles:
    cert: Path | None = None
    key: Path | None = None
    ca: Path | None = None


@contextmanager
def _tls_files(credential: Credential) -> Iterator[_TLSFiles]:
    """Materialize PEM data as files, since requests only accepts paths."""
    if not (credential.cert_data or credential.key_data or credential.ca_data):
        yield _TLSFiles()
        return
    with tempfile.TemporaryDirectory(prefix="helm-conductor-tls-") as tmp:
        files = _TLSFiles()
        for attr, data in (("cert", credential.cert_data), ("key", credential.key_data), ("ca", credential.ca_data)):
            if not data:
                continue
            path = Path(tmp) / f"{attr}.pem"
            path.write_text(data, encoding="utf-8")
            path.chmod(0o600)
            setattr(files, attr, path)
        yield files
