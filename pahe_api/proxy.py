# -*- coding: utf-8 -*-
"""
proxy.py
Same-origin relay for manifests and media segments.

Manifests are rewritten so every reference points back at the relay; the
player then fetches sub-manifests and segments through here too, and each of
those requests goes through ``relay`` again. Segments are streamed through
unchanged.
"""
from __future__ import annotations

import logging
import posixpath
import urllib.parse
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

import httpx

from . import settings
from .errors import AccessDeniedError, UpstreamError

logger = logging.getLogger(__name__)

MANIFEST = "manifest"
SEGMENT = "segment"
BINARY = "binary"

MANIFEST_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_TYPE = "video/mp2t"
BINARY_TYPE = "application/octet-stream"

SEGMENT_EXTS = {".ts": SEGMENT_TYPE, ".m4s": "video/iso.segment", ".mp4": "video/mp4", ".aac": "audio/aac"}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type",
}

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "cross-site",
}


def _enc(u: str) -> str:
    return urllib.parse.quote(u, safe="")


def relay_headers_for(url: str, range_header: Optional[str] = None) -> Dict[str, str]:
    """Browser-like headers with referer/origin taken from the target itself."""
    p = urllib.parse.urlsplit(url)
    origin = f"{p.scheme}://{p.netloc}"
    headers = {**BROWSER_HEADERS, "Referer": origin + "/", "Origin": origin}
    if range_header:
        headers["Range"] = range_header
    return headers


def _extension(url: str) -> str:
    return posixpath.splitext(urllib.parse.urlsplit(url).path)[1].lower()


def classify(content_type: Optional[str], url: str) -> str:
    ct = (content_type or "").lower()
    ext = _extension(url)
    if "mpegurl" in ct or ext == ".m3u8":
        return MANIFEST
    if ct:
        return SEGMENT if (ct.startswith("video/") or "mp2t" in ct) else BINARY
    return SEGMENT if ext in SEGMENT_EXTS else BINARY


def content_type_for(content_type: Optional[str], url: str) -> str:
    if content_type:
        return content_type
    ext = _extension(url)
    if ext == ".m3u8":
        return MANIFEST_TYPE
    return SEGMENT_EXTS.get(ext, BINARY_TYPE)


def relay_reference(absolute_url: str, prefix: str = settings.PROXY_PREFIX) -> str:
    return f"{prefix}?url={_enc(absolute_url)}"


def rewrite_manifest(text: str, manifest_url: str, prefix: str = settings.PROXY_PREFIX) -> str:
    """Point every reference line of an HLS playlist back at the relay.

    Blank lines and ``#`` lines are kept byte for byte; relative references
    are resolved against the manifest's own location.
    """
    out = []
    for line in text.split("\n"):
        body = line[:-1] if line.endswith("\r") else line
        ref = body.strip()
        if not ref or ref.startswith("#"):
            out.append(line)
            continue
        absolute = urllib.parse.urljoin(manifest_url, ref)
        out.append(relay_reference(absolute, prefix) + line[len(body):])
    return "\n".join(out)


@dataclass
class ProxyResponse:
    kind: str
    status_code: int
    headers: Dict[str, str]
    body: bytes = b""
    stream: Optional[AsyncIterator[bytes]] = None
    _upstream: Optional[httpx.Response] = field(default=None, repr=False)
    _client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    async def aclose(self) -> None:
        """Release the upstream connection; safe to call more than once."""
        if self._upstream is not None:
            await self._upstream.aclose()
        if self._client is not None:
            await self._client.aclose()


class StreamProxy:
    def __init__(
        self,
        prefix: str = settings.PROXY_PREFIX,
        timeout: float = settings.RELAY_TIMEOUT,
        max_redirects: int = settings.RELAY_MAX_REDIRECTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.prefix = prefix
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=self.max_redirects,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def relay(self, url: str, range_header: Optional[str] = None) -> ProxyResponse:
        client = self._client()
        try:
            request = client.build_request("GET", url, headers=relay_headers_for(url, range_header))
            upstream = await client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await client.aclose()
            raise UpstreamError(f"relay of {url} failed: {e}", url=url) from e

        status = upstream.status_code
        if status == 403 or status >= 500:
            await upstream.aclose()
            await client.aclose()
            if status == 403:
                raise AccessDeniedError("Access forbidden - CDN blocked the request", url=url)
            raise UpstreamError(f"upstream answered HTTP {status}", url=url)

        upstream_type = upstream.headers.get("content-type")
        kind = classify(upstream_type, url)
        headers = {"Content-Type": content_type_for(upstream_type, url), **CORS_HEADERS}
        logger.info("relay %s -> %s %s", url, status, kind)

        if kind == MANIFEST and status < 400:
            try:
                raw = await upstream.aread()
            except httpx.HTTPError as e:
                raise UpstreamError(f"relay of {url} failed: {e}", url=url) from e
            finally:
                await upstream.aclose()
                await client.aclose()
            text = raw.decode("utf-8", errors="replace")
            body = rewrite_manifest(text, str(upstream.url), self.prefix).encode("utf-8")
            return ProxyResponse(kind=MANIFEST, status_code=status, headers=headers, body=body)

        if kind == MANIFEST:
            # a 4xx page is not a playlist: pass it through untouched
            kind = BINARY
        headers["Accept-Ranges"] = upstream.headers.get("accept-ranges", "bytes")
        if "content-range" in upstream.headers:
            headers["Content-Range"] = upstream.headers["content-range"]
        encoding = upstream.headers.get("content-encoding", "identity").lower()
        if "content-length" in upstream.headers and encoding == "identity":
            headers["Content-Length"] = upstream.headers["content-length"]
        return ProxyResponse(
            kind=kind,
            status_code=status,
            headers=headers,
            stream=upstream.aiter_bytes(),
            _upstream=upstream,
            _client=client,
        )
