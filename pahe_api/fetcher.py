# -*- coding: utf-8 -*-
"""
fetcher.py
Challenge-aware GET for the catalog and stream-host pages.

Every call builds its own cloudscraper session (a ``requests.Session`` that
answers the site's anti-bot challenge) and its own client identity, so no
connection or cookie state is shared between concurrent calls.
"""
from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, Optional

import cloudscraper
import requests

from . import settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_0) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.1 Safari/605.1.15",
    "Mozilla/5.0 (Linux; Android 12; SM-G998B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
]

# ddos-guard cookies must be present (even empty) for the first hop
DDG_COOKIE = "__ddg1_=;__ddg2_="


def identity_for(seed: int) -> str:
    """Map a seed to one of the known browser identities."""
    return USER_AGENTS[seed % len(USER_AGENTS)]


def random_identity(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return identity_for(rng.randrange(len(USER_AGENTS)))


def default_headers(base_url: str, user_agent: str) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Cookie": DDG_COOKIE,
        "Referer": base_url.rstrip("/") + "/",
    }


class RemoteFetcher:
    def __init__(
        self,
        base_url: str = settings.PAHE_BASE_URL,
        timeout: float = settings.FETCH_TIMEOUT,
        rng: Optional[random.Random] = None,
        session_factory: Callable[[], requests.Session] = cloudscraper.create_scraper,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rng = rng
        self.session_factory = session_factory

    def identity(self) -> str:
        return random_identity(self.rng)

    def headers(self, user_agent: Optional[str] = None) -> Dict[str, str]:
        return default_headers(self.base_url, user_agent or self.identity())

    def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """GET ``url`` through a fresh challenge-solving session.

        Transport failures and non-success statuses raise ``UpstreamError``.
        """
        hdrs = headers or self.headers()
        logger.debug("GET %s ua=%s", url, hdrs.get("User-Agent"))
        session = self.session_factory()
        try:
            resp = session.get(url, headers=hdrs, timeout=timeout or self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise UpstreamError(f"request to {url} failed: {e}", url=url) from e
        finally:
            session.close()
        if resp.status_code >= 400:
            raise UpstreamError(f"{url} answered HTTP {resp.status_code}", url=url)
        return resp

    def get_text(self, url: str, **kwargs) -> str:
        return self.get(url, **kwargs).text

    def get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        resp = self.get(url, **kwargs)
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"malformed JSON from {url}: {e}", url=url) from e
        if not isinstance(data, dict):
            raise UpstreamError(f"unexpected JSON payload from {url}: {type(data).__name__}", url=url)
        return data
