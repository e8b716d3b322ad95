# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List

from bs4 import BeautifulSoup

from .errors import PaheError, ParseError, UpstreamError
from .fetcher import RemoteFetcher
from .models import AnimeResult, Episode, Source
from .sources import extract_sources

logger = logging.getLogger(__name__)


def _enc(u: str) -> str:
    return urllib.parse.quote(u, safe="")


def internal_id_from_landing(html: str) -> str:
    """The release API wants the numeric id behind the og:url reference."""
    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find("meta", attrs={"property": "og:url"})
    content = (meta.get("content") or "").strip() if meta else ""
    if not content:
        raise ParseError("Could not find session ID in meta tag")
    temp_id = content.rstrip("/").split("/")[-1]
    if not temp_id:
        raise ParseError(f"og:url has no trailing id: {content!r}")
    return temp_id


def merge_release_pages(pages: Iterable[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Union of all page items, keyed by episode session.

    A session showing up twice means the pagination shifted between requests;
    the copy is dropped and the event logged.
    """
    merged: List[Dict[str, Any]] = []
    seen = set()
    dupes = []
    for items in pages:
        for item in items:
            key = item.get("session")
            if key in seen:
                dupes.append(key)
                continue
            seen.add(key)
            merged.append(item)
    if dupes:
        logger.warning("release pages overlap, dropped %d duplicate episode(s): %s", len(dupes), dupes)
    return merged


def to_episode(item: Dict[str, Any]) -> Episode:
    try:
        number = int(item["episode"])
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"release item without a usable episode number: {item!r}") from e
    return Episode(
        id=item.get("id"),
        number=number,
        title=item.get("title") or f"Episode {number}",
        snapshot=item.get("snapshot"),
        session=item.get("session"),
    )


class CatalogClient:
    def __init__(self, fetcher: RemoteFetcher):
        self.fetcher = fetcher
        self.base = fetcher.base_url

    # ---------------------------------------------------------------- search
    def search(self, query: str) -> List[AnimeResult]:
        url = f"{self.base}/api?m=search&q={_enc(query)}"
        try:
            data = self.fetcher.get_json(url)
        except PaheError as e:
            raise e.with_context("Search failed") from e
        return [
            AnimeResult(
                id=a.get("id"),
                title=a.get("title"),
                url=f"{self.base}/anime/{a.get('session')}",
                year=a.get("year"),
                poster=a.get("poster"),
                type=a.get("type"),
                session=a.get("session"),
            )
            for a in (data.get("data") or [])
        ]

    # -------------------------------------------------------------- episodes
    def _release_url(self, temp_id: str, page: int) -> str:
        return f"{self.base}/api?m=release&id={temp_id}&sort=episode_asc&page={page}"

    def _release_page(self, temp_id: str, page: int) -> List[Dict[str, Any]]:
        return self.fetcher.get_json(self._release_url(temp_id, page)).get("data") or []

    def list_episodes(self, anime_session: str) -> List[Episode]:
        try:
            landing = self.fetcher.get_text(f"{self.base}/anime/{anime_session}")
            temp_id = internal_id_from_landing(landing)

            first = self.fetcher.get_json(self._release_url(temp_id, 1))
            pages = [first.get("data") or []]
            last_page = int(first.get("last_page") or 1)

            if last_page > 1:
                with ThreadPoolExecutor(max_workers=last_page - 1) as ex:
                    futures = [ex.submit(self._release_page, temp_id, p) for p in range(2, last_page + 1)]
                    # result() re-raises the first failure: no partial lists
                    pages.extend(f.result() for f in futures)

            episodes = [to_episode(item) for item in merge_release_pages(pages)]
        except PaheError as e:
            raise e.with_context("Failed to get episodes") from e
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Failed to get episodes: malformed release data ({e})") from e

        episodes.sort(key=lambda ep: ep.number)
        return episodes

    # --------------------------------------------------------------- sources
    def get_sources(self, anime_session: str, episode_session: str) -> List[Source]:
        try:
            html = self.fetcher.get_text(f"{self.base}/play/{anime_session}/{episode_session}")
            return extract_sources(html)
        except PaheError as e:
            raise e.with_context("Failed to get sources") from e
