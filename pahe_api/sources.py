# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import re
import urllib.parse
from typing import Iterable, List

from bs4 import BeautifulSoup

from .errors import NotFoundError
from .models import Source

logger = logging.getLogger(__name__)

# streaming hosts the play page links to (kwik.si, kwik.cx, kwik.link, ...)
STREAM_HOST_PREFIX = "kwik."
BUTTON_ATTRS = ("data-src", "data-fansub", "data-resolution", "data-audio")
BARE_LINK_RE = re.compile(r"https://kwik\.(?:si|cx|link)/e/\w+")


def is_stream_host(url: str) -> bool:
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    return parsed.scheme == "https" and host.startswith(STREAM_HOST_PREFIX)


def _from_buttons(html: str) -> List[Source]:
    soup = BeautifulSoup(html, "html.parser")
    out: List[Source] = []
    for button in soup.find_all("button"):
        if not all(button.get(a) for a in BUTTON_ATTRS):
            continue
        src = button["data-src"].strip()
        if not is_stream_host(src):
            continue
        out.append(Source(
            url=src,
            quality=f"{button['data-resolution'].strip()}p",
            fansub=button["data-fansub"].strip(),
            audio=button["data-audio"].strip(),
        ))
    return out


def _from_bare_links(html: str) -> List[Source]:
    return [Source(url=m.group(0)) for m in BARE_LINK_RE.finditer(html)]


def dedupe_and_rank(sources: Iterable[Source]) -> List[Source]:
    """First occurrence of each URL wins, then highest resolution first.

    ``sorted`` is stable, so sources without a parsable quality keep their
    discovery order at the tail.
    """
    unique = {}
    for s in sources:
        unique.setdefault(s.url, s)
    return sorted(unique.values(), key=lambda s: s.resolution, reverse=True)


def extract_sources(html: str) -> List[Source]:
    sources = _from_buttons(html)
    if not sources:
        logger.debug("no stream buttons on play page, falling back to bare links")
        sources = _from_bare_links(html)
    if not sources:
        raise NotFoundError("No kwik links found on play page")
    return dedupe_and_rank(sources)
