# -*- coding: utf-8 -*-
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

QUALITY_RE = re.compile(r"(\d+)p")


@dataclass(frozen=True)
class AnimeResult:
    id: int
    title: str
    url: str
    year: Optional[int]
    poster: Optional[str]
    type: Optional[str]
    session: str


@dataclass(frozen=True)
class Episode:
    id: int
    number: int
    title: str
    snapshot: Optional[str]
    session: str


@dataclass(frozen=True)
class Source:
    url: str
    quality: Optional[str] = None
    fansub: Optional[str] = None
    audio: Optional[str] = None

    @property
    def resolution(self) -> int:
        """Numeric height from ``quality`` ("720p" -> 720), 0 when unknown."""
        if not self.quality:
            return 0
        m = QUALITY_RE.search(self.quality)
        return int(m.group(1)) if m else 0
