"""Source classification from release-name keywords and bitrate density.

Keyword evidence wins: a web-release tag means WEB_LIKE, a disc-release tag
means DISC_LIKE (web tags are checked first). Without tags, the first video
stream's bitrate per megapixel decides, with 6000 kbps/MP as the boundary.
Anything that cannot be measured is UNKNOWN.
"""

import re
from pathlib import Path
from typing import FrozenSet
from av1d.domain.models import ProbeResult, SourceType

WEB_KEYWORDS: FrozenSet[str] = frozenset({
    "webrip", "web-rip", "webdl", "web-dl", "amzn", "amazon", "nf", "netflix",
    "hulu", "dsnp", "disney", "atvp", "appletv", "hmax", "hbo", "pcok", "peacock",
    "pmtp", "paramount", "stan", "it", "hdtv", "pdtv", "webhd", "web", "streaming",
})
# Multi-token web tags ("web.dl", "web.rip") are matched on the joined name
WEB_PHRASES = ("web.dl", "web.rip")

DISC_KEYWORDS: FrozenSet[str] = frozenset({
    "bluray", "blu-ray", "bdrip", "bd-rip", "brrip", "br-rip", "remux", "bdremux",
    "dvdrip", "dvd-rip", "dvd", "uhd", "ultrahd", "hddvd", "hd-dvd",
})
DISC_PHRASES = ("bd.remux", "4k.uhd")

WEB_KBPS_PER_MEGAPIXEL = 6000.0

_TOKEN_SPLIT = re.compile(r"[^a-z0-9-]+")


def release_name(path: Path) -> str:
    """Lowercased file name and its parent directory, where release tags live."""
    return f"{path.parent.name}/{path.name}".lower()


def _tokens(text: str) -> FrozenSet[str]:
    return frozenset(t for t in _TOKEN_SPLIT.split(text) if t)


def _has_keyword(text: str, tokens: FrozenSet[str], keywords: FrozenSet[str], phrases) -> bool:
    return bool(tokens & keywords) or any(p in text for p in phrases)


def kbps_per_megapixel(probe: ProbeResult) -> float:
    """Bitrate density of the first video stream, 0.0 when it cannot be computed."""
    stream = probe.first_video
    if stream is None or not stream.bitrate_kbps or stream.width <= 0 or stream.height <= 0:
        return 0.0
    megapixels = (stream.width * stream.height) / 1_000_000.0
    return stream.bitrate_kbps / megapixels


def classify_source(path: Path, probe: ProbeResult) -> SourceType:
    text = release_name(path)
    tokens = _tokens(text)
    if _has_keyword(text, tokens, WEB_KEYWORDS, WEB_PHRASES):
        return SourceType.WEB_LIKE
    if _has_keyword(text, tokens, DISC_KEYWORDS, DISC_PHRASES):
        return SourceType.DISC_LIKE

    ratio = kbps_per_megapixel(probe)
    if ratio <= 0:
        return SourceType.UNKNOWN
    if ratio < WEB_KBPS_PER_MEGAPIXEL:
        return SourceType.WEB_LIKE
    return SourceType.DISC_LIKE
