import csv
import posixpath
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlparse

import m3u8

from hlsdl.errors import ConfigurationError
from hlsdl.fetcher import Fetcher
from hlsdl.keys import KeyRef


SUPPORTED_METHODS = ("AES-128",)


class Segment(NamedTuple):
    index: int
    uri: str
    key: Optional[KeyRef] = None


class Playlist(NamedTuple):
    segments: List[Segment]
    default_key: Optional[KeyRef]
    source_url: Optional[str]


def format_uri(base: Optional[str], uri: str) -> str:
    if uri.startswith("http"):
        return uri
    if not base:
        raise ConfigurationError(f"relative uri {uri!r} needs the m3u8 url to resolve against")
    return urljoin(base, uri)


def _key_ref(key, base: Optional[str]) -> Optional[KeyRef]:
    if key is None or not key.method or key.method.upper() == "NONE":
        return None
    if key.method.upper() not in SUPPORTED_METHODS:
        raise ConfigurationError(f"unsupported encryption method {key.method}")
    if not key.uri:
        return None
    return KeyRef(format_uri(base, key.uri), key.iv or None)


def parse_playlist(text: str, source_url: Optional[str] = None) -> Playlist:
    """Media playlist text -> ordered segment descriptors with absolute URIs.

    Every segment carries the key in effect at its position, so the stream
    default is left empty here.
    """
    try:
        parsed = m3u8.loads(text)
    except Exception as e:
        raise ConfigurationError(f"parse m3u8 failed: {e}") from e
    if parsed.is_variant:
        raise ConfigurationError("unsupported m3u8 type: master playlist")

    segments: List[Segment] = []
    for index, seg in enumerate(parsed.segments):
        segments.append(Segment(index, format_uri(source_url, seg.uri), _key_ref(seg.key, source_url)))
    return Playlist(segments, None, source_url)


def load_playlist(url: Optional[str] = None, path: Optional[str] = None, fetcher: Optional[Fetcher] = None,
                  headers: Optional[Dict[str, str]] = None, retries: int = 0) -> Playlist:
    # A local file still resolves relative URIs against url when both are given.
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            raise ConfigurationError(f"load m3u8 file failed: {e}") from e
    elif url:
        fetcher = fetcher or Fetcher()
        text = fetcher.fetch(url, headers, retries).decode("utf-8", errors="ignore")
    else:
        raise ConfigurationError("either a m3u8 url or a local m3u8 file is required")
    return parse_playlist(text, url)


def read_in_file(path: str) -> List[Tuple[str, str]]:
    entries: List[Tuple[str, str]] = []
    try:
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
    except (OSError, csv.Error) as e:
        raise ConfigurationError(f"process input file failed: {e}") from e
    for lineno, row in enumerate(rows, 1):
        if not row or not any(cell.strip() for cell in row):
            continue
        if len(row) < 2:
            raise ConfigurationError(f"{path}:{lineno}: expected 'name,url'")
        entries.append((row[0].strip(), row[1].strip()))
    return entries


def filename_from_uri(uri: str) -> str:
    return posixpath.basename(urlparse(uri).path)
