import time
from typing import Dict, List, Optional, Tuple

import requests

from hlsdl.errors import ProtocolError, TransportError


DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 30
MAX_BACKOFF = 10.0


def parse_header_args(values: List[str]) -> Dict[str, str]:
    # "Referer: http://example.com" -> {"Referer": "http://example.com"}
    headers: Dict[str, str] = {}
    for header in values:
        key, sep, value = header.partition(":")
        key = key.rstrip(" ")
        if not key:
            continue
        headers[key] = value.lstrip(" ") if sep else ""
    return headers


def build_headers(user_agent: Optional[str], referer: Optional[str], extra_headers: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {
        "User-Agent": user_agent or DEFAULT_UA,
        "Accept": "*/*",
        "Accept-Encoding": "identity",
        "Connection": "keep-alive",
    }
    if referer:
        headers["Referer"] = referer
        headers["Origin"] = referer
    headers.update(parse_header_args(extra_headers))
    return headers


class Fetcher:
    """HTTP GET with a bounded retry budget.

    A fetch is retried on transport errors, non-2xx status codes and empty
    bodies. ``retries`` is the number of additional attempts, so a budget of 3
    means at most 4 requests for one URI.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, proxy: Optional[str] = None,
                 session: Optional[requests.Session] = None, backoff: float = 0.0):
        self.timeout = timeout
        self.proxies = {"http": proxy, "https": proxy} if proxy else None
        self.session = session or requests.Session()
        self.backoff = backoff

    def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> Tuple[int, bytes]:
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout, proxies=self.proxies)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"GET {url}: {e}") from e
        return resp.status_code, resp.content

    def fetch(self, url: str, headers: Optional[Dict[str, str]] = None, retries: int = 0) -> bytes:
        last_error: Exception = ProtocolError(f"GET {url}: no attempt made")
        for attempt in range(max(retries, 0) + 1):
            try:
                status, data = self.get(url, headers)
            except TransportError as e:
                last_error = e
            else:
                if status // 100 == 2 and data:
                    return data
                if status // 100 == 2:
                    last_error = ProtocolError(f"GET {url}: empty body", status)
                else:
                    last_error = ProtocolError(f"GET {url}: http code {status}", status)
            if attempt < retries and self.backoff > 0:
                time.sleep(min(self.backoff * (2 ** attempt), MAX_BACKOFF))
        raise last_error

    def close(self) -> None:
        self.session.close()
