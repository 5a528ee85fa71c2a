import threading
from typing import Callable, Dict, List

import pytest
import requests
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from hlsdl.fetcher import Fetcher


class FakeResponse:
    def __init__(self, status_code: int, content: bytes):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """Stands in for requests.Session.

    A route is bytes (always 200), a list of (status, body) answers consumed
    in turn (the last one repeats), an exception instance to raise, or a
    callable returning (status, body).
    """

    def __init__(self, routes: Dict[str, object]):
        self.routes = dict(routes)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)

    def get(self, url, headers=None, timeout=None, proxies=None):
        with self._lock:
            self.calls.append(url)
            seen = self.calls.count(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"")
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, bytes):
            return FakeResponse(200, route)
        if isinstance(route, list):
            status, body = route[min(seen, len(route)) - 1]
            return FakeResponse(status, body)
        status, body = route(url)
        return FakeResponse(status, body)

    def close(self):
        pass


@pytest.fixture
def fake_fetcher() -> Callable[..., Fetcher]:
    def make(routes: Dict[str, object], **kwargs) -> Fetcher:
        return Fetcher(session=FakeSession(routes), **kwargs)
    return make


@pytest.fixture
def encrypt() -> Callable[[bytes, bytes, bytes], bytes]:
    def _encrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
        return AES.new(key, AES.MODE_CBC, iv=iv).encrypt(pad(data, AES.block_size))
    return _encrypt


@pytest.fixture
def connection_error() -> requests.exceptions.ConnectionError:
    return requests.exceptions.ConnectionError("connection reset")
