import binascii
import threading
from typing import Dict, NamedTuple, Optional

from hlsdl.errors import DecryptionError, DownloadError, KeyResolutionError
from hlsdl.fetcher import Fetcher


IV_SIZE = 16


class KeyRef(NamedTuple):
    uri: str
    iv: Optional[str] = None


def resolve_iv(key: KeyRef, index: int) -> bytes:
    """Explicit hex IV from the playlist, else the segment index as a big-endian block."""
    if key.iv:
        value = key.iv.strip()
        if value[:2].lower() == "0x":
            value = value[2:]
        try:
            iv = binascii.unhexlify(value)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"decode iv {key.iv!r} failed: {e}") from e
        if len(iv) != IV_SIZE:
            raise DecryptionError(f"iv {key.iv!r} is {len(iv)} bytes, expected {IV_SIZE}")
        return iv
    return bytes(IV_SIZE - 1) + bytes([index % 256])


class KeyCache:
    """Decryption keys by URI, fetched at most once per cache."""

    def __init__(self, fetcher: Fetcher, headers: Optional[Dict[str, str]] = None, retries: int = 0):
        self.fetcher = fetcher
        self.headers = headers
        self.retries = retries
        self.fetch_count = 0
        self._keys: Dict[str, bytes] = {}
        self._uri_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def __contains__(self, uri: str) -> bool:
        with self._lock:
            return uri in self._keys

    def _uri_lock(self, uri: str) -> threading.Lock:
        with self._lock:
            lock = self._uri_locks.get(uri)
            if lock is None:
                lock = self._uri_locks[uri] = threading.Lock()
            return lock

    def get_key(self, uri: str) -> bytes:
        with self._lock:
            key = self._keys.get(uri)
        if key is not None:
            return key

        # Only requesters of this uri wait here; other uris fetch in parallel.
        with self._uri_lock(uri):
            with self._lock:
                key = self._keys.get(uri)
            if key is not None:
                return key
            try:
                key = self.fetcher.fetch(uri, self.headers, self.retries)
            except DownloadError as e:
                raise KeyResolutionError(f"download key {uri} failed: {e}") from e
            with self._lock:
                self.fetch_count += 1
                self._keys[uri] = key
            return key
