from typing import Optional


class DownloadError(Exception):
    pass


class TransportError(DownloadError):
    """Network level failure: connection refused, reset, timeout."""


class ProtocolError(DownloadError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class KeyResolutionError(DownloadError):
    pass


class DecryptionError(DownloadError):
    pass


class ConfigurationError(DownloadError):
    pass


class ReassemblyError(DownloadError):
    pass


class SegmentError(DownloadError):
    """Terminal failure of one segment; aborts the whole job."""

    def __init__(self, index: int, uri: str, cause: BaseException):
        super().__init__(f"segment {index} ({uri}): {cause}")
        self.index = index
        self.uri = uri
        self.cause = cause
