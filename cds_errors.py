from typing import Optional


class CdsError(Exception):
    """Base class for failures while talking to / reading from the CDS."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class UpstreamFetchFailed(CdsError):
    def __init__(self, path: str, status: Optional[int] = None, reason: str = ""):
        self.status = status
        self.reason = reason
        if status is None:
            message = f"Failed to fetch {path}: {reason}"
        else:
            message = f"Failed to fetch {path} ({status} {reason})".rstrip()
        super().__init__(message, path=path)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class EmptyPayload(CdsError):
    def __init__(self, path: Optional[str] = None):
        where = f" for {path}" if path else ""
        super().__init__(f"Received empty gzip payload{where}", path=path)


class DecompressionFailed(CdsError):
    def __init__(self, message: str, path: Optional[str] = None):
        self.decoder_message = message
        super().__init__(f"Failed to decompress gzip data: {message}", path=path)


class NotXml(CdsError):
    def __init__(self, path: Optional[str] = None):
        where = f" for {path}" if path else ""
        super().__init__(f"Decompressed data is not valid XML{where}", path=path)


class MalformedCatalog(CdsError):
    pass


class MalformedBulletin(CdsError):
    pass
