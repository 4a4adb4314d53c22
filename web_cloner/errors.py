from typing import Optional


class WebClonerError(Exception):
    """Base class for errors raised by the mirroring engine."""


class ConfigError(WebClonerError):
    pass


class FetchError(WebClonerError):
    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        super().__init__(f"failed to download {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class RenderError(WebClonerError):
    pass


class CaptureParseError(WebClonerError):
    pass
