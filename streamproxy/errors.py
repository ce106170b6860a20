from datetime import datetime, timezone


def utc_timestamp():
    return datetime.now(timezone.utc).isoformat()


class ProxyError(Exception):
    """Base class for every failure that ends up as a structured JSON response."""

    status = 500
    reason = "Internal Server Error"

    def __init__(self, message, status=None, reason=None, **extra):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        if reason is not None:
            self.reason = reason
        self.extra = extra
        self.timestamp = utc_timestamp()

    @property
    def error(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body = {
            "error": self.error,
            "message": self.message,
            "status": self.status,
            "timestamp": self.timestamp,
        }
        body.update(self.extra)
        return body


class InvalidInput(ProxyError):
    status = 400
    reason = "Bad Request"


class MissingParameter(InvalidInput):
    pass


class InvalidURL(InvalidInput):
    pass


class UpstreamError(ProxyError):
    """Non-2xx answer or network failure from the origin. The status is the origin's own."""

    status = 502
    reason = "Bad Gateway"


class UpstreamTimeout(ProxyError):
    status = 504
    reason = "Gateway Timeout"


class InternalError(ProxyError):
    pass
