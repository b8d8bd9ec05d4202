"""Log-safe handling of RPC endpoints."""

from urllib.parse import urlsplit, urlunsplit

LOCAL_RPC_URL = "http://127.0.0.1:8899"


def redacted(url: str) -> str:
    """Drop query strings and credentials so a URL can be printed or logged."""
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    if parts.username or parts.password:
        netloc = f"***@{netloc}"
    query = "***REDACTED***" if parts.query else ""
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))


def is_local(url: str) -> bool:
    return (urlsplit(url).hostname or "") in {"127.0.0.1", "localhost", "0.0.0.0"}


__all__ = ["LOCAL_RPC_URL", "redacted", "is_local"]
