from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .errors import InvalidURL

DEFAULT_PORTS = {"http": 80, "https": 443}


def split_url(url: str):
    try:
        return urlsplit(url)
    except ValueError as exc:
        raise InvalidURL(url, f"cannot parse URL ({exc})") from exc


def host_of(parts) -> str:
    """Lowercased host with any non-default port, without userinfo."""
    try:
        port = parts.port
    except ValueError as exc:
        raise InvalidURL(parts.geturl(), f"bad port ({exc})") from exc
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    scheme = parts.scheme.lower()
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"
    return host


def resolve_url(raw: str, base: Optional[str] = None) -> str:
    """
    Absolute form of ``raw`` as it should be requested: resolved against
    ``base``, scheme and host lowercased, default port and query dropped.
    The path is left alone, so a directory URL keeps its trailing slash.

    Raises InvalidURL for unparseable input or input that is still relative.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidURL(raw, "empty URL")
    raw = raw.strip()
    p = split_url(raw)

    if base and not p.scheme:
        try:
            raw = urljoin(base, raw)
        except ValueError as exc:
            raise InvalidURL(raw, f"cannot resolve against {base!r} ({exc})") from exc
        p = split_url(raw)

    if not p.scheme or not p.netloc or not p.hostname:
        raise InvalidURL(raw, "relative URL and no base URL")

    netloc = host_of(p)
    userinfo = p.netloc.rpartition("@")[0]
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((p.scheme.lower(), netloc, p.path, "", p.fragment))


def normalize_url(raw: str, base: Optional[str] = None) -> str:
    """
    Canonical absolute form of ``raw``, the only key URLs are compared by.

    - relative input is resolved against ``base`` when one is given
    - scheme and host are lowercased, default ports (80/443) dropped
    - the query is dropped, the fragment is kept as-is
    - a trailing slash is removed unless the path is exactly "/"
    """
    p = split_url(resolve_url(raw, base))
    path = p.path
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunsplit((p.scheme, p.netloc, path, "", p.fragment))
