from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from .canonicalize import split_url, host_of, normalize_url
from .errors import InvalidURL


class ResourceType(Enum):
    HTML = "html"
    CSS = "css"
    JS = "js"
    IMAGE = "image"
    FONT = "font"
    OTHER = "other"
    UNKNOWN = "unknown"

    @property
    def weight(self) -> int:
        return WEIGHTS[self]

    @property
    def has_links(self) -> bool:
        return self in (ResourceType.HTML, ResourceType.CSS)


# scheduling hint only; higher pops first
WEIGHTS = {
    ResourceType.HTML: 100,
    ResourceType.CSS: 75,
    ResourceType.JS: 50,
    ResourceType.IMAGE: 25,
    ResourceType.FONT: 15,
    ResourceType.OTHER: 10,
    ResourceType.UNKNOWN: 0,
}

EXTENSIONS = {
    ".html": ResourceType.HTML, ".htm": ResourceType.HTML,
    ".css": ResourceType.CSS,
    ".js": ResourceType.JS, ".mjs": ResourceType.JS,
    ".png": ResourceType.IMAGE, ".jpg": ResourceType.IMAGE, ".jpeg": ResourceType.IMAGE,
    ".gif": ResourceType.IMAGE, ".svg": ResourceType.IMAGE, ".webp": ResourceType.IMAGE,
    ".ico": ResourceType.IMAGE, ".bmp": ResourceType.IMAGE,
    ".woff": ResourceType.FONT, ".woff2": ResourceType.FONT, ".ttf": ResourceType.FONT,
    ".otf": ResourceType.FONT, ".eot": ResourceType.FONT,
    ".pdf": ResourceType.OTHER, ".zip": ResourceType.OTHER, ".tar": ResourceType.OTHER,
    ".gz": ResourceType.OTHER, ".txt": ResourceType.OTHER, ".xml": ResourceType.OTHER,
    ".json": ResourceType.OTHER,
}

FONT_TOKENS = ("font", "woff", "ttf", "otf", "opentype", "truetype", "embedded-opentype")


def weight(resource_type: ResourceType) -> int:
    return WEIGHTS[resource_type]


def _from_content_type(content_type: str) -> Optional[ResourceType]:
    ct = content_type.split(";", 1)[0].strip().lower()
    if not ct:
        return None
    if "text/html" in ct or "application/xhtml" in ct:
        return ResourceType.HTML
    if "text/css" in ct:
        return ResourceType.CSS
    if "javascript" in ct or "ecmascript" in ct:
        return ResourceType.JS
    if ct.startswith("image/"):
        return ResourceType.IMAGE
    if any(tok in ct for tok in FONT_TOKENS):
        return ResourceType.FONT
    return None


def classify(url: str, content_type: Optional[str] = None) -> ResourceType:
    """
    Resource type of ``url``. A recognised content type wins; otherwise the
    path extension decides. A path without an extension is assumed to be an
    HTML index page, an unrecognised extension is UNKNOWN.
    """
    if content_type:
        by_type = _from_content_type(content_type)
        if by_type is not None:
            return by_type
    try:
        path = split_url(url).path
    except InvalidURL:
        return ResourceType.UNKNOWN
    ext = posixpath.splitext(posixpath.basename(path))[1].lower()
    if not ext:
        return ResourceType.HTML
    return EXTENSIONS.get(ext, ResourceType.UNKNOWN)


@dataclass(frozen=True)
class FilterConfig:
    root_domain: str
    root_path_prefix: str
    whitelist_domains: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_root_url(cls, root_url: str, whitelist: Iterable[str] = ()) -> "FilterConfig":
        # the directory comes from the raw path: normalizing drops the trailing slash of "/docs/"
        p = split_url(normalize_url(root_url))
        prefix = posixpath.dirname(split_url(root_url.strip()).path) or "/"
        domains = frozenset(d.strip().lower() for d in whitelist if d and d.strip())
        return cls(root_domain=host_of(p), root_path_prefix=prefix, whitelist_domains=domains)


class DomainFilter:
    """Scope decision for discovered URLs: root host + root directory, or a whitelisted host."""

    def __init__(self, config: FilterConfig):
        self.config = config

    def _in_root_dir(self, path: str) -> bool:
        return path.startswith(self.config.root_path_prefix)

    def is_allowed(self, url: str) -> bool:
        p = split_url(url)
        if not p.scheme or not p.hostname:
            raise InvalidURL(url, "relative URL")
        host = host_of(p)
        if host == self.config.root_domain:
            return self._in_root_dir(p.path or "/")
        wl = self.config.whitelist_domains
        return host in wl or p.hostname.lower() in wl

    def classify(self, url: str, content_type: Optional[str] = None) -> ResourceType:
        return classify(url, content_type)
