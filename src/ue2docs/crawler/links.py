import re
from typing import Iterable, Set
from urllib.parse import urldefrag

from bs4 import BeautifulSoup

from .downloader import FetchResult
from .filters import ResourceType

CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]+?)\1\s*\)""", re.I)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.I)
SKIP_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "about:")

LINK_ATTRS = (
    ("a", "href"),
    ("link", "href"),
    ("script", "src"),
    ("img", "src"),
    ("iframe", "src"),
    ("frame", "src"),
    ("source", "src"),
)


def _clean(ref: str):
    ref = (ref or "").strip()
    if not ref or ref.startswith("#"):
        return None
    if ref.lower().startswith(SKIP_SCHEMES):
        return None
    ref = urldefrag(ref)[0]
    return ref or None


def _srcset(value: str) -> Iterable[str]:
    for candidate in value.split(","):
        parts = candidate.strip().split()
        if parts:
            yield parts[0]


def css_links(css: str) -> Set[str]:
    refs = set()
    for rx in (CSS_URL_RE, CSS_IMPORT_RE):
        for m in rx.finditer(css):
            ref = _clean(m.group(2))
            if ref:
                refs.add(ref)
    return refs


def html_links(html: str) -> Set[str]:
    soup = BeautifulSoup(html, "lxml")
    refs = set()
    for tag, attr in LINK_ATTRS:
        for node in soup.find_all(tag):
            ref = _clean(node.get(attr))
            if ref:
                refs.add(ref)
    for node in soup.find_all(["img", "source"], srcset=True):
        for cand in _srcset(node["srcset"]):
            ref = _clean(cand)
            if ref:
                refs.add(ref)
    for style in soup.find_all("style"):
        refs |= css_links(style.get_text())
    for node in soup.find_all(style=True):
        refs |= css_links(node["style"])
    return refs


def extract_links(result: FetchResult) -> Set[str]:
    """Raw, unnormalized references found in an HTML or CSS body."""
    if result.resource_type is ResourceType.HTML:
        return html_links(result.text)
    if result.resource_type is ResourceType.CSS:
        return css_links(result.text)
    return set()
