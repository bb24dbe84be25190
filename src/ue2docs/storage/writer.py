import csv
import posixpath
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict
from urllib.parse import unquote, urlsplit

from ..config import MANIFEST_NAME
from ..crawler.downloader import FetchResult
from ..crawler.logger import get_logger
from .schema import MANIFEST_COLUMNS

logger = get_logger("writer")


def local_path(url: str) -> Path:
    """<host>/<path> for ``url``; the root and extensionless paths map to <path>/index.html."""
    p = urlsplit(url)
    path = unquote(p.path)
    parts = [seg for seg in posixpath.normpath("/" + path).split("/") if seg not in ("", ".", "..")]
    if not parts or "." not in parts[-1]:
        parts.append("index.html")
    return Path(p.netloc.replace(":", "_"), *parts)


class MirrorWriter:
    """Result sink: stores bodies under ``output_dir`` and logs each one in a CSV manifest."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.manifest_path = self.output_dir / MANIFEST_NAME
        self._lock = threading.Lock()
        self.saved = 0
        if not self.manifest_path.exists():
            with open(self.manifest_path, "w", encoding="utf-8", newline="") as f:
                csv.DictWriter(f, fieldnames=MANIFEST_COLUMNS).writeheader()

    def __call__(self, url: str, result: FetchResult) -> Path:
        return self.save(url, result)

    def save(self, url: str, result: FetchResult) -> Path:
        rel = local_path(url)
        target = self.output_dir / rel
        row = {
            "url": url,
            "status_code": result.status_code,
            "content_type": result.content_type,
            "resource_type": result.resource_type.value,
            "bytes": len(result.body),
            "saved_path": rel.as_posix(),
            "fetched_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(result.body)
            self._append_manifest(row)
            self.saved += 1
        logger.debug("Saved %s -> %s", url, target)
        return target

    def _append_manifest(self, row: Dict) -> None:
        # caller holds the lock
        with open(self.manifest_path, "a", encoding="utf-8", newline="") as f:
            csv.DictWriter(f, fieldnames=MANIFEST_COLUMNS).writerow(row)
