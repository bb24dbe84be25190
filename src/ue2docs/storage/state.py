# src/ue2docs/storage/state.py
import itertools
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

STATUS_IN_FLIGHT = 0
STATUS_FAILED = -1
STATUS_CANCELLED = -2


def is_terminal(status: Optional[int]) -> bool:
    return status is not None and status != STATUS_IN_FLIGHT


@dataclass
class VisitedRecord:
    url: str
    last_status: int
    first_seen_order: int


class VisitedLedger:
    """
    Normalized URL -> last observed status.

    Reads go straight to the dict; writes are serialized so the distinct-URL
    counter moves exactly once per URL. Later marks overwrite the status.
    """

    def __init__(self):
        self._records: Dict[str, VisitedRecord] = {}
        self._order = itertools.count(1)
        self._write_lock = threading.Lock()

    def mark_visited(self, url: str, status: int) -> bool:
        """Returns True when ``url`` was seen for the first time."""
        with self._write_lock:
            rec = self._records.get(url)
            if rec is not None:
                rec.last_status = status
                return False
            self._records[url] = VisitedRecord(url, status, next(self._order))
            return True

    def is_visited(self, url: str) -> bool:
        return url in self._records

    def get_status(self, url: str) -> Optional[int]:
        rec = self._records.get(url)
        return rec.last_status if rec is not None else None

    def is_resolved(self, url: str) -> bool:
        return is_terminal(self.get_status(url))

    @property
    def visited_count(self) -> int:
        return len(self._records)

    def resolved_count(self) -> int:
        """URLs with a real outcome: fetched, failed for good, or out of retries."""
        with self._write_lock:
            return sum(
                1 for r in self._records.values()
                if r.last_status not in (STATUS_IN_FLIGHT, STATUS_CANCELLED)
            )

    def records(self) -> List[VisitedRecord]:
        with self._write_lock:
            return sorted(self._records.values(), key=lambda r: r.first_seen_order)
