import threading
from dataclasses import dataclass
from typing import List, Optional, Set

from .filters import ResourceType
from .logger import get_logger

logger = get_logger("queue")


@dataclass(frozen=True)
class FrontierItem:
    url: str
    resource_type: ResourceType
    # what is actually requested; keeps a directory URL's trailing slash
    fetch_url: str = ""

    @property
    def target(self) -> str:
        return self.fetch_url or self.url

    @property
    def weight(self) -> int:
        return self.resource_type.weight


class CrawlQueue:
    """
    Max-priority frontier keyed on resource weight.

    A URL is admitted at most once for the lifetime of the queue: the admission
    set is never cleared, so a URL popped and fully processed is still rejected
    by ``add``. All state is guarded by one lock.
    """

    def __init__(self):
        self._heap: List[FrontierItem] = []
        self._admitted: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, url: str, resource_type: ResourceType, fetch_url: str = "") -> bool:
        with self._lock:
            if url in self._admitted:
                logger.debug("Already admitted: %s", url)
                return False
            self._admitted.add(url)
            self._heap.append(FrontierItem(url, resource_type, fetch_url))
            self._sift_up(len(self._heap) - 1)
        return True

    def pop(self) -> Optional[FrontierItem]:
        with self._lock:
            if not self._heap:
                return None
            top = self._heap[0]
            last = self._heap.pop()
            if self._heap:
                self._heap[0] = last
                self._sift_down(0)
            return top

    def was_admitted(self, url: str) -> bool:
        with self._lock:
            return url in self._admitted

    def __len__(self) -> int:
        # advisory: other workers may change it right after
        with self._lock:
            return len(self._heap)

    def is_empty(self) -> bool:
        return len(self) == 0

    # heap helpers, caller holds the lock

    def _sift_up(self, i: int) -> None:
        heap = self._heap
        item = heap[i]
        while i > 0:
            parent = (i - 1) // 2
            if heap[parent].weight >= item.weight:
                break
            heap[i] = heap[parent]
            i = parent
        heap[i] = item

    def _sift_down(self, i: int) -> None:
        heap = self._heap
        n = len(heap)
        item = heap[i]
        while True:
            left = 2 * i + 1
            if left >= n:
                break
            right = left + 1
            child = left
            if right < n and heap[right].weight > heap[left].weight:
                child = right
            if heap[child].weight <= item.weight:
                break
            heap[i] = heap[child]
            i = child
        heap[i] = item
