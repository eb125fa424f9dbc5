"""
Cache writer.

Persists reconciled events through a CalendarStore in bounded chunks,
last write wins per event key.
"""

from collections import OrderedDict
from typing import List, Optional

from .config import Config
from .database import CalendarStore
from .exceptions import StoreError
from .models import ReconciledEvent
from .utils import Clock, chunked, setup_logger


class CacheWriter:
    """
    Chunked, retried upsert of one owner's events.

    A failed chunk is retried up to `max_chunk_retries` times. Chunks already
    written stay written when a later chunk gives up; callers that need a
    call to be all or nothing remove them again.
    """

    def __init__(
        self,
        store: CalendarStore,
        chunk_size: int = 100,
        max_chunk_retries: int = 3,
        retry_wait: float = 1.0,
        clock: Optional[Clock] = None,
        log_dir=None,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.store = store
        self.chunk_size = chunk_size
        self.max_chunk_retries = max_chunk_retries
        self.retry_wait = retry_wait
        self.clock = clock or Clock()
        self.logger = setup_logger("cache_writer", log_dir)

    @classmethod
    def from_config(cls, store: CalendarStore, config: Config, clock: Optional[Clock] = None) -> "CacheWriter":
        return cls(
            store,
            chunk_size=config.cache_chunk_size,
            max_chunk_retries=config.cache_chunk_retries,
            clock=clock,
            log_dir=config.log_dir,
        )

    @staticmethod
    def dedupe(events: List[ReconciledEvent]) -> List[ReconciledEvent]:
        """Collapse events sharing a key; the later one wins, first position kept."""
        by_key = OrderedDict()
        for event in events:
            by_key[event.key] = event
        return list(by_key.values())

    def upsert(self, owner_id: str, events: List[ReconciledEvent]) -> int:
        """
        Write events for an owner.

        Args:
            owner_id: Owner every event must belong to
            events: Events to write (duplicates by key allowed)

        Returns:
            Number of distinct events written

        Raises:
            ValueError: An event belongs to another owner
            StoreError: A chunk still failed after its retries
        """
        foreign = [e for e in events if e.owner_id != owner_id]
        if foreign:
            raise ValueError(f"{len(foreign)} events do not belong to owner {owner_id}")

        events = self.dedupe(events)
        written = 0
        for index, chunk in enumerate(chunked(events, self.chunk_size)):
            written += self._write_chunk(owner_id, index, chunk)
        return written

    def _write_chunk(self, owner_id: str, index: int, chunk: List[ReconciledEvent]) -> int:
        attempt = 0
        while True:
            try:
                self.store.upsert_events(chunk)
                return len(chunk)
            except StoreError as e:
                attempt += 1
                if attempt > self.max_chunk_retries:
                    self.logger.error(
                        f"Chunk {index} ({len(chunk)} events) for {owner_id} failed after "
                        f"{self.max_chunk_retries} retries: {e}"
                    )
                    raise
                self.logger.warning(
                    f"Chunk {index} for {owner_id} failed (attempt {attempt}/{self.max_chunk_retries}), "
                    f"retrying in {self.retry_wait}s: {e}"
                )
                self.clock.sleep(self.retry_wait)
