"""
Full-sync orchestrator.

Rebuilds an owner's persisted calendar from scratch:
1. Clear the owner's cached events
2. Fetch and reconcile tracked titles in sequential batches
3. Persist each batch through the cache writer as it completes
4. Mark the owner fully synced and bump the cache epoch
"""

import contextvars
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Event, Lock
from typing import Callable, Dict, List, Optional, Tuple

from tqdm import tqdm

from .cache_writer import CacheWriter
from .collector import CandidateCollector
from .config import Config
from .database import CalendarStore
from .exceptions import ProviderAuthError, StoreError, SyncAlreadyRunningError
from .models import (
    CalendarSettings,
    ReconciledEvent,
    SyncProgress,
    SyncResult,
    SyncState,
    TitleFailure,
    TrackedTitle,
)
from .providers import TMDBAdapter, TraktAdapter, TVMazeAdapter
from .reconciler import Reconciler
from .request_pipeline import RequestPipeline
from .utils import Timer, chunked, generate_run_id, run_id_var, setup_logger

RETRY_RECOMMENDATION = "Retry the whole run; the cache was cleared and is only partially rebuilt."

ProgressCallback = Callable[[int, int], None]


def dedupe_titles(titles: List[TrackedTitle]) -> List[TrackedTitle]:
    """Drop repeated (media_kind, id) titles, keeping the first occurrence."""
    seen = set()
    unique = []
    for title in titles:
        if title.key in seen:
            continue
        seen.add(title.key)
        unique.append(title)
    return unique


class FullSyncOrchestrator:
    """
    Runs full syncs, at most one at a time per owner.

    Usage:
        orchestrator = FullSyncOrchestrator.from_config(config, store)
        result = orchestrator.run(owner_id, titles, settings)
    """

    def __init__(
        self,
        collector: CandidateCollector,
        reconciler: Reconciler,
        store: CalendarStore,
        writer: Optional[CacheWriter] = None,
        batch_size: int = 3,
        show_progress: bool = False,
        log_dir=None,
        pipeline: Optional[RequestPipeline] = None,
    ):
        """
        Args:
            pipeline: Request pipeline owned by this orchestrator, shut down
                by close(). Leave unset when the caller manages it.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.pipeline = pipeline
        self.collector = collector
        self.reconciler = reconciler
        self.store = store
        self.writer = writer or CacheWriter(store, log_dir=log_dir)
        self.batch_size = batch_size
        self.show_progress = show_progress
        self.logger = setup_logger("full_sync", log_dir)

        self._registry_lock = Lock()
        self._owner_locks: Dict[str, Lock] = {}
        self._cancel_flags: Dict[str, Event] = {}
        self._progress: Dict[str, SyncProgress] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: CalendarStore,
        pipeline: Optional[RequestPipeline] = None,
    ) -> "FullSyncOrchestrator":
        """
        Wire up the pipeline, adapters, reconciler and writer from config.

        A pipeline created here belongs to the orchestrator; a passed-in
        one is left to the caller.
        """
        owned = None
        if pipeline is None:
            pipeline = owned = RequestPipeline.from_config(config)
        history = TraktAdapter(pipeline, config) if config.history_enabled else None
        collector = CandidateCollector(
            TMDBAdapter(pipeline, config),
            precise=TVMazeAdapter(pipeline, config),
            history=history,
            log_dir=config.log_dir,
        )
        return cls(
            collector,
            Reconciler.from_config(config),
            store,
            writer=CacheWriter.from_config(store, config),
            batch_size=config.sync_batch_size,
            show_progress=config.show_progress,
            log_dir=config.log_dir,
            pipeline=owned,
        )

    def close(self) -> None:
        """Shut down the owned request pipeline, if any."""
        if self.pipeline is not None:
            self.pipeline.shutdown()
            self.pipeline = None

    def __enter__(self) -> "FullSyncOrchestrator":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ============ RUN CONTROL ============

    def _owner_lock(self, owner_id: str) -> Lock:
        with self._registry_lock:
            if owner_id not in self._owner_locks:
                self._owner_locks[owner_id] = Lock()
            return self._owner_locks[owner_id]

    def is_running(self, owner_id: str) -> bool:
        return self._owner_lock(owner_id).locked()

    def get_progress(self, owner_id: str) -> Optional[Tuple[int, int]]:
        """(current, total) of the owner's current or last run, None if never run."""
        with self._registry_lock:
            progress = self._progress.get(owner_id)
        return progress.snapshot() if progress else None

    def cancel(self, owner_id: str) -> bool:
        """
        Request cancellation of the owner's running sync.

        Honoured at the next batch boundary; the batch in flight finishes and
        is persisted.

        Returns:
            True if a run was signalled
        """
        with self._registry_lock:
            flag = self._cancel_flags.get(owner_id)
        if flag is None:
            return False
        self.logger.info(f"Cancellation requested for {owner_id}")
        flag.set()
        return True

    def run(
        self,
        owner_id: str,
        titles: List[TrackedTitle],
        settings: Optional[CalendarSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """
        Run a full sync for one owner.

        Args:
            owner_id: Owner whose cache is rebuilt
            titles: The owner's tracked titles
            settings: Owner's calendar settings
            on_progress: Called with (current, total) after each batch

        Returns:
            SyncResult; Failed runs carry the error and a recommendation

        Raises:
            SyncAlreadyRunningError: A sync is already running for this owner
            ProviderAuthError: A provider rejected our credentials
        """
        lock = self._owner_lock(owner_id)
        if not lock.acquire(blocking=False):
            raise SyncAlreadyRunningError(owner_id)
        try:
            return self._run(owner_id, titles, settings or CalendarSettings(), on_progress)
        finally:
            lock.release()

    # ============ RUN ============

    def _run(
        self,
        owner_id: str,
        titles: List[TrackedTitle],
        settings: CalendarSettings,
        on_progress: Optional[ProgressCallback],
    ) -> SyncResult:
        run_id = generate_run_id()
        token = run_id_var.set(run_id)

        progress = SyncProgress()
        cancel_flag = Event()
        with self._registry_lock:
            self._progress[owner_id] = progress
            self._cancel_flags[owner_id] = cancel_flag

        result = SyncResult(
            owner_id=owner_id,
            run_id=run_id,
            state=SyncState.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        titles = dedupe_titles(titles)
        bar = tqdm(total=len(titles), desc="Syncing", unit="title", disable=not self.show_progress)

        self.logger.info(f"Starting full sync for {owner_id}: {len(titles)} titles")
        try:
            with Timer("Full sync") as timer:
                self.store.delete_owner_events(owner_id)
                progress.reset(len(titles))

                with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="sync") as executor:
                    batches = list(chunked(titles, self.batch_size))
                    for index, batch in enumerate(batches, 1):
                        if cancel_flag.is_set():
                            result.state = SyncState.CANCELLED
                            self.logger.info(f"Cancelled before batch {index}/{len(batches)}")
                            break

                        events, failures, auth_error = self._process_batch(executor, owner_id, batch, settings)
                        result.failed_titles.extend(failures)
                        result.events_written += self._persist_batch(owner_id, batch, events)
                        if auth_error is not None:
                            raise auth_error

                        progress.advance(len(batch))
                        bar.update(len(batch))
                        if on_progress is not None:
                            on_progress(*progress.snapshot())
                        self.logger.info(
                            f"Batch {index}/{len(batches)}: {len(events)} events, {len(failures)} failed titles"
                        )

                if result.state == SyncState.RUNNING:
                    self.store.mark_full_sync(owner_id, datetime.now(timezone.utc))
                    self.store.bump_cache_epoch(owner_id)
                    result.state = SyncState.COMPLETED
            self.logger.info(str(timer))

        except StoreError as e:
            self.logger.error(f"Full sync for {owner_id} failed on store: {e}")
            result.state = SyncState.FAILED
            result.error = str(e)
            result.recommendation = RETRY_RECOMMENDATION

        except ProviderAuthError as e:
            self.logger.error(f"Full sync for {owner_id} stopped: {e}")
            result.state = SyncState.FAILED
            result.error = str(e)
            raise

        finally:
            bar.close()
            result.progress_current, result.progress_total = progress.snapshot()
            result.finished_at = datetime.now(timezone.utc)
            with self._registry_lock:
                self._cancel_flags.pop(owner_id, None)
            self.logger.info(f"Full sync for {owner_id} finished\n{result}")
            run_id_var.reset(token)

        return result

    def _process_batch(
        self,
        executor: ThreadPoolExecutor,
        owner_id: str,
        batch: List[TrackedTitle],
        settings: CalendarSettings,
    ) -> Tuple[List[ReconciledEvent], List[TitleFailure], Optional[ProviderAuthError]]:
        """
        Fetch and reconcile a batch of titles concurrently.

        Returns:
            (events in title order, per-title failures, first auth error)
        """
        futures = [
            executor.submit(contextvars.copy_context().run, self.sync_title, owner_id, title, settings)
            for title in batch
        ]

        events: List[ReconciledEvent] = []
        failures: List[TitleFailure] = []
        auth_error = None
        for title, future in zip(batch, futures):
            try:
                events.extend(future.result())
            except ProviderAuthError as e:
                auth_error = auth_error or e
            except Exception as e:
                self.logger.warning(f"Title {title.media_kind.value} {title.id} ({title.name}) failed: {e}")
                failures.append(TitleFailure(title.id, title.media_kind, title.name, str(e)))
        return events, failures, auth_error

    def _persist_batch(self, owner_id: str, batch: List[TrackedTitle], events: List[ReconciledEvent]) -> int:
        """
        Write a batch's events, all or nothing per title.

        Chunks of a failed batch that did commit are removed again, so the
        cache only ever holds whole batches.

        Raises:
            StoreError: The batch could not be written
        """
        try:
            return self.writer.upsert(owner_id, events)
        except StoreError:
            self._discard_batch(owner_id, batch)
            raise

    def _discard_batch(self, owner_id: str, batch: List[TrackedTitle]) -> None:
        for title in batch:
            try:
                self.store.delete_title_events(owner_id, title.id, title.media_kind)
            except StoreError as e:
                self.logger.error(
                    f"Could not remove partial events of {title.media_kind.value} {title.id} for {owner_id}: {e}"
                )

    def sync_title(self, owner_id: str, title: TrackedTitle, settings: CalendarSettings) -> List[ReconciledEvent]:
        """Collect and reconcile every unit of one title."""
        collected = self.collector.collect(
            title,
            region=settings.region or title.region,
            include_specials=not settings.ignore_specials,
        )
        return self.reconciler.reconcile_title(
            owner_id,
            title,
            collected.candidates,
            settings,
            precise_region=collected.precise_region,
            details=collected.details,
        )


def untrack_title(store: CalendarStore, owner_id: str, title: TrackedTitle) -> int:
    """
    Remove an untracked title's events and invalidate the owner's read cache.

    Returns:
        Number of events deleted
    """
    deleted = store.delete_title_events(owner_id, title.id, title.media_kind)
    store.bump_cache_epoch(owner_id)
    return deleted
