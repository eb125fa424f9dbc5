"""
Shared fixtures for release sync tests.

Provides an in-memory calendar store, mock providers, a fake clock and
sample data builders.
"""

import pytest
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import create_engine

from release_sync.collector import CandidateCollector
from release_sync.database import CalendarStore, SQLCalendarStore
from release_sync.exceptions import StoreError
from release_sync.models import (
    SCHEDULE_ALTERNATE,
    SCHEDULE_DEFAULT,
    CandidateDate,
    CandidateSource,
    MediaKind,
    ReconciledEvent,
    SeasonSummary,
    ShowDetails,
    TrackedTitle,
)
from release_sync.providers import MazeShow
from release_sync.reconciler import Reconciler


# =============================================================================
# SAMPLE DATA
# =============================================================================

def create_sample_title(
    title_id: int,
    name: Optional[str] = None,
    media_kind: MediaKind = MediaKind.SERIES,
    **kwargs,
) -> TrackedTitle:
    """Create a sample TrackedTitle for testing."""
    return TrackedTitle(
        id=title_id,
        media_kind=media_kind,
        name=name or f"Title {title_id}",
        poster_path=f"/poster_{title_id}.jpg",
        backdrop_path=f"/backdrop_{title_id}.jpg",
        **kwargs,
    )


def create_sample_show(
    show_id: int,
    seasons: Tuple[int, ...] = (1,),
    imdb_id: Optional[str] = None,
) -> ShowDetails:
    """Create sample ShowDetails with the given season numbers."""
    return ShowDetails(
        id=show_id,
        name=f"Title {show_id}",
        poster_path=f"/show_poster_{show_id}.jpg",
        backdrop_path=f"/show_backdrop_{show_id}.jpg",
        seasons=[SeasonSummary(season_number=n, episode_count=10) for n in seasons],
        imdb_id=imdb_id or f"tt{show_id:07d}",
    )


def episode(
    source: CandidateSource,
    raw: str,
    season: int = 1,
    number: int = 1,
    schedule: str = SCHEDULE_DEFAULT,
    name: Optional[str] = None,
) -> CandidateDate:
    """Create an episode candidate."""
    return CandidateDate(
        source=source,
        raw=raw,
        season=season,
        episode=number,
        schedule=schedule,
        episode_name=name,
    )


def release(raw: str, subtype: str, country: str) -> CandidateDate:
    """Create a primary-source movie release candidate."""
    return CandidateDate(
        source=CandidateSource.PRIMARY,
        raw=raw,
        release_subtype=subtype,
        country=country,
    )


def create_sample_event(
    owner_id: str,
    title_id: int,
    season: int = 1,
    number: int = 1,
    air_date: str = "2025-01-01",
    **kwargs,
) -> ReconciledEvent:
    """Create a sample ReconciledEvent for testing."""
    return ReconciledEvent(
        owner_id=owner_id,
        title_id=title_id,
        media_kind=kwargs.pop("media_kind", MediaKind.SERIES),
        season_number=season,
        episode_number=number,
        air_date=air_date,
        source=kwargs.pop("source", CandidateSource.PRIMARY),
        title_name=kwargs.pop("title_name", f"Title {title_id}"),
        **kwargs,
    )


# =============================================================================
# FAKE CLOCK / HTTP
# =============================================================================

class FakeClock:
    """Clock that records sleeps and advances virtual time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self._lock = Lock()
        self.time = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        with self._lock:
            return self.time

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self.time += seconds

    @property
    def waits(self) -> List[float]:
        """Sleeps that actually waited."""
        return [s for s in self.sleeps if s > 0]


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, json_data=None, headers: Optional[dict] = None, content: bytes = None):
        self.status_code = status_code
        self.headers = headers or {}
        self._json = json_data
        if content is None:
            content = b"" if json_data is None else b"{...}"
        self.content = content

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


def response_sequence(*responses) -> Callable[[], FakeResponse]:
    """Call that returns (or raises) the given responses in order, repeating the last."""
    remaining = list(responses)
    calls = []

    def call():
        calls.append(1)
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, Exception):
            raise item
        return item

    call.calls = calls
    return call


# =============================================================================
# MOCK STORE
# =============================================================================

class MockCalendarStore(CalendarStore):
    """In-memory calendar store for testing."""

    def __init__(self):
        self._lock = Lock()
        self.events: Dict[tuple, ReconciledEvent] = {}
        self.full_sync: Dict[str, str] = {}
        self.epochs: Dict[str, int] = {}
        self.upsert_calls: List[List[ReconciledEvent]] = []

        # Failure injection
        self.fail_upserts_from: Optional[int] = None  # 1-based upsert call that starts failing
        self.fail_upsert_times: Optional[int] = None  # How many failures before recovering
        self.fail_delete = False
        self.fail_mark = False
        self._upsert_failures = 0

    def upsert_events(self, events: List[ReconciledEvent]) -> int:
        with self._lock:
            self.upsert_calls.append(list(events))
            call_number = len(self.upsert_calls)
            if self.fail_upserts_from is not None and call_number >= self.fail_upserts_from:
                if self.fail_upsert_times is None or self._upsert_failures < self.fail_upsert_times:
                    self._upsert_failures += 1
                    raise StoreError("simulated store outage")
            for event in events:
                self.events[event.key] = event
            return len(events)

    def delete_owner_events(self, owner_id: str) -> int:
        if self.fail_delete:
            raise StoreError("simulated delete failure")
        with self._lock:
            keys = [k for k in self.events if k[0] == owner_id]
            for key in keys:
                del self.events[key]
            return len(keys)

    def delete_title_events(self, owner_id: str, title_id: int, media_kind: MediaKind) -> int:
        with self._lock:
            keys = [
                k for k in self.events
                if k[0] == owner_id and k[1] == title_id and k[2] == media_kind.value
            ]
            for key in keys:
                del self.events[key]
            return len(keys)

    def read_owner_events(self, owner_id: str) -> List[ReconciledEvent]:
        with self._lock:
            return [e for k, e in self.events.items() if k[0] == owner_id]

    def mark_full_sync(self, owner_id: str, when=None) -> None:
        if self.fail_mark:
            raise StoreError("simulated marker failure")
        self.full_sync[owner_id] = when.isoformat() if when else "now"

    def is_full_sync_completed(self, owner_id: str) -> bool:
        return owner_id in self.full_sync

    def get_cache_epoch(self, owner_id: str) -> int:
        return self.epochs.get(owner_id, 0)

    def bump_cache_epoch(self, owner_id: str) -> int:
        self.epochs[owner_id] = self.epochs.get(owner_id, 0) + 1
        return self.epochs[owner_id]


# =============================================================================
# MOCK PROVIDERS
# =============================================================================

class MockPrimaryProvider:
    """Mock TMDB adapter backed by dictionaries."""

    name = "tmdb"

    def __init__(self):
        self.shows: Dict[int, ShowDetails] = {}
        self.seasons: Dict[Tuple[int, int], List[CandidateDate]] = {}
        self.movies: Dict[int, List[CandidateDate]] = {}
        self.errors: Dict[int, Exception] = {}
        self.season_errors: Dict[Tuple[int, int], Exception] = {}
        self.on_fetch: Optional[Callable[[int], None]] = None
        self.fetched: List[int] = []
        self.season_requests: List[Tuple[int, int]] = []
        self._lock = Lock()

    def add_show(self, details: ShowDetails, candidates: List[CandidateDate]) -> None:
        self.shows[details.id] = details
        for candidate in candidates:
            self.seasons.setdefault((details.id, candidate.season), []).append(candidate)

    def _fetch(self, title_id: int) -> None:
        with self._lock:
            self.fetched.append(title_id)
        if self.on_fetch is not None:
            self.on_fetch(title_id)
        if title_id in self.errors:
            raise self.errors[title_id]

    def get_show(self, show_id: int) -> Optional[ShowDetails]:
        self._fetch(show_id)
        return self.shows.get(show_id)

    def get_season_candidates(self, show_id: int, season_number: int) -> List[CandidateDate]:
        with self._lock:
            self.season_requests.append((show_id, season_number))
        if (show_id, season_number) in self.season_errors:
            raise self.season_errors[(show_id, season_number)]
        return list(self.seasons.get((show_id, season_number), []))

    def get_movie_release_candidates(self, movie_id: int) -> List[CandidateDate]:
        self._fetch(movie_id)
        return list(self.movies.get(movie_id, []))


class MockPrecisionProvider:
    """Mock TVmaze adapter."""

    name = "tvmaze"

    def __init__(self):
        self.shows: Dict[str, MazeShow] = {}
        self.episodes: Dict[int, List[CandidateDate]] = {}
        self.alternates: Dict[Tuple[int, str], List[CandidateDate]] = {}
        self.error: Optional[Exception] = None
        self.alternate_requests: List[Tuple[int, str]] = []

    def lookup_show(self, imdb_id=None, tvdb_id=None) -> Optional[MazeShow]:
        if self.error is not None:
            raise self.error
        return self.shows.get(imdb_id)

    def get_episode_candidates(self, maze_id: int) -> List[CandidateDate]:
        return list(self.episodes.get(maze_id, []))

    def get_alternate_candidates(self, maze_id: int, region: str) -> List[CandidateDate]:
        self.alternate_requests.append((maze_id, region))
        return list(self.alternates.get((maze_id, region), []))


class MockHistoryProvider:
    """Mock Trakt adapter."""

    name = "trakt"

    def __init__(self):
        self.ids: Dict[int, int] = {}
        self.episodes: Dict[int, List[CandidateDate]] = {}
        self.error: Optional[Exception] = None

    def lookup_show_id(self, tmdb_id: int) -> Optional[int]:
        if self.error is not None:
            raise self.error
        return self.ids.get(tmdb_id)

    def get_show_candidates(self, trakt_id: int) -> List[CandidateDate]:
        return list(self.episodes.get(trakt_id, []))


def add_simple_show(primary: MockPrimaryProvider, show_id: int, episodes: int = 2, air_date: str = "2025-01-0") -> None:
    """Register a one-season show whose episodes air on consecutive days."""
    primary.add_show(
        create_sample_show(show_id),
        [
            episode(CandidateSource.PRIMARY, f"{air_date}{n}", season=1, number=n, name=f"Episode {n}")
            for n in range(1, episodes + 1)
        ],
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def log_dir(tmp_path_factory):
    """Write every test log file under one temporary directory."""
    return tmp_path_factory.mktemp("logs")


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def mock_store():
    """Provide a fresh in-memory store for each test."""
    return MockCalendarStore()


@pytest.fixture
def primary():
    return MockPrimaryProvider()


@pytest.fixture
def precise():
    return MockPrecisionProvider()


@pytest.fixture
def history():
    return MockHistoryProvider()


@pytest.fixture
def reconciler(log_dir):
    return Reconciler(fallback_region="US", log_dir=log_dir)


@pytest.fixture
def collector(primary, precise, history, log_dir):
    return CandidateCollector(primary, precise=precise, history=history, log_dir=log_dir)


@pytest.fixture
def sql_store(tmp_path, log_dir):
    """SQLite-backed store with tables created."""
    engine = create_engine(f"sqlite:///{tmp_path / 'calendar.db'}")
    store = SQLCalendarStore(engine=engine, log_dir=log_dir)
    store.check_and_create_tables()
    yield store
    engine.dispose()
