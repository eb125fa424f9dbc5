"""
Data models for the release sync engine.

Provides dataclasses for type-safe data handling from provider adapters
through the reconciler to the persisted calendar store.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from threading import Lock
from typing import List, Optional, Tuple, Union

from dateutil.parser import isoparse


class MediaKind(str, Enum):
    SERIES = "series"
    MOVIE = "movie"

    @classmethod
    def parse(cls, value: str) -> "MediaKind":
        """Accept both our names and the provider's ('tv')."""
        if value in ("tv", "show"):
            return cls.SERIES
        return cls(value)


class CandidateSource(str, Enum):
    PRIMARY = "primary"
    PRECISE = "precise-airtime"
    HISTORY = "history"


class ReleaseType(str, Enum):
    THEATRICAL = "theatrical"
    DIGITAL = "digital"


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Movies have no seasons; the release type is encoded in the episode slot
MOVIE_SEASON = -1
RELEASE_EPISODE = {ReleaseType.THEATRICAL: 1, ReleaseType.DIGITAL: 2}

SCHEDULE_DEFAULT = "default"
SCHEDULE_ALTERNATE = "alternate"

DIGITAL_SUBTYPES = ("digital", "physical")
THEATRICAL_SUBTYPES = ("theatrical", "premiere")

UnitKey = Union[Tuple[int, int], ReleaseType]


def normalize_release_type(subtype: Optional[str]) -> Optional[ReleaseType]:
    """Collapse provider release subtypes into theatrical/digital."""
    if subtype in DIGITAL_SUBTYPES:
        return ReleaseType.DIGITAL
    if subtype in THEATRICAL_SUBTYPES:
        return ReleaseType.THEATRICAL
    return None


@dataclass(frozen=True)
class TrackedTitle:
    """A title in the user's library."""

    id: int
    media_kind: MediaKind
    name: str
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    region: Optional[str] = None
    custom_poster_path: Optional[str] = None
    first_air_date: Optional[str] = None  # Last-resort release date for movies
    overview: Optional[str] = None

    @property
    def key(self) -> Tuple[MediaKind, int]:
        return (self.media_kind, self.id)

    @property
    def display_poster(self) -> Optional[str]:
        return self.custom_poster_path or self.poster_path

    @classmethod
    def from_watchlist_row(cls, row: dict) -> "TrackedTitle":
        """Create TrackedTitle from a stored watchlist row."""
        return cls(
            id=int(row.get("tmdb_id") or row["id"]),
            media_kind=MediaKind.parse(row.get("media_type", "tv")),
            name=row.get("name") or row.get("title") or "",
            poster_path=row.get("poster_path"),
            backdrop_path=row.get("backdrop_path"),
            region=row.get("region"),
            custom_poster_path=row.get("custom_poster_path"),
            first_air_date=row.get("first_air_date"),
            overview=row.get("overview"),
        )


@dataclass
class SeasonSummary:
    """Season listing entry from the primary provider."""

    season_number: int
    air_date: Optional[str] = None
    episode_count: int = 0
    poster_path: Optional[str] = None


@dataclass
class ShowDetails:
    """Series metadata needed to fan out to seasons and secondary providers."""

    id: int
    name: str
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    seasons: List[SeasonSummary] = field(default_factory=list)
    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None
    origin_country: List[str] = field(default_factory=list)

    def season_numbers(self, latest: Optional[int] = None, include_specials: bool = True) -> List[int]:
        """
        Season numbers to fetch.

        Args:
            latest: Only the last N regular seasons (None = all)
            include_specials: Keep season 0 if the show has one
        """
        regular = [s.season_number for s in self.seasons if s.season_number > 0]
        if latest is not None:
            regular = regular[-latest:] if latest > 0 else []
        has_specials = any(s.season_number == 0 for s in self.seasons)
        if include_specials and has_specials:
            return [0] + regular
        return regular


@dataclass
class CandidateDate:
    """One provider's opinion about when a unit airs or releases."""

    source: CandidateSource
    raw: str  # 'YYYY-MM-DD' or full ISO timestamp with offset

    # Unit key: season/episode for series, release subtype for movies
    season: Optional[int] = None
    episode: Optional[int] = None
    release_subtype: Optional[str] = None  # premiere/theatrical/digital/physical/tv
    country: Optional[str] = None
    schedule: str = SCHEDULE_DEFAULT  # precise-airtime only

    # Display metadata carried along for the event
    episode_name: Optional[str] = None
    overview: Optional[str] = None
    image_path: Optional[str] = None

    @property
    def has_timestamp(self) -> bool:
        return "T" in self.raw

    @property
    def day(self) -> str:
        """Date component as written by the provider."""
        return self.raw[:10]

    @property
    def release_type(self) -> Optional[ReleaseType]:
        return normalize_release_type(self.release_subtype)

    @property
    def unit_key(self) -> Optional[UnitKey]:
        if self.release_subtype is not None:
            return self.release_type
        if self.season is None or self.episode is None:
            return None
        return (self.season, self.episode)

    def instant(self) -> datetime:
        """
        Parse the timestamp into an aware datetime.

        Timestamps without an offset are taken as UTC.
        """
        parsed = isoparse(self.raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def sort_date(self) -> date:
        return isoparse(self.day).date()


@dataclass
class ReconciledEvent:
    """The authoritative calendar entry for one unit of one title."""

    owner_id: str
    title_id: int
    media_kind: MediaKind
    season_number: int
    episode_number: int
    air_date: str  # Local calendar day, 'YYYY-MM-DD'
    air_instant: Optional[datetime] = None
    release_type: Optional[ReleaseType] = None
    source: Optional[CandidateSource] = None

    # Denormalized display fields
    title_name: str = ""
    episode_name: Optional[str] = None
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    release_country: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int, str, int, int]:
        """Upsert key: at most one event per key in the store."""
        return (
            self.owner_id,
            self.title_id,
            self.media_kind.value,
            self.season_number,
            self.episode_number,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for database insertion."""
        instant = None
        if self.air_instant is not None:
            instant = self.air_instant.astimezone(timezone.utc).isoformat()
        return {
            "owner_id": self.owner_id,
            "title_id": self.title_id,
            "media_kind": self.media_kind.value,
            "season_number": self.season_number,
            "episode_number": self.episode_number,
            "air_date": self.air_date,
            "air_instant": instant,
            "release_type": self.release_type.value if self.release_type else None,
            "source": self.source.value if self.source else None,
            "title_name": self.title_name,
            "episode_name": self.episode_name,
            "overview": self.overview,
            "poster_path": self.poster_path,
            "backdrop_path": self.backdrop_path,
            "release_country": self.release_country,
        }

    @classmethod
    def from_row(cls, row: dict) -> "ReconciledEvent":
        """Create ReconciledEvent from a database row mapping."""
        instant = row.get("air_instant")
        if isinstance(instant, str):
            instant = isoparse(instant)
        if isinstance(instant, datetime) and instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)

        air_date = row["air_date"]
        if isinstance(air_date, date):
            air_date = air_date.isoformat()

        return cls(
            owner_id=row["owner_id"],
            title_id=int(row["title_id"]),
            media_kind=MediaKind(row["media_kind"]),
            season_number=int(row["season_number"]),
            episode_number=int(row["episode_number"]),
            air_date=air_date,
            air_instant=instant,
            release_type=ReleaseType(row["release_type"]) if row.get("release_type") else None,
            source=CandidateSource(row["source"]) if row.get("source") else None,
            title_name=row.get("title_name") or "",
            episode_name=row.get("episode_name"),
            overview=row.get("overview"),
            poster_path=row.get("poster_path"),
            backdrop_path=row.get("backdrop_path"),
            release_country=row.get("release_country"),
        )


@dataclass
class CalendarSettings:
    """Per-owner preferences that affect reconciliation."""

    region: Optional[str] = None  # ISO-3166 country code
    timezone: Optional[str] = None  # IANA name or 'UTC+9' style offset
    ignore_specials: bool = False
    movie_releases: str = "preferred"  # 'preferred' or 'all'

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CalendarSettings":
        data = data or {}
        region = data.get("region") or data.get("country")
        return cls(
            region=region.upper() if region else None,
            timezone=data.get("timezone"),
            ignore_specials=bool(data.get("ignore_specials", False)),
            movie_releases=data.get("movie_releases", "preferred"),
        )


class SyncProgress:
    """
    Current/total counters for one full-sync run.

    Thread-safe; current never decreases within a run.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.current = 0
        self.total = 0

    def reset(self, total: int = 0) -> None:
        with self._lock:
            self.current = 0
            self.total = total

    def advance(self, count: int) -> None:
        if count < 0:
            raise ValueError("progress cannot move backwards")
        with self._lock:
            self.current = min(self.current + count, self.total)

    def snapshot(self) -> Tuple[int, int]:
        with self._lock:
            return self.current, self.total

    @property
    def percent(self) -> int:
        current, total = self.snapshot()
        return round(current / total * 100) if total else 0

    def to_dict(self) -> dict:
        current, total = self.snapshot()
        return {"current": current, "total": total}


@dataclass
class TitleFailure:
    """A title whose fetch or reconcile failed during a run."""

    title_id: int
    media_kind: MediaKind
    name: str
    error: str


@dataclass
class SyncResult:
    """Outcome of one full-sync run."""

    owner_id: str
    run_id: str
    state: SyncState = SyncState.IDLE
    progress_current: int = 0
    progress_total: int = 0
    events_written: int = 0
    failed_titles: List[TitleFailure] = field(default_factory=list)
    error: Optional[str] = None
    recommendation: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "owner_id": self.owner_id,
            "run_id": self.run_id,
            "state": self.state.value,
            "progress": {"current": self.progress_current, "total": self.progress_total},
            "events_written": self.events_written,
            "failed_titles": [
                {"id": f.title_id, "media_kind": f.media_kind.value, "name": f.name, "error": f.error}
                for f in self.failed_titles
            ],
            "error": self.error,
            "recommendation": self.recommendation,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def __str__(self) -> str:
        """Human-readable summary."""
        lines = [
            f"State: {self.state.value}",
            f"Titles: {self.progress_current}/{self.progress_total}",
            f"Events written: {self.events_written}",
        ]
        if self.failed_titles:
            lines.append(f"Failed titles: {len(self.failed_titles)}")
        if self.error:
            lines.append(f"Error: {self.error}")
        return "\n".join(lines)
