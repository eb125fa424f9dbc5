"""
Date reconciler.

Chooses one authoritative date per unit (series episode or movie release)
from the candidates the three providers returned, and buckets it into the
user's local calendar day.

Precedence for a unit, first match wins:
1. history candidate with a full timestamp
2. precise-airtime candidate with a full timestamp
3. precise-airtime candidate with a date-only value
4. primary candidate (for movies: the regional release cascade)
5. history candidate with a date-only value
"""

import re
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import tz as dateutil_tz

from .config import Config
from .models import (
    MOVIE_SEASON,
    RELEASE_EPISODE,
    SCHEDULE_ALTERNATE,
    SCHEDULE_DEFAULT,
    CalendarSettings,
    CandidateDate,
    CandidateSource,
    MediaKind,
    ReconciledEvent,
    ReleaseType,
    ShowDetails,
    TrackedTitle,
)
from .utils import setup_logger

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """
    Resolve a configured timezone.

    Accepts IANA names ('Asia/Tokyo'), fixed offsets ('UTC+9', 'UTC-05:30',
    '+09:00') and falls back to the system zone when unset.

    Raises:
        ValueError: Unknown timezone name
    """
    if not name or not name.strip():
        return dateutil_tz.tzlocal()

    value = name.strip()
    if value.upper() in ("UTC", "GMT", "Z"):
        return timezone.utc

    match = _OFFSET_RE.match(value)
    if match:
        sign = 1 if match.group(1) == "+" else -1
        hours = int(match.group(2))
        minutes = int(match.group(3) or 0)
        if hours > 14 or minutes >= 60:
            raise ValueError(f"Offset out of range: {name}")
        return timezone(sign * timedelta(hours=hours, minutes=minutes))

    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def bucket_day(candidate: CandidateDate, local_tz: tzinfo) -> Tuple[str, Optional[datetime]]:
    """
    Calendar day for a candidate.

    Full timestamps are converted into the local zone and bucketed by the
    resulting local date. Date-only values are used verbatim.

    Returns:
        (day 'YYYY-MM-DD', instant or None)
    """
    if candidate.has_timestamp:
        instant = candidate.instant()
        return instant.astimezone(local_tz).date().isoformat(), instant
    return candidate.raw, None


def _chronological_key(candidate: CandidateDate):
    if candidate.has_timestamp:
        return candidate.instant().astimezone(timezone.utc).replace(tzinfo=None)
    return datetime.combine(candidate.sort_date(), datetime.min.time())


def _earliest(candidates: Iterable[CandidateDate]) -> Optional[CandidateDate]:
    candidates = list(candidates)
    if not candidates:
        return None
    return min(candidates, key=_chronological_key)


class Reconciler:
    """
    Merges candidate dates into ReconciledEvents.

    Stateless apart from configuration; safe to share between threads.
    """

    def __init__(self, fallback_region: str = "US", log_dir=None):
        self.fallback_region = fallback_region.upper()
        self.logger = setup_logger("reconciler", log_dir)

    @classmethod
    def from_config(cls, config: Config) -> "Reconciler":
        return cls(fallback_region=config.fallback_region, log_dir=config.log_dir)

    def local_timezone(self, settings: CalendarSettings) -> tzinfo:
        """Resolve the settings' timezone, falling back to the system zone."""
        try:
            return resolve_timezone(settings.timezone)
        except ValueError as e:
            self.logger.warning(f"{e}; using system timezone")
            return dateutil_tz.tzlocal()

    # ============ UNIT SELECTION ============

    def select_candidate(
        self,
        candidates: List[CandidateDate],
        media_kind: MediaKind,
        region: Optional[str] = None,
        use_alternate: bool = False,
    ) -> Optional[CandidateDate]:
        """
        Pick the authoritative candidate for one unit.

        Args:
            candidates: Every provider's candidates for the unit
            media_kind: Series or movie (movies use the release cascade at step 4)
            region: User region, for the movie cascade
            use_alternate: User region differs from the precise provider's
                default region, so its alternate schedule wins where present

        Returns:
            The winning candidate, or None when no provider had data
        """
        history = [c for c in candidates if c.source == CandidateSource.HISTORY]
        precise = [c for c in candidates if c.source == CandidateSource.PRECISE]
        primary = [c for c in candidates if c.source == CandidateSource.PRIMARY]

        chosen = _earliest(c for c in history if c.has_timestamp)
        if chosen:
            return chosen

        alternates = [c for c in precise if c.schedule == SCHEDULE_ALTERNATE]
        if use_alternate and alternates:
            precise = alternates
        else:
            precise = [c for c in precise if c.schedule == SCHEDULE_DEFAULT]

        chosen = _earliest(c for c in precise if c.has_timestamp)
        if chosen:
            return chosen
        chosen = _earliest(c for c in precise if not c.has_timestamp)
        if chosen:
            return chosen

        if media_kind == MediaKind.MOVIE:
            chosen = self.select_movie_release(primary, region)
        else:
            chosen = _earliest(primary)
        if chosen:
            return chosen

        return _earliest(history)

    def select_movie_release(
        self,
        candidates: List[CandidateDate],
        region: Optional[str],
        release_type: Optional[ReleaseType] = None,
    ) -> Optional[CandidateDate]:
        """
        Pick a movie release across countries.

        Order of preference:
        1. digital/physical release in the user's region
        2. theatrical/premiere release in the user's region
        3. earliest digital/physical release in the fallback region
        4. earliest release of any kind, any region

        Args:
            candidates: Primary-source release candidates
            region: User region (None skips steps 1-2)
            release_type: Restrict to one normalized release type
        """
        releases = [c for c in candidates if c.release_type is not None]
        if release_type is not None:
            releases = [c for c in releases if c.release_type == release_type]
        releases.sort(key=_chronological_key)
        if not releases:
            return None

        region = region.upper() if region else None
        if region:
            local = [c for c in releases if c.country == region]
            for wanted in (ReleaseType.DIGITAL, ReleaseType.THEATRICAL):
                for candidate in local:
                    if candidate.release_type == wanted:
                        return candidate

        for candidate in releases:
            if candidate.country == self.fallback_region and candidate.release_type == ReleaseType.DIGITAL:
                return candidate

        return releases[0]

    # ============ EVENT BUILDING ============

    def reconcile_unit(
        self,
        owner_id: str,
        title: TrackedTitle,
        candidates: List[CandidateDate],
        settings: CalendarSettings,
        precise_region: Optional[str] = None,
        details: Optional[ShowDetails] = None,
        release_type: Optional[ReleaseType] = None,
        local_tz: Optional[tzinfo] = None,
    ) -> Optional[ReconciledEvent]:
        """
        Reconcile one unit into an event.

        Args:
            owner_id: Owner the event belongs to
            title: The tracked title
            candidates: Candidates for this unit only
            settings: Owner's calendar settings
            precise_region: Default schedule region of the precise provider
            details: Series metadata for display fields
            release_type: Movies in 'all' mode: the release type being reconciled
            local_tz: Pre-resolved timezone

        Returns:
            ReconciledEvent, or None when no provider supplied a date
        """
        region = settings.region or title.region
        use_alternate = bool(region and precise_region and region.upper() != precise_region.upper())

        if title.media_kind == MediaKind.MOVIE and release_type is not None:
            chosen = self._select_for_release_type(candidates, region, release_type)
        else:
            chosen = self.select_candidate(candidates, title.media_kind, region, use_alternate)
        if chosen is None:
            return None

        day, instant = bucket_day(chosen, local_tz or self.local_timezone(settings))

        if title.media_kind == MediaKind.MOVIE:
            normalized = chosen.release_type or release_type or ReleaseType.THEATRICAL
            return ReconciledEvent(
                owner_id=owner_id,
                title_id=title.id,
                media_kind=MediaKind.MOVIE,
                season_number=MOVIE_SEASON,
                episode_number=RELEASE_EPISODE[normalized],
                air_date=day,
                air_instant=instant,
                release_type=normalized,
                source=chosen.source,
                title_name=title.name,
                overview=title.overview,
                poster_path=title.display_poster,
                backdrop_path=title.backdrop_path,
                release_country=chosen.country,
            )

        # Display fields come from whichever candidate carries them, primary first
        described = sorted(candidates, key=lambda c: c.source != CandidateSource.PRIMARY)
        episode_name = next((c.episode_name for c in described if c.episode_name), None)
        overview = next((c.overview for c in described if c.overview), None)
        still = next((c.image_path for c in described if c.image_path), None)

        backdrop = details.backdrop_path if details and details.backdrop_path else title.backdrop_path
        poster = title.custom_poster_path or (details.poster_path if details else None) or title.poster_path

        return ReconciledEvent(
            owner_id=owner_id,
            title_id=title.id,
            media_kind=MediaKind.SERIES,
            season_number=chosen.season,
            episode_number=chosen.episode,
            air_date=day,
            air_instant=instant,
            source=chosen.source,
            title_name=title.name,
            episode_name=episode_name,
            overview=overview,
            poster_path=poster,
            backdrop_path=still or backdrop,
        )

    def _select_for_release_type(
        self,
        candidates: List[CandidateDate],
        region: Optional[str],
        release_type: ReleaseType,
    ) -> Optional[CandidateDate]:
        typed = [c for c in candidates if c.release_type == release_type]
        for source in (CandidateSource.HISTORY, CandidateSource.PRECISE):
            chosen = _earliest(c for c in typed if c.source == source and c.has_timestamp)
            if chosen:
                return chosen
        primary = [c for c in typed if c.source == CandidateSource.PRIMARY]
        return self.select_movie_release(primary, region, release_type)

    def reconcile_title(
        self,
        owner_id: str,
        title: TrackedTitle,
        candidates: List[CandidateDate],
        settings: CalendarSettings,
        precise_region: Optional[str] = None,
        details: Optional[ShowDetails] = None,
    ) -> List[ReconciledEvent]:
        """
        Reconcile every unit of a title.

        Series candidates are grouped by (season, episode). Movies produce
        one event ('preferred' mode) or one per release type ('all' mode).
        """
        local_tz = self.local_timezone(settings)

        if title.media_kind == MediaKind.MOVIE:
            return self._reconcile_movie(owner_id, title, candidates, settings, local_tz)

        units: Dict[Tuple[int, int], List[CandidateDate]] = OrderedDict()
        for candidate in candidates:
            key = candidate.unit_key
            if not isinstance(key, tuple):
                continue
            if settings.ignore_specials and key[0] == 0:
                continue
            units.setdefault(key, []).append(candidate)

        events = []
        for key in sorted(units):
            event = self.reconcile_unit(
                owner_id,
                title,
                units[key],
                settings,
                precise_region=precise_region,
                details=details,
                local_tz=local_tz,
            )
            if event is not None:
                events.append(event)
        return events

    def _reconcile_movie(
        self,
        owner_id: str,
        title: TrackedTitle,
        candidates: List[CandidateDate],
        settings: CalendarSettings,
        local_tz: tzinfo,
    ) -> List[ReconciledEvent]:
        candidates = [c for c in candidates if c.release_type is not None]

        if not candidates and title.first_air_date:
            # No release data at all; fall back to the title's own release date
            candidates = [
                CandidateDate(
                    source=CandidateSource.PRIMARY,
                    raw=title.first_air_date[:10],
                    release_subtype="theatrical",
                    country=self.fallback_region,
                )
            ]

        if settings.movie_releases == "all":
            release_types = [ReleaseType.THEATRICAL, ReleaseType.DIGITAL]
        else:
            release_types = [None]

        events = []
        for release_type in release_types:
            event = self.reconcile_unit(
                owner_id,
                title,
                candidates,
                settings,
                release_type=release_type,
                local_tz=local_tz,
            )
            if event is not None:
                events.append(event)
        return events


def window_filter(events: List[ReconciledEvent], start: date, end: date) -> List[ReconciledEvent]:
    """Keep events whose local day falls within [start, end]."""
    start_key, end_key = start.isoformat(), end.isoformat()
    return [e for e in events if start_key <= e.air_date <= end_key]
