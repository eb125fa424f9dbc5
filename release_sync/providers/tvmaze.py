"""
Precise-airtime provider (TVmaze).

Episodes carry an 'airstamp' (ISO 8601 with offset) and an 'airdate'
(broadcaster-local date). Alternate lists give country-specific premiere
schedules that differ from the show's default network schedule.
"""

from dataclasses import dataclass
from typing import List, Optional

from ..config import Config
from ..exceptions import TranslationError
from ..models import SCHEDULE_ALTERNATE, SCHEDULE_DEFAULT, CandidateDate, CandidateSource
from ..request_pipeline import RequestPipeline
from .base import ProviderClient, clean_day, clean_timestamp

# Alternate list flags that describe a release schedule, not an ordering
PREMIERE_FLAGS = ("country_premiere", "broadcast_premiere", "streaming_premiere", "language_premiere")


@dataclass
class MazeShow:
    """The subset of a TVmaze show the sync needs."""

    id: int
    name: str = ""
    country: Optional[str] = None  # Default schedule region (network or web channel)


def _channel_country(channel: Optional[dict]) -> Optional[str]:
    if not channel:
        return None
    country = channel.get("country") or {}
    code = country.get("code")
    return code.upper() if code else None


class TVMazeAdapter(ProviderClient):
    """Handles TVmaze lookups, episode lists and alternate schedules."""

    name = "tvmaze"

    def __init__(self, pipeline: RequestPipeline, config: Config, session=None):
        super().__init__(
            pipeline,
            config.tvmaze_base_url,
            headers={"Accept": "application/json"},
            timeout=config.request_timeout,
            session=session,
            log_dir=config.log_dir,
        )

    def lookup_show(self, imdb_id: Optional[str] = None, tvdb_id: Optional[int] = None) -> Optional[MazeShow]:
        """
        Find the TVmaze show by external id, IMDb first.
        Uses: /lookup/shows?imdb={id} or ?thetvdb={id}
        """
        data = None
        if imdb_id:
            data = self._get("/lookup/shows", params={"imdb": imdb_id}, description=f"lookup imdb {imdb_id}")
        if not data and tvdb_id:
            data = self._get("/lookup/shows", params={"thetvdb": tvdb_id}, description=f"lookup tvdb {tvdb_id}")
        if not data or data.get("id") is None:
            return None

        return MazeShow(
            id=data["id"],
            name=data.get("name", ""),
            country=_channel_country(data.get("network")) or _channel_country(data.get("webChannel")),
        )

    def get_episode_candidates(self, maze_id: int) -> List[CandidateDate]:
        """
        Get the default schedule for every episode, specials included.
        Uses: /shows/{id}/episodes?specials=1
        """
        data = self._get(
            f"/shows/{maze_id}/episodes",
            params={"specials": 1},
            description=f"maze show {maze_id} episodes",
        )
        if not data:
            return []

        candidates = []
        for episode in data:
            candidate = self.translate(episode)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def get_alternate_candidates(self, maze_id: int, region: str) -> List[CandidateDate]:
        """
        Get the premiere schedule for a specific region, if TVmaze has one.
        Uses: /shows/{id}/alternatelists and
              /alternatelists/{id}/alternateepisodes?embed=episodes

        Returns:
            Candidates keyed to the default season/episode numbering
        """
        lists = self._get(f"/shows/{maze_id}/alternatelists", description=f"maze show {maze_id} alternate lists")
        if not lists:
            return []

        region = region.upper()
        chosen = None
        for alt_list in lists:
            if not any(alt_list.get(flag) for flag in PREMIERE_FLAGS):
                continue
            country = _channel_country(alt_list.get("network")) or _channel_country(alt_list.get("webChannel"))
            if country == region:
                chosen = alt_list
                break

        if chosen is None:
            return []

        data = self._get(
            f"/alternatelists/{chosen['id']}/alternateepisodes",
            params={"embed": "episodes"},
            description=f"alternate list {chosen['id']}",
        )
        if not data:
            return []

        candidates = []
        for alt_episode in data:
            embedded = (alt_episode.get("_embedded") or {}).get("episodes") or []
            if not embedded:
                continue
            original = embedded[0]
            candidate = self.translate(
                {
                    "season": original.get("season"),
                    "number": original.get("number"),
                    "name": original.get("name"),
                    "airstamp": alt_episode.get("airstamp"),
                    "airdate": alt_episode.get("airdate"),
                    "schedule": SCHEDULE_ALTERNATE,
                }
            )
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def translate(self, raw: dict) -> Optional[CandidateDate]:
        """
        Translate one TVmaze episode into a candidate date.

        Prefers the airstamp (exact instant) over the airdate.

        Returns:
            CandidateDate, or None when the episode has no date or no number

        Raises:
            TranslationError: Malformed record
        """
        if not isinstance(raw, dict):
            raise TranslationError(f"tvmaze: expected object, got {type(raw).__name__}")

        # Specials can be unnumbered; there is no unit to attach them to
        season, number = raw.get("season"), raw.get("number")
        if season is None or number is None:
            return None
        if not isinstance(season, int) or not isinstance(number, int):
            raise TranslationError(f"tvmaze: non-integer episode key {season!r}/{number!r}")

        value = clean_timestamp(raw.get("airstamp"), self.name) or clean_day(raw.get("airdate"), self.name)
        if value is None:
            return None

        return CandidateDate(
            source=CandidateSource.PRECISE,
            raw=value,
            season=season,
            episode=number,
            schedule=raw.get("schedule", SCHEDULE_DEFAULT),
            episode_name=raw.get("name"),
        )
