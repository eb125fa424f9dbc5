"""
Primary metadata provider (TMDB).

Supplies the series structure (seasons, external ids) plus date-only
episode air dates, and per-country movie release dates.
"""

from typing import List, Optional

from ..config import Config
from ..exceptions import TranslationError
from ..models import CandidateDate, CandidateSource, SeasonSummary, ShowDetails
from ..request_pipeline import RequestPipeline
from .base import ProviderClient, clean_day, require_int

# TMDB release_dates type codes
RELEASE_TYPES = {
    1: "premiere",
    2: "theatrical",  # Limited theatrical
    3: "theatrical",
    4: "digital",
    5: "physical",
    6: "tv",
}


class TMDBAdapter(ProviderClient):
    """
    Handles all TMDB interactions.

    Responsibilities:
    - Show details with external ids (for the secondary providers)
    - Season episode lists
    - Movie release dates across countries
    - Translation of episodes and releases into CandidateDate
    """

    name = "tmdb"

    def __init__(self, pipeline: RequestPipeline, config: Config, session=None):
        super().__init__(
            pipeline,
            config.tmdb_base_url,
            headers=config.get_tmdb_headers(),
            params=config.get_tmdb_params(),
            timeout=config.request_timeout,
            session=session,
            log_dir=config.log_dir,
        )

    def get_show(self, show_id: int) -> Optional[ShowDetails]:
        """
        Get series details with external ids.
        Uses: /tv/{id}?append_to_response=external_ids

        Returns:
            ShowDetails, or None if TMDB has no such show
        """
        data = self._get(
            f"/tv/{show_id}",
            params={"append_to_response": "external_ids"},
            description=f"show {show_id}",
        )
        if not data:
            return None

        seasons = []
        for season in data.get("seasons") or []:
            if season.get("season_number") is None:
                continue
            seasons.append(
                SeasonSummary(
                    season_number=season["season_number"],
                    air_date=season.get("air_date"),
                    episode_count=season.get("episode_count") or 0,
                    poster_path=season.get("poster_path"),
                )
            )
        seasons.sort(key=lambda s: s.season_number)

        external_ids = data.get("external_ids") or {}
        return ShowDetails(
            id=data.get("id", show_id),
            name=data.get("name", "Unknown"),
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            seasons=seasons,
            imdb_id=external_ids.get("imdb_id") or None,
            tvdb_id=external_ids.get("tvdb_id") or None,
            origin_country=list(data.get("origin_country") or []),
        )

    def get_season_candidates(self, show_id: int, season_number: int) -> List[CandidateDate]:
        """
        Get date-only air dates for one season.
        Uses: /tv/{id}/season/{n}
        """
        data = self._get(
            f"/tv/{show_id}/season/{season_number}",
            description=f"show {show_id} season {season_number}",
        )
        if not data:
            return []

        candidates = []
        for episode in data.get("episodes") or []:
            candidate = self.translate(episode)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def get_movie_release_candidates(self, movie_id: int) -> List[CandidateDate]:
        """
        Get every release of a movie across all countries.
        Uses: /movie/{id}/release_dates
        """
        data = self._get(f"/movie/{movie_id}/release_dates", description=f"movie {movie_id} releases")
        if not data:
            return []

        candidates = []
        for country_data in data.get("results") or []:
            country = country_data.get("iso_3166_1")
            for release in country_data.get("release_dates") or []:
                candidate = self.translate({**release, "iso_3166_1": country})
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def translate(self, raw: dict) -> Optional[CandidateDate]:
        """
        Translate one TMDB record into a candidate date.

        Handles both episode records (air_date) and release records
        (release_date + type, with the country merged in as iso_3166_1).

        Returns:
            CandidateDate, or None when TMDB has no date for the record

        Raises:
            TranslationError: Malformed record
        """
        if not isinstance(raw, dict):
            raise TranslationError(f"tmdb: expected object, got {type(raw).__name__}")

        if "type" in raw and "release_date" in raw:
            subtype = RELEASE_TYPES.get(raw.get("type"))
            if subtype is None:
                return None
            day = clean_day(raw.get("release_date"), self.name)
            if day is None:
                return None
            return CandidateDate(
                source=CandidateSource.PRIMARY,
                raw=day,
                release_subtype=subtype,
                country=(raw.get("iso_3166_1") or "").upper() or None,
            )

        day = clean_day(raw.get("air_date"), self.name)
        if day is None:
            return None
        return CandidateDate(
            source=CandidateSource.PRIMARY,
            raw=day,
            season=require_int(raw, "season_number", self.name),
            episode=require_int(raw, "episode_number", self.name),
            episode_name=raw.get("name"),
            overview=raw.get("overview"),
            image_path=raw.get("still_path"),
        )
