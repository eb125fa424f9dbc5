"""
Personal-history provider (Trakt).

Trakt is authenticated per user; its episode 'first_aired' values are full
timestamps and take precedence over every other source.
"""

from typing import List, Optional

from ..config import Config
from ..exceptions import TranslationError
from ..models import CandidateDate, CandidateSource
from ..request_pipeline import RequestPipeline
from .base import ProviderClient, clean_timestamp


class TraktAdapter(ProviderClient):
    """Handles Trakt id lookup and per-show episode air times."""

    name = "trakt"

    def __init__(self, pipeline: RequestPipeline, config: Config, session=None):
        super().__init__(
            pipeline,
            config.trakt_base_url,
            headers=config.get_trakt_headers(),
            timeout=config.request_timeout,
            session=session,
            log_dir=config.log_dir,
        )

    def lookup_show_id(self, tmdb_id: int) -> Optional[int]:
        """
        Map a TMDB show id to a Trakt id.
        Uses: /search/tmdb/{id}?type=show
        """
        data = self._get(f"/search/tmdb/{tmdb_id}", params={"type": "show"}, description=f"lookup tmdb {tmdb_id}")
        if not data:
            return None
        ids = ((data[0].get("show") or {}).get("ids")) or {}
        return ids.get("trakt")

    def get_show_candidates(self, trakt_id: int) -> List[CandidateDate]:
        """
        Get first-aired timestamps for every episode of a show.
        Uses: /shows/{id}/seasons?extended=episodes,full
        """
        data = self._get(
            f"/shows/{trakt_id}/seasons",
            params={"extended": "episodes,full"},
            description=f"trakt show {trakt_id} seasons",
        )
        if not data:
            return []

        candidates = []
        for season in data:
            for episode in season.get("episodes") or []:
                candidate = self.translate(episode)
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def translate(self, raw: dict) -> Optional[CandidateDate]:
        """
        Translate one Trakt episode into a candidate date.

        Returns:
            CandidateDate, or None when the episode has not been scheduled

        Raises:
            TranslationError: Malformed record
        """
        if not isinstance(raw, dict):
            raise TranslationError(f"trakt: expected object, got {type(raw).__name__}")

        first_aired = clean_timestamp(raw.get("first_aired"), self.name)
        if first_aired is None:
            return None

        season, number = raw.get("season"), raw.get("number")
        if not isinstance(season, int) or not isinstance(number, int):
            raise TranslationError(f"trakt: episode without season/number: {raw!r}")

        return CandidateDate(
            source=CandidateSource.HISTORY,
            raw=first_aired,
            season=season,
            episode=number,
            episode_name=raw.get("title"),
            overview=raw.get("overview"),
        )
