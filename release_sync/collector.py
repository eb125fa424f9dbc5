"""
Per-title candidate collection.

Fans one tracked title out to the provider adapters and gathers every
candidate date they return. Shared by the full sync and the live calendar.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .exceptions import ProviderAuthError, ProviderError, TranslationError
from .models import CandidateDate, MediaKind, ShowDetails, TrackedTitle
from .utils import setup_logger


@dataclass
class CollectedTitle:
    """Everything the reconciler needs for one title."""

    title: TrackedTitle
    candidates: List[CandidateDate] = field(default_factory=list)
    details: Optional[ShowDetails] = None
    precise_region: Optional[str] = None  # Default schedule region of the precise provider


class CandidateCollector:
    """
    Gathers candidates from the primary, precise-airtime and history providers.

    The primary provider is required: if its show or movie lookup fails, the
    title fails. A failing season is logged and skipped. The secondary
    providers only refine dates, so their errors are logged and the title
    continues without them. Auth errors always propagate.
    """

    def __init__(self, primary, precise=None, history=None, log_dir=None):
        self.primary = primary
        self.precise = precise
        self.history = history
        self.logger = setup_logger("providers", log_dir)

    def collect(
        self,
        title: TrackedTitle,
        region: Optional[str] = None,
        latest_seasons: Optional[int] = None,
        include_specials: bool = True,
    ) -> CollectedTitle:
        """
        Collect candidates for a title.

        Args:
            title: Tracked title
            region: User region (selects the alternate schedule)
            latest_seasons: Only the last N seasons (None = every season)
            include_specials: Fetch season 0 when the show has one
        """
        if title.media_kind == MediaKind.MOVIE:
            return CollectedTitle(
                title=title,
                candidates=self.primary.get_movie_release_candidates(title.id),
            )
        return self._collect_series(title, region, latest_seasons, include_specials)

    def _collect_series(
        self,
        title: TrackedTitle,
        region: Optional[str],
        latest_seasons: Optional[int],
        include_specials: bool,
    ) -> CollectedTitle:
        details = self.primary.get_show(title.id)
        if details is None:
            self.logger.info(f"Show {title.id} not found on {self.primary.name}")
            return CollectedTitle(title=title)

        result = CollectedTitle(title=title, details=details)
        for season_number in details.season_numbers(latest_seasons, include_specials):
            try:
                result.candidates.extend(self.primary.get_season_candidates(title.id, season_number))
            except ProviderAuthError:
                raise
            except (ProviderError, TranslationError) as e:
                self.logger.warning(f"Skipping season {season_number} of show {title.id}: {e}")

        if self.precise is not None:
            self._collect_precise(result, region)
        if self.history is not None:
            self._collect_history(result)

        if latest_seasons is not None:
            # Secondary providers return whole shows; keep only the fetched seasons
            wanted = set(details.season_numbers(latest_seasons, include_specials))
            result.candidates = [c for c in result.candidates if c.season in wanted]

        return result

    def _collect_precise(self, result: CollectedTitle, region: Optional[str]) -> None:
        details = result.details
        try:
            show = self.precise.lookup_show(imdb_id=details.imdb_id, tvdb_id=details.tvdb_id)
            if show is None:
                self.logger.info(f"No {self.precise.name} match for show {details.id}")
                return

            result.precise_region = show.country
            result.candidates.extend(self.precise.get_episode_candidates(show.id))

            if region and show.country and region.upper() != show.country:
                result.candidates.extend(self.precise.get_alternate_candidates(show.id, region))
        except ProviderAuthError:
            raise
        except (ProviderError, TranslationError) as e:
            self.logger.warning(f"Skipping {self.precise.name} for show {details.id}: {e}")

    def _collect_history(self, result: CollectedTitle) -> None:
        details = result.details
        try:
            trakt_id = self.history.lookup_show_id(details.id)
            if trakt_id is None:
                self.logger.info(f"No {self.history.name} match for show {details.id}")
                return
            result.candidates.extend(self.history.get_show_candidates(trakt_id))
        except ProviderAuthError:
            raise
        except (ProviderError, TranslationError) as e:
            self.logger.warning(f"Skipping {self.history.name} for show {details.id}: {e}")
