"""
Live calendar query.

Answers "what airs around this month" straight from the providers, without
touching the persisted cache. Only the latest seasons of each show are
fetched, and results are trimmed to the visible window.
"""

from datetime import date
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .collector import CandidateCollector
from .config import Config
from .exceptions import ProviderAuthError, ProviderError, TranslationError
from .models import CalendarSettings, ReconciledEvent, TrackedTitle
from .reconciler import Reconciler, window_filter
from .sync import dedupe_titles
from .utils import setup_logger


def calendar_window(target: date, months: int = 1) -> Tuple[date, date]:
    """
    Visible window around a target day.

    The target's month, widened by `months` whole months on each side.

    Returns:
        (first day, last day), inclusive
    """
    month_start = target.replace(day=1)
    start = month_start - relativedelta(months=months)
    end = month_start + relativedelta(months=months + 1, days=-1)
    return start, end


class LiveCalendar:
    """Reconciles a window of events on demand; nothing is persisted."""

    def __init__(
        self,
        collector: CandidateCollector,
        reconciler: Reconciler,
        season_count: int = 2,
        window_months: int = 1,
        log_dir=None,
    ):
        self.collector = collector
        self.reconciler = reconciler
        self.season_count = season_count
        self.window_months = window_months
        self.logger = setup_logger("live_calendar", log_dir)

    @classmethod
    def from_config(cls, config: Config, collector: CandidateCollector) -> "LiveCalendar":
        return cls(
            collector,
            Reconciler.from_config(config),
            season_count=config.live_season_count,
            window_months=config.live_window_months,
            log_dir=config.log_dir,
        )

    def query(
        self,
        owner_id: str,
        titles: List[TrackedTitle],
        settings: Optional[CalendarSettings] = None,
        target: Optional[date] = None,
    ) -> List[ReconciledEvent]:
        """
        Events for the window around `target` (default: today).

        Titles whose providers fail are skipped; auth errors propagate.

        Returns:
            Events sorted by day, then title name
        """
        settings = settings or CalendarSettings()
        start, end = calendar_window(target or date.today(), self.window_months)

        events: List[ReconciledEvent] = []
        for title in dedupe_titles(titles):
            try:
                collected = self.collector.collect(
                    title,
                    region=settings.region or title.region,
                    latest_seasons=self.season_count,
                    include_specials=not settings.ignore_specials,
                )
                events.extend(
                    self.reconciler.reconcile_title(
                        owner_id,
                        title,
                        collected.candidates,
                        settings,
                        precise_region=collected.precise_region,
                        details=collected.details,
                    )
                )
            except ProviderAuthError:
                raise
            except (ProviderError, TranslationError) as e:
                self.logger.warning(f"Skipping {title.media_kind.value} {title.id} ({title.name}): {e}")

        visible = window_filter(events, start, end)
        self.logger.info(f"Live window {start} to {end}: {len(visible)} of {len(events)} events")
        return sorted(visible, key=lambda e: (e.air_date, e.title_name, e.season_number, e.episode_number))
