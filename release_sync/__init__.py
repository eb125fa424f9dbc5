"""
Release Sync - release calendar reconciliation and sync engine.

This package provides tools for:
- Calling TMDB, TVmaze and Trakt through one rate-limited, retrying pipeline
- Reconciling their dates into one timezone-correct event per episode or release
- Rebuilding a user's persisted calendar cache in batches (full sync)
- Querying a live calendar window without touching the cache
"""

from .config import Config
from .models import (
    CalendarSettings,
    CandidateDate,
    CandidateSource,
    MediaKind,
    ReconciledEvent,
    ReleaseType,
    SyncProgress,
    SyncResult,
    SyncState,
    TrackedTitle,
)
from .request_pipeline import RequestPipeline, PacingState
from .providers import TMDBAdapter, TVMazeAdapter, TraktAdapter
from .reconciler import Reconciler
from .collector import CandidateCollector
from .database import CalendarStore, SQLCalendarStore
from .cache_writer import CacheWriter
from .sync import FullSyncOrchestrator, untrack_title
from .live import LiveCalendar

__version__ = "1.0.0"
__all__ = [
    "Config",
    "CalendarSettings",
    "CandidateDate",
    "CandidateSource",
    "MediaKind",
    "ReconciledEvent",
    "ReleaseType",
    "SyncProgress",
    "SyncResult",
    "SyncState",
    "TrackedTitle",
    "RequestPipeline",
    "PacingState",
    "TMDBAdapter",
    "TVMazeAdapter",
    "TraktAdapter",
    "Reconciler",
    "CandidateCollector",
    "CalendarStore",
    "SQLCalendarStore",
    "CacheWriter",
    "FullSyncOrchestrator",
    "untrack_title",
    "LiveCalendar",
]
