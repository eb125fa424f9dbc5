"""
Provider adapters.

Each adapter turns one provider's JSON into CandidateDate records and does
its networking through the shared RequestPipeline.
"""

from .tmdb import TMDBAdapter
from .trakt import TraktAdapter
from .tvmaze import MazeShow, TVMazeAdapter

__all__ = [
    "TMDBAdapter",
    "TVMazeAdapter",
    "MazeShow",
    "TraktAdapter",
]
