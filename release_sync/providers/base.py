"""
Shared HTTP plumbing for provider adapters.

Adapters never call the network directly; every request is handed to the
RequestPipeline as a callable so pacing, retries and error typing happen in
one place.
"""

from datetime import datetime
from typing import Any, Optional

import requests
from dateutil.parser import isoparse
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import TranslationError
from ..request_pipeline import RequestPipeline
from ..utils import setup_logger


def clean_day(value: Any, provider: str) -> Optional[str]:
    """
    Validate a date-only value.

    Returns:
        'YYYY-MM-DD', or None when the provider left it empty
    """
    if value in (None, ""):
        return None
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date().isoformat()
    except ValueError as e:
        raise TranslationError(f"{provider}: invalid date {value!r}") from e


def clean_timestamp(value: Any, provider: str) -> Optional[str]:
    """
    Validate a full timestamp.

    Returns:
        The timestamp unchanged, or None when empty
    """
    if value in (None, ""):
        return None
    try:
        isoparse(str(value))
    except ValueError as e:
        raise TranslationError(f"{provider}: invalid timestamp {value!r}") from e
    return str(value)


def require_int(raw: dict, key: str, provider: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TranslationError(f"{provider}: record has no integer {key!r}")
    return value


class ProviderClient:
    """
    Base class for provider adapters.

    Responsibilities:
    - Session setup (default headers, connection pooling)
    - Building URLs and routing requests through the pipeline
    """

    name = "provider"

    def __init__(
        self,
        pipeline: RequestPipeline,
        base_url: str,
        headers: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        log_dir=None,
    ):
        self.pipeline = pipeline
        self.base_url = base_url.rstrip("/")
        self.default_params = params or {}
        self.timeout = timeout
        self.session = session or self._create_session(headers or {})
        self.logger = setup_logger("providers", log_dir)

    def _create_session(self, headers: dict) -> requests.Session:
        """Create requests session with connection-level retries only."""
        session = requests.Session()

        # Status codes are handled by the pipeline; only retry dropped connections here
        retry_strategy = Retry(
            total=2,
            connect=2,
            read=0,
            status=0,
            backoff_factor=0.5,
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update(headers)
        return session

    def _get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        description: Optional[str] = None,
    ) -> Any:
        """
        GET an endpoint through the pipeline.

        Returns:
            Parsed JSON, or None when the provider has no record (404)
        """
        url = f"{self.base_url}{endpoint}"
        merged = {**self.default_params, **(params or {})}

        def call() -> requests.Response:
            return self.session.get(url, params=merged, timeout=self.timeout)

        return self.pipeline.execute(call, provider=self.name, description=description or endpoint)
