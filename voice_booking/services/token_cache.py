import threading
import time
from typing import Callable, Optional, Tuple

import requests

from voice_booking.core.logger import logger


class TokenCache:
    """
    Holds one bearer token and refreshes it shortly before it expires.
    `fetch` returns (token, expires_in_seconds). Safe to share between
    worker threads.
    """

    def __init__(self, fetch: Callable[[], Tuple[str, int]], buffer_seconds: int = 60,
                 clock: Callable[[], float] = time.time):
        self._fetch = fetch
        self._buffer = buffer_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            if self._token and self._clock() < self._expires_at - self._buffer:
                return self._token

            token, expires_in = self._fetch()
            self._token = token
            self._expires_at = self._clock() + expires_in
            logger.info(f"🔑 Scheduling API token obtained (expires in {expires_in}s)")
            return self._token

    def invalidate(self):
        with self._lock:
            self._token = None
            self._expires_at = 0.0


def nexhealth_token_fetcher(base_url: str, api_key: str, timeout: int = 10) -> Callable[[], Tuple[str, int]]:
    def fetch() -> Tuple[str, int]:
        if not api_key:
            raise RuntimeError("NEXHEALTH_API_KEY is not configured")

        response = requests.post(
            f"{base_url}/authenticates",
            headers={
                "Accept": "application/vnd.Nexhealth+json;version=2",
                "Authorization": api_key,
            },
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json().get("data", {})
        # NexHealth tokens live for an hour
        return data["token"], int(data.get("expires_in", 3600))

    return fetch
