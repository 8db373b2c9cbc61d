"""Post-deploy endpoint probe."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

import requests

LOGGER = logging.getLogger(__name__)


class ReadinessProber(Protocol):
    def wait_until_ready(self, service: str, url: str) -> bool: ...


class HttpSmokeProber:
    """Poll a service URL until it answers without a server error."""

    def __init__(
        self,
        *,
        max_attempts: int = 30,
        interval_sec: float = 2.0,
        request_timeout_sec: float = 5.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._interval_sec = interval_sec
        self._request_timeout_sec = request_timeout_sec
        self._session_factory = session_factory
        self._sleep = sleep
        self._logger = logger or LOGGER

    def wait_until_ready(self, service: str, url: str) -> bool:
        # One session per call; worker threads never share a Session.
        with self._session_factory() as session:
            return self._poll(session, service, url)

    def _poll(self, session: requests.Session, service: str, url: str) -> bool:
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = session.get(url, timeout=self._request_timeout_sec)
                if response.status_code < 500:
                    self._logger.info(
                        "smoke.ready service=%s attempt=%s/%s status=%s",
                        service,
                        attempt,
                        self._max_attempts,
                        response.status_code,
                    )
                    return True
                self._logger.info(
                    "smoke.not_ready service=%s attempt=%s/%s status=%s",
                    service,
                    attempt,
                    self._max_attempts,
                    response.status_code,
                )
            except requests.RequestException as exc:
                self._logger.info(
                    "smoke.not_ready service=%s attempt=%s/%s error=%s",
                    service,
                    attempt,
                    self._max_attempts,
                    type(exc).__name__,
                )
            if attempt < self._max_attempts:
                self._sleep(self._interval_sec)
        self._logger.error("smoke.never_ready service=%s url=%s attempts=%s", service, url, self._max_attempts)
        return False
