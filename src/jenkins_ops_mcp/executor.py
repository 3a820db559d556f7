"""
Request execution with Jenkins-specific retry rules.

Two policies are composed, and they never share a budget:

* ``CrumbRefreshPolicy`` - a 403 on the first attempt means the CSRF crumb is
  missing or stale; refresh it and resend once.
* ``TransportRetryPolicy`` - timeouts and connection failures are retried with
  exponential backoff (2^attempt seconds), up to ``max_retries`` attempts.
  Non-idempotent requests are only retried when the failure happened while
  connecting, i.e. before anything reached the server.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from .auth import JenkinsSession
from .exceptions import ApiError, NotFoundError, TransportError

logger = logging.getLogger(__name__)

_IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS"}


@dataclass
class PendingRequest:
    """One logical call; lives only for the duration of ``execute``"""
    method: str
    endpoint: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    data: Any = None
    idempotent: bool = True
    attempt: int = 1


class CrumbRefreshPolicy:
    """One crumb refresh per call, only on a first-attempt 403"""

    def should_refresh(self, status_code: int, attempt: int, already_refreshed: bool) -> bool:
        return status_code == 403 and attempt == 1 and not already_refreshed


class TransportRetryPolicy:
    """Exponential backoff for transport faults"""

    def __init__(self, max_retries: int = 3, base: float = 2.0):
        self.max_retries = max(1, int(max_retries))
        self.base = base

    def is_retryable(self, error: requests.RequestException, idempotent: bool) -> bool:
        if isinstance(error, requests.exceptions.SSLError):
            return False
        if not idempotent:
            return isinstance(error, requests.exceptions.ConnectTimeout)
        return isinstance(error, (requests.ConnectionError, requests.Timeout))

    def should_retry(self, error: requests.RequestException, attempt: int, idempotent: bool) -> bool:
        return attempt < self.max_retries and self.is_retryable(error, idempotent)

    def delay(self, attempt: int) -> float:
        return self.base ** attempt


class RequestExecutor:
    """
    Issues calls through a JenkinsSession.

    ``execute`` returns decoded JSON (when the response says so) or text;
    ``execute_response`` returns the raw ``requests.Response`` for callers that
    need headers.
    """

    def __init__(
            self,
            session: JenkinsSession,
            max_retries: int = 3,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.session = session
        self.crumb_policy = CrumbRefreshPolicy()
        self.transport_policy = TransportRetryPolicy(max_retries)
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self.transport_policy.max_retries

    def execute(self, endpoint: str, method: str = "GET", **options) -> Any:
        return self.decode(self.execute_response(endpoint, method, **options))

    def execute_response(
            self,
            endpoint: str,
            method: str = "GET",
            *,
            params: Optional[Dict[str, Any]] = None,
            data: Any = None,
            headers: Optional[Dict[str, str]] = None,
            idempotent: Optional[bool] = None
    ) -> requests.Response:
        method = method.upper()
        request = PendingRequest(
            method=method,
            endpoint=endpoint,
            headers=dict(headers or {}),
            params=params,
            data=data,
            idempotent=method in _IDEMPOTENT_METHODS if idempotent is None else idempotent,
        )
        url = self.session.url_for(endpoint)
        crumb_refreshed = False

        while True:
            logger.debug(f"Jenkins request: {method} {url} (attempt {request.attempt})")
            try:
                response = self.session.send(
                    method, endpoint, headers=request.headers, params=request.params, data=request.data
                )
            except requests.RequestException as e:
                logger.warning(f"Request attempt {request.attempt} failed: {e}")
                if not self.transport_policy.should_retry(e, request.attempt, request.idempotent):
                    raise TransportError(
                        f"Jenkins request failed after {request.attempt} attempt(s): {method} {url}: {e}",
                        url=url,
                        attempts=request.attempt,
                        last_error=e,
                    ) from e
                delay = self.transport_policy.delay(request.attempt)
                logger.debug(f"Retrying in {delay}s...")
                self._sleep(delay)
                request.attempt += 1
                continue

            if response.ok:
                return response

            if self.crumb_policy.should_refresh(response.status_code, request.attempt, crumb_refreshed):
                logger.info("Got 403, refreshing CSRF crumb...")
                crumb_refreshed = True
                self._refresh_crumb(url)
                continue

            raise self._api_error(response, url)

    def _refresh_crumb(self, url: str) -> None:
        try:
            self.session.fetch_crumb()
        except requests.RequestException as e:
            raise TransportError(f"Could not refresh CSRF crumb: {e}", url=url, attempts=1, last_error=e) from e

    @staticmethod
    def _api_error(response: requests.Response, url: str) -> ApiError:
        reason = response.reason or ""
        if response.status_code == 404:
            return NotFoundError(reason or "Not Found", url=url)
        return ApiError(response.status_code, reason, url=url)

    @staticmethod
    def decode(response: requests.Response) -> Any:
        content_type = response.headers.get("Content-Type", "") if response.headers else ""
        if "json" in content_type.lower():
            if not response.content:
                return {}
            return response.json()
        return response.text
