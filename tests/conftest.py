"""Shared fixtures: real requests.Response objects and a routed fake transport."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from jenkins_ops_mcp.config import JenkinsSettings
from jenkins_ops_mcp.jenkins_client import JenkinsClient

BASE_URL = "https://jenkins.example.com"

_REASONS = {200: "OK", 201: "Created", 302: "Found", 403: "Forbidden", 404: "Not Found", 500: "Server Error"}


def make_response(
        status: int = 200,
        json_data: Any = None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = _REASONS.get(status, "")
    response.encoding = "utf-8"
    all_headers = {}
    if json_data is not None:
        response._content = json.dumps(json_data).encode("utf-8")
        all_headers["Content-Type"] = "application/json;charset=utf-8"
    else:
        response._content = (text or "").encode("utf-8")
        all_headers["Content-Type"] = "text/plain;charset=utf-8"
    all_headers.update(headers or {})
    response.headers = CaseInsensitiveDict(all_headers)
    return response


class FakeJenkins:
    """
    Routes (method, path) to queued responses or exceptions.

    The last queued item for a route repeats once the queue is drained.
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def route(self, method: str, path: str, *results: Any) -> None:
        self.routes[(method.upper(), path)] = list(results)

    def __call__(self, method, url, headers=None, **kwargs):
        path = url[len(self.base_url) + 1:] if url.startswith(self.base_url) else url
        self.calls.append({"method": method, "path": path, "headers": dict(headers or {}), **kwargs})
        queue = self.routes.get((method.upper(), path))
        if not queue:
            return make_response(404)
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


@pytest.fixture
def fake_jenkins():
    fake = FakeJenkins()
    with patch("jenkins_ops_mcp.auth.requests.request", side_effect=fake):
        yield fake


@pytest.fixture
def settings():
    return JenkinsSettings(
        _env_file=None,
        jenkins_url=BASE_URL,
        username="alice",
        token="api-token",
        recovery_cooldown_seconds=0,
        recovery_settle_seconds=0,
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(settings, fake_jenkins, sleeps):
    return JenkinsClient(settings, sleep=sleeps.append)


@pytest.fixture
def respond():
    return make_response
