"""Tests for the request executor: crumb refresh and transport retries."""

from __future__ import annotations

import pytest
import requests

from jenkins_ops_mcp.auth import CRUMB_ENDPOINT, Credentials, JenkinsSession
from jenkins_ops_mcp.exceptions import ApiError, NotFoundError, TransportError
from jenkins_ops_mcp.executor import CrumbRefreshPolicy, RequestExecutor, TransportRetryPolicy

BASE = "https://jenkins.example.com"

CRUMB = {"crumb": "fresh", "crumbRequestField": "Jenkins-Crumb"}


@pytest.fixture
def executor(fake_jenkins, sleeps):
    session = JenkinsSession(BASE, credentials=Credentials("alice", api_token="tok"))
    return RequestExecutor(session, max_retries=3, sleep=sleeps.append)


# ---------------------------------------------------------------------------
# Crumb refresh
# ---------------------------------------------------------------------------


class TestCrumbRefresh:
    def test_403_then_200_refreshes_once(self, executor, fake_jenkins, respond):
        fake_jenkins.route("GET", "api/json", respond(403), respond(json_data={"ok": True}))
        fake_jenkins.route("GET", CRUMB_ENDPOINT, respond(json_data=CRUMB))

        assert executor.execute("api/json") == {"ok": True}
        assert len(fake_jenkins.calls_to("GET", CRUMB_ENDPOINT)) == 1
        assert fake_jenkins.calls_to("GET", "api/json")[1]["headers"]["Jenkins-Crumb"] == "fresh"

    def test_second_403_surfaces_as_api_error(self, executor, fake_jenkins, respond):
        fake_jenkins.route("POST", "job/x/build", respond(403))
        fake_jenkins.route("GET", CRUMB_ENDPOINT, respond(json_data=CRUMB))

        with pytest.raises(ApiError) as exc_info:
            executor.execute("job/x/build", "POST")

        assert exc_info.value.status == 403
        assert len(fake_jenkins.calls_to("POST", "job/x/build")) == 2
        assert len(fake_jenkins.calls_to("GET", CRUMB_ENDPOINT)) == 1

    def test_refresh_does_not_consume_retry_budget(self, executor, fake_jenkins, respond, sleeps):
        fake_jenkins.route("GET", "api/json", respond(403), respond(json_data={}))
        fake_jenkins.route("GET", CRUMB_ENDPOINT, respond(json_data=CRUMB))
        executor.execute("api/json")
        assert sleeps == []

    def test_policy_only_fires_on_first_attempt(self):
        policy = CrumbRefreshPolicy()
        assert policy.should_refresh(403, 1, False)
        assert not policy.should_refresh(403, 2, False)
        assert not policy.should_refresh(403, 1, True)
        assert not policy.should_refresh(401, 1, False)


# ---------------------------------------------------------------------------
# Transport retries
# ---------------------------------------------------------------------------


class TestTransportRetries:
    def test_three_attempts_then_last_error(self, executor, fake_jenkins, sleeps):
        errors = [requests.ConnectionError(f"reset {i}") for i in range(3)]
        fake_jenkins.route("GET", "api/json", *errors)

        with pytest.raises(TransportError) as exc_info:
            executor.execute("api/json")

        assert len(fake_jenkins.calls) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is errors[2]
        assert exc_info.value.__cause__ is errors[2]
        assert sleeps == [2.0, 4.0]

    def test_recovers_after_timeout(self, executor, fake_jenkins, respond, sleeps):
        fake_jenkins.route("GET", "api/json", requests.Timeout("slow"), respond(json_data={"v": 1}))
        assert executor.execute("api/json") == {"v": 1}
        assert sleeps == [2.0]

    def test_post_not_retried_after_read_timeout(self, executor, fake_jenkins):
        fake_jenkins.route("POST", "job/x/build", requests.ReadTimeout("no answer"))
        with pytest.raises(TransportError):
            executor.execute("job/x/build", "POST")
        assert len(fake_jenkins.calls_to("POST", "job/x/build")) == 1

    def test_post_retried_when_connect_failed(self, executor, fake_jenkins, respond):
        fake_jenkins.route("POST", "job/x/build", requests.ConnectTimeout("connect"), respond(201))
        response = executor.execute_response("job/x/build", "POST")
        assert response.status_code == 201
        assert len(fake_jenkins.calls_to("POST", "job/x/build")) == 2

    def test_ssl_error_not_retried(self, executor, fake_jenkins):
        fake_jenkins.route("GET", "api/json", requests.exceptions.SSLError("bad cert"))
        with pytest.raises(TransportError):
            executor.execute("api/json")
        assert len(fake_jenkins.calls) == 1

    def test_backoff_delays(self):
        policy = TransportRetryPolicy(max_retries=3)
        assert [policy.delay(attempt) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TestResponses:
    def test_404_is_not_found(self, executor):
        with pytest.raises(NotFoundError) as exc_info:
            executor.execute("job/missing/api/json")
        assert exc_info.value.status == 404

    def test_500_is_api_error_without_retry(self, executor, fake_jenkins, respond):
        fake_jenkins.route("GET", "api/json", respond(500))
        with pytest.raises(ApiError) as exc_info:
            executor.execute("api/json")
        assert exc_info.value.status == 500
        assert len(fake_jenkins.calls) == 1

    def test_text_body_returned_as_text(self, executor, fake_jenkins, respond):
        fake_jenkins.route("GET", "job/x/1/consoleText", respond(text="Started by user"))
        assert executor.execute("job/x/1/consoleText") == "Started by user"

    def test_empty_json_body(self, executor, fake_jenkins, respond):
        response = respond(headers={"Content-Type": "application/json"})
        fake_jenkins.route("POST", "queue/cancelItem", response)
        assert executor.execute("queue/cancelItem", "POST") == {}
