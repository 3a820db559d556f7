"""Tests for the in-memory audit trail."""

from __future__ import annotations

import dataclasses
import json
import logging

import pytest

from jenkins_ops_mcp.audit import AuditLog
from jenkins_ops_mcp.exceptions import ApiError, AuthorizationError
from jenkins_ops_mcp.jenkins_client import JenkinsClient


class TestAuditLog:
    def test_record_is_immutable(self):
        log = AuditLog("alice")
        entry = log.record("delete_job", "app", "success", endpoint="job/app/doDelete")

        assert entry.user_id == "alice"
        assert entry.details == {"endpoint": "job/app/doDelete"}
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.result = "failed"

    def test_anonymous_user(self):
        assert AuditLog().record("x", "y", "success").user_id == "anonymous"

    def test_track_success_with_details(self):
        log = AuditLog("alice")
        with log.track("trigger_build", "app") as details:
            details["queue_id"] = 12

        (entry,) = log.entries()
        assert (entry.action, entry.result) == ("trigger_build", "success")
        assert entry.details == {"queue_id": 12}

    @pytest.mark.parametrize("error,result", [
        (AuthorizationError("not admin"), "denied"),
        (ApiError(500, "Server Error"), "failed"),
    ])
    def test_track_failure_propagates(self, error, result):
        log = AuditLog("alice")
        with pytest.raises(type(error)):
            with log.track("restart_agent", "agent-1"):
                raise error

        (entry,) = log.entries()
        assert entry.result == result
        assert entry.details["error"] == str(error)

    def test_entries_is_a_snapshot(self):
        log = AuditLog("alice")
        log.record("a", "t", "success")
        snapshot = log.entries()
        log.record("b", "t", "success")
        assert len(snapshot) == 1
        assert len(log) == 2

    def test_keeps_only_newest_entries(self):
        log = AuditLog("alice")
        for i in range(1500):
            log.record("trigger_build", f"job-{i}", "success")

        entries = log.entries()
        assert len(entries) == log.max_entries == 1000
        assert entries[0].target == "job-500"
        assert entries[-1].target == "job-1499"

    def test_custom_bound(self):
        log = AuditLog("alice", max_entries=3)
        for target in "abcde":
            log.record("delete_job", target, "success")
        assert [entry.target for entry in log.entries()] == ["c", "d", "e"]

    def test_client_bound_comes_from_settings(self, settings):
        client = JenkinsClient(settings.model_copy(update={"audit_max_entries": 5}))
        assert client.audit.max_entries == 5


class TestAuditEvents:
    def test_event_goes_to_stdlib_logger_not_stdout(self, caplog, capsys):
        caplog.set_level(logging.INFO, logger="jenkins_ops_mcp.audit")

        AuditLog("alice").record("stop_build", "app", "failed", build_number=3)

        assert capsys.readouterr().out == ""
        (record,) = [r for r in caplog.records if r.name == "jenkins_ops_mcp.audit"]
        event = json.loads(record.getMessage())
        assert event["event"] == "audit"
        assert event["action"] == "stop_build"
        assert event["details"] == {"build_number": 3}

    def test_silent_below_info(self, caplog, capsys):
        caplog.set_level(logging.WARNING, logger="jenkins_ops_mcp.audit")
        AuditLog("alice").record("stop_build", "app", "success")
        assert capsys.readouterr().out == ""
        assert not [r for r in caplog.records if r.name == "jenkins_ops_mcp.audit"]
