"""Tests for agent diagnostics, metrics providers and issue detection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from jenkins_ops_mcp.diagnostics import (
    AgentDiagnostics,
    MonitorDataMetricsProvider,
    NodeMetricsProvider,
    SimulatedMetricsProvider,
    classify_issues,
    detect_platform,
    node_status,
)
from jenkins_ops_mcp.exceptions import ApiError, ValidationError
from jenkins_ops_mcp.jenkins_client import JenkinsClient
from jenkins_ops_mcp.models import AgentDiagnosis, BuildHistory, ResourceUsage, SystemInfo

GIB = 1024 ** 3


class _FixedMetrics(NodeMetricsProvider):
    def __init__(self, info):
        self.info = info

    def collect(self, node_name, node_info):
        return self.info


def _client(node_info=None, history=None):
    client = MagicMock(spec=JenkinsClient)
    client.get_node_info.return_value = node_info if node_info is not None else {"offline": False}
    client.get_node_builds.return_value = history or BuildHistory()
    return client


# ---------------------------------------------------------------------------
# Node classification
# ---------------------------------------------------------------------------


class TestNodeStatus:
    @pytest.mark.parametrize("info,expected", [
        ({"offline": False}, "online"),
        ({"offline": True, "temporarilyOffline": True}, "offline"),
        ({"offline": True, "temporarilyOffline": False}, "disconnected"),
        ({}, "online"),
    ])
    def test_mapping(self, info, expected):
        assert node_status(info) == expected

    @pytest.mark.parametrize("info,expected", [
        ({"displayName": "win-builder"}, "linux"),
        ({"displayName": "Windows-01"}, "windows"),
        ({"description": "Windows Server 2022 agent"}, "windows"),
        ({"monitorData": {"hudson.node_monitors.ArchitectureMonitor": "Windows 10 (amd64)"}}, "windows"),
        ({"displayName": "ubuntu-01"}, "linux"),
    ])
    def test_platform_detection(self, info, expected):
        assert detect_platform(info) == expected


# ---------------------------------------------------------------------------
# Issue detection
# ---------------------------------------------------------------------------


class TestClassifyIssues:
    def test_offline_clean_metrics_is_one_connection_issue(self):
        diagnosis = AgentDiagnosis(
            node_name="agent-1",
            status="offline",
            system_info=SystemInfo(cpu=10.0, memory=ResourceUsage(8, 2, 6), disk=ResourceUsage(100, 20, 80)),
            build_history=BuildHistory(total=10, failed=1, recent_failures=0),
        )
        report = classify_issues(diagnosis)

        assert [(i.type, i.severity) for i in report.issues] == [("connection", "high")]
        assert report.recommended_action == "restart_service"
        assert report.confidence == 0.8

    def test_healthy_node_is_monitor(self):
        report = classify_issues(AgentDiagnosis(node_name="a", status="online"))
        assert report.issues == []
        assert (report.recommended_action, report.confidence) == ("monitor", 0.5)

    def test_thresholds(self):
        diagnosis = AgentDiagnosis(
            node_name="a",
            status="online",
            system_info=SystemInfo(
                cpu=95.0,
                memory=ResourceUsage(100, 91, 9),
                disk=ResourceUsage(100, 95, 5),
            ),
            build_history=BuildHistory(total=20, failed=6, recent_failures=4),
        )
        issues = classify_issues(diagnosis).issues
        assert [(i.type, i.severity) for i in issues] == [
            ("performance", "high"),
            ("resource", "medium"),
            ("resource", "high"),
            ("build_failure", "medium"),
        ]

    def test_values_at_threshold_do_not_trigger(self):
        diagnosis = AgentDiagnosis(
            node_name="a",
            status="online",
            system_info=SystemInfo(cpu=90.0, memory=ResourceUsage(10, 9, 1), disk=ResourceUsage(10, 9, 1)),
            build_history=BuildHistory(recent_failures=3),
        )
        assert classify_issues(diagnosis).issues == []

    def test_medium_only_is_investigate(self):
        diagnosis = AgentDiagnosis(
            node_name="a", status="online", build_history=BuildHistory(total=9, failed=5, recent_failures=5)
        )
        report = classify_issues(diagnosis)
        assert (report.recommended_action, report.confidence) == ("investigate", 0.6)

    def test_report_serializes(self):
        data = classify_issues(AgentDiagnosis(node_name="a", status="disconnected")).to_dict()
        assert data["issues"][0]["type"] == "connection"
        assert "detected" in data["issues"][0]


# ---------------------------------------------------------------------------
# Metrics providers
# ---------------------------------------------------------------------------


class TestMetricsProviders:
    def test_monitor_data_memory(self):
        info = {"monitorData": {"hudson.node_monitors.SwapSpaceMonitor": {
            "totalPhysicalMemory": 8 * GIB, "availablePhysicalMemory": 2 * GIB,
        }}}
        system = MonitorDataMetricsProvider().collect("a", info)
        assert system.memory.used == 6 * GIB
        assert system.cpu is None and system.disk is None

    def test_monitor_data_missing(self):
        assert MonitorDataMetricsProvider().collect("a", {"monitorData": {}}) is None

    def test_simulated_is_reproducible(self):
        first = SimulatedMetricsProvider(seed=7).collect("a", {})
        second = SimulatedMetricsProvider(seed=7).collect("a", {})
        assert first == second
        assert 0 <= first.cpu <= 100


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestAgentDiagnostics:
    def test_full_diagnosis(self):
        client = _client(
            {"offline": True, "temporarilyOffline": False, "offlineCauseReason": "Connection was broken",
             "displayName": "agent-1"},
            BuildHistory(total=5, failed=2, recent_failures=1),
        )
        metrics = SystemInfo(cpu=50.0)
        diagnosis = AgentDiagnostics(client, _FixedMetrics(metrics)).get_agent_diagnostics("agent-1")

        assert diagnosis.status == "disconnected"
        assert diagnosis.platform == "linux"
        assert diagnosis.system_info is metrics
        assert diagnosis.build_history.failed == 2
        assert diagnosis.recent_errors == ["Offline cause: Connection was broken"]

    def test_optional_sections_skipped(self):
        client = _client()
        diagnosis = AgentDiagnostics(client, _FixedMetrics(SystemInfo(cpu=1.0))).get_agent_diagnostics(
            "agent-1", include_system_info=False, include_logs=False
        )
        assert diagnosis.system_info is None
        assert diagnosis.build_history is None
        client.get_node_builds.assert_not_called()

    def test_unreachable_node_is_unknown_not_raised(self):
        client = _client()
        client.get_node_info.side_effect = ApiError(500, "Server Error")
        diagnosis = AgentDiagnostics(client).get_agent_diagnostics("agent-1")
        assert diagnosis.status == "unknown"
        assert "Failed to fetch node information" in diagnosis.recent_errors[0]

    def test_feed_failure_recorded(self):
        client = _client()
        client.get_node_builds.side_effect = ApiError(404, "Not Found")
        diagnosis = AgentDiagnostics(client).get_agent_diagnostics("agent-1")
        assert diagnosis.build_history is None
        assert diagnosis.recent_errors[0].startswith("Failed to read build history")

    def test_empty_node_name_raises(self):
        with pytest.raises(ValidationError):
            AgentDiagnostics(_client()).get_agent_diagnostics("")

    def test_detect_issues(self):
        client = _client({"offline": True, "temporarilyOffline": True})
        report = AgentDiagnostics(client, _FixedMetrics(None)).detect_issues("agent-1")
        assert report.node_name == "agent-1"
        assert report.recommended_action == "restart_service"
