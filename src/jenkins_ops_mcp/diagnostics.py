"""
Agent diagnostics and issue detection.

A diagnosis is built fresh from the node document, a pluggable metrics
provider and the node's build feeds. Issue detection is a pure function of
that diagnosis.
"""

import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import JenkinsError
from .models import AgentDiagnosis, Issue, IssueReport, NodeStatus, ResourceUsage, SystemInfo
from .validation import validate_node_name

logger = logging.getLogger(__name__)

CPU_THRESHOLD = 90.0
MEMORY_THRESHOLD = 0.9
DISK_THRESHOLD = 0.9
RECENT_FAILURE_THRESHOLD = 3

SWAP_SPACE_MONITOR = "hudson.node_monitors.SwapSpaceMonitor"
ARCHITECTURE_MONITOR = "hudson.node_monitors.ArchitectureMonitor"

_GIB = 1024 ** 3


def node_status(node_info: Dict[str, Any]) -> NodeStatus:
    """online / offline (taken offline on purpose) / disconnected (channel lost)"""
    if not node_info.get("offline"):
        return "online"
    if node_info.get("temporarilyOffline"):
        return "offline"
    return "disconnected"


def detect_platform(node_info: Dict[str, Any]) -> str:
    """'windows' when the node name, description or architecture says so, else 'linux'"""
    monitor_data = node_info.get("monitorData") or {}
    haystack = " ".join(
        str(value) for value in (
            node_info.get("displayName"),
            node_info.get("description"),
            monitor_data.get(ARCHITECTURE_MONITOR),
        ) if value
    )
    return "windows" if "windows" in haystack.lower() else "linux"


# ==================== Metrics providers ====================

class NodeMetricsProvider(ABC):
    """Source of host metrics for a node"""

    @abstractmethod
    def collect(self, node_name: str, node_info: Dict[str, Any]) -> Optional[SystemInfo]:
        """Return the node's metrics, or None when nothing is known"""


class MonitorDataMetricsProvider(NodeMetricsProvider):
    """
    Metrics from the node monitors Jenkins already runs.

    Physical memory comes from SwapSpaceMonitor. DiskSpaceMonitor only reports
    free bytes, so disk usage stays unknown; CPU is not monitored by Jenkins.
    """

    def collect(self, node_name: str, node_info: Dict[str, Any]) -> Optional[SystemInfo]:
        swap = (node_info.get("monitorData") or {}).get(SWAP_SPACE_MONITOR)
        if not isinstance(swap, dict):
            logger.debug(f"No memory monitor data for node {node_name}")
            return None

        total = swap.get("totalPhysicalMemory") or 0
        available = swap.get("availablePhysicalMemory") or 0
        if total <= 0:
            return None

        return SystemInfo(memory=ResourceUsage(total=total, used=total - available, available=available))


class SimulatedMetricsProvider(NodeMetricsProvider):
    """Placeholder figures for demos and tests; reproducible with a seed"""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def _usage(self, total: float) -> ResourceUsage:
        used = total * self._random.uniform(0.1, 0.95)
        return ResourceUsage(total=total, used=used, available=total - used)

    def collect(self, node_name: str, node_info: Dict[str, Any]) -> Optional[SystemInfo]:
        return SystemInfo(
            cpu=round(self._random.uniform(0, 100), 1),
            memory=self._usage(8 * _GIB),
            disk=self._usage(100 * _GIB),
        )


# ==================== Issue detection ====================

def classify_issues(diagnosis: AgentDiagnosis) -> IssueReport:
    """
    Threshold rules over one diagnosis.

    Recommended action precedence: critical -> reboot, high -> restart_service,
    connection -> restart_service, any -> investigate, none -> monitor.
    """
    issues: List[Issue] = []

    if diagnosis.status != "online":
        issues.append(Issue(
            type="connection",
            severity="high",
            description=f"Agent is {diagnosis.status}",
            suggestion="Reconnect the agent or restart the agent service",
        ))

    info = diagnosis.system_info
    if info is not None:
        if info.cpu is not None and info.cpu > CPU_THRESHOLD:
            issues.append(Issue(
                type="performance",
                severity="high",
                description=f"High CPU usage: {info.cpu:.1f}%",
                suggestion="Check for runaway processes or reduce executor count",
            ))
        if info.memory is not None and info.memory.ratio > MEMORY_THRESHOLD:
            issues.append(Issue(
                type="resource",
                severity="medium",
                description=f"High memory usage: {info.memory.ratio:.0%}",
                suggestion="Restart long-running processes or add memory to the agent",
            ))
        if info.disk is not None and info.disk.ratio > DISK_THRESHOLD:
            issues.append(Issue(
                type="resource",
                severity="high",
                description=f"Low disk space: {info.disk.ratio:.0%} used",
                suggestion="Clean up workspaces and old build artifacts",
            ))

    history = diagnosis.build_history
    if history is not None and history.recent_failures > RECENT_FAILURE_THRESHOLD:
        issues.append(Issue(
            type="build_failure",
            severity="medium",
            description=f"{history.recent_failures} recent build failures on this agent",
            suggestion="Inspect recent console logs for environment problems on the agent",
        ))

    action, confidence = _recommend(issues)
    return IssueReport(
        node_name=diagnosis.node_name,
        issues=issues,
        recommended_action=action,
        confidence=confidence,
    )


def _recommend(issues: List[Issue]) -> Tuple[str, float]:
    severities = {issue.severity for issue in issues}
    if "critical" in severities:
        return "reboot", 0.9
    if "high" in severities:
        return "restart_service", 0.8
    if any(issue.type == "connection" for issue in issues):
        return "restart_service", 0.7
    if issues:
        return "investigate", 0.6
    return "monitor", 0.5


class AgentDiagnostics:
    """Builds AgentDiagnosis snapshots through a JenkinsClient"""

    def __init__(self, client, metrics_provider: Optional[NodeMetricsProvider] = None):
        self.client = client
        self.metrics_provider = metrics_provider or MonitorDataMetricsProvider()

    def get_node_status(self, node_name: str) -> NodeStatus:
        try:
            return node_status(self.client.get_node_info(node_name))
        except JenkinsError as e:
            logger.warning(f"Status check failed for node {node_name}: {e}")
            return "unknown"

    def get_agent_diagnostics(
            self,
            node_name: str,
            include_system_info: bool = True,
            include_logs: bool = True
    ) -> AgentDiagnosis:
        """
        Diagnose one node.

        Jenkins failures are reported in ``recent_errors`` rather than raised;
        only an invalid node name raises.
        """
        node_name = validate_node_name(node_name)

        try:
            node_info = self.client.get_node_info(node_name)
        except JenkinsError as e:
            logger.warning(f"Could not fetch node {node_name}: {e}")
            return AgentDiagnosis(
                node_name=node_name,
                recent_errors=[f"Failed to fetch node information: {e}"],
            )

        errors: List[str] = []
        reason = node_info.get("offlineCauseReason")
        if reason:
            errors.append(f"Offline cause: {reason}")

        diagnosis = AgentDiagnosis(
            node_name=node_name,
            status=node_status(node_info),
            platform=detect_platform(node_info),
        )

        if include_system_info:
            diagnosis.system_info = self.metrics_provider.collect(node_name, node_info)

        if include_logs:
            try:
                diagnosis.build_history = self.client.get_node_builds(node_name)
            except JenkinsError as e:
                logger.warning(f"Could not read build history for node {node_name}: {e}")
                errors.append(f"Failed to read build history: {e}")

        diagnosis.recent_errors = errors
        logger.info(f"Diagnosed node {node_name}: status={diagnosis.status}, platform={diagnosis.platform}")
        return diagnosis

    def detect_issues(self, node_name: str) -> IssueReport:
        return classify_issues(self.get_agent_diagnostics(node_name))
