"""
Data model shared by the client, diagnostics and recovery modules.

Plain dataclasses with ``to_dict`` helpers so results can be handed to the
tool layer as JSON.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

NodeStatus = Literal["online", "offline", "disconnected", "unknown"]
IssueType = Literal["connection", "performance", "build_failure", "resource", "service"]
Severity = Literal["low", "medium", "high", "critical"]
StepStatus = Literal["success", "failed", "skipped"]
FinalStatus = Literal["recovered", "failed", "partial"]
Strategy = Literal["soft", "hard", "auto"]
AuditResult = Literal["success", "failed", "denied"]
RecommendedAction = Literal["monitor", "restart_service", "reboot", "investigate"]


def utc_now() -> str:
    """ISO-8601 UTC timestamp"""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ResourceUsage:
    """Total/used/available figures for one resource (bytes)"""
    total: float
    used: float
    available: float

    @property
    def ratio(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total


@dataclass
class SystemInfo:
    """Host metrics for a node; any figure may be unknown"""
    cpu: Optional[float] = None
    memory: Optional[ResourceUsage] = None
    disk: Optional[ResourceUsage] = None


@dataclass
class BuildHistory:
    total: int = 0
    failed: int = 0
    recent_failures: int = 0


@dataclass
class AgentDiagnosis:
    """Health snapshot of one node, produced fresh on every call"""
    node_name: str
    status: NodeStatus = "unknown"
    platform: str = "unknown"
    system_info: Optional[SystemInfo] = None
    recent_errors: Optional[List[str]] = None
    build_history: Optional[BuildHistory] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Issue:
    type: IssueType
    severity: Severity
    description: str
    suggestion: str
    detected: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IssueReport:
    node_name: str
    issues: List[Issue]
    recommended_action: RecommendedAction
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_name": self.node_name,
            "issues": [issue.to_dict() for issue in self.issues],
            "recommended_action": self.recommended_action,
            "confidence": self.confidence,
        }


@dataclass
class RecoveryStep:
    step: str
    status: StepStatus
    message: str
    timestamp: str = field(default_factory=utc_now)


@dataclass
class RecoveryAttempt:
    """Step-by-step record of one recovery call"""
    node_name: str
    strategy: Strategy
    steps: List[RecoveryStep] = field(default_factory=list)
    final_status: FinalStatus = "failed"

    def add_step(self, step: str, status: StepStatus, message: str) -> RecoveryStep:
        record = RecoveryStep(step=step, status=status, message=message)
        self.steps.append(record)
        return record

    @property
    def success(self) -> bool:
        return self.final_status == "recovered"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class AgentRestartResult:
    success: bool
    node_name: str
    platform: str
    command_executed: str
    message: str
    exit_code: Optional[int] = None
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of one privileged or mutating operation"""
    timestamp: str
    user_id: str
    action: str
    target: str
    result: AuditResult
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "action": self.action,
            "target": self.target,
            "result": self.result,
            "details": dict(self.details),
        }
