"""
Agent recovery engine.

``recover`` walks one node through soft recovery (disconnect, cool down,
relaunch, re-check) and, if that is not enough, a single service restart on
the agent host. Every step is recorded on the returned RecoveryAttempt and
each call writes one summary audit entry.
"""

import logging
import re
import time
from typing import Any, Callable, Dict, Optional

from .diagnostics import AgentDiagnostics, detect_platform
from .exceptions import AuthorizationError, JenkinsError, ValidationError
from .models import AgentRestartResult, RecoveryAttempt
from .validation import validate_node_name

logger = logging.getLogger(__name__)

ADMIN_AUTHORITIES = frozenset({
    "admin",
    "administrator",
    "hudson.model.hudson.administer",
    "overall/administer",
    "role_admin",
})

DEFAULT_RESTART_COMMANDS = {
    "linux": "sudo systemctl restart jenkins-agent || sudo service jenkins-agent restart",
    "windows": 'powershell -Command "Restart-Service -Name jenkins-agent -Force"',
}

_SHELLS = {
    "linux": "['sh', '-c', {command}]",
    "windows": "['cmd', '/c', {command}]",
}

RESTART_SCRIPT = """
def proc = {shell}.execute()
def out = new StringBuffer()
def err = new StringBuffer()
proc.consumeProcessOutput(out, err)
proc.waitFor()
print(out)
print(err)
println("EXIT_CODE=" + proc.exitValue())
""".strip()

_EXIT_CODE_RE = re.compile(r"^EXIT_CODE=(-?\d+)\s*$", re.MULTILINE)

STRATEGIES = ("soft", "hard", "auto")
PLATFORMS = ("linux", "windows", "auto")


def _groovy_literal(value: str) -> str:
    """Single-quoted Groovy string literal"""
    escaped = (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("$", "\\$")
    )
    return f"'{escaped}'"


def has_admin_authority(identity: Optional[Dict[str, Any]]) -> bool:
    if not identity or not identity.get("authenticated"):
        return False
    authorities = identity.get("authorities") or []
    return any(str(authority).lower() in ADMIN_AUTHORITIES for authority in authorities)


class RecoveryEngine:
    """Soft/hard recovery and service restarts for Jenkins agents"""

    def __init__(
            self,
            client,
            diagnostics: Optional[AgentDiagnostics] = None,
            cooldown_seconds: Optional[float] = None,
            settle_seconds: Optional[float] = None,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self.diagnostics = diagnostics or AgentDiagnostics(client)
        settings = client.settings
        self.cooldown_seconds = (
            settings.recovery_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.settle_seconds = settings.recovery_settle_seconds if settle_seconds is None else settle_seconds
        self._sleep = sleep

    # ==================== Authorization ====================

    def require_admin(self) -> Dict[str, Any]:
        """
        Check the administer authority with a fresh who-am-I query.

        Raises:
            AuthorizationError: The current identity is not an administrator
        """
        identity = self.client.who_am_i()
        if not has_admin_authority(identity):
            name = (identity or {}).get("name", "unknown")
            raise AuthorizationError(
                f"User '{name}' does not have the administer authority required to restart agents"
            )
        return identity

    # ==================== Service restart ====================

    def restart_agent(
            self,
            node_name: str,
            platform: Optional[str] = "auto",
            command: Optional[str] = None
    ) -> AgentRestartResult:
        """
        Restart the agent service on a node's host (admin only).

        Args:
            node_name: Jenkins node name
            platform: 'linux', 'windows', or 'auto' to detect from the node
            command: Shell command to run instead of the platform default

        Returns:
            AgentRestartResult; ``success`` is True when the command exited 0

        Raises:
            AuthorizationError: Caller lacks the administer authority
        """
        node_name = validate_node_name(node_name)
        if platform is not None and platform not in PLATFORMS:
            raise ValidationError(f"platform must be one of {', '.join(PLATFORMS)}, got: {platform}")

        try:
            result = self._restart(node_name, platform, command)
        except AuthorizationError as e:
            self.client.audit.record("restart_agent", node_name, "denied", platform=platform, error=str(e))
            raise
        except JenkinsError as e:
            self.client.audit.record("restart_agent", node_name, "failed", platform=platform, error=str(e))
            raise

        self.client.audit.record(
            "restart_agent",
            node_name,
            "success" if result.success else "failed",
            platform=result.platform,
            command=result.command_executed,
            exit_code=result.exit_code,
        )
        return result

    def _restart(self, node_name: str, platform: Optional[str], command: Optional[str]) -> AgentRestartResult:
        self.require_admin()

        if platform in (None, "auto"):
            platform = detect_platform(self.client.get_node_info(node_name))
        command = command or DEFAULT_RESTART_COMMANDS[platform]

        script = RESTART_SCRIPT.format(shell=_SHELLS[platform].format(command=_groovy_literal(command)))
        logger.info(f"Restarting agent service on {node_name} ({platform}): {command}")
        output = self.client.run_script(script, node_name=node_name)

        match = _EXIT_CODE_RE.search(output)
        exit_code = int(match.group(1)) if match else None
        output = _EXIT_CODE_RE.sub("", output).strip()
        success = exit_code == 0

        if success:
            message = f"Agent service restart command completed on {node_name}"
        elif exit_code is None:
            message = f"Restart command on {node_name} did not report an exit code"
        else:
            message = f"Restart command on {node_name} exited with code {exit_code}"

        return AgentRestartResult(
            success=success,
            node_name=node_name,
            platform=platform,
            command_executed=command,
            message=message,
            exit_code=exit_code,
            output=output or None,
        )

    # ==================== Recovery workflow ====================

    def _soft_restart(self, node_name: str) -> bool:
        self.client.disconnect_node(node_name, "Disconnected for automatic recovery")
        self._sleep(self.cooldown_seconds)
        self.client.launch_node(node_name)
        return self.diagnostics.get_node_status(node_name) == "online"

    def recover(self, node_name: str, strategy: str = "auto", max_retries: int = 3) -> RecoveryAttempt:
        """
        Bring a node back online.

        soft: up to ``max_retries`` disconnect/relaunch cycles.
        hard: one service restart, then a settle wait and a re-check.
        auto: soft first, then hard.

        Failures are recorded as steps, never raised, except for invalid
        arguments.
        """
        node_name = validate_node_name(node_name)
        if strategy not in STRATEGIES:
            raise ValidationError(f"strategy must be one of {', '.join(STRATEGIES)}, got: {strategy}")
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
            raise ValidationError(f"max_retries must be a positive integer, got: {max_retries}")

        attempt = RecoveryAttempt(node_name=node_name, strategy=strategy)
        denied = False

        status = self.diagnostics.get_node_status(node_name)
        attempt.add_step(
            "status_check",
            "failed" if status == "unknown" else "success",
            f"Node status: {status}",
        )

        if status == "online":
            attempt.add_step("already_online", "success", "Node is already online; nothing to do")
            attempt.final_status = "recovered"
            return self._finish(attempt, denied)

        if strategy in ("soft", "auto"):
            for retry in range(1, max_retries + 1):
                try:
                    online = self._soft_restart(node_name)
                except JenkinsError as e:
                    attempt.add_step("soft_restart", "failed", f"Attempt {retry}/{max_retries} failed: {e}")
                    continue

                if online:
                    attempt.add_step("soft_restart", "success", f"Attempt {retry}/{max_retries}: node is back online")
                    attempt.final_status = "recovered"
                    return self._finish(attempt, denied)
                attempt.add_step(
                    "soft_restart", "failed", f"Attempt {retry}/{max_retries}: node is still not online"
                )

        if strategy in ("hard", "auto"):
            try:
                result = self._restart(node_name, "auto", None)
            except AuthorizationError as e:
                denied = True
                attempt.add_step("hard_restart", "failed", str(e))
            except JenkinsError as e:
                attempt.add_step("hard_restart", "failed", f"Service restart failed: {e}")
            else:
                attempt.add_step("hard_restart", "success" if result.success else "failed", result.message)
                if result.success:
                    self._sleep(self.settle_seconds)
                    status = self.diagnostics.get_node_status(node_name)
                    if status == "online":
                        attempt.add_step("verify", "success", "Node is back online after service restart")
                        attempt.final_status = "recovered"
                    else:
                        attempt.add_step("verify", "failed", f"Node status after service restart: {status}")
                        attempt.final_status = "partial"

        return self._finish(attempt, denied)

    def _finish(self, attempt: RecoveryAttempt, denied: bool) -> RecoveryAttempt:
        if attempt.success:
            result = "success"
        else:
            result = "denied" if denied else "failed"

        self.client.audit.record(
            "recover_agent",
            attempt.node_name,
            result,
            strategy=attempt.strategy,
            steps=len(attempt.steps),
            final_status=attempt.final_status,
        )
        logger.info(
            f"Recovery of {attempt.node_name} ({attempt.strategy}) finished: {attempt.final_status}"
        )
        return attempt
