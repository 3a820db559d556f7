"""
Jenkins Ops MCP Server

Exposes the Jenkins client, agent diagnostics and recovery engine as MCP
tools. Handlers only translate arguments and results; every behaviour lives
in the client and engine modules.
"""
from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from . import __version__
from .config import JenkinsSettings, get_default_settings
from .diagnostics import AgentDiagnostics
from .exceptions import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from .jenkins_client import JenkinsClient, build_freestyle_config, build_pipeline_config, get_jenkins_client
from .recovery import RecoveryEngine

logger = logging.getLogger(__name__)

server = Server("jenkins-ops-mcp")

_jenkins_settings: Optional[JenkinsSettings] = None
_context: Optional["ToolContext"] = None


@dataclass
class ToolContext:
    client: JenkinsClient
    diagnostics: AgentDiagnostics
    recovery: RecoveryEngine


def set_jenkins_settings(settings: JenkinsSettings) -> None:
    """Set Jenkins settings for the server (called from __init__.py)"""
    global _jenkins_settings, _context
    _jenkins_settings = settings
    _context = None


def get_settings() -> JenkinsSettings:
    global _jenkins_settings
    if _jenkins_settings is None:
        _jenkins_settings = get_default_settings()
    return _jenkins_settings


def get_context() -> ToolContext:
    """Client and engines shared by all tool calls"""
    global _context
    if _context is None:
        logger.info("Creating new Jenkins client")
        client = get_jenkins_client(get_settings())
        diagnostics = AgentDiagnostics(client)
        _context = ToolContext(client, diagnostics, RecoveryEngine(client, diagnostics))
    return _context


# ==================== Argument helpers ====================

def _require(args: Dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required argument: {key}")
    return value


def _bool_arg(args: Dict[str, Any], key: str, default: bool = False) -> bool:
    value = args.get(key, default)
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('true', '1', 'yes')


def _json_result(data: Any) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def truncate_lines(text: str, max_lines: int, tail_only: bool = False) -> Tuple[str, str]:
    """Cut console output to max_lines; returns (text, note)"""
    lines = text.split('\n')
    total = len(lines)
    if total <= max_lines:
        return text, f"Complete output: {total} lines"
    if tail_only:
        return '\n'.join(lines[-max_lines:]), (
            f"Showing last {max_lines} of {total} lines - {total - max_lines} earlier lines omitted"
        )
    return '\n'.join(lines[:max_lines]), (
        f"Showing first {max_lines} of {total} lines - {total - max_lines} later lines truncated"
    )


# ==================== Tool Handlers ====================

def _tool_list_jobs(ctx: ToolContext, args):
    jobs = ctx.client.list_jobs()
    name_filter = (args.get("filter") or "").lower()
    if name_filter:
        jobs = [job for job in jobs if name_filter in (job.get("fullName") or job.get("name", "")).lower()]
    return {"count": len(jobs), "jobs": jobs}


def _tool_get_job(ctx: ToolContext, args):
    return ctx.client.get_job(_require(args, "job_name"))


def _tool_get_job_status(ctx: ToolContext, args):
    return ctx.client.get_job_status(_require(args, "job_name"), args.get("build_number"))


def _tool_create_job(ctx: ToolContext, args):
    job_name = _require(args, "job_name")
    config_xml = args.get("config_xml")
    if not config_xml:
        job_type = args.get("job_type", "pipeline")
        if job_type == "freestyle":
            config_xml = build_freestyle_config(args.get("description"), args.get("commands"))
        elif job_type == "pipeline":
            config_xml = build_pipeline_config(args.get("description"), args.get("script"))
        else:
            raise ValidationError(f"job_type must be 'freestyle' or 'pipeline', got: {job_type}")
    return ctx.client.create_job(job_name, config_xml)


def _tool_update_job(ctx: ToolContext, args):
    return ctx.client.update_job(_require(args, "job_name"), _require(args, "config_xml"))


def _tool_delete_job(ctx: ToolContext, args):
    return ctx.client.delete_job(_require(args, "job_name"))


def _tool_get_job_config(ctx: ToolContext, args):
    job_name = _require(args, "job_name")
    return {"job": job_name, "config_xml": ctx.client.get_job_config(job_name)}


def _tool_trigger_build(ctx: ToolContext, args):
    return ctx.client.trigger_build(_require(args, "job_name"), args.get("parameters"), args.get("delay"))


def _tool_get_build(ctx: ToolContext, args):
    return ctx.client.get_build(_require(args, "job_name"), _require(args, "build_number"))


def _tool_get_build_logs(ctx: ToolContext, args):
    settings = get_settings()
    try:
        max_lines = max(10, min(int(args.get("max_lines", settings.console_max_lines)), 50000))
    except (ValueError, TypeError):
        max_lines = settings.console_max_lines

    logs = ctx.client.get_build_logs(
        _require(args, "job_name"),
        args.get("build_number", "lastBuild"),
        start=args.get("start", 0),
        progressive=_bool_arg(args, "progressive"),
    )
    text, note = truncate_lines(logs["text"], max_lines, _bool_arg(args, "tail_only"))
    return {**logs, "text": text, "note": note}


def _tool_stop_build(ctx: ToolContext, args):
    return ctx.client.stop_build(_require(args, "job_name"), _require(args, "build_number"))


def _tool_list_nodes(ctx: ToolContext, args):
    nodes = ctx.client.list_nodes()
    return {"count": len(nodes), "nodes": nodes}


def _tool_get_node_status(ctx: ToolContext, args):
    return ctx.client.get_node_status(args.get("node_name"))


def _tool_get_queue(ctx: ToolContext, args):
    items = ctx.client.get_queue()
    return {"count": len(items), "items": items}


def _tool_cancel_queue_item(ctx: ToolContext, args):
    return ctx.client.cancel_queue_item(_require(args, "queue_id"))


def _tool_get_version(ctx: ToolContext, args):
    return ctx.client.get_version()


def _tool_restart_agent(ctx: ToolContext, args):
    result = ctx.recovery.restart_agent(
        _require(args, "node_name"),
        platform=args.get("platform", "auto"),
        command=args.get("command"),
    )
    return result.to_dict()


def _tool_agent_diagnostics(ctx: ToolContext, args):
    diagnosis = ctx.diagnostics.get_agent_diagnostics(
        _require(args, "node_name"),
        include_system_info=_bool_arg(args, "include_system_info", True),
        include_logs=_bool_arg(args, "include_logs", True),
    )
    return diagnosis.to_dict()


def _tool_auto_recovery(ctx: ToolContext, args):
    attempt = ctx.recovery.recover(
        _require(args, "node_name"),
        strategy=args.get("strategy", "auto"),
        max_retries=args.get("max_retries", 3),
    )
    return attempt.to_dict()


def _tool_detect_agent_issues(ctx: ToolContext, args):
    return ctx.diagnostics.detect_issues(_require(args, "node_name")).to_dict()


def _tool_ssl_diagnostics(ctx: ToolContext, args):
    return ctx.client.ssl_diagnostics()


def _tool_auth_status(ctx: ToolContext, args):
    return ctx.client.auth_status()


TOOL_HANDLERS: Dict[str, Callable[[ToolContext, Dict[str, Any]], Any]] = {
    # Jobs
    "jenkins_list_jobs": _tool_list_jobs,
    "jenkins_get_job": _tool_get_job,
    "jenkins_get_job_status": _tool_get_job_status,
    "jenkins_create_job": _tool_create_job,
    "jenkins_update_job": _tool_update_job,
    "jenkins_delete_job": _tool_delete_job,
    "jenkins_get_job_config": _tool_get_job_config,

    # Builds
    "jenkins_trigger_build": _tool_trigger_build,
    "jenkins_get_build": _tool_get_build,
    "jenkins_get_build_logs": _tool_get_build_logs,
    "jenkins_stop_build": _tool_stop_build,

    # Nodes & queue
    "jenkins_list_nodes": _tool_list_nodes,
    "jenkins_get_node_status": _tool_get_node_status,
    "jenkins_get_queue": _tool_get_queue,
    "jenkins_cancel_queue_item": _tool_cancel_queue_item,
    "jenkins_get_version": _tool_get_version,

    # Agents
    "jenkins_restart_agent": _tool_restart_agent,
    "jenkins_agent_diagnostics": _tool_agent_diagnostics,
    "jenkins_auto_recovery": _tool_auto_recovery,
    "jenkins_detect_agent_issues": _tool_detect_agent_issues,

    # Connection
    "jenkins_ssl_diagnostics": _tool_ssl_diagnostics,
    "jenkins_auth_status": _tool_auth_status,
}


# ==================== Tools ====================

_JOB_NAME = {"type": "string", "description": "Job name; use '/' for folders (e.g. 'folder/sub/my-job')"}
_BUILD_NUMBER = {
    "type": ["integer", "string"],
    "description": "Build number or alias (lastBuild, lastSuccessfulBuild, lastFailedBuild)",
}
_NODE_NAME = {"type": "string", "description": "Name of the Jenkins node/agent"}


def _schema(properties: Optional[Dict[str, Any]] = None, required: Tuple[str, ...] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = list(required)
    return schema


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools for interacting with Jenkins"""
    tools = [
        # Jobs
        types.Tool(
            name="jenkins_list_jobs",
            description="List Jenkins jobs with optional name filtering",
            inputSchema=_schema({
                "filter": {"type": "string", "description": "Case-insensitive partial match on the job name"},
            }),
        ),
        types.Tool(
            name="jenkins_get_job",
            description="Get details of a Jenkins job",
            inputSchema=_schema({"job_name": _JOB_NAME}, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_get_job_status",
            description="Get a job with its last (or given) build and whether it is building",
            inputSchema=_schema({"job_name": _JOB_NAME, "build_number": _BUILD_NUMBER}, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_create_job",
            description="Create a job from config XML or from a freestyle/pipeline template",
            inputSchema=_schema({
                "job_name": _JOB_NAME,
                "config_xml": {"type": "string", "description": "Full config.xml (overrides job_type)"},
                "job_type": {"type": "string", "enum": ["freestyle", "pipeline"]},
                "description": {"type": "string"},
                "script": {"type": "string", "description": "Pipeline script (pipeline jobs)"},
                "commands": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Shell commands (freestyle jobs)",
                },
            }, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_update_job",
            description="Replace a job's config.xml",
            inputSchema=_schema({"job_name": _JOB_NAME, "config_xml": {"type": "string"}},
                                ("job_name", "config_xml")),
        ),
        types.Tool(
            name="jenkins_delete_job",
            description="Delete a Jenkins job",
            inputSchema=_schema({"job_name": _JOB_NAME}, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_get_job_config",
            description="Get a job's config.xml",
            inputSchema=_schema({"job_name": _JOB_NAME}, ("job_name",)),
        ),

        # Builds
        types.Tool(
            name="jenkins_trigger_build",
            description="Trigger a Jenkins job build with optional parameters",
            inputSchema=_schema({
                "job_name": _JOB_NAME,
                "parameters": {
                    "type": "object",
                    "description": "Build parameters (key-value pairs)",
                    "additionalProperties": {"type": ["string", "number", "boolean"]},
                },
                "delay": {"type": "integer", "description": "Quiet period in seconds", "minimum": 0},
            }, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_get_build",
            description="Get information about a build",
            inputSchema=_schema({"job_name": _JOB_NAME, "build_number": _BUILD_NUMBER},
                                ("job_name", "build_number")),
        ),
        types.Tool(
            name="jenkins_get_build_logs",
            description="Get build console output, in full or progressively from a byte offset",
            inputSchema=_schema({
                "job_name": _JOB_NAME,
                "build_number": _BUILD_NUMBER,
                "start": {"type": "integer", "minimum": 0, "description": "Byte offset for progressive logs"},
                "progressive": {"type": "boolean"},
                "max_lines": {"type": "integer", "minimum": 10, "maximum": 50000},
                "tail_only": {"type": "boolean", "description": "Return the last max_lines lines"},
            }, ("job_name",)),
        ),
        types.Tool(
            name="jenkins_stop_build",
            description="Stop a running Jenkins build",
            inputSchema=_schema({"job_name": _JOB_NAME, "build_number": _BUILD_NUMBER},
                                ("job_name", "build_number")),
        ),

        # Nodes & queue
        types.Tool(
            name="jenkins_list_nodes",
            description="List all Jenkins nodes",
            inputSchema=_schema(),
        ),
        types.Tool(
            name="jenkins_get_node_status",
            description="Get status of one node, or of all nodes when no name is given",
            inputSchema=_schema({"node_name": _NODE_NAME}),
        ),
        types.Tool(
            name="jenkins_get_queue",
            description="Get the build queue",
            inputSchema=_schema(),
        ),
        types.Tool(
            name="jenkins_cancel_queue_item",
            description="Cancel a queued build",
            inputSchema=_schema({"queue_id": {"type": "integer", "minimum": 1}}, ("queue_id",)),
        ),
        types.Tool(
            name="jenkins_get_version",
            description="Get the Jenkins server version",
            inputSchema=_schema(),
        ),

        # Agents
        types.Tool(
            name="jenkins_restart_agent",
            description="Restart the agent service on a node's host (requires admin role)",
            inputSchema=_schema({
                "node_name": _NODE_NAME,
                "platform": {"type": "string", "enum": ["linux", "windows", "auto"]},
                "command": {"type": "string", "description": "Custom restart command"},
            }, ("node_name",)),
        ),
        types.Tool(
            name="jenkins_agent_diagnostics",
            description="Collect status, metrics and build history for an agent",
            inputSchema=_schema({
                "node_name": _NODE_NAME,
                "include_system_info": {"type": "boolean"},
                "include_logs": {"type": "boolean", "description": "Include build history"},
            }, ("node_name",)),
        ),
        types.Tool(
            name="jenkins_auto_recovery",
            description="Attempt automatic recovery of a problematic agent",
            inputSchema=_schema({
                "node_name": _NODE_NAME,
                "strategy": {"type": "string", "enum": ["soft", "hard", "auto"]},
                "max_retries": {"type": "integer", "minimum": 1, "maximum": 5},
            }, ("node_name",)),
        ),
        types.Tool(
            name="jenkins_detect_agent_issues",
            description="Detect agent issues and recommend an action",
            inputSchema=_schema({"node_name": _NODE_NAME}, ("node_name",)),
        ),

        # Connection
        types.Tool(
            name="jenkins_ssl_diagnostics",
            description="Show the SSL/TLS configuration and troubleshooting tips",
            inputSchema=_schema(),
        ),
        types.Tool(
            name="jenkins_auth_status",
            description="Show the authentication method and session cookie state",
            inputSchema=_schema(),
        ),
    ]

    logger.info(f"Registered {len(tools)} Jenkins tools")
    return tools


def format_error(name: str, error: Exception) -> str:
    """User-facing message for a failed tool call, chosen by exception type"""
    settings = get_settings()

    if isinstance(error, ValidationError):
        return (
            f"Invalid input for {name}: {error}\n\n"
            f"Please check the parameter values and try again."
        )
    if isinstance(error, NotFoundError):
        text = (
            f"Resource not found.\n\n"
            f"Troubleshooting steps:\n"
            f"1. Check job/resource name is correct (case-sensitive)\n"
            f"2. Verify resource exists in Jenkins\n"
            f"3. Ensure user has permission to view the resource\n"
        )
        if error.suggestions:
            text += "\nAvailable jobs:\n" + "\n".join(f"- {job}" for job in error.suggestions) + "\n"
        return text + f"\nError: {error}"
    if isinstance(error, ConfigurationError):
        return (
            f"Jenkins configuration problem: {error}\n\n"
            f"Check JENKINS_URL, JENKINS_USERNAME, JENKINS_TOKEN and the SSL settings.\n"
            f"Run 'jenkins_ssl_diagnostics' for SSL troubleshooting."
        )
    if isinstance(error, AuthenticationError):
        return (
            f"Authentication failed.\n\n"
            f"Troubleshooting steps:\n"
            f"1. Verify username is correct: {settings.username}\n"
            f"2. Check API token is valid (not expired)\n"
            f"3. Generate a new token in Jenkins (Your Name > Configure > API Token)\n\n"
            f"Error: {error}"
        )
    if isinstance(error, AuthorizationError):
        return f"Permission denied: {error}\n\nThis operation requires the Jenkins administer permission."
    if isinstance(error, TransportError):
        return (
            f"Cannot reach Jenkins at {settings.url} after {error.attempts} attempt(s).\n\n"
            f"Troubleshooting steps:\n"
            f"1. Verify Jenkins server is accessible\n"
            f"2. Ensure network/VPN connection is active\n"
            f"3. Test with: curl {settings.url}/api/json\n\n"
            f"Error: {error}"
        )
    if isinstance(error, ApiError):
        if error.status == 401:
            return f"Authentication failed (401). Check the Jenkins username and API token.\n\nError: {error}"
        if error.status == 403:
            return (
                f"Permission denied (403).\n\n"
                f"User: {settings.username}\n"
                f"Operation: {name}\n"
                f"Error: {error}"
            )
        return f"Jenkins returned an error for {name}.\n\nError: {error}"
    return (
        f"Error executing {name}\n\n"
        f"Error type: {type(error).__name__}\n"
        f"Error message: {error}"
    )


@server.call_tool()
async def handle_call_tool(
        name: str,
        arguments: dict | None
) -> list[types.TextContent | types.ImageContent | types.EmbeddedResource]:
    """Route a tool call to its handler and render the result as JSON"""
    arguments = arguments or {}

    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return [types.TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        return _json_result(handler(get_context(), arguments))
    except ValidationError as e:
        logger.warning(f"Validation error in {name}: {e}")
        return [types.TextContent(type="text", text=format_error(name, e))]
    except Exception as e:
        logger.error(f"Tool execution failed for {name}: {e}", exc_info=True)
        return [types.TextContent(type="text", text=format_error(name, e))]


# ==================== Main Server Entry Point ====================

async def main():
    """Run the Jenkins Ops MCP server over stdio"""
    settings = get_settings()
    if not settings.is_configured:
        logger.error("Jenkins settings not configured!")
        sys.exit(1)

    logger.info(f"Starting Jenkins Ops MCP Server v{__version__}")
    logger.info(f"Jenkins server: {settings.url}")

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="jenkins-ops-mcp",
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )
