"""
Jenkins Ops Client Module

Facade over the Jenkins REST API. Every HTTP call goes through one
RequestExecutor, so crumb refresh, cookie tracking, SSL policy and transport
retries apply uniformly to all operations.
"""

import difflib
import logging
import time
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import quote
from xml.sax.saxutils import escape

import requests

from .audit import AuditLog
from .auth import WHOAMI_ENDPOINT, Credentials, JenkinsSession
from .config import JenkinsSettings, get_default_settings
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    JenkinsError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from .executor import RequestExecutor
from .models import BuildHistory
from .ssl_policy import SSL_TROUBLESHOOTING, TLSOptions, resolve_ssl_policy, validate_ssl_policy
from .validation import (
    BuildRef,
    JobPath,
    validate_build_number,
    validate_config_xml,
    validate_node_name,
    validate_parameters,
)

logger = logging.getLogger(__name__)

JOBS_TREE = "jobs[name,fullName,url,color,buildable,displayName,description,inQueue,nextBuildNumber]"
SCRIPT_END_MARKER = ")]}."
MAX_SUGGESTIONS = 10
RECENT_FAILURE_WINDOW = timedelta(hours=24)

_ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}
_XML_HEADERS = {"Content-Type": "application/xml"}


def _node_path(node_name: str, *suffix: Any) -> str:
    path = f"computer/{quote(node_name, safe='')}"
    for part in suffix:
        path += f"/{part}"
    return path


def _queue_id_from_location(location: Optional[str]) -> Optional[int]:
    """Extract queue ID from a .../queue/item/<id>/ Location header"""
    if not location:
        return None

    parts = location.rstrip('/').split('/')
    for part in reversed(parts):
        if part.isdigit():
            return int(part)
    return None


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ==================== Config XML templates ====================

def build_freestyle_config(description: Optional[str] = None, commands: Optional[List[str]] = None) -> str:
    """Freestyle project config.xml running each command as a shell step"""
    description = description or f"Created via jenkins-ops-mcp - {datetime.now(timezone.utc).isoformat()}"
    build_steps = "\n".join(
        f"    <hudson.tasks.Shell><command>{escape(command)}</command></hudson.tasks.Shell>"
        for command in (commands or [])
    )
    return f"""<?xml version='1.1' encoding='UTF-8'?>
<project>
  <description>{escape(description)}</description>
  <keepDependencies>false</keepDependencies>
  <properties/>
  <scm class="hudson.scm.NullSCM"/>
  <canRoam>true</canRoam>
  <disabled>false</disabled>
  <blockBuildWhenDownstreamBuilding>false</blockBuildWhenDownstreamBuilding>
  <blockBuildWhenUpstreamBuilding>false</blockBuildWhenUpstreamBuilding>
  <triggers/>
  <concurrentBuild>false</concurrentBuild>
  <builders>
{build_steps}
  </builders>
  <publishers/>
  <buildWrappers/>
</project>"""


def build_pipeline_config(description: Optional[str] = None, script: Optional[str] = None) -> str:
    """Pipeline job config.xml with an inline, sandboxed script"""
    description = description or f"Created via jenkins-ops-mcp - {datetime.now(timezone.utc).isoformat()}"
    script = script or "echo 'Hello from pipeline'"
    return f"""<?xml version='1.1' encoding='UTF-8'?>
<flow-definition plugin="workflow-job">
  <description>{escape(description)}</description>
  <keepDependencies>false</keepDependencies>
  <properties/>
  <definition class="org.jenkinsci.plugins.workflow.cps.CpsFlowDefinition" plugin="workflow-cps">
    <script>{escape(script)}</script>
    <sandbox>true</sandbox>
  </definition>
  <triggers/>
  <disabled>false</disabled>
</flow-definition>"""


class JenkinsClient:
    """
    Client for interacting with the Jenkins API.

    Construction only resolves configuration (no network I/O). Call
    ``initialize`` to fetch a crumb and verify the credentials up front;
    otherwise the first 403 triggers the crumb handshake lazily.
    """

    def __init__(
            self,
            settings: Optional[JenkinsSettings] = None,
            sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize Jenkins client.

        Args:
            settings: JenkinsSettings instance. If None, uses default settings.
            sleep: Blocking wait used for retry backoff

        Raises:
            ConfigurationError: URL missing or SSL configuration invalid
            CertificateLoadError: A referenced certificate cannot be read
        """
        self.settings = settings or get_default_settings()
        if not self.settings.url:
            raise ConfigurationError("Jenkins URL is not configured (JENKINS_URL)")

        self.base_url = self.settings.url
        self.ssl_policy = resolve_ssl_policy(self.settings.ssl_flags())
        validate_ssl_policy(self.ssl_policy)

        credentials = Credentials(
            username=self.settings.username,
            api_token=self.settings.token,
            password=self.settings.password,
        )
        self.tls = TLSOptions(self.ssl_policy)
        self.session = JenkinsSession(
            self.base_url,
            credentials=credentials,
            tls=self.tls,
            timeout=self.settings.timeout,
        )
        self.executor = RequestExecutor(self.session, max_retries=self.settings.max_retries, sleep=sleep)
        self.audit = AuditLog(user_id=self.settings.username, max_entries=self.settings.audit_max_entries)

    # ==================== Session ====================

    def initialize(self) -> None:
        """
        Fetch a CSRF crumb and verify the credentials.

        Raises:
            ConfigurationError: No username / secret configured
            AuthenticationError: Jenkins reports the identity as unauthenticated
            TransportError: Jenkins could not be reached
        """
        if not self.session.credentials.is_configured():
            raise ConfigurationError(
                "Jenkins credentials incomplete. Required: username and (token or password)"
            )

        try:
            self.session.fetch_crumb()
            authenticated = self.session.test_authentication()
        except requests.RequestException as e:
            raise TransportError(
                f"Could not connect to Jenkins at {self.base_url}: {e}", url=self.base_url, attempts=1, last_error=e
            ) from e

        if not authenticated:
            raise AuthenticationError(
                f"Authentication failed for user '{self.session.credentials.username}'"
            )
        logger.info(f"Connected to Jenkins: {self.base_url}")

    def auth_status(self) -> Dict[str, Any]:
        return {
            "method": self.session.credentials.auth_method(),
            "has_credentials": self.session.credentials.is_configured(),
            "cookie_jar": self.session.cookie_jar_info(),
        }

    def update_credentials(
            self,
            username: Optional[str] = None,
            api_token: Optional[str] = None,
            password: Optional[str] = None
    ) -> None:
        self.session.update_credentials(username=username, api_token=api_token, password=password)
        if username:
            self.audit.user_id = username
        logger.info("Jenkins credentials updated")

    def clear_credentials(self) -> None:
        self.session.clear_credentials()
        logger.info("Jenkins credentials and session cleared")

    def close(self) -> None:
        """Remove temp files holding inline certificate material"""
        self.tls.close()

    def ssl_diagnostics(self) -> Dict[str, Any]:
        """Resolved SSL policy and troubleshooting notes (no network I/O)"""
        return {
            "url": self.base_url,
            "https": self.base_url.lower().startswith("https://"),
            "policy": self.ssl_policy.summary(),
            "troubleshooting": SSL_TROUBLESHOOTING,
        }

    # ==================== Helpers ====================

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.executor.execute(endpoint, params=params)

    def _post(self, endpoint: str, **options) -> requests.Response:
        return self.executor.execute_response(endpoint, "POST", **options)

    def suggest_jobs(self, job_name: str) -> List[str]:
        """
        Job names to offer after a 404, closest matches first.

        Returns an empty list if the jobs cannot be listed.
        """
        try:
            jobs = self.list_jobs()
        except JenkinsError as e:
            logger.debug(f"Could not list jobs for suggestions: {e}")
            return []

        names = [job.get("fullName") or job.get("name") for job in jobs]
        names = [name for name in names if name]
        close = difflib.get_close_matches(job_name, names, n=MAX_SUGGESTIONS, cutoff=0.5)
        rest = [name for name in names if name not in close]
        return (close + rest)[:MAX_SUGGESTIONS]

    @contextmanager
    def _suggest_on_404(self, job: JobPath) -> Iterator[None]:
        try:
            yield
        except NotFoundError as e:
            if e.suggestions:
                raise
            raise NotFoundError(
                e.status_text, url=e.url, suggestions=self.suggest_jobs(job.full_name)
            ) from e

    # ==================== Job Information ====================

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Top-level jobs (folders included) with summary fields"""
        data = self._get("api/json", params={"tree": JOBS_TREE})
        return list(data.get("jobs") or [])

    def get_job(self, job_name: str) -> Dict[str, Any]:
        job = JobPath.parse(job_name)
        with self._suggest_on_404(job):
            return self._get(job.url_path("api/json"))

    def get_job_status(self, job_name: str, build_number: Optional[BuildRef] = None) -> Dict[str, Any]:
        """Job details plus its last (or given) build"""
        job = JobPath.parse(job_name)
        if build_number is not None:
            build_number = validate_build_number(build_number)

        with self._suggest_on_404(job):
            info = self._get(job.url_path("api/json"))

            last_build = None
            if build_number is not None:
                last_build = self._get(job.url_path(build_number, "api/json"))
            elif (info.get("nextBuildNumber") or 0) > 1:
                last_build = self._get(job.url_path(info["nextBuildNumber"] - 1, "api/json"))

        return {
            "job": info,
            "last_build": last_build,
            "is_building": bool(last_build and last_build.get("building")),
            "queue_item": info.get("queueItem"),
        }

    def get_job_config(self, job_name: str) -> str:
        """Get job configuration XML"""
        job = JobPath.parse(job_name)
        with self._suggest_on_404(job):
            return self.executor.execute_response(job.url_path("config.xml")).text

    # ==================== Job Management ====================

    def create_job(self, job_name: str, config_xml: str) -> Dict[str, Any]:
        """
        Create a job, inside its folder when the name is folder-qualified.

        'folder/sub/my-job' is posted to job/folder/job/sub/createItem?name=my-job
        """
        job = JobPath.parse(job_name)
        config_xml = validate_config_xml(config_xml)
        endpoint = job.parent.url_path("createItem") if job.parent else "createItem"

        with self.audit.track("create_job", job.full_name, endpoint=endpoint):
            self._post(
                endpoint,
                params={"name": job.name},
                data=config_xml.encode("utf-8"),
                headers=dict(_XML_HEADERS),
            )
        logger.info(f"Created job: {job}")
        return {"job": job.full_name, "message": f"Job '{job}' created successfully"}

    def update_job(self, job_name: str, config_xml: str) -> Dict[str, Any]:
        """Update job configuration XML"""
        job = JobPath.parse(job_name)
        config_xml = validate_config_xml(config_xml)

        with self.audit.track("update_job", job.full_name), self._suggest_on_404(job):
            self._post(job.url_path("config.xml"), data=config_xml.encode("utf-8"), headers=dict(_XML_HEADERS))
        logger.info(f"Updated config for job: {job}")
        return {"job": job.full_name, "message": f"Job '{job}' updated successfully"}

    def delete_job(self, job_name: str) -> Dict[str, Any]:
        job = JobPath.parse(job_name)

        with self.audit.track("delete_job", job.full_name), self._suggest_on_404(job):
            self._post(job.url_path("doDelete"))
        logger.info(f"Deleted job: {job}")
        return {"job": job.full_name, "message": f"Job '{job}' deleted successfully"}

    # ==================== Builds ====================

    def trigger_build(
            self,
            job_name: str,
            parameters: Optional[Dict[str, Any]] = None,
            delay: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Queue a build.

        The POST is never retried after it may have reached Jenkins, so one
        call queues at most one build.

        Args:
            job_name: Job name, folder-qualified with '/'
            parameters: Optional build parameters (uses buildWithParameters)
            delay: Optional quiet period in seconds

        Returns:
            Dict with 'job', 'queue_id', 'location' and 'message'
        """
        job = JobPath.parse(job_name)
        parameters = validate_parameters(parameters)
        if delay is not None and (isinstance(delay, bool) or not isinstance(delay, int) or delay < 0):
            raise ValidationError(f"delay must be a non-negative integer, got: {delay}")

        endpoint = job.url_path("buildWithParameters" if parameters else "build")
        query = {key: _query_value(value) for key, value in parameters.items()}
        if delay is not None:
            query["delay"] = f"{delay}sec"

        with self.audit.track("trigger_build", job.full_name, parameters=sorted(parameters), delay=delay) as details:
            with self._suggest_on_404(job):
                response = self._post(endpoint, params=query or None, idempotent=False)
            location = response.headers.get("Location")
            details["queue_id"] = _queue_id_from_location(location)

        logger.info(f"Triggered build for {job} (queue item {details['queue_id']})")
        return {
            "job": job.full_name,
            "queue_id": details["queue_id"],
            "location": location,
            "message": f"Job {job} triggered successfully",
        }

    def get_build(self, job_name: str, build_number: BuildRef) -> Dict[str, Any]:
        job = JobPath.parse(job_name)
        build_number = validate_build_number(build_number)
        with self._suggest_on_404(job):
            return self._get(job.url_path(build_number, "api/json"))

    def get_build_logs(
            self,
            job_name: str,
            build_number: BuildRef = "lastBuild",
            start: int = 0,
            progressive: bool = False
    ) -> Dict[str, Any]:
        """
        Console output of a build.

        With ``progressive`` the log is read from byte offset ``start`` and
        Jenkins reports the new offset and whether the build is still writing.

        Returns:
            Dict with 'text', 'has_more' and 'size'
        """
        job = JobPath.parse(job_name)
        build_number = validate_build_number(build_number)
        if isinstance(start, bool) or not isinstance(start, int) or start < 0:
            raise ValidationError(f"start must be a non-negative integer, got: {start}")

        if progressive:
            endpoint = job.url_path(build_number, "logText/progressiveText")
            params = {"start": start} if start > 0 else None
        else:
            endpoint = job.url_path(build_number, "consoleText")
            params = None

        with self._suggest_on_404(job):
            response = self.executor.execute_response(endpoint, params=params)

        text = response.text
        if not progressive:
            return {"text": text, "has_more": False, "size": len(text)}

        size_header = response.headers.get("X-Text-Size")
        size = int(size_header) if size_header and size_header.isdigit() else start + len(response.content)
        has_more = response.headers.get("X-More-Data", "").lower() == "true"
        return {"text": text, "has_more": has_more, "size": size}

    def stop_build(self, job_name: str, build_number: BuildRef) -> Dict[str, Any]:
        """Stop a running build"""
        job = JobPath.parse(job_name)
        build_number = validate_build_number(build_number)

        with self.audit.track("stop_build", job.full_name, build_number=build_number):
            with self._suggest_on_404(job):
                self._post(job.url_path(build_number, "stop"))
        logger.info(f"Stopped build {job} #{build_number}")
        return {"job": job.full_name, "build_number": build_number, "message": "Build stopped"}

    # ==================== Queue ====================

    def get_queue(self) -> List[Dict[str, Any]]:
        """Get information about the build queue"""
        return list(self._get("queue/api/json").get("items") or [])

    def cancel_queue_item(self, queue_id: Union[int, str]) -> Dict[str, Any]:
        if isinstance(queue_id, str) and queue_id.strip().isdigit():
            queue_id = int(queue_id)
        if isinstance(queue_id, bool) or not isinstance(queue_id, int) or queue_id <= 0:
            raise ValidationError(f"queue_id must be a positive integer, got: {queue_id}")

        with self.audit.track("cancel_queue_item", str(queue_id)):
            self._post("queue/cancelItem", params={"id": queue_id})
        logger.info(f"Cancelled queue item {queue_id}")
        return {"queue_id": queue_id, "message": f"Queue item {queue_id} cancelled"}

    # ==================== Nodes ====================

    def list_nodes(self) -> List[Dict[str, Any]]:
        """All nodes, with monitor data (depth=1)"""
        return list(self._get("computer/api/json", params={"depth": 1}).get("computer") or [])

    def get_node_info(self, node_name: str) -> Dict[str, Any]:
        """Get information about a specific node"""
        node_name = validate_node_name(node_name)
        return self._get(_node_path(node_name, "api/json"))

    def get_node_status(self, node_name: Optional[str] = None) -> Dict[str, Any]:
        if node_name:
            return {"nodes": [self.get_node_info(node_name)]}
        return {"nodes": self.list_nodes()}

    def disconnect_node(self, node_name: str, message: str = "") -> None:
        node_name = validate_node_name(node_name)
        self._post(_node_path(node_name, "doDisconnect"), params={"offlineMessage": message})
        logger.info(f"Disconnected node: {node_name}")

    def launch_node(self, node_name: str) -> None:
        node_name = validate_node_name(node_name)
        self._post(_node_path(node_name, "launchSlaveAgent"))
        logger.info(f"Launched agent for node: {node_name}")

    def get_node_builds(self, node_name: str) -> BuildHistory:
        """
        Build history of a node from its Atom feeds.

        ``recent_failures`` counts failed builds updated in the last 24 hours.
        """
        node_name = validate_node_name(node_name)
        all_builds = self._feed_entries(_node_path(node_name, "rssAll"))
        failed_builds = self._feed_entries(_node_path(node_name, "rssFailed"))

        cutoff = datetime.now(timezone.utc) - RECENT_FAILURE_WINDOW
        recent = 0
        for entry in failed_builds:
            updated = entry.findtext("atom:updated", default="", namespaces=_ATOM_NS)
            try:
                when = datetime.fromisoformat(updated.replace("Z", "+00:00"))
            except ValueError:
                continue
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            if when >= cutoff:
                recent += 1

        return BuildHistory(total=len(all_builds), failed=len(failed_builds), recent_failures=recent)

    def _feed_entries(self, endpoint: str) -> List[ET.Element]:
        text = self.executor.execute_response(endpoint).text
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise JenkinsError(f"Invalid feed returned by {endpoint}: {e}") from e
        return root.findall("atom:entry", _ATOM_NS)

    # ==================== Scripts ====================

    def run_script(self, script: str, node_name: Optional[str] = None) -> str:
        """
        Execute a Groovy script on the controller or on a node.

        A marker printed after the script confirms it ran to completion.

        Raises:
            JenkinsError: The output does not end with the marker
        """
        endpoint = _node_path(validate_node_name(node_name), "scriptText") if node_name else "scriptText"
        payload = f'{script}\nprintln()\nprint("{SCRIPT_END_MARKER}")'

        output = self._post(endpoint, data={"script": payload}).text
        if not output.endswith(SCRIPT_END_MARKER):
            raise JenkinsError("Error verifying that the Jenkins node completed the script")
        return output[:-len(SCRIPT_END_MARKER)].rstrip("\n")

    # ==================== Server & identity ====================

    def get_version(self) -> Dict[str, Any]:
        response = self.executor.execute_response("api/json", params={"tree": "mode,nodeDescription"})
        data = self.executor.decode(response)
        return {
            "version": response.headers.get("X-Jenkins", "unknown"),
            "url": self.base_url,
            "mode": data.get("mode") if isinstance(data, dict) else None,
        }

    def who_am_i(self) -> Dict[str, Any]:
        """Identity and authorities of the current credentials"""
        return self._get(WHOAMI_ENDPOINT)

    def me(self) -> Dict[str, Any]:
        """Get information about the current authenticated user"""
        return self._get("me/api/json")


# ==================== Client Factory ====================

_default_client: Optional[JenkinsClient] = None


def get_jenkins_client(settings: Optional[JenkinsSettings] = None) -> JenkinsClient:
    """
    Get Jenkins client instance.

    If no settings are provided, returns a cached default client. If settings
    are provided, always returns a new client instance.
    """
    global _default_client

    if settings is not None:
        return JenkinsClient(settings)

    if _default_client is None:
        _default_client = JenkinsClient()

    return _default_client
