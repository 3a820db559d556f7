"""
Jenkins Ops Exceptions

Single hierarchy for every failure the client can surface. Configuration and
validation errors are raised before any I/O; the rest describe what the
Jenkins server (or the network in front of it) did.
"""

from typing import List, Optional


class JenkinsError(Exception):
    """Base class for all jenkins_ops_mcp errors"""
    pass


class ConfigurationError(JenkinsError):
    """Bad or missing credential / SSL configuration"""
    pass


class CertificateLoadError(ConfigurationError):
    """A referenced certificate or key could not be read"""
    pass


class ValidationError(JenkinsError, ValueError):
    """Malformed job name, build number or build parameters"""
    pass


class AuthenticationError(JenkinsError):
    """Jenkins reports the configured credentials as unauthenticated"""
    pass


class AuthorizationError(JenkinsError):
    """Admin-only operation attempted without the administer authority"""
    pass


class ApiError(JenkinsError):
    """Non-2xx response from Jenkins"""

    def __init__(self, status: int, status_text: str = "", url: Optional[str] = None):
        self.status = status
        self.status_text = status_text
        self.url = url
        message = f"Jenkins API error: {status} {status_text}".rstrip()
        if url:
            message += f" ({url})"
        super().__init__(message)


class NotFoundError(ApiError):
    """404 from Jenkins, optionally carrying 'did you mean' suggestions"""

    def __init__(
            self,
            status_text: str = "Not Found",
            url: Optional[str] = None,
            suggestions: Optional[List[str]] = None
    ):
        super().__init__(404, status_text, url)
        self.suggestions: List[str] = list(suggestions or [])

    def __str__(self) -> str:
        message = super().__str__()
        if self.suggestions:
            message += f". Did you mean one of: {', '.join(self.suggestions)}?"
        return message


class TransportError(JenkinsError):
    """Timeout or connection failure that survived every retry"""

    def __init__(self, message: str, url: Optional[str] = None, attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
