"""
Jenkins Ops Configuration Module

Loads Jenkins connection, SSL and recovery settings from environment
variables (JENKINS_*), an optional .env file, and direct overrides.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class JenkinsSettings(BaseSettings):
    """
    Jenkins connection settings.

    Priority order:
    1. Directly passed parameters
    2. Environment variables
    3. .env file
    """

    # Use 'url' as the primary field name, but accept 'jenkins_url' as alias
    url: Optional[str] = Field(
        default=None,
        alias="jenkins_url",
        description="Jenkins server URL (e.g., http://localhost:8080)"
    )
    username: Optional[str] = Field(default=None, description="Jenkins username")
    password: Optional[str] = Field(default=None, description="Jenkins password")
    token: Optional[str] = Field(
        default=None,
        description="Jenkins API token (preferred over password)"
    )

    timeout: int = Field(
        default=30,
        description="Timeout for Jenkins API calls in seconds",
        ge=5,
        le=300
    )
    max_retries: int = Field(
        default=3,
        description="Attempts for requests failing with a transport error",
        ge=1,
        le=10
    )

    # SSL / TLS
    ssl_verify: bool = Field(default=True, description="Verify server certificates")
    ssl_allow_self_signed: bool = Field(default=False, description="Skip CA pinning for self-signed servers")
    ssl_bypass_all: bool = Field(default=False, description="Disable ALL certificate validation")
    ssl_debug: bool = Field(default=False, description="Verbose SSL logging")
    ca_cert_path: Optional[str] = Field(default=None, description="PEM CA bundle path")
    ca_cert_content: Optional[str] = Field(default=None, description="Inline PEM CA bundle")
    client_cert_path: Optional[str] = Field(default=None, description="Client certificate path")
    client_cert_content: Optional[str] = Field(default=None, description="Inline client certificate")
    client_key_path: Optional[str] = Field(default=None, description="Client key path")
    client_key_content: Optional[str] = Field(default=None, description="Inline client key")

    # Agent recovery timing
    recovery_cooldown_seconds: float = Field(
        default=5,
        description="Wait between agent disconnect and reconnect",
        ge=0,
        le=300
    )
    recovery_settle_seconds: float = Field(
        default=15,
        description="Wait after an agent service restart before re-checking",
        ge=0,
        le=600
    )

    audit_max_entries: int = Field(
        default=1000,
        description="Audit entries kept in memory; the oldest are dropped first",
        ge=1,
        le=100000
    )

    console_max_lines: int = Field(
        default=1000,
        description="Default maximum lines to return from console output",
        ge=10,
        le=50000
    )

    model_config = SettingsConfigDict(
        env_prefix="JENKINS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both 'url' and 'jenkins_url'
        extra="ignore"
    )

    @field_validator('url')
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Remove trailing slash from URL"""
        if v:
            return v.rstrip('/')
        return v

    @property
    def is_configured(self) -> bool:
        """Check if minimum required settings are present"""
        return bool(self.url and self.username and (self.token or self.password))

    @property
    def auth_method(self) -> str:
        if self.token:
            return "token"
        if self.password:
            return "password"
        return "none"

    def ssl_flags(self) -> Dict[str, Any]:
        """Raw flag mapping for ssl_policy.resolve_ssl_policy"""
        return {
            "verify": self.ssl_verify,
            "allow_self_signed": self.ssl_allow_self_signed,
            "bypass_all": self.ssl_bypass_all,
            "debug": self.ssl_debug,
            "ca_cert_path": self.ca_cert_path,
            "ca_cert_content": self.ca_cert_content,
            "client_cert_path": self.client_cert_path,
            "client_cert_content": self.client_cert_content,
            "client_key_path": self.client_key_path,
            "client_key_content": self.client_key_content,
        }

    def log_config(self) -> None:
        """Log current configuration, secrets masked"""
        logger.info("Jenkins Configuration:")
        logger.info(f"  URL: {self.url or 'Not configured'}")
        logger.info(f"  Username: {self.username or 'Not configured'}")
        logger.info(f"  Authentication: {self.auth_method}")
        logger.info(f"  Timeout: {self.timeout}s")
        logger.info(f"  Max Retries: {self.max_retries}")
        logger.info(
            f"  SSL: verify={self.ssl_verify}, allow_self_signed={self.ssl_allow_self_signed}, "
            f"bypass_all={self.ssl_bypass_all}"
        )


def load_settings(env_file: Optional[str] = None, **override_values) -> JenkinsSettings:
    """
    Load Jenkins settings from the environment.

    Args:
        env_file: Optional path to .env file (overrides default .env)
        **override_values: Direct override values (highest priority)

    Returns:
        JenkinsSettings instance with merged configuration
    """
    if env_file:
        logger.debug(f"Using custom env file: {env_file}")
        settings = JenkinsSettings(_env_file=env_file)
    else:
        settings = JenkinsSettings()

    for key, value in override_values.items():
        if value is not None and hasattr(settings, key):
            setattr(settings, key, value)

    settings.log_config()
    return settings


_default_settings: Optional[JenkinsSettings] = None


def get_default_settings() -> JenkinsSettings:
    """Get or create the default settings instance"""
    global _default_settings
    if _default_settings is None:
        _default_settings = load_settings()
    return _default_settings


def set_default_settings(settings: Optional[JenkinsSettings]) -> None:
    global _default_settings
    _default_settings = settings
