"""
SSL/TLS trust policy for Jenkins connections.

Turns the raw JENKINS_SSL_* / JENKINS_*_CERT_* flags into an immutable
``SSLPolicy`` and translates that policy into ``requests`` keyword arguments.
Only local files are touched here, never the network.
"""

import logging
import os
import stat
import tempfile
import threading
import weakref
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import urllib3

from .exceptions import CertificateLoadError, ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


def _flag(value: Any, default: bool) -> bool:
    """Interpret env-style booleans ("true", "0", "off", ...)"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


@dataclass(frozen=True)
class SSLPolicy:
    """Resolved trust configuration; read-only once built"""
    verify: bool = True
    allow_self_signed: bool = False
    bypass_all: bool = False
    ca_cert: Optional[bytes] = None
    client_cert: Optional[bytes] = None
    client_key: Optional[bytes] = None
    debug: bool = False
    ca_cert_path: Optional[str] = None
    client_cert_path: Optional[str] = None
    client_key_path: Optional[str] = None

    def __post_init__(self):
        if (self.client_cert is None) != (self.client_key is None):
            raise ConfigurationError(
                "Both client certificate and key must be provided for mutual TLS"
            )

    @property
    def trust_disabled(self) -> bool:
        return self.bypass_all or not self.verify

    def summary(self) -> Dict[str, Any]:
        """Loggable view of the policy (no certificate material)"""
        return {
            "verify": self.verify,
            "allow_self_signed": self.allow_self_signed,
            "bypass_all": self.bypass_all,
            "has_ca_cert": self.ca_cert is not None,
            "has_client_cert": self.client_cert is not None,
            "debug": self.debug,
        }


def _debug(enabled: bool, message: str, *args) -> None:
    if enabled:
        logger.debug("[SSL] " + message, *args)


def _read_pem(path: str, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise CertificateLoadError(f"Failed to load {what} from {path}: {e}") from e


def _load_material(
        content: Optional[str],
        path: Optional[str],
        what: str,
        debug: bool
) -> Optional[bytes]:
    """Inline content wins over a file path"""
    if content:
        _debug(debug, "Using %s from inline content", what)
        return content.encode("utf-8")
    if path:
        _debug(debug, "Loading %s from file: %s", what, path)
        return _read_pem(path, what)
    return None


def resolve_ssl_policy(flags: Mapping[str, Any]) -> SSLPolicy:
    """
    Resolve raw configuration flags into an SSLPolicy.

    Recognised keys: verify, allow_self_signed, bypass_all, ca_cert_path,
    ca_cert_content, client_cert_path, client_cert_content, client_key_path,
    client_key_content, debug.

    Raises:
        ConfigurationError: client certificate supplied without its key (or
            the reverse)
        CertificateLoadError: a referenced certificate file cannot be read
    """
    debug = _flag(flags.get("debug"), False)
    bypass_all = _flag(flags.get("bypass_all"), False)
    verify = _flag(flags.get("verify"), True)
    allow_self_signed = _flag(flags.get("allow_self_signed"), False)

    ca_cert_path = _text(flags.get("ca_cert_path"))
    ca_cert_content = _text(flags.get("ca_cert_content"))
    client_cert_path = _text(flags.get("client_cert_path"))
    client_cert_content = _text(flags.get("client_cert_content"))
    client_key_path = _text(flags.get("client_key_path"))
    client_key_content = _text(flags.get("client_key_content"))

    has_cert = bool(client_cert_path or client_cert_content)
    has_key = bool(client_key_path or client_key_content)
    if has_cert != has_key:
        raise ConfigurationError(
            "Both client certificate and key must be provided for mutual TLS"
        )

    paths = dict(
        ca_cert_path=ca_cert_path,
        client_cert_path=client_cert_path,
        client_key_path=client_key_path,
    )

    if bypass_all:
        logger.warning("SSL BYPASS ENABLED - ALL SSL VALIDATION DISABLED")
        logger.warning("This is INSECURE and should only be used in corporate environments!")
        return SSLPolicy(verify=False, allow_self_signed=allow_self_signed,
                         bypass_all=True, debug=debug, **paths)

    if not verify or allow_self_signed:
        _debug(debug, "SSL verification disabled or self-signed allowed; skipping CA pinning")
        return SSLPolicy(verify=verify, allow_self_signed=allow_self_signed,
                         debug=debug, **paths)

    ca_cert = _load_material(ca_cert_content, ca_cert_path, "CA certificate", debug)
    client_cert = _load_material(client_cert_content, client_cert_path, "client certificate", debug)
    client_key = _load_material(client_key_content, client_key_path, "client key", debug)

    policy = SSLPolicy(
        verify=True,
        ca_cert=ca_cert,
        client_cert=client_cert,
        client_key=client_key,
        debug=debug,
        **paths,
    )
    _debug(debug, "SSL configuration: %s", policy.summary())
    return policy


def validate_ssl_policy(policy: SSLPolicy) -> None:
    """
    Warn about insecure settings and check referenced files.

    Raises:
        CertificateLoadError: a path is missing or not a regular file
    """
    if not policy.verify:
        logger.warning("SSL verification is disabled. This is insecure for production use.")
    if policy.allow_self_signed:
        logger.warning("Self-signed certificates are allowed. Use with caution.")

    for path, name in (
            (policy.ca_cert_path, "CA certificate"),
            (policy.client_cert_path, "Client certificate"),
            (policy.client_key_path, "Client key"),
    ):
        if not path:
            continue
        try:
            mode = os.stat(path).st_mode
        except OSError as e:
            raise CertificateLoadError(
                f"{name} file not found or not accessible: {path} - {e}"
            ) from e
        if not stat.S_ISREG(mode):
            raise CertificateLoadError(f"{name} path is not a file: {path}")

    _debug(policy.debug, "SSL configuration validation completed")


def _remove_file(path: str) -> None:
    with suppress(FileNotFoundError):
        os.unlink(path)


class TLSOptions:
    """
    ``requests`` keyword arguments for an SSLPolicy.

    requests only accepts file paths for CA bundles and client certificates,
    so inline material is written once to private temp files. The files are
    removed by ``close()``, when the options are garbage collected, or at
    interpreter exit, whichever comes first.
    """

    def __init__(self, policy: SSLPolicy):
        self.policy = policy
        self._lock = threading.Lock()
        self._verify: Optional[Union[bool, str]] = None
        self._cert: Optional[Tuple[str, str]] = None
        self._materialized = False
        self._cleanups: List[weakref.finalize] = []

        if policy.trust_disabled:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @property
    def temp_files(self) -> List[str]:
        """Paths of the temp files currently holding inline material"""
        pending = (cleanup.peek() for cleanup in self._cleanups)
        return [info[2][0] for info in pending if info is not None]

    def _write_temp(self, data: bytes, suffix: str) -> str:
        fd, path = tempfile.mkstemp(prefix="jenkins-ops-", suffix=suffix)
        self._cleanups.append(weakref.finalize(self, _remove_file, path))
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        return path

    def close(self) -> None:
        """Delete the temp files; the next request_kwargs() writes them again"""
        with self._lock:
            for cleanup in self._cleanups:
                cleanup()
            self._cleanups = []
            self._verify, self._cert = None, None
            self._materialized = False

    def _materialize(self) -> None:
        policy = self.policy
        if policy.trust_disabled:
            self._verify = False
        elif policy.ca_cert is not None:
            self._verify = self._write_temp(policy.ca_cert, ".pem")
        else:
            self._verify = True

        if not policy.trust_disabled and policy.client_cert is not None:
            self._cert = (
                self._write_temp(policy.client_cert, ".crt"),
                self._write_temp(policy.client_key, ".key"),
            )
        self._materialized = True

    def request_kwargs(self) -> Dict[str, Any]:
        with self._lock:
            if not self._materialized:
                self._materialize()
        kwargs: Dict[str, Any] = {"verify": self._verify}
        if self._cert:
            kwargs["cert"] = self._cert
        return kwargs


SSL_TROUBLESHOOTING = """
SSL/TLS Troubleshooting:

1. Certificate verification issues:
   - Add your organization's CA certificate with JENKINS_CA_CERT_PATH or JENKINS_CA_CERT_CONTENT
   - JENKINS_SSL_VERIFY=false disables verification (NOT recommended for production)

2. Self-signed certificates:
   - JENKINS_SSL_ALLOW_SELF_SIGNED=true (use with caution)

3. Mutual TLS (client certificates):
   - JENKINS_CLIENT_CERT_PATH and JENKINS_CLIENT_KEY_PATH
   - or JENKINS_CLIENT_CERT_CONTENT and JENKINS_CLIENT_KEY_CONTENT

4. Debugging:
   - JENKINS_SSL_DEBUG=true for detailed SSL logging
   - openssl s_client -connect your-jenkins:443 -servername your-jenkins

5. Last resort (corporate proxies only):
   - JENKINS_SSL_BYPASS_ALL=true disables ALL validation
""".strip()
