"""
Jenkins Authentication and Session Module

Holds the credential store and the per-client session state (CSRF crumb and
cookie jar). All session mutation goes through one lock so a client instance
can be shared between threads.
"""

import base64
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .ssl_policy import TLSOptions

logger = logging.getLogger(__name__)

CRUMB_ENDPOINT = "crumbIssuer/api/json"
WHOAMI_ENDPOINT = "whoAmI/api/json"

# Splits a folded "Set-Cookie: a=1; Path=/, b=2; Expires=Wed, 21 Oct ..." header
# on the commas that start a new cookie, not the ones inside Expires dates.
_COOKIE_SPLIT_RE = re.compile(r",\s*(?=[^;,\s=]+=)")


@dataclass
class Credentials:
    """
    Username plus API token or password.

    The token wins when both secrets are present.
    """
    username: Optional[str] = None
    api_token: Optional[str] = None
    password: Optional[str] = None

    def configure(
            self,
            username: Optional[str] = None,
            api_token: Optional[str] = None,
            password: Optional[str] = None
    ) -> None:
        """Replace all credential fields"""
        self.username = username
        self.api_token = api_token
        self.password = password

    def update(
            self,
            username: Optional[str] = None,
            api_token: Optional[str] = None,
            password: Optional[str] = None
    ) -> None:
        """Merge non-empty values into the current credentials"""
        self.username = username or self.username
        self.api_token = api_token or self.api_token
        self.password = password or self.password

    def clear(self) -> None:
        self.username = None
        self.api_token = None
        self.password = None

    @property
    def secret(self) -> Optional[str]:
        return self.api_token or self.password

    def is_configured(self) -> bool:
        return bool(self.username and (self.api_token or self.password))

    def auth_method(self) -> str:
        if self.api_token:
            return "token"
        if self.password:
            return "password"
        return "none"

    def basic_auth_header(self) -> Optional[str]:
        if not self.username or not self.secret:
            return None
        raw = f"{self.username}:{self.secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")


def set_cookie_values(response: requests.Response) -> List[str]:
    """Every Set-Cookie header value carried by a response"""
    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        values = raw_headers.getlist("Set-Cookie")
        if values:
            return list(values)

    header = response.headers.get("Set-Cookie") if response.headers else None
    if not header:
        return []
    return [part for part in _COOKIE_SPLIT_RE.split(header) if part.strip()]


class JenkinsSession:
    """
    Crumb + cookie session for one Jenkins server.

    ``send`` is the only place an HTTP request leaves the process: it attaches
    the auth headers snapshot, applies the TLS options and timeout, and absorbs
    cookies from whatever comes back.
    """

    def __init__(
            self,
            base_url: str,
            credentials: Optional[Credentials] = None,
            tls: Optional[TLSOptions] = None,
            timeout: float = 30
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials or Credentials()
        self.tls = tls
        self.timeout = timeout

        self._lock = threading.RLock()
        self._crumb: Optional[str] = None
        self._crumb_header: Optional[str] = None
        self._cookies: Dict[str, str] = {}

    # ==================== State ====================

    @property
    def crumb(self) -> Optional[str]:
        with self._lock:
            return self._crumb

    @property
    def crumb_header(self) -> Optional[str]:
        with self._lock:
            return self._crumb_header

    @property
    def cookies(self) -> Dict[str, str]:
        """Copy of the cookie jar"""
        with self._lock:
            return dict(self._cookies)

    def cookie_jar_info(self) -> Dict[str, Any]:
        with self._lock:
            return {"count": len(self._cookies), "cookies": list(self._cookies)}

    def set_crumb(self, crumb: Optional[str], header_name: Optional[str]) -> None:
        """Set or drop the crumb; value and header name travel together"""
        with self._lock:
            if crumb and header_name:
                self._crumb, self._crumb_header = crumb, header_name
            else:
                self._crumb, self._crumb_header = None, None

    def update_credentials(self, **values: Optional[str]) -> None:
        with self._lock:
            self.credentials.update(**values)
            self._crumb, self._crumb_header = None, None

    def clear_credentials(self) -> None:
        """Forget credentials, crumb and every cookie"""
        with self._lock:
            self.credentials.clear()
            self._crumb, self._crumb_header = None, None
            self._cookies.clear()

    # ==================== Headers & cookies ====================

    def auth_headers(self) -> Dict[str, str]:
        """Authorization, crumb and Cookie headers, built from one snapshot"""
        with self._lock:
            authorization = self.credentials.basic_auth_header()
            crumb, crumb_header = self._crumb, self._crumb_header
            cookies = list(self._cookies.items())

        headers: Dict[str, str] = {}
        if authorization:
            headers["Authorization"] = authorization
        else:
            logger.debug("No authentication credentials provided")

        if crumb and crumb_header:
            headers[crumb_header] = crumb
            headers["Jenkins-Crumb"] = crumb

        if cookies:
            headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in cookies)

        return headers

    def absorb_cookies(self, response: requests.Response) -> None:
        """Upsert the name=value pair of every Set-Cookie into the jar"""
        parsed = []
        for cookie in set_cookie_values(response):
            name_value = cookie.split(";", 1)[0]
            if "=" not in name_value:
                continue
            name, value = name_value.split("=", 1)
            name, value = name.strip(), value.strip()
            if name:
                parsed.append((name, value))

        if not parsed:
            return

        with self._lock:
            for name, value in parsed:
                self._cookies[name] = value
        logger.debug(f"Stored cookies: {', '.join(name for name, _ in parsed)}")

    # ==================== Transport ====================

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def send(
            self,
            method: str,
            endpoint: str,
            headers: Optional[Dict[str, str]] = None,
            **kwargs
    ) -> requests.Response:
        """
        Issue one HTTP request with session headers attached.

        Transport exceptions from ``requests`` propagate unchanged.
        """
        request_headers = self.auth_headers()
        if headers:
            request_headers.update(headers)

        if self.tls is not None:
            for key, value in self.tls.request_kwargs().items():
                kwargs.setdefault(key, value)
        kwargs.setdefault("timeout", self.timeout)

        response = requests.request(
            method, self.url_for(endpoint), headers=request_headers, **kwargs
        )
        self.absorb_cookies(response)
        return response

    # ==================== Crumb & identity ====================

    def fetch_crumb(self) -> None:
        """
        (Re)acquire the CSRF crumb.

        A non-2xx answer only logs a warning and keeps the previous crumb:
        Jenkins instances with CSRF protection disabled have no crumb issuer.
        """
        response = self.send("GET", CRUMB_ENDPOINT)
        if not response.ok:
            logger.warning(
                f"Failed to fetch CSRF crumb: {response.status_code} {response.reason or ''}".rstrip()
            )
            return

        try:
            data = response.json()
        except ValueError:
            logger.warning("Crumb issuer returned a non-JSON body")
            return

        crumb = data.get("crumb")
        header_name = data.get("crumbRequestField")
        if not crumb or not header_name:
            logger.warning("Crumb issuer response is missing crumb or crumbRequestField")
            return

        self.set_crumb(crumb, header_name)
        logger.debug(
            f"CSRF crumb fetched (field: {header_name}, cookies: {len(self.cookies)})"
        )

    def who_am_i(self) -> Optional[Dict[str, Any]]:
        """The who-am-I document, or None on a non-2xx answer"""
        response = self.send("GET", WHOAMI_ENDPOINT)
        if not response.ok:
            logger.error(
                f"Authentication check failed: {response.status_code} {response.reason or ''}".rstrip()
            )
            return None
        try:
            return response.json()
        except ValueError:
            logger.error("whoAmI returned a non-JSON body")
            return None

    def test_authentication(self) -> bool:
        identity = self.who_am_i()
        if identity is None:
            return False

        logger.info(
            f"Authenticated as: {identity.get('name')} "
            f"(anonymous={identity.get('anonymous')}, "
            f"authorities={identity.get('authorities')})"
        )
        return bool(identity.get("authenticated"))
