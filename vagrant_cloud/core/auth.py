"""
Credential resolution for API requests.

A static token (given explicitly or through VAGRANT_CLOUD_TOKEN) is used as
is. Without one, HCP service principal credentials (HCP_CLIENT_ID and
HCP_CLIENT_SECRET) are exchanged for short lived tokens using the OAuth2
client credentials grant, and the token is cached until shortly before it
expires.
"""

import base64
import json
import logging
import os
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass

from vagrant_cloud.core.errors import AuthenticationError, ConfigurationError, ValidationError
from vagrant_cloud.core.log import get_logger

# Configuration
DEFAULT_AUTH_URL = "https://auth.idp.hashicorp.com"
DEFAULT_AUTH_PATH = "/oauth2/auth"
DEFAULT_TOKEN_PATH = "/oauth2/token"
DEFAULT_TIMEOUT = 60

# Number of seconds to pad token expiry
TOKEN_EXPIRY_PADDING = 5


@dataclass
class HCPConfig:
    """HCP service principal configuration for generating tokens."""

    client_id: str | None
    client_secret: str | None
    auth_url: str = DEFAULT_AUTH_URL
    auth_path: str = DEFAULT_AUTH_PATH
    token_path: str = DEFAULT_TOKEN_PATH

    def validate(self) -> None:
        """Raise ConfigurationError if any value is missing."""
        for name in ("client_id", "client_secret", "auth_url", "auth_path", "token_path"):
            if not getattr(self, name):
                raise ConfigurationError(
                    f"Missing required HCP authentication configuration value: HCP_{name.upper()}"
                )

    @property
    def token_url(self) -> str:
        """Full URL of the token endpoint."""
        return f"{self.auth_url.rstrip('/')}/{self.token_path.lstrip('/')}"

    @classmethod
    def from_env(cls) -> "HCPConfig":
        """Build configuration from HCP_* environment variables."""
        return cls(
            client_id=os.environ.get("HCP_CLIENT_ID"),
            client_secret=os.environ.get("HCP_CLIENT_SECRET"),
            auth_url=os.environ.get("HCP_AUTH_URL", DEFAULT_AUTH_URL),
            auth_path=os.environ.get("HCP_AUTH_PATH", DEFAULT_AUTH_PATH),
            token_path=os.environ.get("HCP_TOKEN_PATH", DEFAULT_TOKEN_PATH),
        )


@dataclass
class HCPToken:
    """Generated token with its expiry in epoch seconds."""

    token: str | None
    expires_at: int | None

    def validate(self) -> None:
        """Raise ValidationError if any value is missing."""
        for name in ("token", "expires_at"):
            if getattr(self, name) is None:
                raise ValidationError(f"Missing required token value - {name}")

    def is_expired(self, now: float | None = None) -> bool:
        """
        Check if the token is expired.

        The token reports as expired TOKEN_EXPIRY_PADDING seconds before
        its actual expiry.

        Args:
            now: Epoch seconds to compare against (defaults to current time)

        Returns:
            True when expired

        """
        self.validate()
        if now is None:
            now = time.time()
        return int(now) > self.expires_at - TOKEN_EXPIRY_PADDING

    def is_valid(self, now: float | None = None) -> bool:
        """Check if the token is not expired."""
        return not self.is_expired(now)


class Auth:
    """Provides the bearer token for API requests."""

    def __init__(
        self,
        access_token: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        """
        Resolve the credential source.

        Priority is the explicit access_token, then VAGRANT_CLOUD_TOKEN, then
        HCP_CLIENT_ID / HCP_CLIENT_SECRET. When none are set no token is
        available and requests are sent anonymously.

        Args:
            access_token: Static access token
            timeout: Token exchange timeout in seconds
            logger: Logger to use

        Raises:
            ConfigurationError: If only part of the HCP credentials are set

        """
        self.logger = logger or get_logger(__name__)
        self.timeout = timeout
        self._lock = threading.Lock()
        self._hcp_token: HCPToken | None = None
        self._config: HCPConfig | None = None

        # The Vagrant Cloud token has precedence over anything else
        self._token = access_token
        if self._token is None:
            self._token = os.environ.get("VAGRANT_CLOUD_TOKEN")

        if not self._token and (os.environ.get("HCP_CLIENT_ID") or os.environ.get("HCP_CLIENT_SECRET")):
            config = HCPConfig.from_env()
            config.validate()
            self._config = config

    @property
    def config(self) -> HCPConfig | None:
        """HCP configuration in use, if any."""
        return self._config

    @property
    def available(self) -> bool:
        """Authentication token is available."""
        return bool(self._token or self._config)

    def token(self) -> str | None:
        """
        Get the authentication token.

        Returns:
            Token value, or None when no credentials are configured

        Raises:
            AuthenticationError: If a token exchange fails

        """
        if self._token:
            return self._token
        if self._config is None:
            return None

        with self._lock:
            if self._hcp_token is None or self._hcp_token.is_expired():
                self._hcp_token = self._refresh_token(self._config)
            return self._hcp_token.token

    def _refresh_token(self, config: HCPConfig) -> HCPToken:
        """
        Request a new token using the client credentials grant.

        The exchange is a single form-encoded POST (RFC 6749 section 4.4)
        with the credentials in a Basic auth header, sent with urllib like
        every other request the client makes.
        """
        credentials = f"{urllib.parse.quote(config.client_id)}:{urllib.parse.quote(config.client_secret)}"
        headers = {
            "Authorization": f"Basic {base64.b64encode(credentials.encode('utf-8')).decode('ascii')}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        body = urllib.parse.urlencode({"grant_type": "client_credentials"}).encode("utf-8")

        self.logger.debug("requesting new HCP token from %s", config.token_url)
        try:
            req = urllib.request.Request(config.token_url, data=body, headers=headers, method="POST")
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                payload = json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace").strip() if e.fp else ""
            raise AuthenticationError(error_body or str(e), status=e.code, body=error_body) from e
        except urllib.error.URLError as e:
            raise AuthenticationError(f"Connection error: {e.reason}") from e
        except TimeoutError as e:
            raise AuthenticationError(f"Token request timed out after {self.timeout} seconds") from e
        except json.JSONDecodeError as e:
            raise AuthenticationError(f"Invalid JSON response: {e}") from e

        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = int(time.time()) + int(payload["expires_in"])

        token = HCPToken(
            token=payload.get("access_token"),
            expires_at=int(expires_at) if expires_at is not None else None,
        )
        try:
            token.validate()
        except ValidationError as e:
            raise AuthenticationError(e.message) from e
        self.logger.debug("received new HCP token expiring at %s", token.expires_at)
        return token
