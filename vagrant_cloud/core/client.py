"""
Core HTTP client for the Vagrant Cloud API.

Handles authentication, request/response, retries and error handling, and
provides one method per remote endpoint.
"""

import json
import logging
import os
import re
import threading
import urllib.error
import urllib.parse
import urllib.request
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from vagrant_cloud.core.auth import Auth
from vagrant_cloud.core.data import UNSET
from vagrant_cloud.core.errors import (
    ClientError,
    ConnectionLockedError,
    RequestError,
    ValidationError,
)
from vagrant_cloud.core.instrumentor import InstrumentorCollection
from vagrant_cloud.core.log import get_logger

# Configuration
DEFAULT_URL = "https://vagrantcloud.com"
DEFAULT_TIMEOUT = 60
API_V1_PATH = "/api/v1"
API_V2_PATH = "/api/v2"
API_PATHS = {1: API_V1_PATH, 2: API_V2_PATH}
API_DEFAULT_VERSION = 1

# Valid methods that can be retried
IDEMPOTENT_METHODS = frozenset({"get", "head"})
# Number of attempts allowed on idempotent requests
IDEMPOTENT_RETRIES = 3
# Number of seconds to wait between attempts
IDEMPOTENT_RETRY_INTERVAL = 2
# Methods which send parameters in the query string
QUERY_PARAMS_METHODS = frozenset({"get", "head", "delete"})
EXPECTED_STATUSES = frozenset({200, 201, 204})


def clean_parameters(item: Any) -> Any:
    """
    Remove any values that were never set.

    Mappings lose keys whose value is UNSET and sequences lose UNSET
    elements, recursively. Read-only containers are returned as dict/list.
    Explicit None values are kept.
    """
    if isinstance(item, Mapping):
        return {k: clean_parameters(v) for k, v in item.items() if v is not UNSET}
    if isinstance(item, (list, tuple)):
        return [clean_parameters(i) for i in item if i is not UNSET]
    return item


def parse_json(string: str) -> dict[str, Any]:
    """Parse a response body. Empty bodies parse to an empty dict."""
    if not string or not string.strip():
        return {}
    return json.loads(string)


def _segment(value: Any) -> str:
    return urllib.parse.quote(str(value), safe="")


class Client:
    """
    Low-level HTTP client for the Vagrant Cloud API.

    Handles:
    - Authentication via static token or HCP client credentials
    - API path prefixes for both API generations
    - Retries for idempotent requests
    - Error handling and response parsing

    A single connection is shared by all requests made through an instance
    and access to it is serialized.
    """

    def __init__(
        self,
        access_token: str | None = None,
        url_base: str | None = None,
        retry_count: int | None = None,
        retry_interval: float | None = None,
        instrumentor: InstrumentorCollection | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        """
        Initialize the API client.

        Args:
            access_token: Static access token (or VAGRANT_CLOUD_TOKEN / HCP_* env vars)
            url_base: API base URL (or VAGRANT_SERVER_URL env var)
            retry_count: Number of attempts for idempotent requests
            retry_interval: Seconds to wait between attempts
            instrumentor: Instrumentor receiving request events
            timeout: Request timeout in seconds
            logger: Logger to use

        """
        self.logger = logger or get_logger(__name__)
        url_base = url_base or os.environ.get("VAGRANT_SERVER_URL") or DEFAULT_URL
        remote = urllib.parse.urlparse(url_base)
        if not remote.scheme or not remote.netloc:
            raise ValidationError(f"Invalid URL provided for API: {url_base}")
        self.url_base = f"{remote.scheme}://{remote.netloc}"
        self.path_base = remote.path.rstrip("/")

        self.retry_count = IDEMPOTENT_RETRIES if retry_count is None else int(retry_count)
        self.retry_interval = IDEMPOTENT_RETRY_INTERVAL if retry_interval is None else retry_interval
        self.timeout = timeout
        self.instrumentor = instrumentor if instrumentor is not None else InstrumentorCollection(logger=self.logger)
        self.auth = Auth(access_token=access_token, timeout=timeout, logger=self.logger)

        self._connection_lock = threading.Lock()
        self._connection = urllib.request.build_opener()

    @property
    def access_token(self) -> str | None:
        """Current authentication token."""
        return self.auth.token()

    # =========================================================================
    # Connection
    # =========================================================================

    @contextmanager
    def connection(self, wait: bool = True) -> Iterator[urllib.request.OpenerDirector]:
        """
        Use the remote connection.

        Args:
            wait: Wait for the connection to be available

        Yields:
            The shared connection

        Raises:
            ConnectionLockedError: If wait is False and the connection is in use

        """
        if not self._connection_lock.acquire(blocking=wait):
            raise ConnectionLockedError("Connection is currently locked")
        try:
            yield self._connection
        finally:
            self._connection_lock.release()

    # =========================================================================
    # Requests
    # =========================================================================

    def request(
        self,
        path: str,
        method: str = "get",
        params: Mapping[str, Any] | None = None,
        api_version: int = API_DEFAULT_VERSION,
        wait: bool = True,
    ) -> dict[str, Any]:
        """
        Send a request to the API.

        Args:
            path: API path, relative to the versioned API prefix
            method: HTTP method
            params: Parameters (query string or JSON body depending on method)
            api_version: API generation to use for relative paths
            wait: Wait for the connection if it is in use

        Returns:
            Parsed JSON response

        Raises:
            RequestError: On unexpected HTTP status
            ClientError: On connection or parsing errors
            ConnectionLockedError: If wait is False and the connection is in use

        """
        method = str(method).lower()
        path = self._build_path(path, api_version)

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            # Set a request ID so we can track request/responses
            "X-Request-Id": str(uuid.uuid4()),
        }
        token = self.access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        body = None
        query: dict[str, Any] = {}
        if params:
            cleaned = clean_parameters(params)
            if method in QUERY_PARAMS_METHODS:
                query = cleaned
                if query:
                    path = f"{path}{'&' if '?' in path else '?'}{urllib.parse.urlencode(query, doseq=True)}"
            else:
                body = json.dumps(cleaned).encode("utf-8")

        req = urllib.request.Request(self._build_url(path), data=body, headers=headers, method=method.upper())
        event = {
            "method": method,
            "url": req.full_url,
            "query": query,
            "headers": headers,
            "params": params,
        }

        with self.connection(wait=wait) as connection:
            if method in IDEMPOTENT_METHODS:
                return self._retrying(event)(self._send, connection, req, event)
            return self._send(connection, req, event)

    def clone(self, access_token: str | None = None) -> "Client":
        """
        Create a new client with the same settings.

        Args:
            access_token: Authentication token for the new client

        Returns:
            New Client instance

        """
        return type(self)(
            access_token=access_token,
            url_base=f"{self.url_base}{self.path_base}",
            retry_count=self.retry_count,
            retry_interval=self.retry_interval,
            instrumentor=self.instrumentor,
            timeout=self.timeout,
            logger=self.logger,
        )

    def upload_file(self, url: str, path: str | Path) -> None:
        """
        Upload a file with a PUT request.

        The upload does not use the shared API connection as the target is
        the storage backend.

        Args:
            url: Upload URL
            path: Path to the file

        Raises:
            RequestError: On unexpected HTTP status
            ClientError: On connection errors

        """
        path = Path(path)
        size = path.stat().st_size
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Length": str(size),
            "X-Request-Id": str(uuid.uuid4()),
        }
        event = {"method": "put", "url": url, "headers": headers, "size": size}
        with path.open("rb") as file:
            req = urllib.request.Request(url, data=file, headers=headers, method="PUT")
            self._send(urllib.request.build_opener(), req, event, parse=False)

    def _retrying(self, event: dict[str, Any]) -> Retrying:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            self.instrumentor.instrument(
                "http.retry",
                {**event, "attempt": retry_state.attempt_number, "error": str(error)},
            )

        return Retrying(
            retry=retry_if_exception_type(ClientError),
            stop=stop_after_attempt(max(self.retry_count, 1)),
            wait=wait_fixed(self.retry_interval),
            before_sleep=before_sleep,
            reraise=True,
        )

    def _send(
        self,
        connection: urllib.request.OpenerDirector,
        req: urllib.request.Request,
        event: dict[str, Any],
        parse: bool = True,
    ) -> dict[str, Any]:
        return self.instrumentor.instrument(
            "http.request", event, lambda: self._perform(connection, req, event, parse)
        )

    def _perform(
        self,
        connection: urllib.request.OpenerDirector,
        req: urllib.request.Request,
        event: dict[str, Any],
        parse: bool = True,
    ) -> dict[str, Any]:
        identifier = req.get_header("X-request-id")
        try:
            with connection.open(req, timeout=self.timeout) as response:
                status = response.status
                response_data = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            error = RequestError("Vagrant Cloud request failed", error_body, e.code)
            self.instrumentor.instrument("http.error", {**event, **error.to_dict()})
            raise error from e
        except urllib.error.URLError as e:
            self.instrumentor.instrument("http.error", {**event, "error": str(e.reason)})
            raise ClientError(f"Connection error: {e.reason}") from e
        except TimeoutError as e:
            self.instrumentor.instrument("http.error", {**event, "error": "timeout"})
            raise ClientError(f"Request timed out after {self.timeout} seconds") from e
        except OSError as e:
            self.instrumentor.instrument("http.error", {**event, "error": str(e)})
            raise ClientError(str(e)) from e

        if status not in EXPECTED_STATUSES:
            raise RequestError("Vagrant Cloud request failed", response_data, status)

        result: dict[str, Any] = {}
        if parse:
            try:
                result = parse_json(response_data)
            except json.JSONDecodeError as e:
                raise ClientError(f"Invalid JSON response: {e}") from e

        self.instrumentor.instrument(
            "http.response",
            {"status": status, "identifier": identifier, "body": result},
        )
        return result

    def _build_path(self, path: str, api_version: int) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if api_version not in API_PATHS:
            raise ValidationError(f"Unsupported API version: {api_version}")

        # Paths already carrying an API prefix are used as is
        for prefix in API_PATHS.values():
            full = f"{self.path_base}{prefix}"
            if path == full or path.startswith((f"{full}/", f"{full}?")):
                return re.sub(r"/{2,}", "/", path)
        return re.sub(r"/{2,}", "/", "/".join([self.path_base, API_PATHS[api_version], path]))

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.url_base}{path}"

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        query: Any = UNSET,
        provider: Any = UNSET,
        sort: Any = UNSET,
        order: Any = UNSET,
        limit: Any = UNSET,
        page: Any = UNSET,
        architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Submit a search.

        Args:
            query: Search query
            provider: Limit results to only this provider
            sort: Field to sort results ("downloads", "created", or "updated")
            order: Order to return sorted result ("desc" or "asc")
            limit: Number of results to return
            page: Page number of results to return
            architecture: Limit results to only this architecture

        Returns:
            Search results

        """
        params = {
            "q": query,
            "provider": provider,
            "sort": sort,
            "order": order,
            "limit": limit,
            "page": page,
            "architecture": architecture,
        }
        return self.request(method="get", path="search", params=params)

    # =========================================================================
    # Authentication
    # =========================================================================

    def authentication_token_create(
        self,
        *,
        username: str,
        password: str,
        description: Any = UNSET,
        code: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Create a new access token.

        Args:
            username: Vagrant Cloud username
            password: Vagrant Cloud password
            description: Description of token
            code: 2FA code

        Returns:
            Token information

        """
        params = {
            "user": {"login": username, "password": password},
            "token": {"description": description},
            "two_factor": {"code": code},
        }
        return self.request(method="post", path="authenticate", params=params)

    def authentication_token_delete(self) -> dict[str, Any]:
        """Delete the token currently in use."""
        return self.request(method="delete", path="authenticate")

    def authentication_request_2fa_code(
        self,
        *,
        username: str,
        password: str,
        delivery_method: str,
    ) -> dict[str, Any]:
        """
        Request a 2FA code is sent.

        Args:
            username: Vagrant Cloud username
            password: Vagrant Cloud password
            delivery_method: Delivery method of 2FA

        Returns:
            Delivery information

        """
        params = {
            "two_factor": {"delivery_method": delivery_method},
            "user": {"login": username, "password": password},
        }
        return self.request(method="post", path="two-factor/request-code", params=params)

    def authentication_token_validate(self) -> dict[str, Any]:
        """Validate the current token."""
        return self.request(method="get", path="authenticate")

    # =========================================================================
    # Organizations
    # =========================================================================

    def organization_get(self, *, name: str) -> dict[str, Any]:
        """Get an organization by name."""
        return self.request(method="get", path=f"user/{_segment(name)}")

    # =========================================================================
    # Boxes
    # =========================================================================

    def box_get(self, *, username: str, name: str) -> dict[str, Any]:
        """Get an existing box."""
        return self.request(method="get", path=f"/box/{_segment(username)}/{_segment(name)}")

    def box_create(
        self,
        *,
        username: str,
        name: str,
        short_description: Any = UNSET,
        description: Any = UNSET,
        is_private: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Create a new box.

        Args:
            username: Username/organization name to create box under
            name: Box name
            short_description: Short description of box
            description: Long description of box (markdown supported)
            is_private: Set if box is private

        Returns:
            Box information

        """
        params = {
            "username": username,
            "name": name,
            "short_description": short_description,
            "description": description,
            "is_private": is_private,
        }
        return self.request(method="post", path="/boxes", params=params)

    def box_update(
        self,
        *,
        username: str,
        name: str,
        short_description: Any = UNSET,
        description: Any = UNSET,
        is_private: Any = UNSET,
    ) -> dict[str, Any]:
        """Update an existing box."""
        params = {
            "short_description": short_description,
            "description": description,
            "is_private": is_private,
        }
        return self.request(method="put", path=f"/box/{_segment(username)}/{_segment(name)}", params=params)

    def box_delete(self, *, username: str, name: str) -> dict[str, Any]:
        """Delete an existing box."""
        return self.request(method="delete", path=f"/box/{_segment(username)}/{_segment(name)}")

    # =========================================================================
    # Versions
    # =========================================================================

    def box_version_get(self, *, username: str, name: str, version: str) -> dict[str, Any]:
        """Get an existing box version."""
        return self.request(method="get", path=self._version_path(username, name, version))

    def box_version_create(
        self,
        *,
        username: str,
        name: str,
        version: str,
        description: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Create a new box version.

        Args:
            username: Username/organization name of the box
            name: Box name
            version: Box version
            description: Version description

        Returns:
            Box version information

        """
        params = {"version": {"version": version, "description": description}}
        return self.request(
            method="post",
            path=f"/box/{_segment(username)}/{_segment(name)}/versions",
            params=params,
        )

    def box_version_update(
        self,
        *,
        username: str,
        name: str,
        version: str,
        description: Any = UNSET,
    ) -> dict[str, Any]:
        """Update an existing box version."""
        params = {"version": {"version": version, "description": description}}
        return self.request(method="put", path=self._version_path(username, name, version), params=params)

    def box_version_delete(self, *, username: str, name: str, version: str) -> dict[str, Any]:
        """Delete an existing box version."""
        return self.request(method="delete", path=self._version_path(username, name, version))

    def box_version_release(self, *, username: str, name: str, version: str) -> dict[str, Any]:
        """Release an existing box version."""
        return self.request(method="put", path=f"{self._version_path(username, name, version)}/release")

    def box_version_revoke(self, *, username: str, name: str, version: str) -> dict[str, Any]:
        """Revoke an existing box version."""
        return self.request(method="put", path=f"{self._version_path(username, name, version)}/revoke")

    # =========================================================================
    # Providers
    # =========================================================================

    def box_version_provider_get(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """Get an existing box version provider."""
        return self.request(
            method="get",
            path=self._provider_path(username, name, version, provider, architecture),
            api_version=self._provider_api(architecture),
        )

    def box_version_provider_create(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        url: Any = UNSET,
        checksum: Any = UNSET,
        checksum_type: Any = UNSET,
        architecture: Any = UNSET,
        default_architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Create a new box version provider.

        Providers with an architecture are created through the v2 API.

        Args:
            username: Username/organization name of the box
            name: Box name
            version: Box version
            provider: Provider name
            url: Remote URL for box download
            checksum: Checksum of the box asset
            checksum_type: Type of checksum (e.g. "sha256")
            architecture: Architecture of the box asset
            default_architecture: Set as default architecture for the provider

        Returns:
            Box version provider information

        """
        params = {
            "provider": {
                "name": provider,
                "url": url,
                "checksum": checksum,
                "checksum_type": checksum_type,
                "architecture": architecture,
                "default_architecture": default_architecture,
            }
        }
        return self.request(
            method="post",
            path=f"{self._version_path(username, name, version)}/providers",
            params=params,
            api_version=self._provider_api(architecture),
        )

    def box_version_provider_update(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        url: Any = UNSET,
        checksum: Any = UNSET,
        checksum_type: Any = UNSET,
        architecture: Any = UNSET,
        default_architecture: Any = UNSET,
        new_architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Update an existing box version provider.

        ``architecture`` identifies the provider being updated. To move the
        provider to a different architecture pass ``new_architecture``.
        """
        params = {
            "provider": {
                "name": provider,
                "url": url,
                "checksum": checksum,
                "checksum_type": checksum_type,
                "architecture": architecture if new_architecture is UNSET else new_architecture,
                "default_architecture": default_architecture,
            }
        }
        return self.request(
            method="put",
            path=self._provider_path(username, name, version, provider, architecture),
            params=params,
            api_version=self._provider_api(architecture),
        )

    def box_version_provider_delete(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """Delete an existing box version provider."""
        return self.request(
            method="delete",
            path=self._provider_path(username, name, version, provider, architecture),
            api_version=self._provider_api(architecture),
        )

    def box_version_provider_upload(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Request an upload URL for a box version provider asset.

        Returns:
            Upload information (contains ``upload_path``)

        """
        return self.request(
            method="get",
            path=f"{self._provider_path(username, name, version, provider, architecture)}/upload",
            api_version=self._provider_api(architecture),
        )

    def box_version_provider_upload_direct(
        self,
        *,
        username: str,
        name: str,
        version: str,
        provider: str,
        architecture: Any = UNSET,
    ) -> dict[str, Any]:
        """
        Request a direct-to-storage upload URL for a box version provider asset.

        Returns:
            Upload information (contains ``upload_path`` and ``callback``)

        """
        return self.request(
            method="get",
            path=f"{self._provider_path(username, name, version, provider, architecture)}/upload/direct",
            api_version=self._provider_api(architecture),
        )

    @staticmethod
    def _version_path(username: str, name: str, version: str) -> str:
        return f"/box/{_segment(username)}/{_segment(name)}/version/{_segment(version)}"

    def _provider_path(self, username: str, name: str, version: str, provider: str, architecture: Any) -> str:
        path = f"{self._version_path(username, name, version)}/provider/{_segment(provider)}"
        if architecture:
            path = f"{path}/{_segment(architecture)}"
        return path

    @staticmethod
    def _provider_api(architecture: Any) -> int:
        return 2 if architecture else 1
