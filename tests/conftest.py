"""Pytest configuration - loads .env and provides a fake API connection."""

import io
import json
import urllib.error
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from vagrant_cloud.core.client import Client
from vagrant_cloud.sdk import Account, Organization

# Load .env from project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

CREDENTIAL_ENV = (
    "VAGRANT_CLOUD_TOKEN",
    "VAGRANT_SERVER_URL",
    "HCP_CLIENT_ID",
    "HCP_CLIENT_SECRET",
    "HCP_AUTH_URL",
    "HCP_AUTH_PATH",
    "HCP_TOKEN_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep credentials from the environment out of unit tests."""
    for name in CREDENTIAL_ENV:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Fake Connection
# =============================================================================


class FakeResponse:
    """Canned HTTP response."""

    def __init__(self, body: Any = None, status: int = 200):
        if body is None:
            body = ""
        elif not isinstance(body, str):
            body = json.dumps(body)
        self.body = body.encode("utf-8")
        self.status = status

    def read(self) -> bytes:
        return self.body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


class FakeConnection:
    """Stands in for the client's opener, recording every request."""

    def __init__(self):
        self.requests: list = []
        self.responses: list = []

    def respond(self, body: Any = None, status: int = 200) -> "FakeConnection":
        self.responses.append(FakeResponse(body, status))
        return self

    def fail(self, error: Exception) -> "FakeConnection":
        self.responses.append(error)
        return self

    def open(self, req, timeout=None):
        self.requests.append(req)
        item = self.responses.pop(0) if self.responses else FakeResponse({})
        if isinstance(item, Exception):
            raise item
        if item.status >= 400:
            raise urllib.error.HTTPError(req.full_url, item.status, "error", {}, io.BytesIO(item.body))
        return item

    @property
    def last(self):
        return self.requests[-1]

    def last_json(self) -> Any:
        return json.loads(self.last.data.decode("utf-8"))


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def client(connection):
    """Client with a static token whose requests go to the fake connection."""
    c = Client(access_token="TOKEN", retry_interval=0)
    c._connection = connection
    return c


# =============================================================================
# Resource Fixtures
# =============================================================================


@pytest.fixture
def api():
    """Mocked client for resource tests."""
    mock = MagicMock(spec=Client)
    mock.auth = MagicMock(available=True)
    mock.authentication_token_validate.return_value = {"user": {"username": "hashicorp"}}
    mock.box_get.return_value = {"versions": []}
    for name in (
        "box_create",
        "box_update",
        "box_version_create",
        "box_version_update",
        "box_version_release",
        "box_version_revoke",
        "box_version_provider_create",
        "box_version_provider_update",
    ):
        getattr(mock, name).return_value = {}
    return mock


@pytest.fixture
def account(api):
    return Account(client=api)


@pytest.fixture
def organization(account):
    return Organization(account=account, username="hashicorp")
