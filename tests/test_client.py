"""Tests for the HTTP client."""

import json
import re
import urllib.error
import urllib.parse
import uuid

import pytest

from vagrant_cloud.core.client import API_V1_PATH, Client, clean_parameters, parse_json
from vagrant_cloud.core.data import UNSET
from vagrant_cloud.core.errors import ClientError, ConnectionLockedError, RequestError, ValidationError
from vagrant_cloud.core.instrumentor import REDACTED


def query_of(req) -> dict:
    return urllib.parse.parse_qs(urllib.parse.urlparse(req.full_url).query)


def path_of(req) -> str:
    return urllib.parse.urlparse(req.full_url).path


# =============================================================================
# Helpers
# =============================================================================


def test_clean_parameters_strips_unset():
    params = {"a": 1, "b": UNSET, "c": {"d": UNSET, "e": 2}}
    assert clean_parameters(params) == {"a": 1, "c": {"e": 2}}


def test_clean_parameters_keeps_none_and_sequences():
    params = {"a": None, "b": [1, UNSET, 2], "c": (UNSET,)}
    assert clean_parameters(params) == {"a": None, "b": [1, 2], "c": []}


def test_parse_json_empty_body():
    assert parse_json("") == {}
    assert parse_json("  ") == {}
    assert parse_json('{"a": 1}') == {"a": 1}


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    def test_defaults(self):
        client = Client()
        assert client.url_base == "https://vagrantcloud.com"
        assert client.path_base == ""
        assert client.retry_count == 3
        assert client.retry_interval == 2
        assert client.access_token is None

    def test_server_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("VAGRANT_SERVER_URL", "https://boxes.example.com/vagrant/")
        client = Client()
        assert client.url_base == "https://boxes.example.com"
        assert client.path_base == "/vagrant"

    def test_invalid_url(self):
        with pytest.raises(ValidationError):
            Client(url_base="example.com")

    def test_clone(self, client):
        clone = client.clone(access_token="OTHER")
        assert clone is not client
        assert clone.access_token == "OTHER"
        assert client.access_token == "TOKEN"
        assert clone.url_base == client.url_base
        assert clone.retry_count == client.retry_count
        assert clone.retry_interval == client.retry_interval
        assert clone.instrumentor is client.instrumentor
        assert clone._connection_lock is not client._connection_lock


# =============================================================================
# Paths
# =============================================================================


class TestPaths:
    def test_relative_path(self, client, connection):
        client.request("search")
        assert connection.last.full_url == "https://vagrantcloud.com/api/v1/search"

    def test_api_version_two(self, client, connection):
        client.request("/box/a/b", api_version=2)
        assert path_of(connection.last) == "/api/v2/box/a/b"

    def test_prefixed_path_is_kept(self, client, connection):
        client.request("/api/v2/box/a/b")
        assert path_of(connection.last) == "/api/v2/box/a/b"

    def test_duplicate_slashes_collapse(self, client, connection):
        client.request("//box//a/b")
        assert path_of(connection.last) == f"{API_V1_PATH}/box/a/b"

    def test_custom_base_path(self, connection):
        client = Client(access_token="TOKEN", url_base="https://example.com/vagrant")
        client._connection = connection
        client.request("/box/a/b")
        assert connection.last.full_url == "https://example.com/vagrant/api/v1/box/a/b"

    def test_absolute_url(self, client, connection):
        client.request("https://storage.example.com/upload")
        assert connection.last.full_url == "https://storage.example.com/upload"

    def test_unsupported_api_version(self, client):
        with pytest.raises(ValidationError):
            client.request("search", api_version=3)

    def test_segments_are_quoted(self, client, connection):
        client.box_version_get(username="hashicorp", name="precise 64", version="1.0/beta")
        assert connection.last.full_url.endswith("/box/hashicorp/precise%2064/version/1.0%2Fbeta")


# =============================================================================
# Requests
# =============================================================================


class TestRequests:
    def test_headers(self, client, connection):
        client.request("search")
        req = connection.last
        assert req.get_header("Authorization") == "Bearer TOKEN"
        assert req.get_header("Accept") == "application/json"
        uuid.UUID(req.get_header("X-request-id"))

    def test_request_ids_are_unique(self, client, connection):
        client.request("search")
        client.request("search")
        ids = {req.get_header("X-request-id") for req in connection.requests}
        assert len(ids) == 2

    def test_anonymous_request(self, connection):
        client = Client()
        client._connection = connection
        client.request("search")
        assert not connection.last.has_header("Authorization")

    def test_method_is_normalized(self, client, connection):
        client.request("boxes", method="POST", params={"name": "a"})
        assert connection.last.get_method() == "POST"

    def test_get_params_in_query(self, client, connection):
        client.search(query="ubuntu", limit=5)
        req = connection.last
        assert query_of(req) == {"q": ["ubuntu"], "limit": ["5"]}
        assert req.data is None

    def test_delete_params_in_query(self, client, connection):
        client.request("authenticate", method="delete", params={"a": 1, "b": UNSET})
        assert query_of(connection.last) == {"a": ["1"]}

    def test_post_params_in_body(self, client, connection):
        client.box_create(username="hashicorp", name="precise64", is_private=False)
        assert connection.last_json() == {"username": "hashicorp", "name": "precise64", "is_private": False}
        assert connection.last.get_method() == "POST"

    def test_response_body(self, client, connection):
        connection.respond({"boxes": [{"name": "precise64"}]})
        assert client.request("search") == {"boxes": [{"name": "precise64"}]}

    def test_empty_response_body(self, client, connection):
        connection.respond("", status=204)
        assert client.request("box/a/b", method="delete") == {}

    def test_error_response(self, client, connection):
        connection.respond({"errors": ["Resource not found!"]}, status=404)
        with pytest.raises(RequestError) as exc_info:
            client.request("box/a/b", method="delete")
        error = exc_info.value
        assert error.status == 404
        assert error.errors == ["Resource not found!"]
        assert str(error) == "Vagrant Cloud request failed - Resource not found!"

    def test_unexpected_status(self, client, connection):
        connection.respond({}, status=202)
        with pytest.raises(RequestError) as exc_info:
            client.request("boxes", method="post")
        assert exc_info.value.status == 202

    def test_invalid_json(self, client, connection):
        connection.respond("<html>")
        with pytest.raises(ClientError, match="Invalid JSON"):
            client.request("boxes", method="post")

    def test_connection_error(self, client, connection):
        connection.fail(urllib.error.URLError("refused"))
        with pytest.raises(ClientError, match="refused"):
            client.request("boxes", method="post")


# =============================================================================
# Retries
# =============================================================================


class TestRetries:
    def test_get_is_retried(self, client, connection):
        connection.fail(urllib.error.URLError("reset"))
        connection.fail(urllib.error.URLError("reset"))
        connection.respond({"ok": True})
        assert client.request("search") == {"ok": True}
        assert len(connection.requests) == 3

    def test_get_error_status_is_retried(self, client, connection):
        connection.respond({"errors": ["busy"]}, status=503)
        connection.respond({"ok": True})
        assert client.request("search") == {"ok": True}
        assert len(connection.requests) == 2

    def test_retries_are_limited(self, client, connection):
        for _ in range(4):
            connection.fail(urllib.error.URLError("reset"))
        with pytest.raises(ClientError):
            client.request("search")
        assert len(connection.requests) == 3

    def test_retry_count(self, connection):
        client = Client(access_token="TOKEN", retry_count=1, retry_interval=0)
        client._connection = connection
        connection.fail(urllib.error.URLError("reset"))
        with pytest.raises(ClientError):
            client.request("search")
        assert len(connection.requests) == 1

    @pytest.mark.parametrize("method", ["post", "put", "delete"])
    def test_other_methods_are_not_retried(self, client, connection, method):
        connection.fail(urllib.error.URLError("reset"))
        with pytest.raises(ClientError):
            client.request("boxes", method=method)
        assert len(connection.requests) == 1

    def test_retry_event(self, client, connection):
        events = []
        client.instrumentor.subscribe("http.retry", lambda name, params: events.append(params))
        connection.fail(urllib.error.URLError("reset"))
        client.request("search")
        assert len(events) == 1
        assert events[0]["attempt"] == 1


# =============================================================================
# Connection
# =============================================================================


class TestConnection:
    def test_locked_connection(self, client):
        with client.connection():
            with pytest.raises(ConnectionLockedError):
                client.request("search", wait=False)

    def test_lock_is_released(self, client, connection):
        connection.respond({"errors": ["bad"]}, status=400)
        with pytest.raises(RequestError):
            client.request("boxes", method="post")
        with client.connection(wait=False):
            pass


# =============================================================================
# Instrumentation
# =============================================================================


class TestInstrumentation:
    def test_request_event_is_redacted(self, client, connection):
        events = []
        client.instrumentor.subscribe(re.compile(r"^http\."), lambda name, params: events.append((name, params)))
        client.authentication_token_create(username="user", password="secret")

        names = [name for name, _ in events]
        assert names == ["http.response", "http.request"]
        request = dict(events)["http.request"]
        assert request["headers"]["Authorization"] == REDACTED
        assert request["params"]["user"]["password"] == REDACTED
        assert request["timing"]["duration"] >= 0

    def test_credentials_still_sent(self, client, connection):
        client.authentication_token_create(username="user", password="secret")
        assert connection.last_json()["user"] == {"login": "user", "password": "secret"}

    def test_error_event(self, client, connection):
        events = []
        client.instrumentor.subscribe("http.error", lambda name, params: events.append(params))
        connection.respond({"errors": ["bad"]}, status=422)
        with pytest.raises(RequestError):
            client.request("boxes", method="post")
        assert events[0]["status"] == 422
        assert events[0]["error"] == "Vagrant Cloud request failed - bad"
        assert events[0]["details"] == {"errors": ["bad"]}
        assert events[0]["method"] == "post"

    def test_request_error_to_dict(self):
        error = RequestError("Vagrant Cloud request failed", '{"errors": ["not found"]}', 404)
        assert error.to_dict() == {
            "error": "Vagrant Cloud request failed - not found",
            "details": {"errors": ["not found"]},
            "status": 404,
        }
        assert ClientError("boom").to_dict() == {"error": "boom"}


# =============================================================================
# Endpoints
# =============================================================================


class TestEndpoints:
    def test_box_update(self, client, connection):
        client.box_update(username="hashicorp", name="precise64", description="desc")
        req = connection.last
        assert req.get_method() == "PUT"
        assert path_of(req) == "/api/v1/box/hashicorp/precise64"
        assert connection.last_json() == {"description": "desc"}

    def test_version_create(self, client, connection):
        client.box_version_create(username="hashicorp", name="precise64", version="1.0.0")
        assert path_of(connection.last) == "/api/v1/box/hashicorp/precise64/versions"
        assert connection.last_json() == {"version": {"version": "1.0.0"}}

    def test_version_release(self, client, connection):
        client.box_version_release(username="hashicorp", name="precise64", version="1.0.0")
        assert path_of(connection.last) == "/api/v1/box/hashicorp/precise64/version/1.0.0/release"
        assert connection.last.get_method() == "PUT"

    def test_provider_create(self, client, connection):
        client.box_version_provider_create(
            username="hashicorp", name="precise64", version="1.0.0", provider="virtualbox", checksum="abc"
        )
        assert path_of(connection.last) == "/api/v1/box/hashicorp/precise64/version/1.0.0/providers"
        assert connection.last_json() == {"provider": {"name": "virtualbox", "checksum": "abc"}}

    def test_provider_create_with_architecture(self, client, connection):
        client.box_version_provider_create(
            username="hashicorp", name="precise64", version="1.0.0", provider="virtualbox", architecture="amd64"
        )
        assert path_of(connection.last) == "/api/v2/box/hashicorp/precise64/version/1.0.0/providers"
        assert connection.last_json()["provider"]["architecture"] == "amd64"

    def test_provider_update_architecture(self, client, connection):
        client.box_version_provider_update(
            username="hashicorp",
            name="precise64",
            version="1.0.0",
            provider="virtualbox",
            architecture="amd64",
            new_architecture="arm64",
        )
        assert path_of(connection.last) == "/api/v2/box/hashicorp/precise64/version/1.0.0/provider/virtualbox/amd64"
        assert connection.last_json()["provider"]["architecture"] == "arm64"

    def test_provider_upload_direct(self, client, connection):
        client.box_version_provider_upload_direct(
            username="hashicorp", name="precise64", version="1.0.0", provider="virtualbox"
        )
        expected = "/api/v1/box/hashicorp/precise64/version/1.0.0/provider/virtualbox/upload/direct"
        assert path_of(connection.last) == expected

    def test_request_2fa_code(self, client, connection):
        client.authentication_request_2fa_code(username="user", password="secret", delivery_method="sms")
        assert path_of(connection.last) == "/api/v1/two-factor/request-code"
        assert connection.last_json()["two_factor"] == {"delivery_method": "sms"}

    def test_upload_file(self, client, connection, monkeypatch, tmp_path):
        box = tmp_path / "test.box"
        box.write_bytes(b"box-data")
        monkeypatch.setattr("urllib.request.build_opener", lambda: connection)
        connection.respond("<ok/>")
        client.upload_file("https://storage.example.com/upload", box)
        req = connection.last
        assert req.get_method() == "PUT"
        assert req.full_url == "https://storage.example.com/upload"
        assert req.get_header("Content-length") == "8"


def test_json_body_is_compact_json(client, connection):
    client.box_create(username="hashicorp", name="precise64", short_description=None)
    assert json.loads(connection.last.data) == {"username": "hashicorp", "name": "precise64", "short_description": None}
