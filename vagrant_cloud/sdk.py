"""
Vagrant Cloud SDK - resource objects with change tracking.

Organizations own boxes, boxes own versions and versions own providers.
Resources are changed locally through their mutable attributes and
persisted with save(), which only sends requests for what changed.

Example:
    account = Account(access_token="TOKEN")
    org = account.organization()

    box = org.add_box("precise64")
    box.short_description = "Ubuntu 12.04"
    version = box.add_version("1.0.0")
    provider = version.add_provider("virtualbox")
    org.save()

    provider.upload(path="precise64.box")
    version.release()

"""

import logging
import os
import threading
import urllib.parse
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from vagrant_cloud.core.client import Client
from vagrant_cloud.core.data import UNSET, Mutable
from vagrant_cloud.core.errors import (
    BoxExistsError,
    DataTypeError,
    ProviderNotFoundError,
    StateError,
    ValidationError,
    VersionExistsError,
    VersionProviderExistsError,
    VersionStatusChangeError,
)
from vagrant_cloud.core.instrumentor import InstrumentorCollection
from vagrant_cloud.core.log import get_logger
from vagrant_cloud.core.types import CreateToken, DirectUpload, Request2FA, Response


def _expect(value: Any, kind: type, name: str) -> None:
    if not isinstance(value, kind):
        raise DataTypeError(f"Expecting type `{kind.__name__}` for {name} but received `{type(value).__name__}`")


# =============================================================================
# Account
# =============================================================================


class Account:
    """
    Entry point for an authenticated (or anonymous) session.

    Example:
        account = Account()
        print(account.username)
        org = account.organization("hashicorp")
        box = next(b for b in org.boxes if b.name == "precise64")

    """

    def __init__(
        self,
        access_token: str | None = None,
        custom_server: str | None = None,
        retry_count: int | None = None,
        retry_interval: float | None = None,
        instrumentor: InstrumentorCollection | None = None,
        client: Client | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Initialize the account.

        Args:
            access_token: Access token (or VAGRANT_CLOUD_TOKEN / HCP_* env vars)
            custom_server: API base URL (or VAGRANT_SERVER_URL env var)
            retry_count: Number of attempts for idempotent requests
            retry_interval: Seconds to wait between attempts
            instrumentor: Instrumentor receiving request events
            client: Existing client to use instead of building one
            logger: Logger to use

        """
        self.logger = logger or get_logger(__name__)
        if client is not None:
            _expect(client, Client, "client")
            self.client = client
        else:
            self.client = Client(
                access_token=access_token,
                url_base=custom_server,
                retry_count=retry_count,
                retry_interval=retry_interval,
                instrumentor=instrumentor,
                logger=self.logger,
            )
        self._username: str | None = None
        self._username_loaded = False

    @property
    def username(self) -> str | None:
        """Username of the token owner, or None when anonymous."""
        if not self._username_loaded:
            self._username = self._setup()
            self._username_loaded = True
        return self._username

    def _setup(self) -> str | None:
        if not self.client.auth.available:
            return None
        result = self.client.authentication_token_validate()
        return (result.get("user") or {}).get("username")

    def searcher(self) -> "Search":
        """Create a new searcher bound to this account."""
        return Search(account=self)

    def create_token(self, password: str, description: Any = UNSET, code: Any = UNSET) -> CreateToken:
        """
        Create a new access token.

        Args:
            password: Account password
            description: Description of the token
            code: 2FA code

        Returns:
            CreateToken response

        """
        result = self.client.authentication_token_create(
            username=self.username,
            password=password,
            description=description,
            code=code,
        )
        return CreateToken(
            token=result.get("token"),
            token_hash=result.get("token_hash"),
            created_at=result.get("created_at"),
            description=result.get("description"),
        )

    def delete_token(self) -> "Account":
        """Delete the token currently in use."""
        self.client.authentication_token_delete()
        return self

    def validate_token(self) -> "Account":
        """Validate the token currently in use."""
        self.client.authentication_token_validate()
        return self

    def request_2fa_code(self, delivery_method: str, password: str) -> Request2FA:
        """
        Request a 2FA code be delivered.

        Args:
            delivery_method: How the code is delivered (e.g. "sms")
            password: Account password

        Returns:
            Request2FA response

        """
        result = self.client.authentication_request_2fa_code(
            username=self.username,
            password=password,
            delivery_method=delivery_method,
        )
        return Request2FA(destination=(result.get("two_factor") or {}).get("obfuscated_destination"))

    def organization(self, name: str | None = None) -> "Organization":
        """
        Fetch an organization.

        Args:
            name: Organization name (defaults to own username)

        Returns:
            Organization with its boxes

        """
        result = self.client.organization_get(name=name or self.username)
        return Organization.load(result, account=self)


# =============================================================================
# Organization
# =============================================================================


class Organization(Mutable):
    """User or organization owning boxes."""

    attr_required = ("username",)
    attr_optional = ("boxes", "avatar_url", "profile_html", "profile_markdown")
    attr_mutable = ("boxes",)

    def __init__(self, *, account: Account, **opts: Any):
        self._account = account
        opts["boxes"] = opts.get("boxes") or []
        super().__init__(**opts)
        boxes = [b if isinstance(b, Box) else Box.load(b, organization=self) for b in self.boxes]
        self.clean(data={"boxes": boxes})

    @property
    def account(self) -> Account:
        return self._account

    def add_box(self, name: str) -> "Box":
        """
        Add a new box to the organization.

        Args:
            name: Name of the box

        Returns:
            New (unsaved) Box

        Raises:
            BoxExistsError: If a box with the name already exists

        """
        if any(b.name == name for b in self.boxes or ()):
            raise BoxExistsError(f"Box with name {name} already exists")
        box = Box(organization=self, name=name)
        self.clean(data={"boxes": tuple(self.boxes or ()) + (box,)})
        return box

    def is_dirty(self, key: str | None = None, deep: bool = False) -> bool:
        if key is not None:
            return super().is_dirty(key)
        dirty = super().is_dirty()
        if deep and not dirty:
            dirty = any(b.is_dirty(deep=True) for b in self.boxes)
        return dirty

    def save(self) -> "Organization":
        """Save all boxes in the organization."""
        for box in self.boxes:
            box.save()
        return self


# =============================================================================
# Box
# =============================================================================


class Box(Mutable):
    """Box hosted under an organization."""

    attr_required = ("name",)
    attr_optional = (
        "created_at",
        "updated_at",
        "tag",
        "short_description",
        "description_html",
        "description_markdown",
        "private",
        "downloads",
        "current_version",
        "versions",
        "description",
    )
    attr_mutable = ("short_description", "description", "private")

    def __init__(self, *, organization: Organization, **opts: Any):
        _expect(organization, Organization, "organization")
        self._organization = organization
        self._versions_loaded = bool(opts.get("versions"))
        opts["versions"] = opts.get("versions") or []
        super().__init__(**opts)
        versions = [v if isinstance(v, Version) else Version.load(v, box=self) for v in self["versions"]]
        self.clean(data={"versions": versions})

    @property
    def organization(self) -> Organization:
        return self._organization

    @property
    def username(self) -> str:
        """Name of the owning organization."""
        return self._organization.username

    @property
    def tag(self) -> str:
        """Full box name, e.g. "hashicorp/precise64"."""
        return self["tag"] or f"{self.username}/{self.name}"

    @property
    def exists(self) -> bool:
        """Box exists remotely."""
        return bool(self.created_at)

    @property
    def versions(self) -> tuple["Version", ...]:
        """
        Versions of the box.

        Remote versions are fetched on first access. Versions added locally
        are kept alongside them.
        """
        if not self._versions_loaded:
            # A failed fetch leaves the box unloaded
            if self.exists:
                result = self.organization.account.client.box_get(username=self.username, name=self.name)
                self._merge_versions(result.get("versions") or ())
            self._versions_loaded = True
        return self["versions"] or ()

    def _merge_versions(self, remote: Iterable[Mapping[str, Any]]) -> None:
        local = list(self["versions"] or ())
        known = {v.version for v in local}
        for data in remote:
            if data.get("version") not in known:
                local.append(Version.load(data, box=self))
        self.clean(data={"versions": local})

    def add_version(self, version: str) -> "Version":
        """
        Add a new version to the box.

        Args:
            version: Version string

        Returns:
            New (unsaved) Version

        Raises:
            VersionExistsError: If the version already exists

        """
        if any(v.version == version for v in self.versions):
            raise VersionExistsError(f"Version {version} already exists for box {self.tag}")
        new_version = Version(box=self, version=version)
        self.clean(data={"versions": tuple(self.versions) + (new_version,)})
        return new_version

    def delete(self) -> None:
        """Delete the box remotely. Boxes that were never saved are ignored."""
        if self.exists:
            self.organization.account.client.box_delete(username=self.username, name=self.name)
            boxes = tuple(b for b in self.organization.boxes if b is not self)
            self.organization.clean(data={"boxes": boxes})
        return None

    def is_dirty(self, key: str | None = None, deep: bool = False) -> bool:
        if key is not None:
            return super().is_dirty(key)
        dirty = super().is_dirty() or not self.exists
        if deep and not dirty:
            # Versions not yet fetched cannot hold local changes
            dirty = any(v.is_dirty(deep=True) for v in self["versions"] or ())
        return dirty

    def save(self) -> "Box":
        """Save the box and any changed versions."""
        if self.is_dirty():
            self._save_box()
        if self.is_dirty(deep=True):
            self._save_versions()
        return self

    def _save_box(self) -> "Box":
        params = {
            "username": self.username,
            "name": self.name,
            "short_description": self.short_description,
            "description": self.description,
            "is_private": self.private,
        }
        client = self.organization.account.client
        if self.exists:
            result = client.box_update(**params)
        else:
            result = client.box_create(**params)
        self.clean(data=result, ignores=("versions",))
        return self

    def _save_versions(self) -> "Box":
        for version in self["versions"] or ():
            version.save()
        return self


# =============================================================================
# Version
# =============================================================================


class Version(Mutable):
    """Version of a box."""

    attr_required = ("version",)
    attr_optional = (
        "status",
        "description_html",
        "description_markdown",
        "created_at",
        "updated_at",
        "number",
        "providers",
        "description",
    )
    attr_mutable = ("description",)

    def __init__(self, *, box: Box, **opts: Any):
        _expect(box, Box, "box")
        self._box = box
        opts["providers"] = opts.get("providers") or []
        super().__init__(**opts)
        providers = [p if isinstance(p, Provider) else Provider.load(p, version=self) for p in self["providers"]]
        self.clean(data={"providers": providers})

    @property
    def box(self) -> Box:
        return self._box

    @property
    def exists(self) -> bool:
        """Version exists remotely."""
        return bool(self.created_at)

    @property
    def released(self) -> bool:
        """Version has been released."""
        return self.status == "active"

    def _client(self) -> Client:
        return self.box.organization.account.client

    def _identity(self) -> dict[str, str]:
        return {"username": self.box.username, "name": self.box.name, "version": self.version}

    def delete(self) -> None:
        """Delete the version and all its providers remotely."""
        if self.exists:
            self._client().box_version_delete(**self._identity())
            versions = tuple(v for v in self.box.versions if v is not self)
            self.box.clean(data={"versions": versions})
        return None

    def release(self) -> "Version":
        """
        Release the version.

        Raises:
            VersionStatusChangeError: If already released or not yet saved

        """
        if self.released:
            raise VersionStatusChangeError(f"Version {self.version} is already released for box {self.box.tag}")
        if not self.exists:
            raise VersionStatusChangeError(
                f"Version {self.version} for box {self.box.tag} must be saved before release"
            )
        result = self._client().box_version_release(**self._identity())
        self.clean(data=result, only="status")
        return self

    def revoke(self) -> "Version":
        """
        Revoke the version.

        Raises:
            VersionStatusChangeError: If the version is not released

        """
        if not self.released:
            raise VersionStatusChangeError(f"Version {self.version} is not yet released for box {self.box.tag}")
        result = self._client().box_version_revoke(**self._identity())
        self.clean(data=result, only="status")
        return self

    def add_provider(self, name: str, architecture: str | None = None) -> "Provider":
        """
        Add a new provider to the version.

        Args:
            name: Provider name (e.g. "virtualbox")
            architecture: Architecture of the box asset

        Returns:
            New (unsaved) Provider

        Raises:
            VersionProviderExistsError: If the provider already exists

        """
        architecture = architecture or UNSET
        if any(p.name == name and (p.architecture or None) == (architecture or None) for p in self.providers):
            label = f"{name} ({architecture})" if architecture else name
            raise VersionProviderExistsError(
                f"Provider {label} already exists for box {self.box.tag} version {self.version}"
            )
        opts = {"architecture": architecture} if architecture else {}
        provider = Provider(version=self, name=name, **opts)
        self.clean(data={"providers": tuple(self.providers or ()) + (provider,)})
        return provider

    def is_dirty(self, key: str | None = None, deep: bool = False) -> bool:
        if key is not None:
            return super().is_dirty(key)
        dirty = super().is_dirty() or not self.exists
        if deep and not dirty:
            dirty = any(p.is_dirty(deep=True) for p in self.providers)
        return dirty

    def save(self) -> "Version":
        """Save the version and any changed providers."""
        if self.is_dirty():
            self._save_version()
        if self.is_dirty(deep=True):
            self._save_providers()
        return self

    def _save_version(self) -> "Version":
        params = {**self._identity(), "description": self.description}
        if self.exists:
            result = self._client().box_version_update(**params)
        else:
            result = self._client().box_version_create(**params)
        self.clean(data=result, ignores=("providers",))
        return self

    def _save_providers(self) -> "Version":
        for provider in self.providers:
            provider.save()
        return self


# =============================================================================
# Provider
# =============================================================================


class Provider(Mutable):
    """Provider asset of a box version."""

    attr_required = ("name",)
    attr_optional = (
        "hosted",
        "created_at",
        "updated_at",
        "checksum",
        "checksum_type",
        "original_url",
        "download_url",
        "url",
        "architecture",
        "default_architecture",
    )
    attr_mutable = ("url", "checksum", "checksum_type", "architecture", "default_architecture")

    def __init__(self, *, version: Version, **opts: Any):
        _expect(version, Version, "version")
        self._version = version
        super().__init__(**opts)

    @property
    def version(self) -> Version:
        return self._version

    @property
    def exists(self) -> bool:
        """Provider exists remotely."""
        return bool(self.created_at)

    def _client(self) -> Client:
        return self.version.box.organization.account.client

    def _identity(self) -> dict[str, Any]:
        # Remote lookups use the saved architecture, not a pending change
        return {
            "username": self.version.box.username,
            "name": self.version.box.name,
            "version": self.version.version,
            "provider": self.name,
            "architecture": self._data.get("architecture", UNSET),
        }

    def delete(self) -> None:
        """Delete the provider remotely."""
        if self.exists:
            self._client().box_version_provider_delete(**self._identity())
            providers = tuple(p for p in self.version.providers if p is not self)
            self.version.clean(data={"providers": providers})
        return None

    def upload(
        self,
        path: str | os.PathLike | None = None,
        direct: bool = False,
        uploader: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Upload the box asset.

        With ``path`` the file is uploaded and self is returned. With
        ``uploader`` the callable receives the upload URL and its result is
        returned. In both cases the direct upload callback is issued once
        the upload is done. With neither, the upload URL is returned (or a
        DirectUpload when ``direct`` is set, whose callback the caller must
        complete).

        Args:
            path: Path to the box file
            direct: Upload directly to the storage backend
            uploader: Callable performing the upload

        Returns:
            self, the uploader result, the upload URL or a DirectUpload

        Raises:
            ProviderNotFoundError: If the provider has not been saved
            ValidationError: If both path and uploader are given
            FileNotFoundError: If path does not exist

        """
        if not self.exists:
            raise ProviderNotFoundError(
                f"Provider {self.name} not found for box {self.version.box.tag} version {self.version.version}"
            )
        if path is not None and uploader is not None:
            raise ValidationError("Only path or uploader may be provided, not both")
        if path is not None and not Path(path).exists():
            raise FileNotFoundError(f"No such file: {path}")

        client = self._client()
        if direct:
            result = client.box_version_provider_upload_direct(**self._identity())
        else:
            result = client.box_version_provider_upload(**self._identity())

        callback_url = result.get("callback")

        def callback() -> Any:
            if callback_url:
                return client.request(method="put", path=urllib.parse.urlparse(callback_url).path)
            return None

        upload = DirectUpload(upload_url=result.get("upload_path"), callback_url=callback_url, callback=callback)

        if uploader is not None:
            uploaded = uploader(upload.upload_url)
            upload.complete()
            return uploaded
        if path is not None:
            client.upload_file(upload.upload_url, path)
            upload.complete()
            return self
        return upload if direct else upload.upload_url

    def is_dirty(self, key: str | None = None, deep: bool = False) -> bool:
        if key is not None:
            return super().is_dirty(key)
        return super().is_dirty() or not self.exists

    def save(self) -> "Provider":
        """Save the provider if it changed."""
        if self.is_dirty():
            self._save_provider()
        return self

    def _save_provider(self) -> "Provider":
        params = {
            **self._identity(),
            "url": self.url,
            "checksum": self.checksum,
            "checksum_type": self.checksum_type,
            "default_architecture": self.default_architecture,
        }
        if self.exists:
            if self.is_dirty("architecture"):
                params["new_architecture"] = self.architecture
            result = self._client().box_version_provider_update(**params)
        else:
            params["architecture"] = self.architecture
            result = self._client().box_version_provider_create(**params)
        self.clean(data=result)
        return self


# =============================================================================
# Search
# =============================================================================


class Search:
    """
    Box search with paging.

    The last search parameters are kept so following pages can be
    requested with next_page() and prev_page().
    """

    def __init__(
        self,
        access_token: str | None = None,
        account: Account | None = None,
        client: Client | None = None,
    ):
        sources = {"access_token": access_token, "account": account, "client": client}
        given = [name for name, value in sources.items() if value is not None]
        if len(given) > 1:
            raise ValidationError(
                f"Search accepts `access_token`, `account`, or `client` but received multiple ({', '.join(given)})"
            )
        if client is not None:
            _expect(client, Client, "client")
            self.account = Account(client=client)
        elif account is not None:
            _expect(account, Account, "account")
            self.account = account
        else:
            self.account = Account(access_token=access_token)
        self._params: dict[str, Any] = {}
        self._lock = threading.Lock()

    def search(
        self,
        query: Any = UNSET,
        provider: Any = UNSET,
        sort: Any = UNSET,
        order: Any = UNSET,
        limit: Any = UNSET,
        page: Any = UNSET,
        architecture: Any = UNSET,
    ) -> "SearchResponse":
        """
        Search for boxes.

        Args:
            query: Search query
            provider: Limit results to only this provider
            sort: Field to sort results ("downloads", "created", or "updated")
            order: Order to return sorted result ("desc" or "asc")
            limit: Number of results to return
            page: Page number of results to return
            architecture: Limit results to only this architecture

        Returns:
            SearchResponse

        """
        with self._lock:
            self._params = {
                "query": query,
                "provider": provider,
                "sort": sort,
                "order": order,
                "limit": limit,
                "page": page,
                "architecture": architecture,
            }
            return self._execute()

    def next_page(self) -> "SearchResponse":
        """Request the next page of the active search."""
        with self._lock:
            self._require_active()
            page = max(_page_number(self._params.get("page")), 1)
            self._params["page"] = page + 1
            return self._execute()

    def prev_page(self) -> "SearchResponse":
        """Request the previous page of the active search."""
        with self._lock:
            self._require_active()
            page = _page_number(self._params.get("page")) - 1
            self._params["page"] = max(page, 1)
            return self._execute()

    @property
    def active(self) -> bool:
        """A search is cached."""
        return bool(self._params)

    def clear(self) -> "Search":
        """Drop the cached search."""
        with self._lock:
            self._params = {}
        return self

    def seed(self, **params: Any) -> "Search":
        """Cache search parameters without sending a request."""
        with self._lock:
            self._params = dict(params)
        return self

    def from_response(self, response: "SearchResponse") -> "Search":
        """Create a new search seeded with the parameters of a response."""
        return type(self)(account=self.account).seed(**response.search_parameters)

    def _require_active(self) -> None:
        if not self._params:
            raise StateError("No active search currently cached")

    def _execute(self) -> "SearchResponse":
        result = self.account.client.search(**self._params)
        return SearchResponse(account=self.account, params=self._params, boxes=result.get("boxes") or [])


def _page_number(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class SearchResponse(Response):
    """Page of search results."""

    attr_optional = ("boxes",)

    def __init__(self, *, account: Account, params: Mapping[str, Any], **opts: Any):
        _expect(account, Account, "account")
        self.account = account
        self.search_parameters = dict(params)
        opts["boxes"] = self._reload_boxes(opts.get("boxes") or [])
        super().__init__(**opts)

    @property
    def page(self) -> int:
        """Page number of these results."""
        page = _page_number(self.search_parameters.get("page"))
        return page if page > 0 else 1

    def previous_page(self) -> "SearchResponse":
        """
        Request the previous page of results.

        Raises:
            ValidationError: If this is the first page

        """
        if self.page <= 1:
            raise ValidationError("Cannot request page results less than one")
        return self.account.searcher().from_response(self).prev_page()

    def next_page(self) -> "SearchResponse":
        """Request the next page of results."""
        return self.account.searcher().from_response(self).next_page()

    def _reload_boxes(self, boxes: Iterable[Mapping[str, Any]]) -> list[Box]:
        organizations: dict[str, Organization] = {}
        result = []
        for data in boxes:
            org_name = data.get("username")
            if org_name not in organizations:
                organizations[org_name] = self.account.organization(name=org_name)
            org = organizations[org_name]
            box = next((b for b in org.boxes or () if b.name == data.get("name")), None)
            if box is None:
                box = Box.load(data, organization=org)
                org.clean(data={"boxes": tuple(org.boxes or ()) + (box,)})
            result.append(box)
        return result
