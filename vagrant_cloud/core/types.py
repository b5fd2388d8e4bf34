"""
Response records returned by account and upload operations.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from vagrant_cloud.core.data import Immutable


class Response(Immutable):
    """Base for immutable API response records."""


class CreateToken(Response):
    """Newly created access token."""

    attr_required = ("token", "token_hash", "created_at", "description")


class Request2FA(Response):
    """Result of a two-factor code delivery request."""

    attr_required = ("destination",)


# =============================================================================
# Upload Types
# =============================================================================


@dataclass
class DirectUpload:
    """
    Upload target for a box asset.

    When uploading directly to the storage backend, the callback must be
    issued once the asset has been uploaded.
    """

    upload_url: str
    callback_url: str | None = None
    callback: Callable[[], Any] | None = field(default=None, repr=False)

    def complete(self) -> Any:
        """Issue the upload callback, if any."""
        if self.callback is None:
            return None
        return self.callback()
