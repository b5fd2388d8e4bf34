"""
Vagrant Cloud - Two-layer client for the Vagrant Cloud box hosting API.

Layers:
- core: Data containers, auth and HTTP client
- sdk: Account, Organization, Box, Version, Provider and Search
"""

from vagrant_cloud.core import UNSET, Client, VagrantCloudError
from vagrant_cloud.sdk import Account, Box, Organization, Provider, Search, SearchResponse, Version

__version__ = "0.1.0"
__all__ = [
    "UNSET",
    "Account",
    "Box",
    "Client",
    "Organization",
    "Provider",
    "Search",
    "SearchResponse",
    "VagrantCloudError",
    "Version",
]
