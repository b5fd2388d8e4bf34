"""
Core layer - data containers, errors and HTTP client.

This layer provides:
- Change-tracking attribute containers and the UNSET marker
- Credential resolution and token refresh
- Low-level HTTP client with retries, instrumentation and error handling
"""

from vagrant_cloud.core.auth import Auth, HCPConfig, HCPToken
from vagrant_cloud.core.client import Client, clean_parameters
from vagrant_cloud.core.data import UNSET, Immutable, Mutable, UnsetType
from vagrant_cloud.core.errors import (
    AuthenticationError,
    BoxExistsError,
    ClientError,
    ConfigurationError,
    ConnectionLockedError,
    DataTypeError,
    ProviderNotFoundError,
    RequestError,
    StateError,
    ValidationError,
    VagrantCloudError,
    VersionExistsError,
    VersionProviderExistsError,
    VersionStatusChangeError,
)
from vagrant_cloud.core.instrumentor import Instrumentor, InstrumentorCollection, LoggerInstrumentor
from vagrant_cloud.core.types import CreateToken, DirectUpload, Request2FA, Response

__all__ = [
    "UNSET",
    "Auth",
    "AuthenticationError",
    "BoxExistsError",
    "Client",
    "ClientError",
    "ConfigurationError",
    "ConnectionLockedError",
    "CreateToken",
    "DataTypeError",
    "DirectUpload",
    "HCPConfig",
    "HCPToken",
    "Immutable",
    "Instrumentor",
    "InstrumentorCollection",
    "LoggerInstrumentor",
    "Mutable",
    "ProviderNotFoundError",
    "Request2FA",
    "RequestError",
    "Response",
    "StateError",
    "UnsetType",
    "ValidationError",
    "VagrantCloudError",
    "VersionExistsError",
    "VersionProviderExistsError",
    "VersionStatusChangeError",
    "clean_parameters",
]
