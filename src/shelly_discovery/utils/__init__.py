"""Utility modules for shelly-discovery."""

from shelly_discovery.utils.errors import (
    BLEError,
    BLENotSupportedError,
    DiscoveryError,
    DiscoveryFailure,
    ErrorCategory,
    IdentifyError,
    SSIDNotFoundError,
    TransportError,
    WiFiAuthFailedError,
    WiFiConnectionTimeoutError,
    WiFiError,
    WiFiNotSupportedError,
    WiFiToolNotFoundError,
    classify_exception,
)

__all__ = [
    "BLEError",
    "BLENotSupportedError",
    "DiscoveryError",
    "DiscoveryFailure",
    "ErrorCategory",
    "IdentifyError",
    "SSIDNotFoundError",
    "TransportError",
    "WiFiAuthFailedError",
    "WiFiConnectionTimeoutError",
    "WiFiError",
    "WiFiNotSupportedError",
    "WiFiToolNotFoundError",
    "classify_exception",
]
