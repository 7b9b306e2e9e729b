"""Error types for shelly-discovery.

Malformed packets are never errors: parsers return None and the packet is
dropped. Exceptions are reserved for conditions a caller can act on, such as
a socket that cannot be bound or a platform without a BLE radio.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any


class DiscoveryError(Exception):
    """Base class for discovery failures."""

    def __init__(self, message: str, err: BaseException | None = None):
        self.message = message
        self.err = err
        super().__init__(message)

    def __str__(self) -> str:
        if self.err is not None:
            return f"{self.message}: {self.err}"
        return self.message


class TransportError(DiscoveryError):
    """Raised when a listener socket cannot be set up or used."""


class BLEError(DiscoveryError):
    """Raised for Bluetooth Low Energy failures."""


class BLENotSupportedError(BLEError):
    """Raised when no BLE scanner is available on this platform."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message or "BLE scanning not supported on this platform - provide a BLE scanner"
        )


class WiFiError(DiscoveryError):
    """Raised for WiFi scanning and connection failures."""


class WiFiNotSupportedError(WiFiError):
    """Raised when no WiFi scanner is available on this platform."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message or "WiFi scanning not supported on this platform - provide a WiFi scanner"
        )


class SSIDNotFoundError(WiFiError):
    """Raised when the requested SSID is not in range."""

    def __init__(self, ssid: str | None = None):
        self.ssid = ssid
        message = "SSID not found in scan results"
        if ssid:
            message = f"SSID {ssid!r} not found in scan results"
        super().__init__(message)


class WiFiAuthFailedError(WiFiError):
    """Raised when joining a network fails authentication."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "WiFi authentication failed - check password")


class WiFiToolNotFoundError(WiFiError):
    """Raised when the host has no tool to join a WiFi network."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "no WiFi connection tool available; linux requires nmcli, wpa_cli, "
            "or iwconfig; macOS requires networksetup; windows requires netsh"
        )


class WiFiConnectionTimeoutError(WiFiError):
    """Raised when joining a network takes too long."""

    def __init__(self, ssid: str | None = None, timeout: float | None = None):
        self.ssid = ssid
        self.timeout = timeout
        message = "WiFi connection timeout - device may be out of range"
        if timeout is not None:
            message += f" (after {timeout}s)"
        super().__init__(message)


class IdentifyError(DiscoveryError):
    """Raised when an address does not answer like a Shelly device."""

    def __init__(self, address: str, message: str, err: BaseException | None = None):
        self.address = address
        super().__init__(f"{address}: {message}", err)


class ErrorCategory(Enum):
    """Categories of discovery failures."""

    NOT_SUPPORTED = "not_supported"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    AUTH_FAILED = "auth_failed"
    DEVICE_ERROR = "device_error"
    INTERNAL_ERROR = "internal_error"


RECOVERY_SUGGESTIONS = {
    ErrorCategory.NOT_SUPPORTED: "Provide a platform scanner for this protocol or disable it.",
    ErrorCategory.TRANSPORT: "Check that UDP multicast is allowed and the port is not in use.",
    ErrorCategory.TIMEOUT: "Device may be out of range. Try again with a longer timeout.",
    ErrorCategory.NOT_FOUND: "Make sure the device is powered and in range.",
    ErrorCategory.AUTH_FAILED: "Check the network password.",
    ErrorCategory.DEVICE_ERROR: "The device answered unexpectedly. Try again in a moment.",
    ErrorCategory.INTERNAL_ERROR: "An unexpected error occurred. Please try again.",
}


def get_recovery_suggestion(category: ErrorCategory) -> str:
    """Get recovery suggestion for an error category."""
    return RECOVERY_SUGGESTIONS.get(category, "Please try again.")


@dataclass
class DiscoveryFailure:
    """A classified failure of one discovery protocol."""

    category: ErrorCategory
    message: str
    protocol: str | None = None
    recovery: str | None = None

    @property
    def can_retry(self) -> bool:
        """False when the protocol cannot work at all on this host."""
        return self.category is not ErrorCategory.NOT_SUPPORTED

    def to_dict(self) -> dict[str, Any]:
        """Convert to response dict."""
        result: dict[str, Any] = {
            "error": self.message,
            "error_category": self.category.value,
        }
        if self.protocol:
            result["protocol"] = self.protocol
        if self.recovery:
            result["recovery"] = self.recovery
        return result


def classify_exception(e: BaseException, protocol: str | None = None) -> DiscoveryFailure:
    """Classify an exception raised by a discoverer.

    Args:
        e: The exception to classify
        protocol: Optional protocol name for context

    Returns:
        DiscoveryFailure with category and recovery suggestion
    """
    if isinstance(e, (BLENotSupportedError, WiFiNotSupportedError, WiFiToolNotFoundError)):
        category = ErrorCategory.NOT_SUPPORTED
    elif isinstance(e, (WiFiConnectionTimeoutError, asyncio.TimeoutError)):
        category = ErrorCategory.TIMEOUT
    elif isinstance(e, SSIDNotFoundError):
        category = ErrorCategory.NOT_FOUND
    elif isinstance(e, WiFiAuthFailedError):
        category = ErrorCategory.AUTH_FAILED
    elif isinstance(e, IdentifyError):
        category = ErrorCategory.DEVICE_ERROR
    elif isinstance(e, (TransportError, OSError)):
        category = ErrorCategory.TRANSPORT
    else:
        category = ErrorCategory.INTERNAL_ERROR

    message = str(e) or e.__class__.__name__
    if category is ErrorCategory.TIMEOUT and not str(e):
        message = "Operation timed out"

    return DiscoveryFailure(
        category=category,
        message=message,
        protocol=protocol,
        recovery=get_recovery_suggestion(category),
    )
