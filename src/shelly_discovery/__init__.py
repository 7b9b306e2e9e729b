"""Shelly device discovery over mDNS, CoIoT, BLE and WiFi access points."""

from shelly_discovery.config import ScannerConfig, load_config
from shelly_discovery.discovery import Scanner
from shelly_discovery.models import DiscoveredDevice, DiscoveryProtocol, Generation

__all__ = [
    "DiscoveredDevice",
    "DiscoveryProtocol",
    "Generation",
    "Scanner",
    "ScannerConfig",
    "load_config",
]
