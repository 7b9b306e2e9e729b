"""Data models for shelly-discovery."""

from shelly_discovery.models.ble import BLEAdvertisement, BLEDiscoveredDevice, BTHomeData
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.models.wifi import WiFiDiscoveredDevice, WiFiNetwork

__all__ = [
    "BLEAdvertisement",
    "BLEDiscoveredDevice",
    "BTHomeData",
    "DiscoveredDevice",
    "DiscoveryProtocol",
    "Generation",
    "WiFiDiscoveredDevice",
    "WiFiNetwork",
]
