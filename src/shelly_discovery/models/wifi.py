"""WiFi access-point models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol


@dataclass
class WiFiNetwork:
    """One WiFi scan result."""

    ssid: str
    bssid: str = ""
    signal: int = 0
    channel: int = 0
    security: str = ""
    is_shelly: bool = False
    device_type: str = ""
    device_id: str = ""
    last_seen: datetime = field(default_factory=datetime.now)


@dataclass
class WiFiDiscoveredDevice(DiscoveredDevice):
    """A device found through the access point it broadcasts."""

    protocol: DiscoveryProtocol = DiscoveryProtocol.WIFI_AP
    ssid: str = ""
    bssid: str = ""
    signal: int = 0
    channel: int = 0
    security: str = ""
    is_connected: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "ssid": self.ssid,
                "bssid": self.bssid,
                "signal": self.signal,
                "channel": self.channel,
                "security": self.security,
                "is_connected": self.is_connected,
            }
        )
        return result
