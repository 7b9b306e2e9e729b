"""Bluetooth Low Energy models."""

from dataclasses import dataclass, field
from typing import Any

from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol


@dataclass
class BLEAdvertisement:
    """A normalized radio advertisement handed over by a BLE scanner."""

    address: str
    local_name: str = ""
    rssi: int = 0
    connectable: bool = False
    service_uuids: list[str] = field(default_factory=list)
    service_data: dict[str, bytes] = field(default_factory=dict)
    manufacturer_id: int = 0
    manufacturer_data: bytes = b""


@dataclass
class BTHomeData:
    """Decoded BTHome v2 sensor telemetry.

    A field is None when its object type was absent from the payload,
    which means "unknown" rather than zero.
    """

    temperature: float | None = None  # °C
    humidity: float | None = None  # %
    battery: int | None = None  # %
    illuminance: float | None = None  # lux
    motion: bool | None = None
    window_open: bool | None = None
    button: int | None = None  # event code
    rotation: float | None = None  # degrees
    packet_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return only the fields that were present in the payload."""
        return {
            key: value
            for key, value in self.__dict__.items()
            if value is not None
        }


@dataclass
class BLEDiscoveredDevice(DiscoveredDevice):
    """A device seen over BLE, before it has an IP address."""

    protocol: DiscoveryProtocol = DiscoveryProtocol.BLE
    rssi: int = 0
    local_name: str = ""
    connectable: bool = False
    service_uuid: str = ""
    bthome_data: BTHomeData | None = None

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["rssi"] = self.rssi
        result["connectable"] = self.connectable
        if self.local_name:
            result["local_name"] = self.local_name
        if self.service_uuid:
            result["service_uuid"] = self.service_uuid
        if self.bthome_data is not None:
            result["bthome_data"] = self.bthome_data.to_dict()
        return result
