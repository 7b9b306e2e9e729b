"""Common discovery record shared by every protocol listener."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from ipaddress import IPv4Address
from typing import Any


class DiscoveryProtocol(Enum):
    """Mechanism a device was found through."""

    MDNS = "mdns"
    COIOT = "coiot"
    BLE = "ble"
    WIFI_AP = "wifi_ap"
    MANUAL = "manual"


class Generation(IntEnum):
    """Hardware/firmware generation of a device."""

    UNKNOWN = 0
    GEN1 = 1
    GEN2 = 2
    GEN3 = 3
    GEN4 = 4

    def __str__(self) -> str:
        if self is Generation.UNKNOWN:
            return "Unknown"
        return f"Gen{self.value}"

    @classmethod
    def from_gen(cls, gen: int) -> "Generation":
        """Map a reported ``gen`` number; unknown newer generations speak Gen2 RPC."""
        try:
            return cls(gen)
        except ValueError:
            return cls.GEN2 if gen >= 2 else cls.UNKNOWN


@dataclass
class DiscoveredDevice:
    """A device observed by one of the discoverers.

    Records are replaced wholesale when a newer observation of the same
    device arrives; fields are never merged between observations.
    """

    id: str
    protocol: DiscoveryProtocol
    name: str = ""
    model: str = ""
    mac_address: str = ""
    firmware: str = ""
    address: IPv4Address | None = None
    port: int = 0
    generation: Generation = Generation.UNKNOWN
    auth_required: bool = False
    last_seen: datetime = field(default_factory=datetime.now)
    raw: Any = field(default=None, repr=False, compare=False)

    @property
    def url(self) -> str:
        """Base HTTP URL of the device."""
        port = self.port or 80
        return f"http://{self.address}:{port}"

    @property
    def merge_key(self) -> str:
        """Identity used to decide two observations are the same device."""
        if self.id:
            return self.id
        if self.mac_address:
            return self.mac_address
        return str(self.address) if self.address is not None else ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly view of the record (raw payload omitted)."""
        result: dict[str, Any] = {
            "id": self.id,
            "protocol": self.protocol.value,
            "address": str(self.address) if self.address is not None else None,
            "port": self.port,
            "generation": int(self.generation),
            "last_seen": self.last_seen.isoformat(),
        }
        for key in ("name", "model", "mac_address", "firmware"):
            value = getattr(self, key)
            if value:
                result[key] = value
        if self.auth_required:
            result["auth_required"] = True
        return result
