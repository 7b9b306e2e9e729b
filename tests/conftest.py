"""Pytest configuration and fixtures for shelly-discovery tests."""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shelly_discovery.config import ScannerConfig
from shelly_discovery.discovery.base import Discoverer
from shelly_discovery.discovery.ble import AdvertisementCallback, BLEConnector, BLEScanner
from shelly_discovery.discovery.wifi import WiFiScanner
from shelly_discovery.models.ble import BLEAdvertisement
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.models.wifi import WiFiNetwork


# Concrete test implementations of the platform interfaces
class FakeBLEScanner(BLEScanner):
    """Replays a fixed list of advertisements when started."""

    def __init__(self, advertisements: list[BLEAdvertisement] | None = None, fail_start: bool = False):
        self.advertisements = advertisements or []
        self.fail_start = fail_start
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self, callback: AdvertisementCallback) -> None:
        self.start_calls += 1
        if self.fail_start:
            raise RuntimeError("adapter powered off")
        for adv in self.advertisements:
            callback(adv)

    async def stop(self) -> None:
        self.stop_calls += 1


class FakeBLEConnector(BLEConnector):
    """Connector whose connect either succeeds or raises."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.connect_calls: list[str] = []
        self.disconnect_calls = 0
        self._connected = False

    async def connect(self, address: str) -> None:
        self.connect_calls.append(address)
        if self.fail:
            raise ConnectionError("connection refused")
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected


class FakeWiFiScanner(WiFiScanner):
    """Returns a fixed scan and records connection changes."""

    def __init__(
        self,
        networks: list[WiFiNetwork] | None = None,
        current: WiFiNetwork | None = None,
        fail_connect: set[str] | None = None,
        scan_error: Exception | None = None,
    ):
        self.networks = networks or []
        self.current = current
        self.fail_connect = fail_connect or set()
        self.scan_error = scan_error
        self.connect_calls: list[str] = []

    async def scan(self) -> list[WiFiNetwork]:
        if self.scan_error is not None:
            raise self.scan_error
        return [
            WiFiNetwork(
                ssid=n.ssid,
                bssid=n.bssid,
                signal=n.signal,
                channel=n.channel,
                security=n.security,
            )
            for n in self.networks
        ]

    async def connect(self, ssid: str, password: str) -> None:
        self.connect_calls.append(ssid)
        if ssid in self.fail_connect:
            raise ConnectionError(f"cannot join {ssid}")
        self.current = WiFiNetwork(ssid=ssid)

    async def disconnect(self) -> None:
        self.current = None

    async def current_network(self) -> WiFiNetwork | None:
        return self.current


class StaticDiscoverer(Discoverer):
    """Discoverer returning canned devices, or failing with ``error``."""

    protocol = DiscoveryProtocol.MANUAL

    def __init__(self, devices: list[DiscoveredDevice] | None = None, error: Exception | None = None):
        super().__init__()
        self.devices = devices or []
        self.error = error
        self.stop_error: Exception | None = None
        self.stopped = False

    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        if self.error is not None:
            raise self.error
        return list(self.devices)

    async def _run_continuous(self) -> None:
        for device in self.devices:
            self._publish(device)
        await asyncio.Event().wait()

    async def stop(self) -> None:
        self.stopped = True
        await super().stop()
        if self.stop_error is not None:
            raise self.stop_error


def make_device(
    device_id: str = "shellyplus1-a8032ab12345",
    protocol: DiscoveryProtocol = DiscoveryProtocol.MDNS,
    last_seen: datetime | None = None,
    **kwargs,
) -> DiscoveredDevice:
    """Build a device record with sensible defaults."""
    device = DiscoveredDevice(id=device_id, protocol=protocol, **kwargs)
    if last_seen is not None:
        device.last_seen = last_seen
    return device


@pytest.fixture
def sample_config() -> ScannerConfig:
    """Create a scanner configuration with the network listeners disabled."""
    return ScannerConfig(enable_mdns=False, enable_coiot=False, timeout=0.05)


@pytest.fixture
def shelly_networks() -> list[WiFiNetwork]:
    """Create a scan result mixing device APs and ordinary networks."""
    return [
        WiFiNetwork(ssid="shellyplus1pm-AABBCC", bssid="aa:bb:cc:00:00:01", signal=-40, channel=6),
        WiFiNetwork(ssid="HomeNetwork", bssid="11:22:33:44:55:66", signal=-30, channel=1, security="WPA2"),
        WiFiNetwork(ssid="shelly1-34945470A1B2", bssid="aa:bb:cc:00:00:02", signal=-70, channel=11),
    ]


@pytest.fixture
def gen2_device() -> DiscoveredDevice:
    """Create a Gen2 device as reported over mDNS."""
    return make_device(
        model="SNSW-001P16EU",
        generation=Generation.GEN2,
        port=80,
    )
