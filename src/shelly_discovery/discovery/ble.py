"""Bluetooth Low Energy discovery.

Finds Gen2+ devices in provisioning mode (advertising the Shelly service or a
``SHELLY-`` local name) and BLU sensors broadcasting BTHome data. Radio access
goes through a ``BLEScanner`` supplied by the caller; this module only filters
and decodes what the scanner reports.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from typing import Callable

from shelly_discovery.discovery.base import DEFAULT_QUEUE_SIZE, ERROR_BACKOFF, Discoverer
from shelly_discovery.discovery.bthome import bthome_payload, parse_bthome_data
from shelly_discovery.models.ble import BLEAdvertisement, BLEDiscoveredDevice
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.utils.errors import BLEError, BLENotSupportedError

logger = logging.getLogger(__name__)

SHELLY_BLE_SERVICE_UUID = "5f6d4f53-5f52-5043-5f53-56435f49445f"
SHELLY_BLE_ADVERTISEMENT_PREFIX = "SHELLY-"

AdvertisementCallback = Callable[[BLEAdvertisement], None]


class BLEScanner(ABC):
    """Platform BLE radio access.

    ``start`` returns once scanning is running and then reports every
    advertisement to ``callback`` on the event loop thread until ``stop``.
    """

    @abstractmethod
    async def start(self, callback: AdvertisementCallback) -> None:
        """Begin scanning."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop scanning."""


class BLEConnector(ABC):
    """Platform BLE connection used to test whether a device accepts connections."""

    @abstractmethod
    async def connect(self, address: str) -> None:
        """Connect to the device at ``address``; raise on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the connected device."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Return True while connected."""


class ConnectabilityCache:
    """Remembers which BLE addresses accepted a connection.

    Connectability changes slowly, so one cache can be shared by several
    discoverers. Call ``clear`` to force devices to be retested.
    """

    def __init__(self) -> None:
        self._results: dict[str, bool] = {}
        self._lock = threading.Lock()

    def get(self, address: str) -> bool | None:
        with self._lock:
            return self._results.get(address)

    def set(self, address: str, connectable: bool) -> None:
        with self._lock:
            self._results[address] = connectable

    def clear(self) -> None:
        with self._lock:
            self._results = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def is_shelly_advertisement(
    adv: BLEAdvertisement,
    filter_prefix: str = SHELLY_BLE_ADVERTISEMENT_PREFIX,
    include_bthome: bool = True,
) -> bool:
    """Return True if an advertisement comes from a Shelly device."""
    if adv.local_name.upper().startswith(filter_prefix.upper()):
        return True

    if any(uuid.lower() == SHELLY_BLE_SERVICE_UUID for uuid in adv.service_uuids):
        return True

    return include_bthome and bthome_payload(adv) is not None


def parse_advertisement(adv: BLEAdvertisement) -> BLEDiscoveredDevice:
    """Build a device record from a Shelly advertisement."""
    device = BLEDiscoveredDevice(
        id=adv.address,
        name=adv.local_name,
        mac_address=adv.address,
        generation=Generation.GEN2,
        rssi=adv.rssi,
        local_name=adv.local_name,
        connectable=adv.connectable,
    )

    if adv.service_uuids:
        device.service_uuid = adv.service_uuids[0]

    # Local names look like SHELLY-<MODEL>-<SUFFIX>.
    if adv.local_name.upper().startswith(SHELLY_BLE_ADVERTISEMENT_PREFIX):
        parts = adv.local_name.split("-")
        if len(parts) >= 2:
            device.model = parts[1]

    payload = bthome_payload(adv)
    if payload is not None:
        device.bthome_data = parse_bthome_data(payload)
        device.generation = Generation.GEN2
        device.raw = payload

    return device


def is_device_provisioned(device: DiscoveredDevice) -> bool:
    """Return True once a device has an IP address on the network."""
    return device.address is not None and device.address != IPv4Address("0.0.0.0")


class BLEDiscoverer(Discoverer):
    """Discovers devices from BLE advertisements."""

    protocol = DiscoveryProtocol.BLE

    def __init__(
        self,
        scanner: BLEScanner | None = None,
        filter_prefix: str = SHELLY_BLE_ADVERTISEMENT_PREFIX,
        include_bthome: bool = True,
        scan_duration: float = 10.0,
        on_device_found: Callable[[BLEDiscoveredDevice], None] | None = None,
        connectability_cache: ConnectabilityCache | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        super().__init__(queue_size)
        self.scanner = scanner
        self.filter_prefix = filter_prefix
        self.include_bthome = include_bthome
        self.scan_duration = scan_duration
        self.on_device_found = on_device_found
        if connectability_cache is None:
            connectability_cache = ConnectabilityCache()
        self.connectability_cache = connectability_cache
        self._devices: dict[str, BLEDiscoveredDevice] = {}

    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        if self.scanner is None:
            raise BLENotSupportedError()

        self._devices = {}
        try:
            await self.scanner.start(self._handle_advertisement)
        except Exception as e:
            raise BLEError("failed to start BLE scan", e) from e

        try:
            await stop.wait()
        finally:
            await self._stop_scanner()

        logger.info(f"BLE discovery found {len(self._devices)} device(s)")
        return list(self._devices.values())

    def is_shelly_device(self, adv: BLEAdvertisement) -> bool:
        """Return True if ``adv`` passes this discoverer's filter."""
        return is_shelly_advertisement(adv, self.filter_prefix, self.include_bthome)

    def _handle_advertisement(self, adv: BLEAdvertisement) -> None:
        if not self.is_shelly_device(adv):
            return

        device = parse_advertisement(adv)
        if not device.id:
            return

        self._devices[device.id] = device
        logger.debug(f"BLE advertisement from {device.id} ({device.local_name or 'unnamed'})")

        if self.on_device_found is not None:
            self.on_device_found(device)

        self._publish(device)

    async def _stop_scanner(self) -> None:
        if self.scanner is None:
            return
        try:
            await self.scanner.stop()
        except Exception as e:
            logger.debug(f"Failed to stop BLE scanner: {e}")

    async def _prepare_continuous(self) -> None:
        if self.scanner is None:
            raise BLENotSupportedError()

    async def _run_continuous(self) -> None:
        scanner = self.scanner
        if scanner is None:
            return
        while True:
            try:
                await scanner.start(self._handle_advertisement)
            except Exception as e:
                logger.warning(f"BLE scan failed to start: {e}")
                await asyncio.sleep(ERROR_BACKOFF)
                continue

            try:
                await asyncio.sleep(self.scan_duration)
            finally:
                await self._stop_scanner()

    def devices(self) -> list[BLEDiscoveredDevice]:
        """Return the devices seen in the current or last session."""
        return list(self._devices.values())

    def device_by_address(self, address: str) -> BLEDiscoveredDevice | None:
        return self._devices.get(address)

    def clear(self) -> None:
        self._devices = {}

    async def is_connectable(
        self,
        device: BLEDiscoveredDevice | None,
        connector: BLEConnector | None = None,
    ) -> bool:
        """Check whether a device accepts BLE connections.

        A cached answer wins. Without a connector the advertisement's own
        connectable flag is returned and nothing is cached. With a connector a
        real connect/disconnect is attempted and the outcome is cached; a
        failed connect means the device is not connectable.

        Raises:
            BLEError: If device is None
        """
        if device is None:
            raise BLEError("device is None")

        cached = self.connectability_cache.get(device.mac_address)
        if cached is not None:
            return cached

        if connector is None:
            return device.connectable

        try:
            await connector.connect(device.mac_address)
        except Exception as e:
            logger.debug(f"Connect to {device.mac_address} failed: {e}")
            connectable = False
        else:
            connectable = True
            try:
                await connector.disconnect()
            except Exception as e:
                logger.debug(f"Disconnect from {device.mac_address} failed: {e}")

        self.connectability_cache.set(device.mac_address, connectable)
        return connectable

    def clear_connectability_cache(self) -> None:
        """Forget cached connectability so devices are tested again."""
        self.connectability_cache.clear()
