"""Unified scanner running every enabled discoverer."""

import asyncio
import logging
from typing import Callable

from shelly_discovery.config import ScannerConfig
from shelly_discovery.discovery.base import Discoverer
from shelly_discovery.discovery.ble import BLEDiscoverer, BLEScanner, ConnectabilityCache
from shelly_discovery.discovery.coiot import CoIoTDiscoverer
from shelly_discovery.discovery.mdns import MDNSDiscoverer
from shelly_discovery.discovery.wifi import WiFiDiscoverer, WiFiScanner
from shelly_discovery.models.device import DiscoveredDevice
from shelly_discovery.utils.errors import DiscoveryFailure, classify_exception

logger = logging.getLogger(__name__)

DiscovererFactory = Callable[[ScannerConfig], Discoverer]


def deduplicate_devices(devices: list[DiscoveredDevice]) -> list[DiscoveredDevice]:
    """Collapse observations of the same device into one record.

    Devices are keyed by id, then MAC address, then IP address. The record
    with the latest ``last_seen`` wins as a whole; ties keep the first seen.
    """
    seen: dict[str, DiscoveredDevice] = {}
    for device in devices:
        key = device.merge_key
        existing = seen.get(key)
        if existing is None or device.last_seen > existing.last_seen:
            seen[key] = device
    return list(seen.values())


class Scanner:
    """Discovers devices across all enabled protocols."""

    def __init__(
        self,
        config: ScannerConfig | None = None,
        ble_scanner: BLEScanner | None = None,
        wifi_scanner: WiFiScanner | None = None,
        connectability_cache: ConnectabilityCache | None = None,
    ):
        """Initialize the scanner.

        Supplying a platform scanner turns the matching protocol on. Enabling
        BLE or WiFi in config without one reports them as not supported.
        """
        self.config = config or ScannerConfig()
        self.ble_scanner = ble_scanner
        self.wifi_scanner = wifi_scanner
        self.connectability_cache = connectability_cache
        self.last_failures: dict[str, DiscoveryFailure] = {}

        self._discoverer_factories: dict[str, DiscovererFactory] = {}
        self._discoverers: dict[str, Discoverer] = {}

        self.register_discoverer_factory("mdns", self._create_mdns)
        self.register_discoverer_factory("coiot", self._create_coiot)
        self.register_discoverer_factory("ble", self._create_ble)
        self.register_discoverer_factory("wifi_ap", self._create_wifi)

    def register_discoverer_factory(self, name: str, factory: DiscovererFactory) -> None:
        """Register a factory building the discoverer for protocol ``name``.

        The factory takes the scanner config and returns a Discoverer. A
        registration replaces any earlier one under the same name; register
        before the first scan, since discoverers are built once and reused.
        """
        self._discoverer_factories[name] = factory

    def _create_mdns(self, config: ScannerConfig) -> Discoverer:
        return MDNSDiscoverer(
            service=config.mdns.service,
            multicast_addr=config.mdns.multicast_addr,
            port=config.mdns.port,
            requery_interval=config.mdns.requery_interval,
            requery_window=config.mdns.requery_window,
            queue_size=config.queue_size,
        )

    def _create_coiot(self, config: ScannerConfig) -> Discoverer:
        return CoIoTDiscoverer(
            multicast_addr=config.coiot.multicast_addr,
            port=config.coiot.port,
            queue_size=config.queue_size,
        )

    def _create_ble(self, config: ScannerConfig) -> Discoverer:
        return BLEDiscoverer(
            scanner=self.ble_scanner,
            filter_prefix=config.ble.filter_prefix,
            include_bthome=config.ble.include_bthome,
            scan_duration=config.ble.scan_duration,
            connectability_cache=self.connectability_cache,
            queue_size=config.queue_size,
        )

    def _create_wifi(self, config: ScannerConfig) -> Discoverer:
        return WiFiDiscoverer(
            scanner=self.wifi_scanner,
            probe_devices=config.wifi.probe_devices,
            probe_timeout=config.wifi.probe_timeout,
            settle_delay=config.wifi.settle_delay,
            http_timeout=config.wifi.http_timeout,
            ap_ip=config.wifi.ap_ip,
            ap_port=config.wifi.ap_port,
            rescan_interval=config.wifi.rescan_interval,
            rescan_timeout=config.wifi.rescan_timeout,
            queue_size=config.queue_size,
        )

    def is_enabled(self, name: str) -> bool:
        """Return True if protocol ``name`` takes part in scans."""
        if name == "mdns":
            return self.config.enable_mdns
        if name == "coiot":
            return self.config.enable_coiot
        if name == "ble":
            return self.config.enable_ble or self.ble_scanner is not None
        if name == "wifi_ap":
            return self.config.enable_wifi or self.wifi_scanner is not None
        return True

    def get_discoverer(self, name: str) -> Discoverer | None:
        """Get the discoverer for ``name``, building it on first use."""
        discoverer = self._discoverers.get(name)
        if discoverer is None:
            factory = self._discoverer_factories.get(name)
            if factory is None:
                return None
            discoverer = factory(self.config)
            self._discoverers[name] = discoverer
        return discoverer

    async def scan(self, timeout: float | None = None) -> list[DiscoveredDevice]:
        """Run every enabled discoverer concurrently and merge the results.

        A protocol that fails does not affect the others; its failure is
        logged and kept in ``last_failures``.

        Args:
            timeout: Seconds each discoverer listens (defaults to config.timeout)

        Returns:
            Deduplicated devices from all protocols
        """
        if timeout is None:
            timeout = self.config.timeout

        names = [name for name in self._discoverer_factories if self.is_enabled(name)]
        self.last_failures = {}

        discoverers: list[tuple[str, Discoverer]] = []
        for name in names:
            try:
                discoverer = self.get_discoverer(name)
            except Exception as e:
                self._record_failure(name, e)
                continue
            if discoverer is not None:
                discoverers.append((name, discoverer))

        logger.info(f"Scanning with {', '.join(name for name, _ in discoverers) or 'no protocols'}")
        results = await asyncio.gather(
            *(discoverer.discover(timeout) for _, discoverer in discoverers),
            return_exceptions=True,
        )

        found: list[DiscoveredDevice] = []
        for (name, _), result in zip(discoverers, results):
            if isinstance(result, Exception):
                self._record_failure(name, result)
            elif isinstance(result, BaseException):
                raise result
            else:
                found.extend(result)

        devices = deduplicate_devices(found)
        logger.info(
            f"Scan found {len(devices)} device(s) from {len(found)} observation(s), "
            f"{len(self.last_failures)} protocol(s) failed"
        )
        return devices

    def _record_failure(self, name: str, e: Exception) -> None:
        failure = classify_exception(e, protocol=name)
        self.last_failures[name] = failure
        logger.warning(f"{name} discovery failed ({failure.category.value}): {failure.message}")

    async def stop(self) -> None:
        """Stop every discoverer that was built.

        All discoverers are stopped even if some fail; the first failure is
        raised afterwards.
        """
        first_error: Exception | None = None
        for name, discoverer in self._discoverers.items():
            try:
                await discoverer.stop()
            except Exception as e:
                logger.warning(f"Error stopping {name} discoverer: {e}")
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
