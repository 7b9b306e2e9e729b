"""WiFi access-point discovery.

A device that has no WiFi credentials (or cannot reach its network) opens an
access point named like ``shellyplus1pm-AABBCC``. Scanning for those SSIDs
finds unprovisioned devices. Optionally the host can join each AP and ask the
device for its details over HTTP; that drops the host off its current network
for the duration of the probe, so it is off by default.
"""

import asyncio
import contextlib
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from ipaddress import IPv4Address
from typing import Any, Callable

import httpx

from shelly_discovery.discovery.base import DEFAULT_QUEUE_SIZE, Discoverer
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.models.wifi import WiFiDiscoveredDevice, WiFiNetwork
from shelly_discovery.utils.errors import WiFiError, WiFiNotSupportedError

logger = logging.getLogger(__name__)

SHELLY_AP_PREFIX = "shelly"
DEFAULT_AP_IP = "192.168.33.1"
DEFAULT_AP_PORT = 80

# e.g. shelly1-AABBCC, shellyplus1pm-123456, ShellyPro4PM-AABBCCDD
SHELLY_AP_PATTERN = re.compile(r"^shelly[a-z0-9]*[-_]?[a-f0-9]+$", re.IGNORECASE)

GEN2_INFO_PATH = "/rpc/Shelly.GetDeviceInfo"
GEN1_INFO_PATH = "/shelly"

_HEX_DIGITS = frozenset("0123456789abcdef")


class WiFiScanner(ABC):
    """Platform WiFi access, usually a wrapper around the OS network tools."""

    @abstractmethod
    async def scan(self) -> list[WiFiNetwork]:
        """Return the networks currently in range."""

    @abstractmethod
    async def connect(self, ssid: str, password: str) -> None:
        """Join a network; raise on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Leave the current network."""

    @abstractmethod
    async def current_network(self) -> WiFiNetwork | None:
        """Return the network the host is joined to, if any."""


def is_shelly_ap(ssid: str) -> bool:
    """Return True if ``ssid`` is a device access point."""
    return SHELLY_AP_PATTERN.match(ssid) is not None


def parse_shelly_ssid(ssid: str) -> tuple[str, str]:
    """Split an AP SSID into ``(device_type, device_id)``.

    ``shellyplus1pm-AABBCC`` gives ``("plus1pm", "AABBCC")``. Without a
    separator the longest trailing run of hex digits is taken as the id, so
    ``shellyplusaabbcc`` gives ``("plus", "AABBCC")``. The id is upper-cased.
    """
    name = ssid.lower()
    if name.startswith(SHELLY_AP_PREFIX):
        name = name[len(SHELLY_AP_PREFIX) :]

    parts = [part for part in re.split(r"[-_]", name) if part]
    if not parts:
        return "", ""

    if len(parts) >= 2:
        return parts[0], parts[-1].upper()

    token = parts[0]
    split = len(token)
    while split > 0 and token[split - 1] in _HEX_DIGITS:
        split -= 1
    return token[:split], token[split:].upper()


def infer_generation_from_model(model: str) -> Generation:
    """Guess the generation from a model token; defaults to Gen1."""
    model = model.lower()
    if "g4" in model or "gen4" in model:
        return Generation.GEN4
    if "g3" in model or "gen3" in model:
        return Generation.GEN3
    if any(marker in model for marker in ("plus", "pro", "g2", "gen2")):
        return Generation.GEN2
    return Generation.GEN1


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def apply_gen2_info(device: WiFiDiscoveredDevice, info: dict[str, Any]) -> None:
    """Copy fields from a ``Shelly.GetDeviceInfo`` response onto ``device``."""
    if isinstance(info.get("name"), str):
        device.name = info["name"]
    if isinstance(info.get("model"), str):
        device.model = info["model"]
    if isinstance(info.get("mac"), str):
        device.mac_address = info["mac"]
    if isinstance(info.get("fw_id"), str):
        device.firmware = info["fw_id"]
    if _is_number(info.get("gen")):
        device.generation = Generation.from_gen(int(info["gen"]))
    if isinstance(info.get("auth_en"), bool):
        device.auth_required = info["auth_en"]
    if isinstance(info.get("id"), str) and info["id"]:
        device.id = info["id"]


def apply_gen1_info(device: WiFiDiscoveredDevice, info: dict[str, Any]) -> None:
    """Copy fields from a Gen1 ``/shelly`` response onto ``device``."""
    if isinstance(info.get("type"), str):
        device.model = info["type"]
    if isinstance(info.get("mac"), str):
        device.mac_address = info["mac"]
        if not device.id:
            device.id = info["mac"].replace(":", "")
    if isinstance(info.get("fw"), str):
        device.firmware = info["fw"]
    if isinstance(info.get("auth"), bool):
        device.auth_required = info["auth"]
    device.generation = Generation.GEN1


class WiFiDiscoverer(Discoverer):
    """Discovers devices from the access points they broadcast."""

    protocol = DiscoveryProtocol.WIFI_AP

    def __init__(
        self,
        scanner: WiFiScanner | None = None,
        probe_devices: bool = False,
        probe_timeout: float = 10.0,
        settle_delay: float = 2.0,
        http_timeout: float = 5.0,
        ap_ip: str = DEFAULT_AP_IP,
        ap_port: int = DEFAULT_AP_PORT,
        rescan_interval: float = 10.0,
        rescan_timeout: float = 30.0,
        on_network_found: Callable[[WiFiNetwork], None] | None = None,
        on_device_found: Callable[[WiFiDiscoveredDevice], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """Initialize the discoverer.

        Args:
            scanner: Platform WiFi access; without one discovery is not supported
            probe_devices: Join each device AP and query it over HTTP
            probe_timeout: Upper bound for the HTTP part of one probe
            settle_delay: Wait after joining an AP before the first request
            http_timeout: Per-request HTTP timeout
            ap_ip: Address devices use on their own AP
            ap_port: HTTP port devices use on their own AP
            rescan_interval: Seconds between scans in continuous mode
            rescan_timeout: Deadline for each continuous-mode scan
            on_network_found: Called for every device AP seen
            on_device_found: Called for every device record produced
            http_client: Client to probe with; one is created when omitted
            queue_size: Capacity of the continuous-mode queue
        """
        super().__init__(queue_size)
        self.scanner = scanner
        self.probe_devices = probe_devices
        self.probe_timeout = probe_timeout
        self.settle_delay = settle_delay
        self.http_timeout = http_timeout
        self.ap_ip = ap_ip
        self.ap_port = ap_port
        self.rescan_interval = rescan_interval
        self.rescan_timeout = rescan_timeout
        self.on_network_found = on_network_found
        self.on_device_found = on_device_found

        self._client = http_client
        self._owns_client = http_client is None
        self._devices: dict[str, WiFiDiscoveredDevice] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.http_timeout)
        return self._client

    def _require_scanner(self) -> WiFiScanner:
        if self.scanner is None:
            raise WiFiNotSupportedError()
        return self.scanner

    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        """Scan for device APs, probing them if enabled.

        If ``stop`` is set before the scan finishes, the devices resolved so
        far are returned.
        """
        self._require_scanner()

        found: list[DiscoveredDevice] = []
        scan = asyncio.create_task(self._scan_and_probe(found))
        stopped = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({scan, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not scan.done():
                scan.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await scan

        if not scan.cancelled():
            scan.result()

        logger.info(f"WiFi discovery found {len(found)} device AP(s)")
        return found

    async def _scan(self) -> list[WiFiNetwork]:
        scanner = self._require_scanner()
        try:
            return await scanner.scan()
        except WiFiError:
            raise
        except Exception as e:
            raise WiFiError("WiFi scan failed", e) from e

    async def _scan_and_probe(self, found: list[DiscoveredDevice]) -> None:
        for network in await self._scan():
            if not self._classify(network):
                continue

            if self.on_network_found is not None:
                self.on_network_found(network)

            device = self.network_to_device(network)
            if self.probe_devices:
                try:
                    device = await self.probe_device(network)
                except Exception as e:
                    logger.debug(f"Probe of {network.ssid} failed, keeping SSID details: {e}")

            found.append(device)
            self._devices[network.ssid] = device
            logger.debug(f"Found device AP {network.ssid}")

            if self.on_device_found is not None:
                self.on_device_found(device)

    @staticmethod
    def _classify(network: WiFiNetwork) -> bool:
        if not is_shelly_ap(network.ssid):
            return False
        network.is_shelly = True
        network.device_type, network.device_id = parse_shelly_ssid(network.ssid)
        network.last_seen = datetime.now()
        return True

    def network_to_device(self, network: WiFiNetwork) -> WiFiDiscoveredDevice:
        """Build a device record from what the SSID alone reveals."""
        device_type, device_id = parse_shelly_ssid(network.ssid)
        return WiFiDiscoveredDevice(
            id=device_id,
            name=network.ssid,
            model=device_type,
            mac_address=network.bssid,
            address=IPv4Address(self.ap_ip),
            port=self.ap_port,
            generation=infer_generation_from_model(device_type),
            last_seen=network.last_seen,
            ssid=network.ssid,
            bssid=network.bssid,
            signal=network.signal,
            channel=network.channel,
            security=network.security,
        )

    async def probe_device(self, network: WiFiNetwork) -> WiFiDiscoveredDevice:
        """Join a device AP and enrich its record over HTTP.

        The host leaves its current network for the duration of the probe and
        rejoins it afterwards. A failed rejoin is logged, not raised. If
        neither info endpoint answers, the SSID-derived record is returned.

        Raises:
            WiFiNotSupportedError: If there is no scanner
            WiFiError: If the device AP cannot be joined
        """
        scanner = self._require_scanner()

        try:
            original = await scanner.current_network()
        except Exception as e:
            logger.debug(f"Could not read current network: {e}")
            original = None

        try:
            await scanner.connect(network.ssid, "")
        except Exception as e:
            raise WiFiError("failed to connect to Shelly AP", e) from e

        try:
            device = self.network_to_device(network)
            device.is_connected = True
            async with asyncio.timeout(self.probe_timeout):
                await asyncio.sleep(self.settle_delay)

                info = await self._probe_endpoint(GEN2_INFO_PATH)
                if info is not None:
                    apply_gen2_info(device, info)
                    return device

                info = await self._probe_endpoint(GEN1_INFO_PATH)
                if info is not None:
                    apply_gen1_info(device, info)
            return device
        finally:
            if original is not None:
                await self._reconnect(scanner, original)

    async def _reconnect(self, scanner: WiFiScanner, network: WiFiNetwork) -> None:
        try:
            await scanner.connect(network.ssid, "")
        except Exception as e:
            logger.warning(f"Failed to reconnect to {network.ssid} after probe: {e}")

    async def _probe_endpoint(self, path: str) -> dict[str, Any] | None:
        client = await self._get_client()
        url = f"http://{self.ap_ip}:{self.ap_port}{path}"
        try:
            response = await client.get(url, timeout=self.http_timeout)
        except httpx.HTTPError as e:
            logger.debug(f"GET {url} failed: {e}")
            return None

        if response.status_code != 200:
            logger.debug(f"GET {url} returned HTTP {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def scan_networks(self) -> list[WiFiNetwork]:
        """Scan once and return only the device APs, classified."""
        return [network for network in await self._scan() if self._classify(network)]

    async def _prepare_continuous(self) -> None:
        self._require_scanner()

    async def _run_continuous(self) -> None:
        await self._repeat(
            self.rescan_interval,
            lambda: self.discover(self.rescan_timeout),
        )

    def devices(self) -> list[WiFiDiscoveredDevice]:
        """Return every device AP seen so far, one per SSID."""
        return list(self._devices.values())

    def clear(self) -> None:
        self._devices = {}

    async def stop(self) -> None:
        await super().stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
