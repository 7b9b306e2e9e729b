"""Identify devices at known addresses over HTTP.

Every generation answers ``GET /shelly``. Gen2+ devices include a ``gen``
field; Gen1 devices do not, and keep their user-assigned name in
``/settings`` instead.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from ipaddress import IPv4Address, ip_network
from typing import Any, Callable

import httpx

from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.utils.errors import IdentifyError

logger = logging.getLogger(__name__)

DEFAULT_IDENTIFY_TIMEOUT = 5.0
DEFAULT_PROBE_TIMEOUT = 2.0
DEFAULT_PROBE_CONCURRENCY = 20


@dataclass
class DeviceInfo:
    """What a device reports about itself."""

    id: str
    model: str
    generation: Generation
    name: str = ""
    firmware: str = ""
    mac_address: str = ""
    app: str = ""
    profile: str = ""
    auth_required: bool = False
    raw: Any = None

    def to_device(self, address: IPv4Address | None = None) -> DiscoveredDevice:
        """Turn the info into a manually discovered device record."""
        return DiscoveredDevice(
            id=self.id,
            protocol=DiscoveryProtocol.MANUAL,
            name=self.name,
            model=self.model,
            mac_address=self.mac_address,
            firmware=self.firmware,
            address=address,
            port=80,
            generation=self.generation,
            auth_required=self.auth_required,
            raw=self.raw,
        )


@dataclass
class ProbeProgress:
    """Progress report for one probed address."""

    address: str
    total: int
    done: int
    found: bool
    device: DiscoveredDevice | None = None
    error: BaseException | None = None


ProgressCallback = Callable[[ProbeProgress], bool]


def base_url(address: str) -> str:
    """Normalize ``address`` (host, host:port or URL) to a base URL."""
    if not address.startswith(("http://", "https://")):
        address = f"http://{address}"
    return address.rstrip("/")


def host_ip(address: str) -> IPv4Address | None:
    """Return the IPv4 host part of ``address``, if it has one."""
    host = address.removeprefix("http://").removeprefix("https://").split("/", 1)[0]
    host = host.rsplit(":", 1)[0]
    try:
        return IPv4Address(host)
    except ValueError:
        return None


def _string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _gen2_info(data: dict[str, Any], gen: int) -> DeviceInfo:
    return DeviceInfo(
        id=_string(data, "id"),
        name=_string(data, "name"),
        model=_string(data, "model"),
        firmware=_string(data, "fw_id"),
        mac_address=_string(data, "mac"),
        app=_string(data, "app"),
        profile=_string(data, "profile"),
        auth_required=data.get("auth_en") is True,
        generation=Generation.from_gen(gen),
        raw=data,
    )


def _gen1_info(data: dict[str, Any]) -> DeviceInfo:
    mac = _string(data, "mac")
    return DeviceInfo(
        id=mac,
        model=_string(data, "type"),
        firmware=_string(data, "fw"),
        mac_address=mac,
        auth_required=data.get("auth") is True,
        generation=Generation.GEN1,
        raw=data,
    )


async def _get_json(client: httpx.AsyncClient, url: str) -> Any:
    response = await client.get(url)
    response.raise_for_status()
    return response.json()


async def _gen1_name(client: httpx.AsyncClient, url: str) -> str:
    """Read the user-assigned name of a Gen1 device, or "" if unavailable."""
    try:
        settings = await _get_json(client, f"{url}/settings")
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"Could not read {url}/settings: {e}")
        return ""

    if not isinstance(settings, dict):
        return ""
    if _string(settings, "name"):
        return settings["name"]
    device = settings.get("device")
    if isinstance(device, dict):
        return _string(device, "hostname")
    return ""


async def identify(
    address: str,
    timeout: float = DEFAULT_IDENTIFY_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> DeviceInfo:
    """Ask the device at ``address`` what it is.

    Args:
        address: IP address, ``host:port`` or base URL of the device
        timeout: Per-request timeout in seconds
        client: HTTP client to use; a temporary one is created when omitted

    Returns:
        The reported device info

    Raises:
        IdentifyError: If the address does not answer like a Shelly device
    """
    url = base_url(address)
    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            return await _identify(owned, url, address, timeout)
    return await _identify(client, url, address, timeout)


async def _identify(
    client: httpx.AsyncClient, url: str, address: str, timeout: float
) -> DeviceInfo:
    try:
        async with asyncio.timeout(timeout):
            data = await _get_json(client, f"{url}/shelly")
    except TimeoutError as e:
        raise IdentifyError(address, "request timed out", e) from e
    except httpx.HTTPError as e:
        raise IdentifyError(address, "request failed", e) from e
    except ValueError as e:
        raise IdentifyError(address, "invalid JSON response", e) from e

    if not isinstance(data, dict):
        raise IdentifyError(address, "unexpected response")

    gen = data.get("gen")
    if isinstance(gen, int) and not isinstance(gen, bool) and gen >= 2:
        return _gen2_info(data, gen)

    info = _gen1_info(data)
    try:
        async with asyncio.timeout(timeout):
            name = await _gen1_name(client, url)
    except TimeoutError:
        name = ""
    if name:
        info.name = name
    return info


async def probe_addresses(
    addresses: list[str],
    progress: ProgressCallback | None = None,
    concurrency: int = DEFAULT_PROBE_CONCURRENCY,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> list[DiscoveredDevice]:
    """Identify many addresses concurrently.

    ``progress`` is called once per probed address; returning False from it
    stops probes that have not started yet. Probes already in flight finish.
    Addresses that do not answer are skipped.
    """
    total = len(addresses)
    semaphore = asyncio.Semaphore(concurrency)
    devices: list[DiscoveredDevice] = []
    done = 0
    cancelled = False

    async def probe(http: httpx.AsyncClient, address: str) -> None:
        nonlocal done, cancelled
        async with semaphore:
            if cancelled:
                return

            device: DiscoveredDevice | None = None
            error: BaseException | None = None
            try:
                info = await identify(address, timeout=timeout, client=http)
            except IdentifyError as e:
                error = e
            else:
                if info.id:
                    device = info.to_device(host_ip(address))
                    device.last_seen = datetime.now()
                    devices.append(device)
                else:
                    error = IdentifyError(address, "device reported no id or MAC address")

            done += 1
            if progress is not None:
                report = ProbeProgress(
                    address=address,
                    total=total,
                    done=done,
                    found=device is not None,
                    device=device,
                    error=error,
                )
                if not progress(report):
                    cancelled = True

    async def run(http: httpx.AsyncClient) -> None:
        await asyncio.gather(*(probe(http, address) for address in addresses))

    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            await run(owned)
    else:
        await run(client)

    logger.info(f"Probed {done} of {total} address(es), found {len(devices)} device(s)")
    return devices


def generate_subnet_addresses(cidr: str) -> list[str]:
    """List the host addresses of ``cidr``, excluding network and broadcast.

    An invalid CIDR yields an empty list.
    """
    try:
        network = ip_network(cidr, strict=False)
    except ValueError:
        return []

    excluded = (network.network_address, network.broadcast_address)
    return [str(ip) for ip in network if ip not in excluded]
