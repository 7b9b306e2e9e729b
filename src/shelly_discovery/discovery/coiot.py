"""CoIoT (CoAP) discovery for Gen1 devices.

Gen1 devices periodically multicast their status as CoAP messages to
224.0.1.187:5683. The listener joins that group, and falls back to a plain
unicast bind on the same port when the join is refused.
"""

import asyncio
import json
import logging
import re
import socket
import struct
from ipaddress import IPv4Address
from typing import Any

from shelly_discovery.discovery.base import (
    DEFAULT_QUEUE_SIZE,
    DatagramInbox,
    Discoverer,
    collect_datagrams,
)
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.utils.errors import TransportError

logger = logging.getLogger(__name__)

COIOT_MULTICAST_ADDR = "224.0.1.187"
COIOT_PORT = 5683

COAP_VERSION = 1
COAP_HEADER_SIZE = 4
COAP_PAYLOAD_MARKER = 0xFF

_MAC_PATTERN = re.compile(r"[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5}")


def skip_coap_options(data: bytes, offset: int) -> int | None:
    """Walk the option list starting at ``offset``.

    Returns the offset of the payload marker (or the end of the packet),
    or None when an option header uses a reserved nibble.
    """
    end = len(data)
    while offset < end and data[offset] != COAP_PAYLOAD_MARKER:
        header = data[offset]
        offset += 1
        delta = header >> 4
        length = header & 0x0F

        # The delta value itself is not needed, only its width.
        if delta == 13:
            offset += 1
        elif delta == 14:
            offset += 2
        elif delta == 15:
            return None

        if length == 13:
            if offset >= end:
                return end
            length = data[offset] + 13
            offset += 1
        elif length == 14:
            if offset + 1 >= end:
                return end
            length = ((data[offset] << 8) | data[offset + 1]) + 269
            offset += 2
        elif length == 15:
            return None

        offset += length
    return min(offset, end)


def parse_coap_message(data: bytes, sender: str) -> DiscoveredDevice | None:
    """Parse a CoIoT status broadcast from ``sender`` into a device."""
    if len(data) < COAP_HEADER_SIZE:
        return None
    if (data[0] >> 6) & 0x03 != COAP_VERSION:
        return None

    token_length = data[0] & 0x0F
    offset = COAP_HEADER_SIZE + token_length
    if len(data) < offset:
        return None

    offset = skip_coap_options(data, offset)
    if offset is None:
        return None
    if offset < len(data) and data[offset] == COAP_PAYLOAD_MARKER:
        offset += 1
    if offset >= len(data):
        return None

    return parse_coiot_payload(data[offset:], sender)


def _sender_address(sender: str) -> IPv4Address | None:
    try:
        return IPv4Address(sender)
    except ValueError:
        return None


def parse_coiot_payload(payload: bytes, sender: str) -> DiscoveredDevice | None:
    """Build a device from a CoIoT payload; JSON first, then a MAC scan."""
    try:
        status = json.loads(payload)
    except (ValueError, RecursionError):
        status = None

    if not isinstance(status, dict):
        return _device_from_raw(payload.decode("latin-1"), sender)

    device = DiscoveredDevice(
        id="",
        protocol=DiscoveryProtocol.COIOT,
        address=_sender_address(sender),
        port=80,
        generation=Generation.GEN1,
        raw=status,
    )

    mac = _string(status, "mac")
    if mac:
        device.mac_address = mac
    device.id = _string(status, "id") or mac.replace(":", "")
    device.model = _string(status, "type")
    device.firmware = _string(status, "fw_ver")

    settings = status.get("settings")
    if isinstance(settings, dict) and isinstance(settings.get("device"), dict):
        device.name = _string(settings["device"], "name")

    return device


def _string(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    return value if isinstance(value, str) else ""


def _device_from_raw(text: str, sender: str) -> DiscoveredDevice:
    device = DiscoveredDevice(
        id="",
        protocol=DiscoveryProtocol.COIOT,
        address=_sender_address(sender),
        port=80,
        generation=Generation.GEN1,
    )
    match = _MAC_PATTERN.search(text)
    if match:
        device.mac_address = match.group(0)
        device.id = device.mac_address.replace(":", "")
    return device


def create_coiot_socket(group: str = COIOT_MULTICAST_ADDR, port: int = COIOT_PORT) -> socket.socket:
    """Bind the CoIoT port and join its multicast group if the host allows it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
    except OSError as e:
        sock.close()
        raise TransportError(f"failed to bind CoIoT port {port}", e) from e

    try:
        mreq = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton("0.0.0.0"))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
    except OSError as e:
        logger.debug(f"Could not join {group}, listening for unicast only: {e}")

    sock.setblocking(False)
    return sock


class CoIoTDiscoverer(Discoverer):
    """Discovers Gen1 devices from their CoIoT status broadcasts."""

    protocol = DiscoveryProtocol.COIOT

    def __init__(
        self,
        multicast_addr: str = COIOT_MULTICAST_ADDR,
        port: int = COIOT_PORT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        super().__init__(queue_size)
        self.multicast_addr = multicast_addr
        self.port = port
        self._transport: asyncio.DatagramTransport | None = None
        self._inbox: DatagramInbox | None = None

    async def _open(self) -> tuple[asyncio.DatagramTransport, DatagramInbox]:
        sock = create_coiot_socket(self.multicast_addr, self.port)
        loop = asyncio.get_running_loop()
        try:
            return await loop.create_datagram_endpoint(
                lambda: DatagramInbox(self.queue_size), sock=sock
            )
        except OSError as e:
            sock.close()
            raise TransportError("failed to open CoIoT listener", e) from e

    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        transport, inbox = await self._open()
        devices: dict[str, DiscoveredDevice] = {}
        try:
            await collect_datagrams(
                inbox, stop, lambda data, addr: parse_coap_message(data, addr[0]), devices
            )
        finally:
            transport.close()

        logger.info(f"CoIoT discovery found {len(devices)} device(s)")
        return list(devices.values())

    async def _prepare_continuous(self) -> None:
        self._transport, self._inbox = await self._open()

    async def _release_continuous(self) -> None:
        if self._transport is not None:
            self._transport.close()
        self._transport = None
        self._inbox = None

    async def _run_continuous(self) -> None:
        inbox = self._inbox
        if inbox is None:
            return
        while True:
            data, addr = await inbox.queue.get()
            try:
                device = parse_coap_message(data, addr[0])
            except Exception as e:
                logger.debug(f"Discarded CoIoT packet from {addr[0]}: {e}")
                continue
            if device is not None and device.id:
                self._publish(device)
