"""mDNS discovery for Gen2+ devices.

Gen2+ devices advertise the ``_shelly._tcp.local.`` service. A single PTR
query is sent to the mDNS multicast group and responses are read from the
query socket. Responses are scanned for TXT markers rather than fully decoded;
that is enough to recover the device id, model, generation, firmware and auth
flag, and it tolerates the odd record layouts some firmware versions emit.
"""

import asyncio
import logging
import re
import socket
import struct
from ipaddress import IPv4Address, IPv4Network

from shelly_discovery.discovery.base import (
    DEFAULT_QUEUE_SIZE,
    DatagramInbox,
    Discoverer,
    collect_datagrams,
)
from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol, Generation
from shelly_discovery.utils.errors import TransportError

logger = logging.getLogger(__name__)

MDNS_SERVICE = "_shelly._tcp.local."
MDNS_MULTICAST_ADDR = "224.0.0.251"
MDNS_PORT = 5353

QTYPE_PTR = 12
QCLASS_IN = 1

DNS_HEADER_SIZE = 12

# TXT values end at a space, NUL or newline.
_TXT_TERMINATOR = re.compile(r"[ \x00\n]")

_GENERATIONS = {
    "1": Generation.GEN1,
    "2": Generation.GEN2,
    "3": Generation.GEN3,
}

_PRIVATE_NETWORKS = (
    IPv4Network("10.0.0.0/8"),
    IPv4Network("172.16.0.0/12"),
    IPv4Network("192.168.0.0/16"),
)


def build_dns_query(name: str, qtype: int = QTYPE_PTR) -> bytes:
    """Build a single-question DNS query for ``name``."""
    header = struct.pack("!6H", 0, 0, 1, 0, 0, 0)
    question = bytearray()
    for label in name.rstrip(".").split("."):
        encoded = label.encode("utf-8")
        question.append(len(encoded))
        question += encoded
    question.append(0)
    question += struct.pack("!2H", qtype, QCLASS_IN)
    return header + bytes(question)


def _txt_value(content: str, marker: str) -> str | None:
    idx = content.find(marker)
    if idx == -1:
        return None
    start = idx + len(marker)
    match = _TXT_TERMINATOR.search(content, start)
    end = match.start() if match else len(content)
    return content[start:end]


def _is_lan_address(ip: IPv4Address) -> bool:
    return ip.is_loopback or any(ip in network for network in _PRIVATE_NETWORKS)


def extract_ipv4(data: bytes) -> IPv4Address | None:
    """Find the first 4-byte run past the header that reads as a LAN address."""
    for i in range(DNS_HEADER_SIZE, len(data) - 3):
        if 0 < data[i] < 255 and 0 < data[i + 3] < 255:
            ip = IPv4Address(data[i : i + 4])
            if _is_lan_address(ip):
                return ip
    return None


def parse_mdns_response(data: bytes) -> DiscoveredDevice | None:
    """Parse an mDNS response into a device, or None if it is not usable."""
    if len(data) < DNS_HEADER_SIZE:
        return None
    if not data[2] & 0x80:
        return None  # query, not a response

    content = data.decode("latin-1")

    device_id = _txt_value(content, "id=")
    address = extract_ipv4(data)
    if not device_id or address is None:
        return None

    generation = Generation.UNKNOWN
    idx = content.find("gen=")
    if idx != -1:
        # Unknown future generations speak the Gen2 protocol.
        generation = _GENERATIONS.get(content[idx + 4 : idx + 5], Generation.GEN2)

    auth_required = False
    idx = content.find("auth=")
    if idx != -1:
        auth_required = content[idx + 5 : idx + 6] == "1"

    return DiscoveredDevice(
        id=device_id,
        protocol=DiscoveryProtocol.MDNS,
        model=_txt_value(content, "model=") or "",
        firmware=_txt_value(content, "fw=") or "",
        mac_address=device_id,
        address=address,
        port=80,
        generation=generation,
        auth_required=auth_required,
        raw=data,
    )


class MDNSDiscoverer(Discoverer):
    """Discovers Gen2+ devices via mDNS."""

    protocol = DiscoveryProtocol.MDNS

    def __init__(
        self,
        service: str = MDNS_SERVICE,
        multicast_addr: str = MDNS_MULTICAST_ADDR,
        port: int = MDNS_PORT,
        requery_interval: float = 10.0,
        requery_window: float = 5.0,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        super().__init__(queue_size)
        self.service = service
        self.multicast_addr = multicast_addr
        self.port = port
        self.requery_interval = requery_interval
        self.requery_window = requery_window

    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        loop = asyncio.get_running_loop()
        try:
            transport, inbox = await loop.create_datagram_endpoint(
                lambda: DatagramInbox(self.queue_size),
                local_addr=("0.0.0.0", 0),
                family=socket.AF_INET,
            )
        except OSError as e:
            raise TransportError("failed to open mDNS socket", e) from e

        devices: dict[str, DiscoveredDevice] = {}
        try:
            try:
                transport.sendto(build_dns_query(self.service), (self.multicast_addr, self.port))
            except OSError as e:
                raise TransportError("failed to send mDNS query", e) from e

            await collect_datagrams(inbox, stop, lambda data, _addr: parse_mdns_response(data), devices)
        finally:
            transport.close()

        logger.info(f"mDNS discovery found {len(devices)} device(s)")
        return list(devices.values())

    async def _run_continuous(self) -> None:
        await self._repeat(
            self.requery_interval,
            lambda: self.discover(self.requery_window),
        )
