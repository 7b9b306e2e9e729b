"""Tests for HTTP identification and address probing."""

from ipaddress import IPv4Address

import httpx
import pytest

from shelly_discovery.discovery.identify import (
    DeviceInfo,
    base_url,
    generate_subnet_addresses,
    host_ip,
    identify,
    probe_addresses,
)
from shelly_discovery.models.device import DiscoveryProtocol, Generation
from shelly_discovery.utils.errors import IdentifyError

GEN2_SHELLY = {
    "name": "Kitchen",
    "id": "shellyplus1pm-a8032ab12345",
    "mac": "A8032AB12345",
    "model": "SNSW-102P16EU",
    "gen": 2,
    "fw_id": "20231107-164738/1.0.8-g",
    "app": "Plus1PM",
    "auth_en": False,
}

GEN1_SHELLY = {
    "type": "SHSW-1",
    "mac": "34945470A1B2",
    "auth": True,
    "fw": "20230913-112003/v1.14.0-gcb84623",
    "num_outputs": 1,
}


def routed_client(routes: dict[tuple[str, str], httpx.Response | Exception]) -> httpx.AsyncClient:
    """Create a client answering ``(host, path)`` lookups from ``routes``."""

    def handler(request: httpx.Request) -> httpx.Response:
        result = routes.get((request.url.host, request.url.path))
        if result is None:
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(result, Exception):
            raise result
        return result

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestIdentify:
    """Tests for identify."""

    @pytest.mark.asyncio
    async def test_gen2(self):
        """Test a Gen2 answer is read from /shelly."""
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(200, json=GEN2_SHELLY)})
        info = await identify("192.168.1.50", client=client)

        assert info.id == "shellyplus1pm-a8032ab12345"
        assert info.name == "Kitchen"
        assert info.model == "SNSW-102P16EU"
        assert info.firmware == "20231107-164738/1.0.8-g"
        assert info.app == "Plus1PM"
        assert info.generation == Generation.GEN2
        assert info.auth_required is False
        assert info.raw == GEN2_SHELLY
        await client.aclose()

    @pytest.mark.asyncio
    async def test_future_generation(self):
        """Test unknown newer generations are treated as Gen2."""
        body = dict(GEN2_SHELLY, gen=9)
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(200, json=body)})
        assert (await identify("192.168.1.50", client=client)).generation == Generation.GEN2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gen4(self):
        """Test gen 4 is kept."""
        body = dict(GEN2_SHELLY, gen=4)
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(200, json=body)})
        assert (await identify("192.168.1.50", client=client)).generation == Generation.GEN4
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gen1_with_name(self):
        """Test a Gen1 device takes its name from /settings."""
        client = routed_client(
            {
                ("192.168.1.51", "/shelly"): httpx.Response(200, json=GEN1_SHELLY),
                ("192.168.1.51", "/settings"): httpx.Response(200, json={"name": "Garage"}),
            }
        )
        info = await identify("http://192.168.1.51/", client=client)

        assert info.id == "34945470A1B2"
        assert info.mac_address == "34945470A1B2"
        assert info.model == "SHSW-1"
        assert info.generation == Generation.GEN1
        assert info.auth_required is True
        assert info.name == "Garage"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gen1_hostname_fallback(self):
        """Test the hostname is used when no name is set."""
        client = routed_client(
            {
                ("192.168.1.51", "/shelly"): httpx.Response(200, json=GEN1_SHELLY),
                ("192.168.1.51", "/settings"): httpx.Response(
                    200, json={"name": None, "device": {"hostname": "shelly1-34945470A1B2"}}
                ),
            }
        )
        info = await identify("192.168.1.51", client=client)
        assert info.name == "shelly1-34945470A1B2"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gen1_settings_unavailable(self):
        """Test an unreadable /settings leaves the name empty."""
        client = routed_client(
            {
                ("192.168.1.51", "/shelly"): httpx.Response(200, json=GEN1_SHELLY),
                ("192.168.1.51", "/settings"): httpx.Response(401),
            }
        )
        info = await identify("192.168.1.51", client=client)
        assert info.name == ""
        assert info.generation == Generation.GEN1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test an unreachable address raises IdentifyError."""
        client = routed_client({})
        with pytest.raises(IdentifyError) as exc_info:
            await identify("192.168.1.99", client=client)
        assert exc_info.value.address == "192.168.1.99"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Test a non-200 answer raises IdentifyError."""
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(404)})
        with pytest.raises(IdentifyError):
            await identify("192.168.1.50", client=client)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test a body that is not JSON raises IdentifyError."""
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(200, content=b"<html>")})
        with pytest.raises(IdentifyError):
            await identify("192.168.1.50", client=client)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_object_json(self):
        """Test a JSON answer that is not an object raises IdentifyError."""
        client = routed_client({("192.168.1.50", "/shelly"): httpx.Response(200, json=[1, 2])})
        with pytest.raises(IdentifyError):
            await identify("192.168.1.50", client=client)
        await client.aclose()

    def test_to_device(self):
        """Test info converts to a manual device record."""
        info = DeviceInfo(id="abc", model="SHSW-1", generation=Generation.GEN1, raw={"a": 1})
        device = info.to_device(IPv4Address("192.168.1.5"))
        assert device.protocol == DiscoveryProtocol.MANUAL
        assert device.port == 80
        assert device.raw == {"a": 1}


class TestAddressHelpers:
    """Tests for address normalization."""

    def test_base_url(self):
        """Test bare hosts get a scheme and trailing slashes are removed."""
        assert base_url("192.168.1.5") == "http://192.168.1.5"
        assert base_url("https://device.local/") == "https://device.local"

    def test_host_ip(self):
        """Test the IPv4 host is extracted from addresses and URLs."""
        assert host_ip("192.168.1.5") == IPv4Address("192.168.1.5")
        assert host_ip("http://192.168.1.5:8080/") == IPv4Address("192.168.1.5")
        assert host_ip("device.local") is None


class TestProbeAddresses:
    """Tests for probe_addresses."""

    @pytest.mark.asyncio
    async def test_finds_responding_devices(self):
        """Test only addresses that identify become devices."""
        client = routed_client(
            {
                ("192.168.1.11", "/shelly"): httpx.Response(200, json=GEN2_SHELLY),
            }
        )
        reports = []

        def progress(report):
            reports.append(report)
            return True

        devices = await probe_addresses(
            ["192.168.1.10", "192.168.1.11", "192.168.1.12"], progress=progress, client=client
        )

        assert len(devices) == 1
        assert devices[0].protocol == DiscoveryProtocol.MANUAL
        assert devices[0].address == IPv4Address("192.168.1.11")
        assert devices[0].id == "shellyplus1pm-a8032ab12345"

        assert sorted(r.done for r in reports) == [1, 2, 3]
        assert all(r.total == 3 for r in reports)
        found = [r for r in reports if r.found]
        assert [r.address for r in found] == ["192.168.1.11"]
        assert all(r.error is not None for r in reports if not r.found)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_device_without_id_skipped(self):
        """Test a Gen1 reply without a MAC address is reported as not found."""
        client = routed_client(
            {("10.0.0.5", "/shelly"): httpx.Response(200, json={"type": "SHSW-1"})}
        )
        reports = []

        def progress(report):
            reports.append(report)
            return True

        devices = await probe_addresses(["10.0.0.5"], progress=progress, client=client)

        assert devices == []
        assert len(reports) == 1
        assert reports[0].found is False
        assert reports[0].device is None
        assert isinstance(reports[0].error, IdentifyError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_progress_can_cancel(self):
        """Test returning False stops probes that have not started."""
        client = routed_client({})
        reports = []

        def progress(report):
            reports.append(report)
            return False

        devices = await probe_addresses(
            ["10.0.0.1", "10.0.0.2", "10.0.0.3"], progress=progress, concurrency=1, client=client
        )

        assert devices == []
        assert len(reports) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty(self):
        """Test probing nothing returns nothing."""
        assert await probe_addresses([]) == []


class TestGenerateSubnetAddresses:
    """Tests for generate_subnet_addresses."""

    def test_small_subnet(self):
        """Test network and broadcast addresses are excluded."""
        assert generate_subnet_addresses("192.168.1.0/30") == ["192.168.1.1", "192.168.1.2"]

    def test_host_bits_set(self):
        """Test a CIDR with host bits set still lists the whole subnet."""
        addresses = generate_subnet_addresses("10.0.0.5/24")
        assert len(addresses) == 254
        assert addresses[0] == "10.0.0.1"
        assert addresses[-1] == "10.0.0.254"

    def test_single_host(self):
        """Test a /32 has no host addresses."""
        assert generate_subnet_addresses("192.168.1.5/32") == []

    def test_invalid(self):
        """Test an invalid CIDR yields an empty list."""
        assert generate_subnet_addresses("not-a-cidr") == []
