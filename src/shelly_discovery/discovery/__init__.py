"""Device discovery for shelly-discovery."""

from shelly_discovery.discovery.base import Discoverer
from shelly_discovery.discovery.ble import (
    BLEConnector,
    BLEDiscoverer,
    BLEScanner,
    ConnectabilityCache,
    is_device_provisioned,
)
from shelly_discovery.discovery.bthome import parse_bthome_data
from shelly_discovery.discovery.coiot import CoIoTDiscoverer, parse_coap_message
from shelly_discovery.discovery.identify import (
    DeviceInfo,
    ProbeProgress,
    generate_subnet_addresses,
    identify,
    probe_addresses,
)
from shelly_discovery.discovery.mdns import MDNSDiscoverer, parse_mdns_response
from shelly_discovery.discovery.scanner import Scanner, deduplicate_devices
from shelly_discovery.discovery.wifi import (
    WiFiDiscoverer,
    WiFiScanner,
    infer_generation_from_model,
    is_shelly_ap,
    parse_shelly_ssid,
)

__all__ = [
    "BLEConnector",
    "BLEDiscoverer",
    "BLEScanner",
    "CoIoTDiscoverer",
    "ConnectabilityCache",
    "DeviceInfo",
    "Discoverer",
    "MDNSDiscoverer",
    "ProbeProgress",
    "Scanner",
    "WiFiDiscoverer",
    "WiFiScanner",
    "deduplicate_devices",
    "generate_subnet_addresses",
    "identify",
    "infer_generation_from_model",
    "is_device_provisioned",
    "is_shelly_ap",
    "parse_bthome_data",
    "parse_coap_message",
    "parse_mdns_response",
    "parse_shelly_ssid",
    "probe_addresses",
]
