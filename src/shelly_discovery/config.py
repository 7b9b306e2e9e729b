"""Configuration loading for shelly-discovery."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

CONFIG_FILENAME = "discovery.yaml"
APP_DIR_NAME = "shelly-discovery"


class MDNSConfig(BaseModel):
    """mDNS query settings."""

    service: str = "_shelly._tcp.local."
    multicast_addr: str = "224.0.0.251"
    port: int = 5353
    requery_interval: float = 10.0
    requery_window: float = 5.0


class CoIoTConfig(BaseModel):
    """CoIoT multicast listener settings."""

    multicast_addr: str = "224.0.1.187"
    port: int = 5683


class BLEConfig(BaseModel):
    """BLE advertisement filter settings."""

    filter_prefix: str = "SHELLY-"
    include_bthome: bool = True
    scan_duration: float = 10.0


class WiFiConfig(BaseModel):
    """WiFi access-point scanning settings."""

    # Joining a device AP disconnects the host from its current network.
    probe_devices: bool = False
    probe_timeout: float = 10.0
    settle_delay: float = 2.0
    http_timeout: float = 5.0
    ap_ip: str = "192.168.33.1"
    ap_port: int = 80
    rescan_interval: float = 10.0
    rescan_timeout: float = 30.0


class ScannerConfig(BaseModel):
    """Main configuration model."""

    enable_mdns: bool = True
    enable_coiot: bool = True
    enable_ble: bool = False
    enable_wifi: bool = False
    timeout: float = 5.0
    queue_size: int = Field(default=100, gt=0)
    mdns: MDNSConfig = Field(default_factory=MDNSConfig)
    coiot: CoIoTConfig = Field(default_factory=CoIoTConfig)
    ble: BLEConfig = Field(default_factory=BLEConfig)
    wifi: WiFiConfig = Field(default_factory=WiFiConfig)


def find_config_dir() -> Path:
    """Locate the directory holding ``discovery.yaml``.

    A ``config`` directory in the working directory (or one level up)
    takes precedence over the per-user ``~/.config/shelly-discovery``. When
    none exists, ``./config`` is returned and the defaults apply.
    """
    cwd = Path.cwd()
    candidates = (
        cwd / "config",
        cwd.parent / "config",
        Path.home() / ".config" / APP_DIR_NAME,
    )
    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return candidates[0]


def load_yaml(path: Path) -> dict[str, Any]:
    """Read scanner settings from ``path``; a missing or empty file means no overrides."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(config_dir: Path | None = None) -> ScannerConfig:
    """Load the scanner configuration, validating it against ``ScannerConfig``."""
    if config_dir is None:
        config_dir = find_config_dir()

    data = load_yaml(config_dir / CONFIG_FILENAME)
    return ScannerConfig.model_validate(data)
