"""BTHome v2 service-data decoding.

A BTHome v2 payload is one device-info byte followed by ``(object id, value)``
pairs, where the value width is fixed per object id. Only unencrypted
payloads can be read.
"""

from shelly_discovery.models.ble import BLEAdvertisement, BTHomeData

BTHOME_SERVICE_UUID = "fcd2"
BTHOME_SERVICE_UUID_128 = "0000fcd2-0000-1000-8000-00805f9b34fb"

DEVICE_INFO_ENCRYPTED = 0x01

OBJECT_PACKET_ID = 0x00
OBJECT_BATTERY = 0x01
OBJECT_TEMPERATURE = 0x02
OBJECT_HUMIDITY = 0x03
OBJECT_ILLUMINANCE = 0x05
OBJECT_MOTION = 0x21
OBJECT_WINDOW = 0x2D
OBJECT_BUTTON = 0x3A
OBJECT_ROTATION = 0x3F

OBJECT_SIZES = {
    OBJECT_PACKET_ID: 1,
    OBJECT_BATTERY: 1,
    OBJECT_TEMPERATURE: 2,
    OBJECT_HUMIDITY: 2,
    OBJECT_ILLUMINANCE: 3,
    OBJECT_MOTION: 1,
    OBJECT_WINDOW: 1,
    OBJECT_BUTTON: 1,
    OBJECT_ROTATION: 2,
}

# Width assumed for object ids missing from OBJECT_SIZES.
UNKNOWN_OBJECT_SIZE = 1


def bthome_payload(adv: BLEAdvertisement) -> bytes | None:
    """Return the BTHome service data of an advertisement, if it carries any.

    Scanners report the service UUID either in its 16-bit short form or
    expanded to 128 bits; both are accepted.
    """
    for uuid, data in adv.service_data.items():
        if uuid.lower() in (BTHOME_SERVICE_UUID, BTHOME_SERVICE_UUID_128):
            return data
    return None


def parse_bthome_data(data: bytes) -> BTHomeData | None:
    """Decode BTHome v2 service data.

    Returns None for empty or encrypted payloads. A truncated trailing
    object is dropped and everything decoded before it is kept.
    """
    if not data:
        return None
    if data[0] & DEVICE_INFO_ENCRYPTED:
        return None

    result = BTHomeData()
    offset = 1
    while offset < len(data):
        object_id = data[offset]
        offset += 1

        size = OBJECT_SIZES.get(object_id, UNKNOWN_OBJECT_SIZE)
        if offset + size > len(data):
            break

        _apply_object(result, object_id, data[offset : offset + size])
        offset += size

    return result


def _apply_object(result: BTHomeData, object_id: int, value: bytes) -> None:
    if object_id == OBJECT_PACKET_ID:
        result.packet_id = value[0]
    elif object_id == OBJECT_BATTERY:
        result.battery = value[0]
    elif object_id == OBJECT_TEMPERATURE:
        result.temperature = int.from_bytes(value, "little", signed=True) / 100
    elif object_id == OBJECT_HUMIDITY:
        result.humidity = int.from_bytes(value, "little") / 100
    elif object_id == OBJECT_ILLUMINANCE:
        result.illuminance = int.from_bytes(value, "little") / 100
    elif object_id == OBJECT_MOTION:
        result.motion = value[0] != 0
    elif object_id == OBJECT_WINDOW:
        result.window_open = value[0] != 0
    elif object_id == OBJECT_BUTTON:
        result.button = value[0]
    elif object_id == OBJECT_ROTATION:
        result.rotation = int.from_bytes(value, "little", signed=True) / 10
