"""Identity of this installation for tagging runs and sync log entries."""

import logging
import socket
import uuid
from dataclasses import dataclass

log = logging.getLogger("alphatyper.device_identity")

DEVICE_ID_KEY = "device_id"
DEVICE_PLATFORM = "unknown"


@dataclass(frozen=True)
class DeviceIdentity:
    """Stable identifier plus a human readable label."""

    device_id: str
    device_label: str
    platform: str = DEVICE_PLATFORM


def get_hostname() -> str:
    """Get current machine hostname.

    Returns cleaned hostname (lowercase, alphanumeric and underscores only,
    truncated to 20 characters max).

    Returns:
        Cleaned hostname string, or 'device' if hostname cannot be determined
    """
    try:
        hostname = socket.gethostname()
    except OSError:
        return "device"
    hostname = "".join(c.lower() if c.isalnum() else "_" for c in hostname)
    return hostname[:20] or "device"


def get_device_identity(store) -> DeviceIdentity:
    """Load this installation's identity, creating it on first use.

    Args:
        store: LocalStore holding the persisted device id

    Returns:
        DeviceIdentity whose id never changes for this database
    """
    device_id = store.get_value(DEVICE_ID_KEY)
    if not device_id:
        device_id = str(uuid.uuid4())
        store.set_value(DEVICE_ID_KEY, device_id)
        log.info(f"Generated new device id {device_id}")
    return DeviceIdentity(device_id=device_id, device_label=get_hostname())
