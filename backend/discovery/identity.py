"""
Identity of the local device, fixed for the lifetime of the process.
"""

import logging
import platform
import random
import secrets

from config import DEVICE_ALIAS, DEVICE_TYPE, DISCOVERY_PORT, PROTOCOL_VERSION
from discovery.models import DeviceInfo

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "Amber", "Rapid", "Quiet", "Distant", "Bright", "Steady",
    "Curious", "Gentle", "Nimble", "Silver", "Patient", "Wandering",
]

ANIMALS = [
    "Heron", "Otter", "Lynx", "Badger", "Marten", "Kestrel",
    "Beaver", "Moth", "Gecko", "Raven", "Stoat", "Crane",
]


class DeviceIdentity:
    """Fingerprint, alias and capabilities this node advertises.

    Everything is fixed at construction except the HTTP port, which is
    settled once by `bind_port` after the server has found a free port.
    """

    def __init__(self, alias: str | None = None, device_type: str = DEVICE_TYPE,
                 port: int = DISCOVERY_PORT) -> None:
        # 128-bit random fingerprint, 32 hex chars
        self.fingerprint = secrets.token_hex(16)
        self.alias = alias or DEVICE_ALIAS or platform.node() or self._random_alias()
        self.device_model = f"{platform.system().lower()}-{platform.machine().lower()}"
        self.device_type = device_type
        self.version = PROTOCOL_VERSION
        self.protocol = "http"
        self.download = False

        self._port = port
        self._port_bound = False

        logger.info(f"Initialized identity with alias: {self.alias}")

    @staticmethod
    def _random_alias() -> str:
        return f"{random.choice(ADJECTIVES)} {random.choice(ANIMALS)}"

    @property
    def port(self) -> int:
        return self._port

    def bind_port(self, port: int) -> None:
        """Record the port the HTTP server actually listens on."""
        if self._port_bound and port != self._port:
            raise RuntimeError(
                f"Identity port already bound to {self._port}, refusing {port}"
            )
        if port != self._port:
            logger.info(f"Advertised port changed from {self._port} to {port}")
        self._port = port
        self._port_bound = True

    def device_info(self, announcement: bool = False) -> DeviceInfo:
        """Build the wire payload for this device."""
        return DeviceInfo(
            alias=self.alias,
            version=self.version,
            device_model=self.device_model,
            device_type=self.device_type,
            fingerprint=self.fingerprint,
            port=self.port,
            protocol=self.protocol,
            download=self.download,
            announcement=announcement,
            announce=announcement,
        )
