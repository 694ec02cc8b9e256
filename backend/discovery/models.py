"""Pydantic models for peer discovery."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from config import DEVICE_TYPE, DISCOVERY_PORT, PROTOCOL_VERSION


class DiscoveryMethod(str, Enum):
    """How a peer was first found."""
    MULTICAST = "multicast"
    HTTP_SCAN = "http-scan"


class SubnetOrigin(str, Enum):
    LOCAL = "local"
    CONFIG = "config"


class DeviceInfo(BaseModel):
    """The JSON payload exchanged over UDP multicast and HTTP."""
    model_config = ConfigDict(populate_by_name=True)

    alias: str = Field(min_length=1)
    version: str = PROTOCOL_VERSION
    device_model: str | None = Field(default=None, alias="deviceModel")
    device_type: str = Field(default=DEVICE_TYPE, alias="deviceType")
    fingerprint: str = Field(min_length=1)
    port: int = DISCOVERY_PORT
    protocol: str = "http"
    download: bool = False
    announcement: bool = False
    announce: bool = False  # legacy duplicate of `announcement`

    @property
    def is_announcement(self) -> bool:
        return self.announcement or self.announce

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class PeerRecord(DeviceInfo):
    """A discovered device as held in the registry."""
    ip: str
    last_seen: float = Field(alias="lastSeen")
    discovery_method: DiscoveryMethod = Field(alias="discoveryMethod")

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.ip}:{self.port}"


class InterfaceInfo(BaseModel):
    """A local IPv4 address with its scan priority."""
    name: str
    address: str
    priority: int


class SubnetTarget(BaseModel):
    """A /24 prefix selected as a unit of active scanning."""
    prefix: str  # first three octets, e.g. "192.168.1"
    name: str
    source_ip: str | None = None
    priority: int
    origin: SubnetOrigin
