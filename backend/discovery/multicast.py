"""
UDP multicast channel.

One socket per local interface, all bound to the shared discovery port and
joined to the multicast group through their own interface, so announcements
leave on every network the host is attached to.
"""

import asyncio
import json
import logging
import socket
from typing import Callable

from pydantic import ValidationError

from config import DISCOVERY_PORT, MULTICAST_ADDR, MULTICAST_TTL
from discovery.errors import DiscoveryStartupError
from discovery.identity import DeviceIdentity
from discovery.models import DeviceInfo, InterfaceInfo

logger = logging.getLogger(__name__)

# handler(info, source_ip)
MessageHandler = Callable[[DeviceInfo, str], None]


def parse_message(data: bytes) -> DeviceInfo | None:
    """Decode a datagram; None if it is not a valid identity payload."""
    try:
        return DeviceInfo.model_validate(json.loads(data.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError):
        return None


class MulticastProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for one interface's socket."""

    def __init__(self, channel: "MulticastChannel", interface: str):
        self.channel = channel
        self.interface = interface

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.channel.dispatch(data, addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Multicast UDP error on {self.interface}: {exc}")


class MulticastChannel:
    """Owns the per-interface sockets and a single receive handler."""

    def __init__(self, identity: DeviceIdentity, on_message: MessageHandler,
                 group: str = MULTICAST_ADDR, port: int = DISCOVERY_PORT) -> None:
        self.identity = identity
        self.group = group
        self.port = port
        self._on_message = on_message
        self._transports: list[asyncio.DatagramTransport] = []

    @property
    def socket_count(self) -> int:
        return len(self._transports)

    def _create_socket(self, address: str) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                # Not supported by every kernel that defines it
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            sock.setblocking(False)
            sock.bind(("", self.port))

            iface = socket.inet_aton(address)
            mreq = socket.inet_aton(self.group) + iface
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, iface)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        except OSError:
            sock.close()
            raise
        return sock

    async def open(self, interfaces: list[InterfaceInfo]) -> None:
        """Bind one socket per interface and join the group on each."""
        loop = asyncio.get_running_loop()
        targets = [(i.name, i.address) for i in interfaces] or [("any", "0.0.0.0")]

        for name, address in targets:
            try:
                sock = self._create_socket(address)
            except OSError as e:
                logger.warning(f"Multicast setup failed on {name} ({address}): {e}")
                continue

            transport, _ = await loop.create_datagram_endpoint(
                lambda n=name: MulticastProtocol(self, n),
                sock=sock,
            )
            self._transports.append(transport)
            logger.info(f"Multicast joined {self.group}:{self.port} on {name} ({address})")

        if not self._transports:
            raise DiscoveryStartupError(
                f"Could not open a multicast socket on any interface (port {self.port})"
            )

    def close(self) -> None:
        """Close every socket."""
        for transport in self._transports:
            transport.close()
        self._transports.clear()

    def dispatch(self, data: bytes, ip: str) -> None:
        """Validate an inbound datagram and hand it to the handler."""
        info = parse_message(data)
        if info is None:
            logger.debug(f"Ignoring invalid discovery packet from {ip}")
            return
        if info.fingerprint == self.identity.fingerprint:
            return
        self._on_message(info, ip)

    def _send(self, info: DeviceInfo) -> None:
        data = json.dumps(info.to_wire()).encode("utf-8")
        for transport in self._transports:
            try:
                transport.sendto(data, (self.group, self.port))
            except OSError as e:
                logger.debug(f"Multicast send failed: {e}")

    def announce(self) -> None:
        """Send an announcement on every socket."""
        self._send(self.identity.device_info(announcement=True))

    def respond(self) -> None:
        """Send a non-announcement identity on every socket."""
        self._send(self.identity.device_info(announcement=False))
