"""
LAN discovery service.

Runs the HTTP endpoints, announces over UDP multicast on every interface,
answers peer announcements and expires peers that stop announcing. Falls
back to an active subnet scan when multicast finds nobody.
"""

import asyncio
import logging

from api.app import create_app
from api.server import APIServer
from config import (
    ANNOUNCE_DELAYS,
    ANNOUNCE_INTERVAL,
    AUTO_SCAN,
    AUTO_SCAN_AFTER_CYCLES,
    CLEANUP_INTERVAL,
    DISCOVERY_PORT,
)
from discovery.errors import SelfDiscovery
from discovery.identity import DeviceIdentity
from discovery.interfaces import list_interfaces
from discovery.models import DeviceInfo, DiscoveryMethod, InterfaceInfo, PeerRecord
from discovery.multicast import MulticastChannel
from discovery.registry import DeviceRegistry
from discovery.responder import AnnouncementResponder
from discovery.scanner import SubnetScanner

logger = logging.getLogger(__name__)


class DiscoveryService:
    """Manages LAN device discovery via multicast, HTTP and subnet scans."""

    def __init__(self, identity: DeviceIdentity, registry: DeviceRegistry,
                 extra_subnets: list[str] | None = None,
                 auto_scan: bool = AUTO_SCAN) -> None:
        self.identity = identity
        self.registry = registry
        self.extra_subnets = list(extra_subnets or [])
        self.auto_scan = auto_scan

        self.multicast = MulticastChannel(identity, self._handle_multicast)
        self.responder = AnnouncementResponder(identity, self.multicast)
        self.scanner = SubnetScanner(identity, self.register_peer)

        self._server: APIServer | None = None
        self._announce_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._on_peer_change: list = []  # callbacks: async def fn(event, peer)
        self._auto_scanned = False
        self._running = False

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    async def start(self, port: int = DISCOVERY_PORT) -> None:
        """Bring up HTTP, multicast, announcements and cleanup, in that order."""
        if self._running:
            return

        self._server = APIServer(create_app(self))
        try:
            bound = await self._server.start(port)
            self.identity.bind_port(bound)
            # Raw list: no interface means one socket on INADDR_ANY
            await self.multicast.open(list_interfaces())
        except BaseException:
            await self._teardown()
            raise

        self._running = True
        self._announce_task = asyncio.create_task(self._announce_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        logger.info("=== Discovery started ===")
        logger.info(f"Multicast: {self.multicast.group}:{self.multicast.port}")
        logger.info(f"Fingerprint: {self.identity.fingerprint}")
        logger.info(f"Device: {self.identity.alias}")

    async def stop(self) -> None:
        """Stop the discovery service."""
        self._running = False
        tasks = [t for t in (self._announce_task, self._cleanup_task, *self._background) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._announce_task = None
        self._cleanup_task = None
        self._background.clear()
        await self._teardown()
        logger.info("Discovery service stopped")

    async def _teardown(self) -> None:
        self.multicast.close()
        if self._server is not None:
            await self._server.stop()
            self._server = None

    # --- Collaborator surface ---

    def get_device_info(self) -> DeviceInfo:
        return self.identity.device_info(announcement=False)

    def get_all_local_ips(self) -> list[InterfaceInfo]:
        """Local IPv4 interfaces, best first; localhost if none found."""
        interfaces = list_interfaces()
        return interfaces or [InterfaceInfo(name="localhost", address="127.0.0.1", priority=0)]

    def get_peers(self) -> list[PeerRecord]:
        """Return a list of currently known peers."""
        return self.registry.snapshot()

    async def scan_subnet(self) -> list[PeerRecord]:
        """Actively probe the best local and configured subnets."""
        return await self.scanner.scan(self.get_all_local_ips(), self.extra_subnets)

    def register_peer(self, info: DeviceInfo, ip: str,
                      method: DiscoveryMethod) -> PeerRecord | None:
        """Add or refresh a peer. Returns None for our own identity."""
        try:
            is_new = self.registry.upsert(info, ip, method)
        except SelfDiscovery:
            return None

        peer = self.registry.get(info.fingerprint)
        if is_new and peer is not None:
            logger.info(
                f"[NEW DEVICE] {peer.alias} ({peer.ip}) via {peer.discovery_method.value}, "
                f"type: {peer.device_type}, model: {peer.device_model}"
            )
            self._emit("peer_discovered", peer)
        return peer

    # --- Internals ---

    def _emit(self, event: str, peer: PeerRecord) -> None:
        for cb in self._on_peer_change:
            self._spawn(cb(event, peer))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _handle_multicast(self, info: DeviceInfo, ip: str) -> None:
        self.register_peer(info, ip, DiscoveryMethod.MULTICAST)
        if info.is_announcement:
            self._spawn(self.responder.respond(info, ip))

    async def _announce_loop(self) -> None:
        """Startup burst, then periodic announcements."""
        # The first packets after a group join are often lost
        for delay in ANNOUNCE_DELAYS:
            await asyncio.sleep(delay)
            self.multicast.announce()

        cycles = 0
        while True:
            await asyncio.sleep(ANNOUNCE_INTERVAL)
            self.multicast.announce()
            cycles += 1

            if (self.auto_scan and not self._auto_scanned
                    and cycles >= AUTO_SCAN_AFTER_CYCLES and len(self.registry) == 0):
                self._auto_scanned = True
                logger.info("[AUTO] No devices found via multicast, starting HTTP scan")
                self._spawn(self.scan_subnet())

    async def _cleanup_loop(self) -> None:
        """Remove stale peers that haven't been seen recently."""
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL)
            for peer in self.registry.sweep():
                logger.info(f"[DEVICE LOST] {peer.alias} ({peer.ip})")
                self._emit("peer_lost", peer)
