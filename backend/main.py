"""
LAN Beacon entry point.

Starts the discovery engine and logs peers as they come and go until
interrupted.
"""

import asyncio
import logging
import sys

from config import LOG_LEVEL, load_extra_subnets
from discovery.errors import DiscoveryStartupError
from discovery.identity import DeviceIdentity
from discovery.registry import DeviceRegistry
from discovery.service import DiscoveryService

# --- Logging ---
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run() -> None:
    identity = DeviceIdentity()
    registry = DeviceRegistry(identity.fingerprint)
    service = DiscoveryService(identity, registry, extra_subnets=load_extra_subnets())

    async def on_peer_event(event: str, peer):
        logger.info(f"{event}: {peer.alias} at {peer.url} [{peer.discovery_method.value}]")

    service.on_peer_change(on_peer_event)

    await service.start()
    try:
        for iface in service.get_all_local_ips():
            logger.info(f"Local IP: {iface.address} ({iface.name}, priority {iface.priority})")
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down LAN Beacon...")
        await service.stop()


def main() -> None:
    try:
        asyncio.run(run())
    except DiscoveryStartupError as e:
        logger.error(f"Failed to start discovery service: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
