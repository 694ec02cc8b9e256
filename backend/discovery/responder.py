"""Answers peer announcements: HTTP register first, multicast as fallback."""

import asyncio
import logging

import aiohttp

from config import API_NAMESPACE, API_VERSION, HTTP_RESPONSE_TIMEOUT
from discovery.identity import DeviceIdentity
from discovery.models import DeviceInfo
from discovery.multicast import MulticastChannel

logger = logging.getLogger(__name__)

REGISTER_PATH = f"/api/{API_NAMESPACE}/{API_VERSION}/register"


class AnnouncementResponder:
    """Acknowledges an announcement exactly once per attempt.

    The peer's register endpoint is tried with a bounded timeout; on any
    failure a single non-announcement datagram goes to the multicast group.
    """

    def __init__(self, identity: DeviceIdentity, multicast: MulticastChannel,
                 timeout: float = HTTP_RESPONSE_TIMEOUT) -> None:
        self.identity = identity
        self.multicast = multicast
        self.timeout = timeout
        self._in_flight: set[str] = set()

    async def respond(self, info: DeviceInfo, ip: str) -> str | None:
        """Returns the channel used ("http" / "multicast"), None if skipped."""
        # The same announcement arrives once per joined socket
        if info.fingerprint in self._in_flight:
            return None
        self._in_flight.add(info.fingerprint)
        try:
            if await self.register_via_http(ip, info.port):
                return "http"
            self.multicast.respond()
            return "multicast"
        finally:
            self._in_flight.discard(info.fingerprint)

    async def register_via_http(self, ip: str, port: int) -> bool:
        """POST our identity to the peer. True only on a 200 answer."""
        url = f"http://{ip}:{port}{REGISTER_PATH}"
        payload = self.identity.device_info(announcement=False).to_wire()
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        logger.debug(f"Register at {url} answered HTTP {response.status}")
                        return False
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Register at {url} failed: {e!r}")
            return False
