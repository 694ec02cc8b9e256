import asyncio
import json
import socket

import pytest

from discovery.identity import DeviceIdentity
from discovery.models import DeviceInfo
from discovery.registry import DeviceRegistry
from discovery.service import DiscoveryService

PEER_FINGERPRINT = "b" * 32


@pytest.fixture
def identity():
    return DeviceIdentity(alias="test-host")


@pytest.fixture
def registry(identity):
    return DeviceRegistry(identity.fingerprint)


@pytest.fixture
def service(identity, registry):
    return DiscoveryService(identity, registry, auto_scan=False)


@pytest.fixture
def make_peer():

    def factory(fingerprint=PEER_FINGERPRINT, alias="phone", port=53317,
                announcement=False, **extra):
        return DeviceInfo(
            fingerprint=fingerprint,
            alias=alias,
            port=port,
            announcement=announcement,
            announce=announcement,
            device_model="android",
            device_type="mobile",
            **extra,
        )

    return factory


@pytest.fixture
def busy_port():
    """A listening socket on 127.0.0.1; yields its port."""
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)

    yield blocker.getsockname()[1]

    blocker.close()


async def start_raw_http(status=200, body=b"{}", delay=0.0):
    """Minimal HTTP/1.1 server on 127.0.0.1 answering every request alike.

    Returns (server, port). A positive `delay` holds the answer back, which
    lets tests exercise client timeouts.
    """
    if not isinstance(body, bytes):
        body = json.dumps(body).encode("utf-8")

    async def handle(reader, writer):
        await reader.read(65536)
        if delay:
            await asyncio.sleep(delay)
        head = (
            f"HTTP/1.1 {status} X\r\n"
            f"Content-Type: application/json\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Connection: close\r\n\r\n"
        ).encode("ascii")
        try:
            writer.write(head + body)
            await writer.drain()
        except ConnectionError:
            pass    # Client gave up first.
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


@pytest.fixture
def raw_http():
    return start_raw_http
