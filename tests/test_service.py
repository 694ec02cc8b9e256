import asyncio
import json
from unittest.mock import MagicMock

import pytest

from discovery import service as service_module
from discovery.errors import DiscoveryStartupError
from discovery.models import DiscoveryMethod, InterfaceInfo


def datagram(info):
    return json.dumps(info.to_wire()).encode("utf-8")


async def drain(service):
    while service._background:
        await asyncio.gather(*list(service._background), return_exceptions=True)


def test_announcement_registers_and_falls_back(service, make_peer, monkeypatch):

    attempts = []

    async def timed_out(ip, port):
        attempts.append((ip, port))
        return False

    monkeypatch.setattr(service.responder, "register_via_http", timed_out)
    monkeypatch.setattr(service.multicast, "respond", MagicMock())

    async def main():
        service.multicast.dispatch(datagram(make_peer(announcement=True)), "192.168.1.42")
        await drain(service)

    asyncio.run(main())

    assert len(service.registry) == 1
    peer = service.registry.get("b" * 32)
    assert peer.ip == "192.168.1.42"
    assert peer.discovery_method == DiscoveryMethod.MULTICAST

    assert attempts == [("192.168.1.42", 53317)]
    service.multicast.respond.assert_called_once_with()


def test_http_answer_needs_no_fallback(service, make_peer, monkeypatch):

    async def accepted(ip, port):
        return True

    monkeypatch.setattr(service.responder, "register_via_http", accepted)
    monkeypatch.setattr(service.multicast, "respond", MagicMock())

    async def main():
        service.multicast.dispatch(datagram(make_peer(announcement=True)), "192.168.1.42")
        await drain(service)

    asyncio.run(main())

    service.multicast.respond.assert_not_called()


def test_response_is_not_answered(service, make_peer, monkeypatch):

    register = MagicMock()
    monkeypatch.setattr(service.responder, "register_via_http", register)

    async def main():
        service.multicast.dispatch(datagram(make_peer(announcement=False)), "192.168.1.42")
        await drain(service)

    asyncio.run(main())

    assert "b" * 32 in service.registry
    register.assert_not_called()


def test_own_announcement_is_dropped(service, identity):

    service.multicast.dispatch(datagram(identity.device_info(announcement=True)), "192.168.1.5")

    assert len(service.registry) == 0


def test_register_peer(service, identity, make_peer):

    assert service.register_peer(identity.device_info(), "10.0.0.1", DiscoveryMethod.MULTICAST) is None

    peer = service.register_peer(make_peer(), "10.0.0.2", DiscoveryMethod.HTTP_SCAN)
    assert peer.discovery_method == DiscoveryMethod.HTTP_SCAN
    assert service.get_peers() == [peer]


def test_peer_change_callbacks(service, make_peer):

    events = []

    async def on_change(event, peer):
        events.append((event, peer.fingerprint))

    service.on_peer_change(on_change)

    async def main():
        service.register_peer(make_peer(), "10.0.0.2", DiscoveryMethod.MULTICAST)
        service.register_peer(make_peer(), "10.0.0.2", DiscoveryMethod.MULTICAST)
        await drain(service)

    asyncio.run(main())

    assert events == [("peer_discovered", "b" * 32)]


def test_get_device_info(service, identity):

    info = service.get_device_info()

    assert info.fingerprint == identity.fingerprint
    assert not info.is_announcement


def test_get_all_local_ips_falls_back_to_localhost(service, monkeypatch):

    monkeypatch.setattr(service_module, "list_interfaces", lambda: [])

    assert service.get_all_local_ips() == [
        InterfaceInfo(name="localhost", address="127.0.0.1", priority=0)
    ]


def test_scan_subnet_uses_configured_subnets(identity, registry, monkeypatch):

    svc = service_module.DiscoveryService(identity, registry, extra_subnets=["192.168.77"],
                                          auto_scan=False)
    monkeypatch.setattr(service_module, "list_interfaces", lambda: [])
    probed = set()

    async def probe(session, ip):
        probed.add(ip.rsplit(".", 1)[0])
        return None

    monkeypatch.setattr(svc.scanner, "probe", probe)

    assert asyncio.run(svc.scan_subnet()) == []
    assert probed == {"192.168.77"}


class FakeServer:

    instances = []

    def __init__(self, app):
        self.app = app
        self.stopped = False
        FakeServer.instances.append(self)

    async def start(self, port):
        return port + 1

    async def stop(self):
        self.stopped = True


@pytest.fixture
def fake_server(monkeypatch):
    FakeServer.instances = []
    monkeypatch.setattr(service_module, "APIServer", FakeServer)
    return FakeServer


def test_start_and_stop(service, identity, fake_server, monkeypatch):

    opened = []

    async def open_sockets(interfaces):
        opened.append(interfaces)

    monkeypatch.setattr(service.multicast, "open", open_sockets)
    monkeypatch.setattr(service.multicast, "announce", MagicMock())
    monkeypatch.setattr(service_module, "list_interfaces",
                        lambda: [InterfaceInfo(name="eth0", address="10.0.0.5", priority=80)])

    async def main():
        await service.start(port=53317)
        # Let the startup burst begin
        await asyncio.sleep(0.15)
        await service.stop()

    asyncio.run(main())

    # Port shifted by the server is what gets advertised
    assert identity.port == 53318
    assert service.get_device_info().port == 53318
    assert opened and opened[0][0].address == "10.0.0.5"
    assert service.multicast.announce.call_count >= 1
    assert fake_server.instances[0].stopped


def test_start_failure_tears_down(service, fake_server, monkeypatch):

    async def no_sockets(interfaces):
        raise DiscoveryStartupError("nothing")

    monkeypatch.setattr(service.multicast, "open", no_sockets)

    with pytest.raises(DiscoveryStartupError):
        asyncio.run(service.start())

    assert fake_server.instances[0].stopped


def test_start_without_interfaces_opens_on_any(service, fake_server, monkeypatch):

    opened = []

    async def open_sockets(interfaces):
        opened.append(interfaces)

    monkeypatch.setattr(service.multicast, "open", open_sockets)
    monkeypatch.setattr(service.multicast, "announce", MagicMock())
    monkeypatch.setattr(service_module, "list_interfaces", lambda: [])

    async def main():
        await service.start(port=53317)
        await service.stop()

    asyncio.run(main())

    # Empty list, not the localhost stand-in
    assert opened == [[]]
