import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from discovery.models import DiscoveryMethod

BASE = "/api/localsend/v2"


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def test_info(client, identity):

    response = client.get(f"{BASE}/info")

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    body = response.json()
    assert body["fingerprint"] == identity.fingerprint
    assert body["alias"] == "test-host"
    assert body["port"] == identity.port
    assert body["protocol"] == "http"
    assert body["announcement"] is False
    assert body["announce"] is False
    assert set(body) == {
        "alias", "version", "deviceModel", "deviceType", "fingerprint",
        "port", "protocol", "download", "announcement", "announce",
    }


def test_info_ignores_query(client):

    response = client.get(f"{BASE}/info", params={"fingerprint": "c" * 32})
    assert response.status_code == 200


def test_register(client, registry, identity, make_peer):

    response = client.post(f"{BASE}/register", json=make_peer().to_wire())

    assert response.status_code == 200
    assert response.json()["fingerprint"] == identity.fingerprint
    assert response.headers["access-control-allow-origin"] == "*"

    peer = registry.get("b" * 32)
    assert peer is not None
    assert peer.alias == "phone"
    assert peer.discovery_method == DiscoveryMethod.MULTICAST


def test_register_missing_fields(client, registry):

    response = client.post(f"{BASE}/register", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request"}
    assert response.headers["access-control-allow-origin"] == "*"
    assert len(registry) == 0


def test_register_malformed_json(client, registry):

    response = client.post(
        f"{BASE}/register",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request"}
    assert len(registry) == 0


def test_register_self_is_ignored(client, registry, identity):

    response = client.post(f"{BASE}/register", json=identity.device_info().to_wire())

    assert response.status_code == 200
    assert len(registry) == 0


def test_unknown_path(client):

    response = client.get("/api/localsend/v2/upload")

    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}
    assert response.headers["access-control-allow-origin"] == "*"

    response = client.get(f"{BASE}/info/", follow_redirects=False)
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}


def test_wrong_method(client):

    response = client.get(f"{BASE}/register")
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}

    response = client.post(f"{BASE}/info", json={})
    assert response.status_code == 404


def test_preflight(client):

    response = client.options(
        f"{BASE}/register",
        headers={
            "Origin": "http://example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
