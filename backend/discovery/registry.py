"""In-memory registry of discovered peers, keyed by fingerprint."""

import threading
import time

from config import DEVICE_TIMEOUT
from discovery.errors import SelfDiscovery
from discovery.models import DeviceInfo, DiscoveryMethod, PeerRecord

IPV4_MAPPED_PREFIX = "::ffff:"


def normalize_ip(ip: str) -> str:
    """Strip the IPv4-mapped IPv6 prefix, e.g. ``::ffff:10.0.0.2``."""
    if ip.lower().startswith(IPV4_MAPPED_PREFIX):
        return ip[len(IPV4_MAPPED_PREFIX):]
    return ip


class DeviceRegistry:
    """Thread-safe map of fingerprint -> PeerRecord with TTL eviction.

    Written to from the multicast receive path, the HTTP register endpoint
    and scan probes; swept periodically by the orchestrator.
    """

    def __init__(self, own_fingerprint: str, timeout: float = DEVICE_TIMEOUT) -> None:
        self._own_fingerprint = own_fingerprint
        self._timeout = timeout
        self._peers: dict[str, PeerRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, info: DeviceInfo, ip: str, method: DiscoveryMethod,
               now: float | None = None) -> bool:
        """Insert or refresh a peer. Returns True if it was not known before.

        Raises SelfDiscovery for our own fingerprint. A refresh keeps the
        discovery method recorded on first sighting.
        """
        if info.fingerprint == self._own_fingerprint:
            raise SelfDiscovery(info.fingerprint)

        seen = time.time() if now is None else now
        fields = info.model_dump()

        with self._lock:
            existing = self._peers.get(info.fingerprint)
            self._peers[info.fingerprint] = PeerRecord(
                **fields,
                ip=normalize_ip(ip),
                last_seen=seen,
                discovery_method=existing.discovery_method if existing else method,
            )
        return existing is None

    def sweep(self, now: float | None = None) -> list[PeerRecord]:
        """Drop and return every peer not seen within the timeout."""
        now = time.time() if now is None else now
        stale = []

        with self._lock:
            for fingerprint, peer in list(self._peers.items()):
                if now - peer.last_seen > self._timeout:
                    stale.append(peer)
                    del self._peers[fingerprint]
        return stale

    def snapshot(self) -> list[PeerRecord]:
        """Current peers in first-discovery order."""
        with self._lock:
            return list(self._peers.values())

    def get(self, fingerprint: str) -> PeerRecord | None:
        with self._lock:
            return self._peers.get(fingerprint)

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._peers
