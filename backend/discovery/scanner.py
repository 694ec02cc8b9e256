"""
Active HTTP subnet scanning.

Fallback for networks where multicast never arrives (AP isolation, guest
Wi-Fi). Every host of the best few /24 subnets is asked for its info
endpoint; anything that answers with a valid identity is registered.
"""

import asyncio
import logging
from typing import Callable

import aiohttp
from pydantic import ValidationError

from config import (
    API_NAMESPACE,
    API_VERSION,
    CONFIG_SUBNET_PRIORITY,
    DISCOVERY_PORT,
    MAX_SCAN_SUBNETS,
    PROBE_TIMEOUT,
    SCAN_CONCURRENCY,
)
from discovery.identity import DeviceIdentity
from discovery.interfaces import subnet_prefix
from discovery.models import (
    DeviceInfo,
    DiscoveryMethod,
    InterfaceInfo,
    PeerRecord,
    SubnetOrigin,
    SubnetTarget,
)

logger = logging.getLogger(__name__)

INFO_PATH = f"/api/{API_NAMESPACE}/{API_VERSION}/info"

# register(info, ip, method) -> record, or None for our own identity
RegisterFn = Callable[[DeviceInfo, str, DiscoveryMethod], PeerRecord | None]


def is_valid_prefix(prefix: str) -> bool:
    parts = prefix.split(".")
    return len(parts) == 3 and all(p.isdigit() and 0 <= int(p) <= 255 for p in parts)


def collect_targets(interfaces: list[InterfaceInfo],
                    extra_subnets: list[str]) -> list[SubnetTarget]:
    """Merge local and configured subnets into one prioritized list.

    A prefix seen more than once keeps its highest priority entry.
    """
    candidates = [
        SubnetTarget(
            prefix=subnet_prefix(iface.address),
            name=iface.name,
            source_ip=iface.address,
            priority=iface.priority,
            origin=SubnetOrigin.LOCAL,
        )
        for iface in interfaces
    ]
    for prefix in extra_subnets:
        if not is_valid_prefix(prefix):
            logger.warning(f"Ignoring invalid subnet prefix in config: {prefix!r}")
            continue
        candidates.append(SubnetTarget(
            prefix=prefix,
            name=f"config {prefix}",
            priority=CONFIG_SUBNET_PRIORITY,
            origin=SubnetOrigin.CONFIG,
        ))

    by_prefix: dict[str, SubnetTarget] = {}
    for target in candidates:
        current = by_prefix.get(target.prefix)
        if current is None or target.priority > current.priority:
            by_prefix[target.prefix] = target

    return sorted(by_prefix.values(), key=lambda t: t.priority, reverse=True)


def select_targets(targets: list[SubnetTarget],
                   limit: int = MAX_SCAN_SUBNETS) -> list[SubnetTarget]:
    """Positive-priority targets only, capped at `limit`."""
    return [t for t in targets if t.priority > 0][:limit]


class SubnetScanner:
    """Probes /24 subnets for peers in bounded concurrent batches."""

    def __init__(self, identity: DeviceIdentity, register: RegisterFn,
                 port: int = DISCOVERY_PORT,
                 concurrency: int = SCAN_CONCURRENCY,
                 max_subnets: int = MAX_SCAN_SUBNETS,
                 timeout: float = PROBE_TIMEOUT) -> None:
        self.identity = identity
        self.port = port
        self.concurrency = concurrency
        self.max_subnets = max_subnets
        self.timeout = timeout
        self._register = register

    async def scan(self, interfaces: list[InterfaceInfo],
                   extra_subnets: list[str]) -> list[PeerRecord]:
        """Scan the best subnets concurrently; union of peers found."""
        targets = select_targets(collect_targets(interfaces, extra_subnets),
                                 self.max_subnets)
        if not targets:
            logger.info("[SCAN] No usable subnet to scan")
            return []

        local_ips = {iface.address for iface in interfaces}
        connector = aiohttp.TCPConnector(limit=self.concurrency * len(targets))
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            results = await asyncio.gather(*[
                self.scan_subnet(session, target, local_ips) for target in targets
            ])

        found: dict[str, PeerRecord] = {}
        for peers in results:
            for peer in peers:
                found[peer.fingerprint] = peer

        logger.info(f"[SCAN] Complete. Found {len(found)} device(s)")
        return list(found.values())

    async def scan_subnet(self, session: aiohttp.ClientSession, target: SubnetTarget,
                          local_ips: set[str]) -> list[PeerRecord]:
        """Probe .1-.254 of one subnet, skipping our own addresses."""
        skip = set(local_ips)
        if target.source_ip:
            skip.add(target.source_ip)
        hosts = [
            ip for ip in (f"{target.prefix}.{i}" for i in range(1, 255))
            if ip not in skip
        ]
        logger.info(f"[SCAN] Scanning {target.prefix}.1-254 ({target.name})")

        discovered: list[PeerRecord] = []
        for start in range(0, len(hosts), self.concurrency):
            batch = hosts[start:start + self.concurrency]
            results = await asyncio.gather(
                *[self.probe(session, ip) for ip in batch],
                return_exceptions=True,
            )
            for ip, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.debug(f"[SCAN] Probe of {ip} raised {result!r}")
                    continue
                if result is None:
                    continue
                record = self._register(result, ip, DiscoveryMethod.HTTP_SCAN)
                if record is not None:
                    logger.info(f"[SCAN FOUND] {record.alias} ({record.ip})")
                    discovered.append(record)
        return discovered

    async def probe(self, session: aiohttp.ClientSession, ip: str) -> DeviceInfo | None:
        """Ask one host for its identity. None on any failure."""
        url = f"http://{ip}:{self.port}{INFO_PATH}"
        try:
            async with session.get(url, params={"fingerprint": self.identity.fingerprint}) as response:
                if response.status != 200:
                    return None
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError):
            return None

        try:
            info = DeviceInfo.model_validate(payload)
        except ValidationError:
            return None
        if info.fingerprint == self.identity.fingerprint:
            return None
        return info
