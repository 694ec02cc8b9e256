"""
Local network interface enumeration and ranking.

Active scanning is expensive, so the interface most likely to reach real
peers (Wi-Fi, then wired Ethernet) is ranked first and virtual, link-local
and VPN adapters are pushed to the bottom.
"""

import ipaddress
import logging
import re
import socket

import psutil

from discovery.models import InterfaceInfo

logger = logging.getLogger(__name__)

PRIORITY_LINK_LOCAL = -100
PRIORITY_VIRTUAL = -50
PRIORITY_VPN = -10
PRIORITY_WIFI = 100
PRIORITY_ETHERNET = 80
PRIORITY_GATEWAY = 10
PRIORITY_DEFAULT = 50

VIRTUAL_PATTERNS = (
    "vmware", "vmnet", "virtualbox", "vbox", "hyper-v", "vethernet",
    "docker", "br-", "veth", "virbr", "wsl", "utun", "tailscale", "zerotier",
)
WIFI_PATTERNS = ("wi-fi", "wifi", "wlan", "wireless", "wlp", "无线")

_ETHERNET_RE = re.compile(r"ethernet|以太网|^eth\d|^en[a-z0-9]")
# "Ethernet 2", "以太网 3" ... are usually adapters added by VPN/VM software
_ETHERNET_ALIAS_RE = re.compile(r"(ethernet|以太网)\s*([2-9]|\d{2,})")


def score(address: str, name: str) -> int:
    """Priority of an interface; higher is more likely to reach peers."""
    lname = name.lower()

    if address.startswith("169.254."):
        return PRIORITY_LINK_LOCAL
    if any(p in lname for p in VIRTUAL_PATTERNS):
        return PRIORITY_VIRTUAL
    if address.startswith("100."):
        return PRIORITY_VPN
    if any(p in lname for p in WIFI_PATTERNS):
        return PRIORITY_WIFI
    if _ETHERNET_RE.search(lname) and not _ETHERNET_ALIAS_RE.search(lname):
        return PRIORITY_ETHERNET
    if address.endswith(".1"):
        return PRIORITY_GATEWAY
    return PRIORITY_DEFAULT


def subnet_prefix(address: str) -> str:
    """First three octets of an IPv4 address."""
    return ".".join(address.split(".")[:3])


def list_interfaces() -> list[InterfaceInfo]:
    """Non-loopback IPv4 addresses of interfaces that are up, best first."""
    found: list[InterfaceInfo] = []
    try:
        stats = psutil.net_if_stats()
    except OSError as e:
        logger.debug(f"Interface stats unavailable: {e}")
        stats = {}

    for name, addrs in psutil.net_if_addrs().items():
        if name in stats and not stats[name].isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.address:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            found.append(InterfaceInfo(
                name=name,
                address=addr.address,
                priority=score(addr.address, name),
            ))

    # sort() is stable, ties keep enumeration order
    found.sort(key=lambda i: i.priority, reverse=True)
    return found
