"""Application-wide configuration constants."""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

# --- Identity ---
DEVICE_ALIAS = os.getenv("LANBEACON_ALIAS", "")  # empty -> hostname
DEVICE_TYPE = "desktop"  # mobile | desktop | web | headless | server
PROTOCOL_VERSION = "2.0"

# --- Networking ---
API_HOST = "0.0.0.0"
API_NAMESPACE = "localsend"
API_VERSION = "v2"
MULTICAST_ADDR = "224.0.0.167"
MULTICAST_TTL = 128
DISCOVERY_PORT = 53317  # UDP multicast and default HTTP port
MAX_PORT_ATTEMPTS = 10

# --- Timing (seconds) ---
ANNOUNCE_DELAYS = (0.1, 0.5, 2.0)  # startup burst
ANNOUNCE_INTERVAL = 3
DEVICE_TIMEOUT = 10  # seconds before a peer is considered offline
CLEANUP_INTERVAL = 2
HTTP_RESPONSE_TIMEOUT = 2.0
PROBE_TIMEOUT = 1.0

# --- Active scanning ---
SCAN_CONCURRENCY = 50
MAX_SCAN_SUBNETS = 3
CONFIG_SUBNET_PRIORITY = 60
AUTO_SCAN_AFTER_CYCLES = 3
AUTO_SCAN = os.getenv("LANBEACON_AUTO_SCAN", "1").lower() not in ("0", "false", "no")

# --- Logging ---
LOG_LEVEL = os.getenv("LANBEACON_LOG_LEVEL", "INFO").upper()

# --- Storage ---
CONFIG_DIR = Path.home() / ".lanbeacon"
CONFIG_FILE = CONFIG_DIR / "config.json"


class FileConfig(BaseModel):
    """Contents of the optional JSON config file."""
    extra_subnets: list[str] = []


def load_extra_subnets(path: Path = CONFIG_FILE) -> list[str]:
    """Collect extra subnet prefixes from the environment and the config file.

    Prefixes are returned as given; validation happens when scan targets
    are built so a bad entry only drops itself.
    """
    subnets = [
        s.strip()
        for s in os.getenv("LANBEACON_EXTRA_SUBNETS", "").split(",")
        if s.strip()
    ]

    if path.exists():
        try:
            file_config = FileConfig(**json.loads(path.read_text()))
            subnets.extend(s.strip() for s in file_config.extra_subnets if s.strip())
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")

    # Keep first occurrence order
    return list(dict.fromkeys(subnets))
