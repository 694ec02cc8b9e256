"""Discovery HTTP endpoints."""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import API_NAMESPACE, API_VERSION
from discovery.models import DeviceInfo, DiscoveryMethod

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"/api/{API_NAMESPACE}/{API_VERSION}")

# Injected by create_app()
_discovery_service = None


def init_routes(discovery_service) -> None:
    """Inject the discovery service into the routes module."""
    global _discovery_service
    _discovery_service = discovery_service


@router.get("/info")
async def info():
    """Return our identity."""
    return _discovery_service.get_device_info().to_wire()


@router.post("/register")
async def register(request: Request):
    """Register the calling device and answer with our identity."""
    try:
        peer = DeviceInfo.model_validate(json.loads(await request.body()))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.debug(f"Rejected register body: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    client_ip = request.client.host if request.client else ""
    _discovery_service.register_peer(peer, client_ip, DiscoveryMethod.MULTICAST)
    return _discovery_service.get_device_info().to_wire()
