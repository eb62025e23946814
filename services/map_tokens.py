"""
Map SDK token validation.

The token is checked by requesting the SDK script URL it would be loaded
from; the provider answers 401/403 for bad tokens.
"""
import httpx
from typing import Optional
from config import settings
from services.live_map import ResourceLoader
import logging

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT_SECONDS = 5.0


def sdk_url(token: str) -> str:
    return settings.map_sdk_url_template.format(token=token)


async def validate_map_token(token: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """Never raises for network failures; the result carries valid=False instead"""
    try:
        async with httpx.AsyncClient(timeout=VALIDATION_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.head(sdk_url(token))
    except httpx.HTTPError as e:
        logger.warning(f"Map token validation network error: {e}")
        return {
            "valid": False,
            "error": "Network error during validation",
            "details": str(e),
            "suggestion": "Check network connection and try again",
        }

    if response.is_success:
        return {
            "valid": True,
            "message": "Token is valid",
            "tokenLength": len(token),
            "tokenPrefix": token[:20] + "...",
        }
    if response.status_code == 401:
        return {
            "valid": False,
            "error": "Token is invalid or expired (401)",
            "suggestion": "Please check your Mappls token and get a new one from mappls.com/api",
        }
    if response.status_code == 403:
        return {
            "valid": False,
            "error": "Token is forbidden (403)",
            "suggestion": "Token may not have the required permissions",
        }
    return {
        "valid": False,
        "error": f"Token validation failed ({response.status_code})",
        "suggestion": "Check token format and network connection",
    }


async def _load_map_sdk() -> dict:
    if not settings.map_token:
        raise ValueError("Map token is missing. Please check your environment variables.")
    result = await validate_map_token(settings.map_token)
    if not result["valid"]:
        raise ValueError(result["error"])
    return {"sdkUrl": sdk_url(settings.map_token)}


# Shared by every map view; the SDK is validated once per process
map_sdk_loader = ResourceLoader("map SDK", _load_map_sdk)
